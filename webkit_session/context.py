"""Frame/window contexts, the context stack and the window registry."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BrowsingContext:
	"""A window plus the path of frame ids leading to the scoped document.

	An empty ``frame_path`` is the window's top-level document.
	"""

	window: str
	frame_path: tuple[str, ...] = ()

	@property
	def is_top(self) -> bool:
		return not self.frame_path

	def child(self, frame_id: str) -> 'BrowsingContext':
		return BrowsingContext(window=self.window, frame_path=(*self.frame_path, frame_id))

	def top(self) -> 'BrowsingContext':
		return BrowsingContext(window=self.window)

	def contains(self, other: 'BrowsingContext') -> bool:
		"""True if ``other`` is this context or nested inside it."""
		if other.window != self.window or len(other.frame_path) < len(self.frame_path):
			return False
		return other.frame_path[: len(self.frame_path)] == self.frame_path

	def shares_lineage(self, other: 'BrowsingContext') -> bool:
		"""True for self, ancestors and descendants; False for siblings and other windows."""
		return self.contains(other) or other.contains(self)

	def to_wire(self) -> dict[str, Any]:
		return {'window': self.window, 'frame_path': list(self.frame_path)}

	def __str__(self) -> str:
		if self.is_top:
			return self.window
		return f'{self.window}/{"/".join(self.frame_path)}'


class ContextStack:
	"""Stack of active contexts; the root entry is the initial window's top document."""

	def __init__(self, root: BrowsingContext):
		self._entries: list[BrowsingContext] = [root]

	@property
	def top(self) -> BrowsingContext:
		return self._entries[-1]

	def __len__(self) -> int:
		return len(self._entries)

	def push(self, context: BrowsingContext) -> None:
		self._entries.append(context)

	def pop(self) -> BrowsingContext:
		if len(self._entries) == 1:
			raise RuntimeError('Cannot leave the root browsing context')
		return self._entries.pop()

	def reset(self, root: BrowsingContext) -> None:
		self._entries = [root]

	@contextmanager
	def entered(self, context: BrowsingContext) -> Iterator[BrowsingContext]:
		"""Push ``context`` for the duration of the block, popping it even on error."""
		depth = len(self._entries)
		self.push(context)
		try:
			yield context
		finally:
			# A reset inside the block already rebuilt the stack.
			if len(self._entries) > depth:
				del self._entries[depth:]


class WindowRegistry:
	"""Open window handles in creation order. The initial window is never dropped implicitly."""

	def __init__(self, initial: str):
		self._initial = initial
		self._handles: list[str] = [initial]

	@property
	def initial(self) -> str:
		return self._initial

	@property
	def handles(self) -> list[str]:
		return list(self._handles)

	def __contains__(self, handle: object) -> bool:
		return handle in self._handles

	def __len__(self) -> int:
		return len(self._handles)

	def add(self, handle: str) -> None:
		if handle not in self._handles:
			self._handles.append(handle)

	def remove(self, handle: str) -> bool:
		"""Drop a closed window. Returns False for unknown handles and for the initial window."""
		if handle == self._initial:
			logger.warning(f'Engine reported closure of the initial window {handle}; keeping it registered')
			return False
		if handle not in self._handles:
			return False
		self._handles.remove(handle)
		return True

	def reconcile(self, engine_handles: list[str]) -> None:
		"""Adopt the engine's window list, keeping known handles in their creation order."""
		known = [handle for handle in self._handles if handle in engine_handles or handle == self._initial]
		added = [handle for handle in engine_handles if handle not in known]
		self._handles = known + added

	def reset(self) -> list[str]:
		"""Forget every window except the initial one and return the dropped handles."""
		dropped = [handle for handle in self._handles if handle != self._initial]
		self._handles = [self._initial]
		return dropped

"""Per-node operations on references returned by WebkitSession.find()."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from webkit_session.codec import CommandName
from webkit_session.handles import NodeRef

if TYPE_CHECKING:
	from webkit_session.session import WebkitSession


class WebkitNode:
	"""A DOM node in a specific document generation.

	Every call checks the generation first and raises StaleHandleError once the
	owning document has been replaced, without asking the engine.
	"""

	def __init__(self, session: WebkitSession, ref: NodeRef):
		self._session = session
		self.ref = ref

	def __repr__(self) -> str:
		return f'<WebkitNode {self.ref.handle_id} in {self.ref.context}>'

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, WebkitNode):
			return NotImplemented
		return self.ref == other.ref

	def __hash__(self) -> int:
		return hash(self.ref)

	@property
	def is_stale(self) -> bool:
		return not self._session._handles.is_current(self.ref)

	async def _invoke(self, name: CommandName, *args: Any) -> Any:
		return await self._session._node_command(self.ref, name, *args)

	async def text(self) -> str:
		return str(await self._invoke(CommandName.NODE_TEXT) or '')

	async def attribute(self, name: str) -> Any:
		return await self._invoke(CommandName.NODE_ATTRIBUTE, name)

	async def value(self) -> str | list[str] | None:
		"""Form value; a list of selected option values for multi-selects."""
		return await self._invoke(CommandName.NODE_VALUE)

	async def set(self, value: str | bool | None) -> None:
		"""Fill a field, or check/uncheck a checkbox or radio with a bool. None clears."""
		await self._invoke(CommandName.NODE_SET, '' if value is None else value)

	async def click(self) -> None:
		await self._invoke(CommandName.NODE_CLICK)

	async def trigger(self, event: str) -> None:
		await self._invoke(CommandName.NODE_TRIGGER, event)

	async def select_option(self) -> None:
		await self._invoke(CommandName.NODE_SELECT_OPTION)

	async def unselect_option(self) -> None:
		await self._invoke(CommandName.NODE_UNSELECT_OPTION)

	async def path(self) -> str:
		return str(await self._invoke(CommandName.NODE_PATH))

	async def tag_name(self) -> str:
		return str(await self._invoke(CommandName.NODE_TAG_NAME)).lower()

	async def is_visible(self) -> bool:
		return bool(await self._invoke(CommandName.NODE_VISIBLE))

	async def is_checked(self) -> bool:
		return bool(await self.attribute('checked'))

	async def is_disabled(self) -> bool:
		return bool(await self.attribute('disabled'))

	async def drag_to(self, target: WebkitNode) -> None:
		await self._invoke(CommandName.NODE_DRAG_TO, self._session._handles.resolve(target.ref))

	async def submit(self) -> None:
		"""Submit the form this node belongs to, without clicking anything."""
		await self._invoke(CommandName.NODE_SUBMIT)

	async def find(self, query: str) -> list[WebkitNode]:
		"""Evaluate ``query`` relative to this node."""
		handle_ids = await self._invoke(CommandName.FIND_WITHIN, query)
		# Matches live in this node's document, not whatever replaced it meanwhile.
		return self._session._wrap_nodes(handle_ids, self.ref.context, (self.ref.epoch, self.ref.generation))

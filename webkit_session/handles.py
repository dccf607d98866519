"""Node handle table: engine handles scoped to per-window document generations."""

from dataclasses import dataclass

from webkit_session.codec import HandleArg
from webkit_session.context import BrowsingContext
from webkit_session.errors import StaleHandleError


@dataclass(frozen=True, slots=True)
class NodeRef:
	"""Logical reference to a DOM node minted by a find() in ``context``."""

	handle_id: str
	context: BrowsingContext
	epoch: int
	generation: int


class NodeHandleTable:
	"""Maps engine handles to node references and detects stale ones without a round trip.

	Every window carries a generation counter that moves whenever its top-level
	document is replaced. ``invalidate_all`` bumps a session-wide epoch instead,
	which strands references in every window at once.
	"""

	def __init__(self) -> None:
		self._epoch = 0
		self._generations: dict[str, int] = {}

	def generation_of(self, window: str) -> int:
		return self._generations.get(window, 0)

	def stamp(self, window: str) -> tuple[int, int]:
		"""The (epoch, generation) pair identifying the document now loaded in ``window``."""
		return self._epoch, self.generation_of(window)

	def mint(self, handle_ids: list[str], context: BrowsingContext, stamp: tuple[int, int] | None = None) -> list[NodeRef]:
		"""Wrap engine handles as refs. Pass the ``stamp`` taken before the query was sent
		so handles answered from a document replaced in flight come back already stale.
		"""
		epoch, generation = stamp if stamp is not None else self.stamp(context.window)
		return [
			NodeRef(handle_id=str(handle_id), context=context, epoch=epoch, generation=generation)
			for handle_id in handle_ids
		]

	def is_current(self, ref: NodeRef) -> bool:
		return ref.epoch == self._epoch and ref.generation == self.generation_of(ref.context.window)

	def resolve(self, ref: NodeRef) -> HandleArg:
		"""Return the wire handle for ``ref`` or raise StaleHandleError."""
		if not self.is_current(ref):
			raise StaleHandleError(
				f'Node {ref.handle_id} belongs to a document that is no longer loaded in window {ref.context.window}'
			)
		return HandleArg(handle_id=ref.handle_id)

	def invalidate_window(self, window: str) -> None:
		self._generations[window] = self.generation_of(window) + 1

	def invalidate_all(self) -> None:
		self._epoch += 1
		self._generations.clear()

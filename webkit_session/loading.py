"""Load synchronization state machine.

Each browsing context moves ``idle -> awaiting_load`` when the engine reports
that a load started and back to ``idle`` (or to ``load_failed``) when the load
finishes. Commands that need a stable document wait until no context in their
frame lineage is loading, then surface any recorded failure exactly once.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum

from webkit_session.context import BrowsingContext
from webkit_session.errors import LoadFailedError


class LoadState(str, Enum):
	IDLE = 'idle'
	AWAITING_LOAD = 'awaiting_load'
	LOAD_FAILED = 'load_failed'


@dataclass(slots=True)
class ContextLoad:
	state: LoadState
	url: str = ''
	error: str | None = None

	def failure_message(self) -> str:
		if self.error:
			return f'Unable to load URL: {self.url} because of error: {self.error}'
		return f'Unable to load URL: {self.url}'


class LoadTracker:
	def __init__(self) -> None:
		self._loads: dict[BrowsingContext, ContextLoad] = {}
		self._condition = asyncio.Condition()

	def state_of(self, context: BrowsingContext) -> LoadState:
		load = self._loads.get(context)
		return load.state if load else LoadState.IDLE

	def url_of(self, context: BrowsingContext) -> str | None:
		load = self._loads.get(context)
		return load.url if load else None

	def _lineage(self, context: BrowsingContext) -> list[tuple[BrowsingContext, ContextLoad]]:
		return [(key, load) for key, load in self._loads.items() if key.shares_lineage(context)]

	def is_loading(self, context: BrowsingContext) -> bool:
		return any(load.state is LoadState.AWAITING_LOAD for _, load in self._lineage(context))

	async def _notify(self) -> None:
		async with self._condition:
			self._condition.notify_all()

	async def started(self, context: BrowsingContext, url: str = '') -> None:
		# The new document replaces everything nested below this context.
		for key in [key for key in self._loads if key != context and context.contains(key)]:
			del self._loads[key]
		self._loads[context] = ContextLoad(state=LoadState.AWAITING_LOAD, url=url)
		await self._notify()

	async def finished(self, context: BrowsingContext, url: str = '', success: bool = True, error: str | None = None) -> None:
		previous = self._loads.get(context)
		final_url = url or (previous.url if previous else '')
		if success:
			self._loads[context] = ContextLoad(state=LoadState.IDLE, url=final_url)
		else:
			self._loads[context] = ContextLoad(state=LoadState.LOAD_FAILED, url=final_url, error=error)
		await self._notify()

	def url_changed(self, context: BrowsingContext, url: str) -> None:
		load = self._loads.get(context)
		if load is None:
			self._loads[context] = ContextLoad(state=LoadState.IDLE, url=url)
		else:
			load.url = url

	async def wait_until_settled(self, context: BrowsingContext) -> None:
		"""Block until no context sharing ``context``'s lineage is awaiting a load."""
		async with self._condition:
			await self._condition.wait_for(lambda: not self.is_loading(context))

	def raise_for_failure(self, context: BrowsingContext) -> None:
		"""Raise the first recorded failure in the lineage and return those contexts to idle."""
		failed = [(key, load) for key, load in self._lineage(context) if load.state is LoadState.LOAD_FAILED]
		if not failed:
			return
		for _, load in failed:
			load.state = LoadState.IDLE
		_, first = failed[0]
		raise LoadFailedError(first.failure_message(), url=first.url)

	async def discard_window(self, window: str) -> None:
		"""Forget every load recorded for ``window`` (new navigation or closed window)."""
		for key in [key for key in self._loads if key.window == window]:
			del self._loads[key]
		await self._notify()

	async def reset(self) -> None:
		self._loads.clear()
		await self._notify()

"""Async transport to the rendering engine.

One background task reads every frame the engine sends. Command responses are
handed to the single outstanding ``send()`` call; unsolicited events are
published on the session's event bus in arrival order. ``send()`` does not
return until every event that arrived before its response has been handled.
"""

import asyncio
import contextlib
import logging
from typing import Any

from bubus import BaseEvent, EventBus
from pydantic import BaseModel, ConfigDict, Field

from webkit_session.codec import Command, EngineFrame, FrameKind, encode_command, read_frame
from webkit_session.errors import (
	EngineTimeoutError,
	InvalidResponseError,
	NoResponseError,
	WebkitError,
	error_from_envelope,
)
from webkit_session.events import engine_event_from_payload

logger = logging.getLogger(__name__)


class EngineConnectionConfig(BaseModel):
	"""Where the engine listens and how long to wait for it."""

	model_config = ConfigDict(extra='forbid')

	host: str = '127.0.0.1'
	port: int = Field(gt=0, lt=65536)
	connect_timeout: float = Field(default=10.0, gt=0)
	default_timeout: float = Field(default=0.0, ge=0)


class EngineConnection:
	"""Single-flight request/response channel multiplexed with the engine's event stream."""

	def __init__(self, config: EngineConnectionConfig | None = None):
		self.config = config
		self.trace_commands = False
		self._reader: asyncio.StreamReader | None = None
		self._writer: asyncio.StreamWriter | None = None
		self._reader_task: asyncio.Task[None] | None = None
		self._lock = asyncio.Lock()
		self._pending: asyncio.Future[EngineFrame] | None = None
		self._discard_responses = 0
		self._event_bus: EventBus | None = None
		self._dispatched: list[BaseEvent[Any]] = []
		self._last_error: WebkitError | None = None
		self._lost = asyncio.Event()

	@property
	def is_alive(self) -> bool:
		return (
			self._writer is not None
			and self._reader_task is not None
			and not self._reader_task.done()
			and self._last_error is None
		)

	@property
	def last_error(self) -> WebkitError | None:
		return self._last_error

	def bind_event_bus(self, event_bus: EventBus) -> None:
		self._event_bus = event_bus

	async def wait_lost(self) -> WebkitError:
		"""Block until the transport dies and return the error that killed it."""
		await self._lost.wait()
		return self._last_error or NoResponseError('No response received from the server.')

	async def start(self) -> None:
		"""Open the socket to the engine unless a live channel already exists."""
		if self.is_alive:
			return
		if self.config is None:
			raise NoResponseError('No engine address configured for this connection.')

		await self.close()
		host, port = self.config.host, self.config.port
		try:
			reader, writer = await asyncio.wait_for(
				asyncio.open_connection(host, port), timeout=self.config.connect_timeout
			)
		except (OSError, TimeoutError) as exc:
			raise NoResponseError(f'Unable to connect to the engine at {host}:{port}: {exc}') from exc
		self.attach(reader, writer)
		logger.debug(f'Connected to engine at {host}:{port}')

	def attach(self, reader: asyncio.StreamReader, writer: Any) -> None:
		"""Adopt an already-open stream pair and start routing its frames."""
		self._reader = reader
		self._writer = writer
		self._last_error = None
		self._lost = asyncio.Event()
		self._discard_responses = 0
		self._reader_task = asyncio.create_task(self._read_loop(reader), name='webkit-engine-reader')

	async def close(self) -> None:
		task, writer = self._reader_task, self._writer
		self._reader_task = None
		self._writer = None
		self._reader = None
		if task is not None and not task.done():
			task.cancel()
			with contextlib.suppress(asyncio.CancelledError):
				await task
		if writer is not None:
			writer.close()
			with contextlib.suppress(OSError, ConnectionError):
				await writer.wait_closed()
		self._lost.set()
		self._fail_pending(NoResponseError('No response received from the server.'))

	async def __aenter__(self) -> 'EngineConnection':
		await self.start()
		return self

	async def __aexit__(self, exc_type, exc, tb) -> None:
		await self.close()

	async def send(self, command: Command, timeout: float | None = None) -> Any:
		"""Send one command and return its decoded success payload.

		``timeout`` of None waits indefinitely. Engine failures are raised as the
		matching InvalidResponseError subclass.
		"""
		async with self._lock:
			writer = self._writer
			if writer is None or not self.is_alive:
				raise self._last_error or NoResponseError('No response received from the server.')

			pending: asyncio.Future[EngineFrame] = asyncio.get_running_loop().create_future()
			self._pending = pending
			if self.trace_commands:
				logger.debug(f'> {command.describe()}')
			try:
				try:
					writer.write(encode_command(command))
					await writer.drain()
				except (OSError, ConnectionError) as exc:
					self._mark_dead(NoResponseError(f'No response received from the server. ({exc})'))
					raise self._last_error from exc
				frame = await self._await_response(pending, timeout)
			finally:
				self._pending = None

			await self.drain_events()

		payload = frame.decode()
		if frame.kind is FrameKind.FAILURE:
			error = error_from_envelope(payload)
			if self.trace_commands:
				logger.debug(f'< {command.name.value} failed: {type(error).__name__}: {error}')
			raise error
		if self.trace_commands:
			logger.debug(f'< {command.name.value} ok')
		return payload

	async def _await_response(self, pending: asyncio.Future[EngineFrame], timeout: float | None) -> EngineFrame:
		try:
			return await asyncio.wait_for(pending, timeout=timeout)
		except TimeoutError:
			if pending.done() and not pending.cancelled() and pending.exception() is None:
				return pending.result()
			# The engine still owes this response; drop it when it arrives.
			self._discard_responses += 1
			await self.drain_events()
			raise EngineTimeoutError(timeout or 0) from None

	async def drain_events(self) -> None:
		"""Wait until every event dispatched so far has been handled."""
		while self._dispatched:
			event = self._dispatched.pop(0)
			await event

	async def _read_loop(self, reader: asyncio.StreamReader) -> None:
		try:
			while True:
				frame = await read_frame(reader)
				if frame.kind is FrameKind.EVENT:
					self._route_event(frame)
				else:
					self._route_response(frame)
		except asyncio.CancelledError:
			raise
		except WebkitError as exc:
			self._mark_dead(exc)
		except (OSError, ConnectionError) as exc:
			self._mark_dead(NoResponseError(f'No response received from the server. ({exc})'))

	def _route_event(self, frame: EngineFrame) -> None:
		try:
			payload = frame.decode()
		except InvalidResponseError as exc:
			logger.warning(f'Ignoring undecodable engine event: {exc}')
			return
		self._publish(payload)

	def _route_response(self, frame: EngineFrame) -> None:
		if self._discard_responses:
			self._discard_responses -= 1
			logger.warning(f'Dropping late {frame.kind.value} response to a command that already timed out')
			return
		pending = self._pending
		if pending is None or pending.done():
			logger.warning(f'Dropping unsolicited {frame.kind.value} response from the engine')
			return
		pending.set_result(frame)

	def _publish(self, payload: Any) -> None:
		event = engine_event_from_payload(payload)
		if event is None:
			return
		if self._event_bus is None:
			logger.debug(f'No event bus bound; dropping {type(event).__name__}')
			return
		self._dispatched.append(self._event_bus.dispatch(event))

	def _mark_dead(self, error: WebkitError) -> None:
		if not isinstance(error, NoResponseError):
			error = NoResponseError(f'No response received from the server. ({type(error).__name__}: {error})')
		if self._last_error is None:
			logger.debug(f'Engine connection lost: {error}')
			self._last_error = error
		self._lost.set()
		self._fail_pending(self._last_error or error)

	def _fail_pending(self, error: WebkitError) -> None:
		pending = self._pending
		if pending is not None and not pending.done():
			pending.set_exception(error)

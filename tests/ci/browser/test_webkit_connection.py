"""Transport tests: response matching, event ordering, timeouts and transport loss."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from bubus import EventBus

from webkit_session.codec import Command, CommandName, FrameKind, encode_frame
from webkit_session.connection import EngineConnection, EngineConnectionConfig
from webkit_session.errors import (
	EngineTimeoutError,
	InvalidQueryError,
	LoadFailedError,
	NoResponseError,
	ScriptError,
)
from webkit_session.events import ConsoleMessageEvent

EOF = b''


def _ok(value: Any) -> bytes:
	return encode_frame(FrameKind.OK, value)


def _failure(error_class: str, message: str, **extra: Any) -> bytes:
	return encode_frame(FrameKind.FAILURE, {'class': error_class, 'message': message, **extra})


def _console(message: str) -> bytes:
	return encode_frame(FrameKind.EVENT, {'type': 'console', 'message': message})


class _ScriptedWriter:
	"""Feeds the next scripted reply into the reader whenever a request is written."""

	def __init__(self, reader: asyncio.StreamReader, replies: list[list[bytes]]) -> None:
		self.reader = reader
		self.replies = replies
		self.written: list[bytes] = []
		self.closed = False

	def write(self, data: bytes) -> None:
		self.written.append(data)
		reply = self.replies.pop(0) if self.replies else []
		for chunk in reply:
			if chunk == EOF:
				self.reader.feed_eof()
			else:
				self.reader.feed_data(chunk)

	async def drain(self) -> None:
		return None

	def close(self) -> None:
		self.closed = True

	async def wait_closed(self) -> None:
		return None


def _connect(replies: list[list[bytes]]) -> tuple[EngineConnection, _ScriptedWriter, asyncio.StreamReader]:
	reader = asyncio.StreamReader()
	writer = _ScriptedWriter(reader, replies)
	connection = EngineConnection()
	connection.attach(reader, writer)
	return connection, writer, reader


def _command(name: CommandName = CommandName.CURRENT_URL, *args: Any) -> Command:
	return Command(name=name, args=args)


@pytest.mark.asyncio
async def test_send_writes_request_and_returns_decoded_payload() -> None:
	connection, writer, _ = _connect([[_ok({'one': 1})]])
	try:
		result = await connection.send(_command(CommandName.EVALUATE, {'window': 'w0', 'frame_path': []}, '({one: 1})'))
	finally:
		await connection.close()

	assert result == {'one': 1}
	assert writer.written[0].startswith(b'Evaluate\n2\n')
	assert writer.closed


@pytest.mark.asyncio
async def test_failure_envelopes_map_to_error_classes() -> None:
	connection, _, _ = _connect(
		[
			[_failure('InvalidXPathError', "Unable to parse 'salad'")],
			[_failure('ScriptError', 'SyntaxError')],
			[_failure('LoadError', 'Unable to load URL: http://x/bad', url='http://x/bad')],
			[_ok('still usable')],
		]
	)
	try:
		with pytest.raises(InvalidQueryError, match='XPath'):
			await connection.send(_command(CommandName.FIND))
		with pytest.raises(ScriptError, match='SyntaxError'):
			await connection.send(_command(CommandName.EXECUTE))
		with pytest.raises(LoadFailedError) as exc_info:
			await connection.send(_command(CommandName.VISIT))
		assert exc_info.value.url == 'http://x/bad'
		assert await connection.send(_command()) == 'still usable'
	finally:
		await connection.close()


@pytest.mark.asyncio
async def test_events_received_before_response_are_handled_before_send_returns() -> None:
	bus = EventBus(name='ConnectionEventsTest')
	seen: list[str] = []

	async def on_console(event: ConsoleMessageEvent) -> None:
		await asyncio.sleep(0.01)
		seen.append(event.message)

	bus.on(ConsoleMessageEvent, on_console)
	connection, _, _ = _connect([[_console('first'), _console('second'), _ok(True)]])
	connection.bind_event_bus(bus)
	try:
		assert await connection.send(_command(CommandName.EXECUTE)) is True
		assert seen == ['first', 'second']
	finally:
		await connection.close()
		await bus.stop(clear=True, timeout=5)


@pytest.mark.asyncio
async def test_unknown_and_malformed_events_are_ignored() -> None:
	connection, _, _ = _connect(
		[[encode_frame(FrameKind.EVENT, {'type': 'mystery'}), encode_frame(FrameKind.EVENT, [1, 2]), _ok('fine')]]
	)
	try:
		assert await connection.send(_command()) == 'fine'
		assert connection.is_alive
	finally:
		await connection.close()


@pytest.mark.asyncio
async def test_timeout_names_bound_and_late_response_is_discarded() -> None:
	connection, _, _ = _connect([[], [_ok('late'), _ok('fresh')]])
	try:
		with pytest.raises(EngineTimeoutError, match='Request timed out after 0.05 seconds') as exc_info:
			await connection.send(_command(), timeout=0.05)
		assert exc_info.value.seconds == 0.05
		assert isinstance(exc_info.value, TimeoutError)

		assert await connection.send(_command(), timeout=1) == 'fresh'
	finally:
		await connection.close()


@pytest.mark.asyncio
async def test_late_response_arriving_between_commands_is_discarded() -> None:
	connection, _, reader = _connect([[], [_ok('second')]])
	try:
		with pytest.raises(EngineTimeoutError):
			await connection.send(_command(), timeout=0.05)
		reader.feed_data(_ok('first'))
		await asyncio.sleep(0.01)
		assert await connection.send(_command()) == 'second'
	finally:
		await connection.close()


@pytest.mark.asyncio
async def test_no_timeout_waits_for_slow_response() -> None:
	connection, _, reader = _connect([[]])

	async def answer_later() -> None:
		await asyncio.sleep(0.1)
		reader.feed_data(_ok('slow'))

	task = asyncio.create_task(answer_later())
	try:
		assert await connection.send(_command(), timeout=None) == 'slow'
	finally:
		await task
		await connection.close()


@pytest.mark.asyncio
async def test_end_of_stream_raises_no_response_and_later_sends_fail_fast() -> None:
	connection, writer, _ = _connect([[EOF]])
	try:
		with pytest.raises(NoResponseError, match='No response received from the server'):
			await connection.send(_command())
		assert not connection.is_alive
		assert isinstance(connection.last_error, NoResponseError)

		with pytest.raises(NoResponseError):
			await connection.send(_command())
		assert len(writer.written) == 1
	finally:
		await connection.close()


@pytest.mark.asyncio
async def test_malformed_frame_kills_connection_as_no_response() -> None:
	connection, writer, _ = _connect([[b'garbage\n']])
	try:
		with pytest.raises(NoResponseError, match='Unknown frame kind'):
			await connection.send(_command())
		assert not connection.is_alive
		assert isinstance(connection.last_error, NoResponseError)

		with pytest.raises(NoResponseError, match='No response received from the server'):
			await connection.send(_command())
		assert len(writer.written) == 1
	finally:
		await connection.close()


@pytest.mark.asyncio
async def test_wait_lost_wakes_when_the_engine_goes_away() -> None:
	connection, _, reader = _connect([])
	try:
		waiter = asyncio.create_task(connection.wait_lost())
		await asyncio.sleep(0)
		assert not waiter.done()

		reader.feed_eof()

		error = await asyncio.wait_for(waiter, 1)
		assert isinstance(error, NoResponseError)
		assert error is connection.last_error
		assert not connection.is_alive
	finally:
		await connection.close()


@pytest.mark.asyncio
async def test_start_without_address_raises_no_response() -> None:
	connection = EngineConnection()

	with pytest.raises(NoResponseError, match='No engine address configured'):
		await connection.start()


@pytest.mark.asyncio
async def test_start_reports_unreachable_engine(unused_tcp_port: int) -> None:
	connection = EngineConnection(EngineConnectionConfig(port=unused_tcp_port, connect_timeout=1))

	with pytest.raises(NoResponseError, match=f'127.0.0.1:{unused_tcp_port}'):
		await connection.start()
	assert not connection.is_alive


@pytest.mark.asyncio
async def test_start_connects_over_tcp() -> None:
	received: list[bytes] = []

	async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
		received.append(await reader.readuntil(b'0\n'))
		writer.write(_ok(['w0']))
		await writer.drain()
		await reader.read()
		writer.close()

	server = await asyncio.start_server(handle, '127.0.0.1', 0)
	port = server.sockets[0].getsockname()[1]
	try:
		async with EngineConnection(EngineConnectionConfig(port=port)) as connection:
			assert connection.is_alive
			assert await connection.send(_command(CommandName.WINDOW_HANDLES), timeout=5) == ['w0']
		assert received == [b'WindowHandles\n0\n']
	finally:
		server.close()
		await server.wait_closed()

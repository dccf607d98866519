"""Wire codec for the engine's request/response protocol.

Requests are a command name line, an argument count line, then one
length-prefixed JSON document per argument. The engine answers with frames
of three kinds (``ok``, ``failure`` and ``event``), each a kind line, a length
line and a JSON payload of exactly that many bytes.
"""

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

from webkit_session.errors import InvalidResponseError, NoResponseError


class CommandName(str, Enum):
	"""Fixed command vocabulary understood by the engine."""

	RESET = 'Reset'
	VISIT = 'Visit'
	FIND = 'Find'
	FIND_WITHIN = 'FindWithin'
	NODE_TEXT = 'NodeText'
	NODE_ATTRIBUTE = 'NodeAttribute'
	NODE_VALUE = 'NodeValue'
	NODE_SET = 'NodeSet'
	NODE_CLICK = 'NodeClick'
	NODE_TRIGGER = 'NodeTrigger'
	NODE_SELECT_OPTION = 'NodeSelectOption'
	NODE_UNSELECT_OPTION = 'NodeUnselectOption'
	NODE_PATH = 'NodePath'
	NODE_TAG_NAME = 'NodeTagName'
	NODE_VISIBLE = 'NodeVisible'
	NODE_DRAG_TO = 'NodeDragTo'
	NODE_SUBMIT = 'NodeSubmit'
	CURRENT_URL = 'CurrentUrl'
	SOURCE = 'Source'
	STATUS = 'Status'
	RESPONSE_HEADERS = 'ResponseHeaders'
	EXECUTE = 'Execute'
	EVALUATE = 'Evaluate'
	ENTER_FRAME = 'EnterFrame'
	WINDOW_HANDLES = 'WindowHandles'
	WINDOW_INFO = 'WindowInfo'
	SET_HEADER = 'SetHeader'
	CLEAR_HEADERS = 'ClearHeaders'
	SET_COOKIE = 'SetCookie'
	GET_COOKIES = 'GetCookies'
	CLEAR_COOKIES = 'ClearCookies'
	SET_TIMEOUT = 'SetTimeout'
	SET_CONFIRM_ACTION = 'SetConfirmAction'
	SET_PROMPT_ACTION = 'SetPromptAction'
	SET_PROMPT_TEXT = 'SetPromptText'
	ENABLE_LOGGING = 'EnableLogging'
	AUTHENTICATE = 'Authenticate'


class FrameKind(str, Enum):
	OK = 'ok'
	FAILURE = 'failure'
	EVENT = 'event'


@dataclass(frozen=True, slots=True)
class HandleArg:
	"""Engine-minted node handle passed as a command argument."""

	handle_id: str


class Command(BaseModel):
	"""A command name plus its ordered arguments. Immutable once built."""

	model_config = ConfigDict(extra='forbid', frozen=True, arbitrary_types_allowed=True)

	name: CommandName
	args: tuple[Any, ...] = ()

	def describe(self) -> str:
		"""Short single-line rendering used in log output."""
		rendered = ', '.join(_abbreviate(repr(arg)) for arg in self.args)
		return f'{self.name.value}({rendered})'


@dataclass(frozen=True, slots=True)
class EngineFrame:
	kind: FrameKind
	payload: bytes

	def decode(self) -> Any:
		return decode_payload(self.payload)


def _abbreviate(text: str, limit: int = 80) -> str:
	if len(text) <= limit:
		return text
	return text[: limit - 3] + '...'


def _to_wire(value: Any) -> Any:
	if isinstance(value, HandleArg):
		return {'handle': value.handle_id}
	if value is None or isinstance(value, (bool, int, float, str)):
		return value
	if isinstance(value, Enum):
		return _to_wire(value.value)
	if isinstance(value, (list, tuple)):
		return [_to_wire(item) for item in value]
	if isinstance(value, dict):
		wire: dict[str, Any] = {}
		for key, item in value.items():
			if not isinstance(key, str):
				raise TypeError(f'Mapping keys must be strings, got {type(key).__name__}')
			wire[key] = _to_wire(item)
		return wire
	raise TypeError(f'Unsupported argument type: {type(value).__name__}')


def encode_value(value: Any) -> bytes:
	"""Encode one argument as a JSON document."""
	return json.dumps(_to_wire(value), ensure_ascii=True, separators=(',', ':')).encode('ascii')


def decode_payload(payload: bytes) -> Any:
	"""Decode a JSON payload; an empty payload is null."""
	if not payload:
		return None
	try:
		return json.loads(payload.decode('utf-8'))
	except (UnicodeDecodeError, ValueError) as exc:
		raise InvalidResponseError(f'Malformed payload from engine: {_abbreviate(repr(payload))}') from exc


def encode_command(command: Command) -> bytes:
	"""Serialize a command into a single request frame."""
	parts = [command.name.value.encode('ascii'), b'\n', str(len(command.args)).encode('ascii'), b'\n']
	for arg in command.args:
		encoded = encode_value(arg)
		parts.append(str(len(encoded)).encode('ascii'))
		parts.append(b'\n')
		parts.append(encoded)
	return b''.join(parts)


def encode_frame(kind: FrameKind, value: Any) -> bytes:
	"""Serialize an engine frame. Used by engine-side tooling and tests."""
	payload = encode_value(value)
	return kind.value.encode('ascii') + b'\n' + str(len(payload)).encode('ascii') + b'\n' + payload


async def _read_line(reader: asyncio.StreamReader) -> str:
	line = await reader.readline()
	if not line or not line.endswith(b'\n'):
		raise NoResponseError('No response received from the server.')
	return line[:-1].decode('ascii', errors='replace').strip()


async def _read_length(reader: asyncio.StreamReader) -> int:
	raw = await _read_line(reader)
	try:
		length = int(raw)
	except ValueError as exc:
		raise InvalidResponseError(f'Malformed length line from engine: {raw!r}') from exc
	if length < 0:
		raise InvalidResponseError(f'Negative length from engine: {length}')
	return length


async def _read_exactly(reader: asyncio.StreamReader, length: int) -> bytes:
	try:
		return await reader.readexactly(length)
	except asyncio.IncompleteReadError as exc:
		raise NoResponseError('No response received from the server.') from exc


async def read_frame(reader: asyncio.StreamReader) -> EngineFrame:
	"""Read exactly one engine frame."""
	raw_kind = await _read_line(reader)
	try:
		kind = FrameKind(raw_kind)
	except ValueError as exc:
		raise InvalidResponseError(f'Unknown frame kind from engine: {raw_kind!r}') from exc
	length = await _read_length(reader)
	return EngineFrame(kind=kind, payload=await _read_exactly(reader, length))


async def read_command(reader: asyncio.StreamReader) -> Command:
	"""Read one request frame. The engine-side counterpart of encode_command()."""
	raw_name = await _read_line(reader)
	try:
		name = CommandName(raw_name)
	except ValueError as exc:
		raise InvalidResponseError(f'Unknown command: {raw_name!r}') from exc
	argc = await _read_length(reader)
	args: list[Any] = []
	for _ in range(argc):
		length = await _read_length(reader)
		value = decode_payload(await _read_exactly(reader, length))
		if isinstance(value, dict) and set(value) == {'handle'}:
			value = HandleArg(handle_id=str(value['handle']))
		args.append(value)
	return Command(name=name, args=tuple(args))

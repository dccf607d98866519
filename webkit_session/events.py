"""Unsolicited engine events, published on the session's event bus."""

import logging
from typing import Any, Literal

from bubus import BaseEvent
from pydantic import Field, ValidationError

logger = logging.getLogger(__name__)


class LoadStartedEvent(BaseEvent[None]):
	"""A navigable surface (top document or nested frame) started loading."""

	window: str
	frame_path: list[str] = Field(default_factory=list)
	url: str = ''


class LoadFinishedEvent(BaseEvent[None]):
	"""A navigable surface finished its primary load, successfully or not."""

	window: str
	frame_path: list[str] = Field(default_factory=list)
	url: str = ''
	success: bool = True
	error: str | None = None


class UrlChangedEvent(BaseEvent[None]):
	"""Redirect or history mutation changed a surface's URL without a new load."""

	window: str
	frame_path: list[str] = Field(default_factory=list)
	url: str


class WindowOpenedEvent(BaseEvent[None]):
	window: str


class WindowClosedEvent(BaseEvent[None]):
	window: str


class JavaScriptDialogEvent(BaseEvent[None]):
	"""An alert/confirm/prompt was intercepted and answered by the engine."""

	kind: Literal['alert', 'confirm', 'prompt']
	message: str = ''
	default_text: str | None = None
	response_text: str | None = None
	accepted: bool = True


class ConsoleMessageEvent(BaseEvent[None]):
	"""Console output or an uncaught script error."""

	source: str = ''
	message: str = ''
	line_number: int | None = None
	severity: Literal['info', 'error'] = 'info'


ENGINE_EVENT_TYPES: dict[str, type[BaseEvent[Any]]] = {
	'load_started': LoadStartedEvent,
	'load_finished': LoadFinishedEvent,
	'url_changed': UrlChangedEvent,
	'window_opened': WindowOpenedEvent,
	'window_closed': WindowClosedEvent,
	'dialog': JavaScriptDialogEvent,
	'console': ConsoleMessageEvent,
}


def engine_event_from_payload(payload: Any) -> BaseEvent[Any] | None:
	"""Build the bus event for a decoded ``event`` frame, or None if unrecognized."""
	if not isinstance(payload, dict):
		logger.warning(f'Ignoring malformed engine event: {payload!r}')
		return None

	fields = dict(payload)
	event_type = fields.pop('type', None)
	event_class = ENGINE_EVENT_TYPES.get(str(event_type))
	if event_class is None:
		logger.warning(f'Ignoring unknown engine event type: {event_type!r}')
		return None

	try:
		return event_class(**fields)
	except ValidationError as exc:
		logger.warning(f'Ignoring invalid {event_type} event: {exc}')
		return None

"""Exception taxonomy shared by the transport, the codec and the session facade."""

from typing import Any


class WebkitError(RuntimeError):
	"""Base class for every error raised by the engine session layer."""


class SessionNotStartedError(WebkitError):
	"""Raised when attempting to use WebkitSession before start()."""


class NoResponseError(WebkitError):
	"""The transport was lost before a response frame could be read."""


class EngineTimeoutError(WebkitError, TimeoutError):
	"""The configured timeout elapsed while awaiting a response or a page load."""

	def __init__(self, seconds: float):
		self.seconds = seconds
		unit = 'second' if seconds == 1 else 'seconds'
		super().__init__(f'Request timed out after {seconds:g} {unit}')


class InvalidResponseError(WebkitError):
	"""The engine reported that a command failed."""


class InvalidQueryError(InvalidResponseError):
	"""The query passed to find() is not a valid XPath expression."""


class FrameNotFoundError(InvalidResponseError):
	"""No child frame matched the requested index, id or name."""


class WindowNotFoundError(InvalidResponseError):
	"""No open window matched the requested handle, name, title or URL."""


class StaleContextError(InvalidResponseError):
	"""The active window or frame no longer exists in the engine's page tree."""


class ScriptError(InvalidResponseError):
	"""Script passed to execute/evaluate raised or failed to parse."""


class LoadFailedError(InvalidResponseError):
	"""A page or frame load failed (non-2xx status or network error)."""

	def __init__(self, message: str, url: str = ''):
		self.url = url
		super().__init__(message)


class StaleHandleError(WebkitError):
	"""The node reference belongs to a document generation that no longer exists."""


_ENGINE_ERROR_CLASSES: dict[str, type[WebkitError]] = {
	'InvalidResponseError': InvalidResponseError,
	'InvalidXPathError': InvalidQueryError,
	'FrameNotFoundError': FrameNotFoundError,
	'WindowNotFoundError': WindowNotFoundError,
	'StaleContextError': StaleContextError,
	'StaleHandleError': StaleHandleError,
	'ScriptError': ScriptError,
	'LoadError': LoadFailedError,
}


def error_from_envelope(envelope: Any) -> WebkitError:
	"""Build the exception described by an engine failure envelope."""
	if not isinstance(envelope, dict):
		return InvalidResponseError(f'Malformed failure envelope: {envelope!r}')

	error_class = str(envelope.get('class') or 'InvalidResponseError')
	message = str(envelope.get('message') or error_class)
	exc_type = _ENGINE_ERROR_CLASSES.get(error_class, InvalidResponseError)

	if exc_type is InvalidQueryError and 'xpath' not in message.lower():
		message = f'Invalid XPath expression: {message}'
	if exc_type is LoadFailedError:
		return LoadFailedError(message, url=str(envelope.get('url') or ''))
	return exc_type(message)

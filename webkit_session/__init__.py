"""Client-side session driver for a headless WebKit rendering engine."""

from .connection import EngineConnection, EngineConnectionConfig
from .context import BrowsingContext
from .cookies import Cookie, CookieJar
from .errors import (
	EngineTimeoutError,
	FrameNotFoundError,
	InvalidQueryError,
	InvalidResponseError,
	LoadFailedError,
	NoResponseError,
	ScriptError,
	SessionNotStartedError,
	StaleContextError,
	StaleHandleError,
	WebkitError,
	WindowNotFoundError,
)
from .messages import ConsoleRecord, DialogRecord
from .node import WebkitNode
from .session import WebkitSession
from .settings import DialogAction, HeaderSet, SessionSettings

__all__ = [
	'BrowsingContext',
	'ConsoleRecord',
	'Cookie',
	'CookieJar',
	'DialogAction',
	'DialogRecord',
	'EngineConnection',
	'EngineConnectionConfig',
	'EngineTimeoutError',
	'FrameNotFoundError',
	'HeaderSet',
	'InvalidQueryError',
	'InvalidResponseError',
	'LoadFailedError',
	'NoResponseError',
	'ScriptError',
	'SessionNotStartedError',
	'SessionSettings',
	'StaleContextError',
	'StaleHandleError',
	'WebkitError',
	'WebkitNode',
	'WebkitSession',
	'WindowNotFoundError',
]

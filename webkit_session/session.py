"""Session facade over the engine connection.

WebkitSession composes the transport, the node handle table, the context stack,
the load tracker and the dialog/console sink into the operations a test harness
calls: visit, find, script execution, frame/window scoping, cookies, headers,
dialog dispositions, timeout and reset.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import anyio
from bubus import EventBus
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, validate_call
from uuid_extensions import uuid7str

from webkit_session.codec import Command, CommandName
from webkit_session.connection import EngineConnection, EngineConnectionConfig
from webkit_session.context import BrowsingContext, ContextStack, WindowRegistry
from webkit_session.cookies import Cookie, CookieJar
from webkit_session.errors import (
	EngineTimeoutError,
	FrameNotFoundError,
	InvalidResponseError,
	ScriptError,
	SessionNotStartedError,
	StaleContextError,
	WebkitError,
	WindowNotFoundError,
)
from webkit_session.events import (
	ConsoleMessageEvent,
	JavaScriptDialogEvent,
	LoadFinishedEvent,
	LoadStartedEvent,
	UrlChangedEvent,
	WindowClosedEvent,
	WindowOpenedEvent,
)
from webkit_session.handles import NodeHandleTable, NodeRef
from webkit_session.loading import LoadTracker
from webkit_session.messages import ConsoleRecord, DialogRecord, MessageSink
from webkit_session.node import WebkitNode
from webkit_session.settings import DialogAction, HeaderSet, SessionSettings


def _normalize_cookie_path(path: str | Path) -> str:
	return os.path.abspath(os.path.expanduser(str(path)))


def _abbreviate_script(script: str, limit: int = 60) -> str:
	flat = ' '.join(script.split())
	return flat if len(flat) <= limit else flat[: limit - 3] + '...'


class WebkitSession(BaseModel):
	"""Client-side session driving one headless engine process."""

	model_config = ConfigDict(
		arbitrary_types_allowed=True, extra='forbid', validate_assignment=True, revalidate_instances='never'
	)

	id: str = Field(default_factory=uuid7str)
	connection: EngineConnection
	event_bus: EventBus = Field(default_factory=lambda: EventBus(name=f'WebkitSession_{uuid7str()[-4:]}'))

	_settings: SessionSettings = PrivateAttr(default_factory=SessionSettings)
	_handles: NodeHandleTable = PrivateAttr(default_factory=NodeHandleTable)
	_contexts: ContextStack | None = PrivateAttr(default=None)
	_windows: WindowRegistry | None = PrivateAttr(default=None)
	_loads: LoadTracker = PrivateAttr(default_factory=LoadTracker)
	_messages: MessageSink = PrivateAttr(default_factory=MessageSink)
	_started: bool = PrivateAttr(default=False)
	_handlers_registered: bool = PrivateAttr(default=False)

	@classmethod
	def from_config(cls, config: EngineConnectionConfig) -> WebkitSession:
		return cls(connection=EngineConnection(config=config))

	@property
	def logger(self) -> logging.Logger:
		window = self._contexts.top.window[-2:] if self._contexts is not None else '--'
		return logging.getLogger(f'webkit_session.WebkitSession {self.id[-4:]} {window}')

	@property
	def settings(self) -> SessionSettings:
		return self._settings

	@property
	def current_context(self) -> BrowsingContext:
		return self._require_contexts().top

	def _default_settings(self) -> SessionSettings:
		config = self.connection.config
		return SessionSettings(timeout=config.default_timeout if config else 0.0)

	def _require_started(self) -> None:
		if not self._started:
			raise SessionNotStartedError('WebkitSession is not started. Call await start() first.')

	def _require_contexts(self) -> ContextStack:
		self._require_started()
		assert self._contexts is not None
		return self._contexts

	def _require_windows(self) -> WindowRegistry:
		self._require_started()
		assert self._windows is not None
		return self._windows

	def _register_handlers(self) -> None:
		if self._handlers_registered:
			return
		self.event_bus.on(LoadStartedEvent, self.on_LoadStartedEvent)
		self.event_bus.on(LoadFinishedEvent, self.on_LoadFinishedEvent)
		self.event_bus.on(UrlChangedEvent, self.on_UrlChangedEvent)
		self.event_bus.on(WindowOpenedEvent, self.on_WindowOpenedEvent)
		self.event_bus.on(WindowClosedEvent, self.on_WindowClosedEvent)
		self.event_bus.on(JavaScriptDialogEvent, self.on_JavaScriptDialogEvent)
		self.event_bus.on(ConsoleMessageEvent, self.on_ConsoleMessageEvent)
		self._handlers_registered = True

	# Lifecycle

	@validate_call
	async def start(self) -> None:
		if self._started:
			return
		self.connection.bind_event_bus(self.event_bus)
		self._register_handlers()
		await self.connection.start()

		self._settings = self._default_settings()
		handles = await self.connection.send(
			Command(name=CommandName.WINDOW_HANDLES), timeout=self._settings.request_timeout
		)
		if not isinstance(handles, list) or not handles:
			raise InvalidResponseError(f'Engine reported no open windows: {handles!r}')
		self._windows = WindowRegistry(str(handles[0]))
		self._windows.reconcile([str(handle) for handle in handles])
		self._contexts = ContextStack(BrowsingContext(window=self._windows.initial))
		self._started = True
		await self._apply_settings()
		self.logger.debug(f'Session started with initial window {self._windows.initial}')

	@validate_call
	async def stop(self) -> None:
		if not self._started and not self.connection.is_alive:
			return
		await self.connection.close()
		self._started = False
		self._handles.invalidate_all()
		await self._loads.reset()

	async def close(self) -> None:
		await self.stop()

	async def __aenter__(self) -> WebkitSession:
		await self.start()
		return self

	async def __aexit__(self, exc_type, exc, tb) -> None:
		await self.stop()

	async def reset(self) -> None:
		"""Return the engine and every piece of session state to its defaults.

		Reconnects first when the transport was lost, so reset always succeeds
		while the engine process itself is reachable.
		"""
		self._require_started()
		if not self.connection.is_alive:
			self.logger.warning(f'Engine connection lost ({self.connection.last_error}); reconnecting before reset')
			await self.connection.start()

		defaults = self._default_settings()
		await self.connection.send(Command(name=CommandName.RESET), timeout=defaults.request_timeout)

		self._settings = defaults
		self.connection.trace_commands = False
		self._handles.invalidate_all()
		await self._loads.reset()
		self._messages.clear()

		windows = self._require_windows()
		dropped = windows.reset()
		handles = await self._command(CommandName.WINDOW_HANDLES)
		windows.reconcile([str(handle) for handle in handles or []])
		if dropped:
			self.logger.debug(f'Reset dropped windows {dropped}')
		self._require_contexts().reset(BrowsingContext(window=windows.initial))
		await self._apply_settings()

	async def _apply_settings(self) -> None:
		"""Push the whole settings record to the engine."""
		settings = self._settings
		await self._command(CommandName.SET_TIMEOUT, settings.timeout)
		await self._command(CommandName.SET_CONFIRM_ACTION, settings.confirm_action is DialogAction.ACCEPT)
		await self._command(CommandName.SET_PROMPT_ACTION, settings.prompt_action is DialogAction.ACCEPT)
		await self._command(CommandName.SET_PROMPT_TEXT, settings.prompt_input)
		await self._command(CommandName.CLEAR_HEADERS)
		for name, value in settings.headers.items():
			await self._command(CommandName.SET_HEADER, name, value)
		if settings.logging_enabled:
			await self._command(CommandName.ENABLE_LOGGING)

	# Engine events

	async def on_LoadStartedEvent(self, event: LoadStartedEvent) -> None:
		context = BrowsingContext(window=event.window, frame_path=tuple(event.frame_path))
		if context.is_top:
			self._handles.invalidate_window(event.window)
		await self._loads.started(context, event.url)

	async def on_LoadFinishedEvent(self, event: LoadFinishedEvent) -> None:
		context = BrowsingContext(window=event.window, frame_path=tuple(event.frame_path))
		if not event.success:
			self.logger.debug(f'Load of {event.url} failed in {context}: {event.error}')
		await self._loads.finished(context, url=event.url, success=event.success, error=event.error)

	async def on_UrlChangedEvent(self, event: UrlChangedEvent) -> None:
		self._loads.url_changed(BrowsingContext(window=event.window, frame_path=tuple(event.frame_path)), event.url)

	async def on_WindowOpenedEvent(self, event: WindowOpenedEvent) -> None:
		if self._windows is not None:
			self._windows.add(event.window)

	async def on_WindowClosedEvent(self, event: WindowClosedEvent) -> None:
		if self._windows is not None and self._windows.remove(event.window):
			self._handles.invalidate_window(event.window)
			await self._loads.discard_window(event.window)

	async def on_JavaScriptDialogEvent(self, event: JavaScriptDialogEvent) -> None:
		record = self._messages.record_dialog(event)
		self.logger.debug(f'{record.kind} dialog {"accepted" if record.accepted else "dismissed"}: {record.message}')

	async def on_ConsoleMessageEvent(self, event: ConsoleMessageEvent) -> None:
		self._messages.record_console(event)

	# Command plumbing

	async def _command(self, name: CommandName, *args: Any) -> Any:
		self._require_started()
		command = Command(name=name, args=args)
		try:
			return await self.connection.send(command, timeout=self._settings.request_timeout)
		except WebkitError as exc:
			self.logger.debug(f'{command.describe()} failed: {type(exc).__name__}: {exc}')
			raise

	async def _wait_for_load(self, context: BrowsingContext) -> None:
		await self.connection.drain_events()
		if not self._loads.is_loading(context):
			return
		timeout = self._settings.request_timeout
		settled = asyncio.ensure_future(self._loads.wait_until_settled(context))
		lost = asyncio.ensure_future(self.connection.wait_lost())
		try:
			done, _ = await asyncio.wait({settled, lost}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
		finally:
			for waiter in (settled, lost):
				waiter.cancel()
			await asyncio.gather(settled, lost, return_exceptions=True)
		if settled in done:
			settled.result()
			return
		if lost in done:
			# No load_finished can arrive over a dead transport.
			raise lost.result()
		raise EngineTimeoutError(timeout or 0)

	async def _stable(self, context: BrowsingContext) -> None:
		"""Wait for ``context``'s lineage to finish loading and surface any failed load."""
		self._require_started()
		await self._wait_for_load(context)
		if context.window not in self._require_windows():
			raise StaleContextError(f'Window {context.window} is no longer open')
		self._loads.raise_for_failure(context)

	async def _node_command(self, ref: NodeRef, name: CommandName, *args: Any) -> Any:
		self._handles.resolve(ref)
		await self._stable(ref.context)
		# The document may have been replaced while waiting.
		handle = self._handles.resolve(ref)
		return await self._command(name, handle, *args)

	def _wrap_nodes(self, handle_ids: Any, context: BrowsingContext, stamp: tuple[int, int]) -> list[WebkitNode]:
		if not isinstance(handle_ids, list):
			raise InvalidResponseError(f'Expected a list of node handles, got {handle_ids!r}')
		return [WebkitNode(self, ref) for ref in self._handles.mint([str(h) for h in handle_ids], context, stamp)]

	async def _script(self, name: CommandName, script: str) -> Any:
		context = self.current_context
		await self._stable(context)
		try:
			return await self._command(name, context.to_wire(), script)
		except ScriptError as exc:
			summary = _abbreviate_script(script)
			if summary in str(exc):
				raise
			raise ScriptError(f'{exc} (while running: {summary})') from exc

	# Navigation and queries

	@validate_call
	async def visit(self, url: str) -> None:
		"""Navigate the current context and wait for the load, raising if it fails."""
		context = self.current_context
		await self._command(CommandName.VISIT, context.to_wire(), url)
		await self._stable(context)

	@validate_call
	async def find(self, query: str) -> list[WebkitNode]:
		"""Run an XPath query in the current context. No match is an empty list."""
		context = self.current_context
		await self._stable(context)
		stamp = self._handles.stamp(context.window)
		handle_ids = await self._command(CommandName.FIND, context.to_wire(), query)
		return self._wrap_nodes(handle_ids, context, stamp)

	@validate_call
	async def execute_script(self, script: str) -> None:
		await self._script(CommandName.EXECUTE, script)

	@validate_call
	async def evaluate_script(self, script: str) -> Any:
		return await self._script(CommandName.EVALUATE, script)

	async def _query_current(self, name: CommandName) -> Any:
		context = self.current_context
		await self._stable(context)
		return await self._command(name, context.to_wire())

	async def current_url(self) -> str:
		return str(await self._query_current(CommandName.CURRENT_URL) or '')

	async def source(self) -> str:
		return str(await self._query_current(CommandName.SOURCE) or '')

	async def body(self) -> str:
		return await self.source()

	async def status_code(self) -> int:
		return int(await self._query_current(CommandName.STATUS) or 0)

	async def response_headers(self) -> HeaderSet:
		headers = await self._query_current(CommandName.RESPONSE_HEADERS)
		if not isinstance(headers, dict):
			raise InvalidResponseError(f'Expected a header mapping, got {headers!r}')
		return HeaderSet({str(name): str(value) for name, value in headers.items()})

	# Frames and windows

	@asynccontextmanager
	async def within_frame(self, locator: int | str) -> AsyncIterator[BrowsingContext]:
		"""Scope commands to a child frame found by index, id or name for the ``async with`` block."""
		contexts = self._require_contexts()
		parent = contexts.top
		await self._stable(parent)
		try:
			result = await self._command(CommandName.ENTER_FRAME, parent.to_wire(), locator)
		except FrameNotFoundError as exc:
			if str(locator) in str(exc):
				raise
			raise FrameNotFoundError(f'Unable to locate frame {locator!r}: {exc}') from exc
		if not isinstance(result, dict) or 'frame_id' not in result:
			raise InvalidResponseError(f'Unexpected EnterFrame response for frame {locator!r}: {result!r}')

		frame = parent.child(str(result['frame_id']))
		if result.get('url'):
			self._loads.url_changed(frame, str(result['url']))
		with contexts.entered(frame):
			yield frame

	@asynccontextmanager
	async def within_window(self, locator: str) -> AsyncIterator[BrowsingContext]:
		"""Scope commands to the window matching a handle, name, title or URL."""
		contexts = self._require_contexts()
		window = await self._resolve_window(locator)
		with contexts.entered(window):
			yield window

	async def _resolve_window(self, locator: str) -> BrowsingContext:
		handles = await self.window_handles()
		if locator in handles:
			return BrowsingContext(window=locator)
		for handle in handles:
			candidate = BrowsingContext(window=handle)
			await self._wait_for_load(candidate)
			info = await self._command(CommandName.WINDOW_INFO, handle)
			if not isinstance(info, dict):
				continue
			if locator in (info.get('name'), info.get('title'), info.get('url')):
				return candidate
		raise WindowNotFoundError(f'Unable to locate window {locator!r}')

	async def window_handles(self) -> list[str]:
		windows = self._require_windows()
		handles = await self._command(CommandName.WINDOW_HANDLES)
		if not isinstance(handles, list):
			raise InvalidResponseError(f'Expected a list of window handles, got {handles!r}')
		windows.reconcile([str(handle) for handle in handles])
		return windows.handles

	# Headers, cookies and credentials

	@validate_call
	async def header(self, name: str, value: str) -> None:
		self._settings.headers[name] = value
		await self._command(CommandName.SET_HEADER, name, value)

	@validate_call
	async def authenticate(self, username: str, password: str) -> None:
		await self._command(CommandName.AUTHENTICATE, username, password)

	@validate_call
	async def set_cookie(self, cookie: str) -> None:
		await self._command(CommandName.SET_COOKIE, cookie)

	async def get_cookies(self) -> list[str]:
		cookies = await self._command(CommandName.GET_COOKIES)
		if not isinstance(cookies, list):
			raise InvalidResponseError(f'Expected a list of cookies, got {cookies!r}')
		return [str(cookie) for cookie in cookies]

	async def clear_cookies(self) -> None:
		await self._command(CommandName.CLEAR_COOKIES)

	async def cookies(self) -> CookieJar:
		return CookieJar.from_strings(await self.get_cookies())

	async def save_cookies(self, path: str | Path) -> int:
		"""Write the engine's cookies to ``path`` as JSON and return how many were saved."""
		cookies = [cookie.to_header() for cookie in await self.cookies()]
		output_path = anyio.Path(_normalize_cookie_path(path))
		await output_path.write_text(json.dumps({'cookies': cookies}, indent=2), encoding='utf-8')
		return len(cookies)

	async def load_cookies(self, path: str | Path) -> int:
		"""Restore cookies saved by save_cookies(). A missing file loads nothing."""
		input_path = anyio.Path(_normalize_cookie_path(path))
		if not await input_path.exists():
			return 0
		data = json.loads(await input_path.read_text(encoding='utf-8'))
		cookies = data.get('cookies', []) if isinstance(data, dict) else []
		loaded = 0
		for raw in cookies:
			if not isinstance(raw, str) or not raw.strip():
				continue
			await self.set_cookie(Cookie.parse(raw).to_header())
			loaded += 1
		return loaded

	# Settings

	@property
	def timeout(self) -> float:
		return self._settings.timeout

	@validate_call
	async def set_timeout(self, seconds: float) -> None:
		"""Change the timeout applied to the next command. 0 disables it."""
		self._settings.timeout = seconds
		await self._command(CommandName.SET_TIMEOUT, self._settings.timeout)

	async def accept_js_confirms(self) -> None:
		self._settings.confirm_action = DialogAction.ACCEPT
		await self._command(CommandName.SET_CONFIRM_ACTION, True)

	async def dismiss_js_confirms(self) -> None:
		self._settings.confirm_action = DialogAction.DISMISS
		await self._command(CommandName.SET_CONFIRM_ACTION, False)

	async def accept_js_prompts(self) -> None:
		self._settings.prompt_action = DialogAction.ACCEPT
		await self._command(CommandName.SET_PROMPT_ACTION, True)

	async def dismiss_js_prompts(self) -> None:
		self._settings.prompt_action = DialogAction.DISMISS
		await self._command(CommandName.SET_PROMPT_ACTION, False)

	async def set_js_prompt_input(self, text: str | None) -> None:
		"""Text returned by accepted prompts; None falls back to each prompt's default."""
		self._settings.prompt_input = text
		await self._command(CommandName.SET_PROMPT_TEXT, text)

	async def enable_logging(self) -> None:
		self._settings.logging_enabled = True
		self.connection.trace_commands = True
		await self._command(CommandName.ENABLE_LOGGING)

	# Dialog and console logs

	@property
	def dialogs(self) -> list[DialogRecord]:
		return self._messages.dialogs

	@property
	def alert_messages(self) -> list[str]:
		return self._messages.alert_messages

	@property
	def confirm_messages(self) -> list[str]:
		return self._messages.confirm_messages

	@property
	def prompt_messages(self) -> list[str]:
		return self._messages.prompt_messages

	@property
	def console_messages(self) -> list[ConsoleRecord]:
		return self._messages.console_messages

	@property
	def error_messages(self) -> list[ConsoleRecord]:
		return self._messages.error_messages

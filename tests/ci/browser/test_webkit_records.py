"""Tests for dialog/console records, cookie parsing and session settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from webkit_session.cookies import Cookie, CookieJar
from webkit_session.events import ConsoleMessageEvent, JavaScriptDialogEvent, LoadFinishedEvent, engine_event_from_payload
from webkit_session.messages import MessageSink
from webkit_session.settings import DialogAction, HeaderSet, SessionSettings


@pytest.mark.asyncio
async def test_message_sink_keeps_emission_order_and_filters_by_kind() -> None:
	sink = MessageSink()
	sink.record_dialog(JavaScriptDialogEvent(kind='alert', message='Hi'))
	sink.record_dialog(JavaScriptDialogEvent(kind='confirm', message='Yes?', accepted=False))
	sink.record_dialog(JavaScriptDialogEvent(kind='prompt', message='Name?', default_text='John', response_text='Capy'))
	sink.record_console(ConsoleMessageEvent(source='http://x/', message='hello', line_number=6))
	sink.record_console(ConsoleMessageEvent(message='ReferenceError: boom', severity='error'))

	assert sink.alert_messages == ['Hi']
	assert sink.confirm_messages == ['Yes?']
	assert sink.prompt_messages == ['Name?']
	assert [record.kind for record in sink.dialogs] == ['alert', 'confirm', 'prompt']
	assert sink.dialogs[2].response_text == 'Capy'
	assert [record.message for record in sink.console_messages] == ['hello', 'ReferenceError: boom']
	assert str(sink.console_messages[0]) == 'http://x/:6: hello'
	assert [record.message for record in sink.error_messages] == ['ReferenceError: boom']

	sink.clear()
	assert sink.dialogs == []
	assert sink.console_messages == []


@pytest.mark.asyncio
async def test_engine_event_factory_builds_typed_events() -> None:
	event = engine_event_from_payload(
		{'type': 'load_finished', 'window': 'w0', 'frame_path': ['f'], 'url': 'http://x/', 'success': False, 'error': 'boom'}
	)

	assert isinstance(event, LoadFinishedEvent)
	assert event.frame_path == ['f']
	assert event.success is False
	assert engine_event_from_payload({'type': 'load_finished'}) is None
	assert engine_event_from_payload({'type': 'unknown'}) is None
	assert engine_event_from_payload('nope') is None


def test_cookie_parse_reads_attributes() -> None:
	cookie = Cookie.parse('cookie=abc; domain=127.0.0.1; path=/; HttpOnly; Secure')

	assert cookie.name == 'cookie'
	assert cookie.value == 'abc'
	assert cookie.domain == '127.0.0.1'
	assert cookie.path == '/'
	assert cookie.http_only
	assert cookie.secure
	assert cookie.to_header() == 'cookie=abc; domain=127.0.0.1; path=/; Secure; HttpOnly'

	with pytest.raises(ValueError, match='Malformed cookie'):
		Cookie.parse('no-equals-sign')


def test_cookie_jar_keys_by_name_domain_and_path_with_last_write_winning() -> None:
	jar = CookieJar.from_strings(
		[
			'session_id=1; domain=a.test; path=/',
			'session_id=2; domain=b.test; path=/',
			'session_id=3; domain=a.test; path=/',
			'',
		]
	)

	assert len(jar) == 2
	assert jar['session_id'] == '3'
	assert jar.get('missing') is None
	assert 'session_id' in jar
	assert {cookie.domain for cookie in jar} == {'a.test', 'b.test'}
	with pytest.raises(KeyError):
		jar['missing']


def test_header_set_is_case_insensitive_and_last_write_wins() -> None:
	headers = HeaderSet({'Content-Type': 'text/html'})
	headers['content-type'] = 'text/css'
	headers['X-Custom'] = '1'

	assert headers['CONTENT-TYPE'] == 'text/css'
	assert list(headers) == ['content-type', 'X-Custom']
	assert len(headers) == 2
	del headers['x-custom']
	assert 'X-Custom' not in headers


def test_session_settings_defaults_and_validation() -> None:
	settings = SessionSettings()

	assert settings.confirm_action is DialogAction.ACCEPT
	assert settings.prompt_action is DialogAction.DISMISS
	assert settings.prompt_input is None
	assert settings.request_timeout is None
	assert not settings.logging_enabled

	settings.timeout = 2.5
	assert settings.request_timeout == 2.5
	with pytest.raises(ValidationError):
		settings.timeout = -1

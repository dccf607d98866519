"""Fixtures wiring WebkitSession to the in-memory fake engine."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from fake_engine import FakeEngine, FakeEngineConnection, FakeNode, FakePage

from webkit_session.session import WebkitSession


@pytest.fixture
def engine() -> FakeEngine:
	engine = FakeEngine()
	engine.add_page(
		FakePage(
			url='http://fake/hello',
			source='<html><body><p id="greeting">hello</p></body></html>',
			title='Hello',
			nodes={
				'//p': [FakeNode(tag='p', text='hello', attributes={'id': 'greeting'}, path='/html/body/p')],
				'//input': [FakeNode(tag='input', value='bar', attributes={'disabled': True, 'checked': True})],
				'//nothing': [],
			},
		)
	)
	return engine


@pytest_asyncio.fixture
async def session(engine: FakeEngine) -> AsyncIterator[WebkitSession]:
	session = WebkitSession(connection=FakeEngineConnection(engine))
	await session.start()
	try:
		yield session
	finally:
		await session.stop()
		await session.event_bus.stop(clear=True, timeout=5)

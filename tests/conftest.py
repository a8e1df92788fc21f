"""Shared test fixtures for the NearBuy bot test suite."""

import asyncio

import pytest

from fakes import FakeRedis, RecordingSender, make_services
from nearbuy.domain.incoming_message import IncomingMessage, MessageKind
from nearbuy.flows import build_router
from nearbuy.infrastructure.cache.session_store import SessionStore


@pytest.fixture(scope="session")
def event_loop():
    """Use a single event loop for the entire test session."""
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


class BotHarness:
    """Full router stack over fakes; each helper delivers one inbound message."""

    def __init__(self, sender=None):
        self.redis = FakeRedis()
        self.store = SessionStore(self.redis, lock_wait_seconds=2)
        self.services = make_services()
        self.sender = sender or RecordingSender()
        self.router = build_router(self.store, self.services, self.sender)

    @property
    def users(self):
        return self.services.users

    async def send(self, message):
        await self.router.process(message)

    async def text(self, phone, body):
        await self.send(IncomingMessage.text_message(phone, body))

    async def tap(self, phone, selection_id):
        await self.send(IncomingMessage.button(phone, selection_id))

    async def location(self, phone, latitude=10.0, longitude=76.0):
        await self.send(
            IncomingMessage(phone=phone, kind=MessageKind.LOCATION, latitude=latitude, longitude=longitude)
        )

    async def image(self, phone, media_id="media-1", caption=None):
        await self.send(IncomingMessage(phone=phone, kind=MessageKind.IMAGE, media=media_id, caption=caption))

    async def session(self, phone):
        return await self.store.get(phone)

    async def state(self, phone):
        session = await self.store.get(phone)
        return session.current_flow, session.current_step


@pytest.fixture
def bot():
    return BotHarness()

"""
Shared fixtures: a real temporary store plus in-memory fakes for the
resolver, hub and chat transport.
"""

import asyncio

import pytest

from tube_scriber.errors import HubError
from tube_scriber.metrics import MetricsCollector
from tube_scriber.state import SubscriptionStore
from tube_scriber.subscriptions import SubscriptionCoordinator

CHANNEL_URL = "https://www.youtube.com/@somechannel"
CHANNEL_ID = "UC_somechannel_id"
OTHER_URL = "https://www.youtube.com/@otherchannel"
OTHER_ID = "UC_otherchannel_id"


class FakeResolver:
    def __init__(self, mapping: dict[str, str]):
        self.mapping = dict(mapping)
        self.calls: list[str] = []

    async def resolve(self, channel_url: str) -> str | None:
        self.calls.append(channel_url)
        await asyncio.sleep(0)
        return self.mapping.get(channel_url)


class FakeHub:
    def __init__(self):
        self.subscribed: list[str] = []
        self.unsubscribed: list[str] = []
        self.fail = False

    async def subscribe(self, channel_id: str) -> None:
        await asyncio.sleep(0)
        if self.fail:
            raise HubError("hub down")
        self.subscribed.append(channel_id)

    async def unsubscribe(self, channel_id: str) -> None:
        await asyncio.sleep(0)
        if self.fail:
            raise HubError("hub down")
        self.unsubscribed.append(channel_id)


class FakeTransport:
    def __init__(self):
        self.sent: list[tuple[int, str, bool]] = []
        self.failing_chats: set[int] = set()

    async def send_message(self, chat_id: int, text: str, html: bool = False) -> None:
        await asyncio.sleep(0)
        if chat_id in self.failing_chats:
            raise RuntimeError("chat unreachable")
        self.sent.append((chat_id, text, html))

    def texts_for(self, chat_id: int) -> list[str]:
        return [text for cid, text, _ in self.sent if cid == chat_id]


@pytest.fixture
async def store(tmp_path):
    s = SubscriptionStore(str(tmp_path / "subscriptions.db"))
    await s.open()
    yield s
    await s.close()


@pytest.fixture
def resolver():
    return FakeResolver({CHANNEL_URL: CHANNEL_ID, OTHER_URL: OTHER_ID})


@pytest.fixture
def hub():
    return FakeHub()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def coordinator(store, resolver, hub, metrics):
    return SubscriptionCoordinator(store, resolver, hub, metrics)

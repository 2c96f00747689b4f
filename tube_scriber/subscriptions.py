"""
Subscription lifecycle: add, remove and list a chat's channel subscriptions.

Keeps the local subscription rows and the shared hub lease per channel in
step. The hub lease for a channel id exists exactly while at least one row
carries that id; zero-to-one and one-to-zero transitions run under a
per-channel lock so concurrent chats cannot double-subscribe or leave a lease
behind.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog

from .errors import HubError, InvalidChannel, ScriberError
from .hub import HubClient
from .metrics import MetricsCollector
from .resolver import ChannelResolver
from .state import SubscriptionStore

log = structlog.get_logger()

ALREADY_SUBSCRIBED = "There's already a subscription to this channel"
NOT_SUBSCRIBED = "There's no subscription to that channel"
NO_SUBSCRIPTIONS = "There are no subscriptions yet"
ADD_FAILED = "Error subscribing to that channel"
LIST_FAILED = "Error listing subscriptions"


class FeedLocks:
    """One asyncio.Lock per key, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class SubscriptionCoordinator:
    """Runs the add/remove/list operations and returns the chat reply."""

    def __init__(
        self,
        store: SubscriptionStore,
        resolver: ChannelResolver,
        hub: HubClient,
        metrics: MetricsCollector | None = None,
    ):
        self._store = store
        self._resolver = resolver
        self._hub = hub
        self._metrics = metrics
        self._locks = FeedLocks()

    async def add(self, chat_id: int, channel_url: str) -> str:
        try:
            if await self._store.exists_for_chat(chat_id, channel_url):
                return ALREADY_SUBSCRIBED

            channel_id = await self._resolve(channel_url)

            async with self._locks.hold(channel_id):
                # Another add from this chat may have finished while we resolved
                if await self._store.exists_for_chat(chat_id, channel_url):
                    return ALREADY_SUBSCRIBED

                first = not await self._store.exists_for_channel(channel_id)
                if first:
                    await self._hub.subscribe(channel_id)
                try:
                    inserted = await self._store.add(chat_id, channel_url, channel_id)
                except ScriberError:
                    if first:
                        await self._release_lease(channel_id)
                    raise
                if not inserted:
                    # An add of the same URL that resolved to another id got there first
                    if first:
                        await self._release_lease(channel_id)
                    return ALREADY_SUBSCRIBED
        except ScriberError as exc:
            log.warning(
                "subscriptions.add_failed",
                chat_id=chat_id,
                url=channel_url,
                error_kind=type(exc).__name__,
                error=str(exc),
            )
            return ADD_FAILED

        if self._metrics:
            self._metrics.inc("subscriptions_added_total")
        log.info("subscriptions.added", chat_id=chat_id, url=channel_url, channel_id=channel_id)
        return f"I've added a subscription to: {channel_url}"

    async def remove(self, chat_id: int, channel_url: str) -> str:
        try:
            subscription = await self._store.get(chat_id, channel_url)
            if subscription is None:
                return NOT_SUBSCRIBED

            channel_id = subscription.channel_id
            async with self._locks.hold(channel_id):
                removed = await self._store.remove(chat_id, channel_url)
                if removed and not await self._store.exists_for_channel(channel_id):
                    await self._hub.unsubscribe(channel_id)
        except ScriberError as exc:
            log.warning(
                "subscriptions.remove_failed",
                chat_id=chat_id,
                url=channel_url,
                error_kind=type(exc).__name__,
                error=str(exc),
            )
            return f"Error unsubscribing to that channel {channel_url}"

        if removed:
            if self._metrics:
                self._metrics.inc("subscriptions_removed_total")
            log.info("subscriptions.removed", chat_id=chat_id, url=channel_url, channel_id=channel_id)
        return f"I've deleted the subscription to: {channel_url}"

    async def list_for_chat(self, chat_id: int) -> str:
        try:
            subscriptions = await self._store.list_by_chat(chat_id)
        except ScriberError as exc:
            log.warning("subscriptions.list_failed", chat_id=chat_id, error=str(exc))
            return LIST_FAILED

        if not subscriptions:
            return NO_SUBSCRIPTIONS
        return "\n".join(f"- {s.channel_url}" for s in subscriptions)

    async def _resolve(self, channel_url: str) -> str:
        channel_id = await self._resolver.resolve(channel_url)
        if not channel_id:
            raise InvalidChannel(f"no channel id found at {channel_url}")
        return channel_id

    async def _release_lease(self, channel_id: str) -> None:
        try:
            await self._hub.unsubscribe(channel_id)
        except HubError:
            log.error("subscriptions.lease_rollback_failed", channel_id=channel_id)

"""
SQLite persistence for subscriptions and notification deliveries.

Stores:
- channel_subscriptions: one row per (chat_id, channel_url), with the
  channel id resolved at add time
- deliveries: (content_id, chat_id) pairs already notified, so hub
  redeliveries are not sent twice; rows older than the retention window
  are pruned
"""

from __future__ import annotations

import functools
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, TypeVar

import aiosqlite

from .errors import StorageError

_SCHEMA = """
CREATE TABLE IF NOT EXISTS channel_subscriptions (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    chat_id     INTEGER NOT NULL,
    channel_url TEXT NOT NULL,
    channel_id  TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    UNIQUE(chat_id, channel_url)
);

CREATE TABLE IF NOT EXISTS deliveries (
    content_id   TEXT NOT NULL,
    chat_id      INTEGER NOT NULL,
    delivered_at TEXT NOT NULL,
    PRIMARY KEY (content_id, chat_id)
);

CREATE INDEX IF NOT EXISTS idx_subscriptions_url
    ON channel_subscriptions(channel_url);

CREATE INDEX IF NOT EXISTS idx_subscriptions_channel
    ON channel_subscriptions(channel_id);

CREATE INDEX IF NOT EXISTS idx_deliveries_age
    ON deliveries(delivered_at);
"""

T = TypeVar("T")

DEFAULT_DELIVERY_RETENTION = timedelta(days=7)


@dataclass
class Subscription:
    """One chat following one channel."""

    chat_id: int
    channel_url: str
    channel_id: str
    created_at: str
    id: int | None = None


def _storage_op(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Re-raise sqlite failures as StorageError."""

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await fn(*args, **kwargs)
        except aiosqlite.Error as exc:
            raise StorageError(f"{fn.__name__} failed: {exc}") from exc

    return wrapper


def _row_to_subscription(row: aiosqlite.Row) -> Subscription:
    return Subscription(
        id=row["id"],
        chat_id=row["chat_id"],
        channel_url=row["channel_url"],
        channel_id=row["channel_id"],
        created_at=row["created_at"],
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionStore:
    """Async SQLite subscription store."""

    def __init__(self, db_path: str, delivery_retention: timedelta = DEFAULT_DELIVERY_RETENTION):
        self._db_path = db_path
        self._delivery_retention = delivery_retention
        self._db: aiosqlite.Connection | None = None

    @_storage_op
    async def open(self) -> None:
        os.makedirs(os.path.dirname(self._db_path) or ".", exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA)
        await self._db.commit()
        await self.prune_deliveries()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("Store not open. Call open() first.")
        return self._db

    # --- Existence checks ---

    @_storage_op
    async def exists(self, channel_url: str) -> bool:
        """True if any chat follows this channel URL."""
        cursor = await self.db.execute(
            "SELECT 1 FROM channel_subscriptions WHERE channel_url = ? LIMIT 1",
            (channel_url,),
        )
        return await cursor.fetchone() is not None

    @_storage_op
    async def exists_for_chat(self, chat_id: int, channel_url: str) -> bool:
        cursor = await self.db.execute(
            "SELECT 1 FROM channel_subscriptions WHERE chat_id = ? AND channel_url = ?",
            (chat_id, channel_url),
        )
        return await cursor.fetchone() is not None

    @_storage_op
    async def exists_for_channel(self, channel_id: str) -> bool:
        """True if any row, under any URL, carries this channel id."""
        cursor = await self.db.execute(
            "SELECT 1 FROM channel_subscriptions WHERE channel_id = ? LIMIT 1",
            (channel_id,),
        )
        return await cursor.fetchone() is not None

    # --- Subscriptions ---

    @_storage_op
    async def get(self, chat_id: int, channel_url: str) -> Subscription | None:
        cursor = await self.db.execute(
            "SELECT * FROM channel_subscriptions WHERE chat_id = ? AND channel_url = ?",
            (chat_id, channel_url),
        )
        row = await cursor.fetchone()
        return _row_to_subscription(row) if row else None

    @_storage_op
    async def add(self, chat_id: int, channel_url: str, channel_id: str) -> bool:
        """Insert the pair if absent. Returns True if a row was written."""
        cursor = await self.db.execute(
            """INSERT INTO channel_subscriptions (chat_id, channel_url, channel_id, created_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(chat_id, channel_url) DO NOTHING""",
            (chat_id, channel_url, channel_id, _now().isoformat()),
        )
        await self.db.commit()
        return cursor.rowcount > 0

    @_storage_op
    async def remove(self, chat_id: int, channel_url: str) -> int:
        """Delete the pair. Returns the number of rows deleted."""
        cursor = await self.db.execute(
            "DELETE FROM channel_subscriptions WHERE chat_id = ? AND channel_url = ?",
            (chat_id, channel_url),
        )
        await self.db.commit()
        return cursor.rowcount

    @_storage_op
    async def list_by_chat(self, chat_id: int) -> list[Subscription]:
        cursor = await self.db.execute(
            "SELECT * FROM channel_subscriptions WHERE chat_id = ? ORDER BY created_at, id",
            (chat_id,),
        )
        rows = await cursor.fetchall()
        return [_row_to_subscription(r) for r in rows]

    @_storage_op
    async def list_by_feed(self, channel_url: str) -> list[Subscription]:
        cursor = await self.db.execute(
            "SELECT * FROM channel_subscriptions WHERE channel_url = ? ORDER BY id",
            (channel_url,),
        )
        rows = await cursor.fetchall()
        return [_row_to_subscription(r) for r in rows]

    @_storage_op
    async def list_by_channel(self, channel_id: str) -> list[Subscription]:
        cursor = await self.db.execute(
            "SELECT * FROM channel_subscriptions WHERE channel_id = ? ORDER BY id",
            (channel_id,),
        )
        rows = await cursor.fetchall()
        return [_row_to_subscription(r) for r in rows]

    # --- Deliveries ---

    @_storage_op
    async def claim_delivery(self, content_id: str, chat_id: int) -> bool:
        """Record that content_id goes to chat_id. False if it already went."""
        now = _now()
        await self._expire_deliveries(now)
        cursor = await self.db.execute(
            """INSERT INTO deliveries (content_id, chat_id, delivered_at)
               VALUES (?, ?, ?)
               ON CONFLICT(content_id, chat_id) DO NOTHING""",
            (content_id, chat_id, now.isoformat()),
        )
        await self.db.commit()
        return cursor.rowcount > 0

    @_storage_op
    async def release_delivery(self, content_id: str, chat_id: int) -> None:
        await self.db.execute(
            "DELETE FROM deliveries WHERE content_id = ? AND chat_id = ?",
            (content_id, chat_id),
        )
        await self.db.commit()

    @_storage_op
    async def prune_deliveries(self) -> int:
        """Forget deliveries older than the retention window. Returns rows removed."""
        removed = await self._expire_deliveries(_now())
        await self.db.commit()
        return removed

    async def _expire_deliveries(self, now: datetime) -> int:
        cursor = await self.db.execute(
            "DELETE FROM deliveries WHERE delivered_at < ?",
            ((now - self._delivery_retention).isoformat(),),
        )
        return cursor.rowcount

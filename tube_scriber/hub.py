"""
WebSub (PubSubHubbub) hub client.

Outbound: subscribe/unsubscribe requests for a channel's video feed topic.
Inbound: events decoded by the webhook server are queued here and handed to
registered handlers by a single consumer task, so the HTTP callback can be
answered without waiting on chat delivery.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Union

import httpx
import structlog

from .errors import HubError
from .metrics import MetricsCollector

log = structlog.get_logger()

TOPIC_URL = "https://www.youtube.com/xml/feeds/videos.xml?channel_id={channel_id}"


def topic_for(channel_id: str) -> str:
    return TOPIC_URL.format(channel_id=channel_id)


@dataclass
class LeaseVerified:
    """The hub asked us to confirm a subscribe or unsubscribe."""
    mode: str
    topic: str
    channel_id: str | None = None
    lease_seconds: int | None = None


@dataclass
class FeedNotification:
    """A new or updated video on a channel."""
    channel_id: str | None
    feed_url: str | None
    feed_name: str
    content_url: str
    content_id: str
    title: str | None = None


HubEvent = Union[LeaseVerified, FeedNotification]
EventHandler = Callable[[HubEvent], Coroutine[Any, Any, None]]


class HubClient:
    """
    Manages hub leases for channel ids and dispatches inbound hub events.

    Keeps no lease state of its own; callers decide when a subscribe or
    unsubscribe is due.
    """

    def __init__(
        self,
        hub_url: str,
        callback_url: str,
        secret: str | None = None,
        lease_seconds: int | None = None,
        request_timeout: float = 10.0,
        metrics: MetricsCollector | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._hub_url = hub_url
        self._callback_url = callback_url
        self._secret = secret
        self._lease_seconds = lease_seconds
        self._request_timeout = request_timeout
        self._metrics = metrics
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        self._handlers: list[EventHandler] = []
        self._queue: asyncio.Queue[HubEvent] = asyncio.Queue()
        self._task: asyncio.Task | None = None

    @property
    def callback_url(self) -> str:
        return self._callback_url

    @property
    def secret(self) -> str | None:
        return self._secret

    async def open(self) -> None:
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._request_timeout),
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # --- Outbound: lease requests ---

    async def subscribe(self, channel_id: str) -> None:
        await self._request("subscribe", channel_id)
        if self._metrics:
            self._metrics.inc("hub_subscribe_total")

    async def unsubscribe(self, channel_id: str) -> None:
        await self._request("unsubscribe", channel_id)
        if self._metrics:
            self._metrics.inc("hub_unsubscribe_total")

    async def _request(self, mode: str, channel_id: str) -> None:
        assert self._client
        form = {
            "hub.mode": mode,
            "hub.topic": topic_for(channel_id),
            "hub.callback": self._callback_url,
            "hub.verify": "async",
        }
        if self._lease_seconds:
            form["hub.lease_seconds"] = str(self._lease_seconds)
        if self._secret:
            form["hub.secret"] = self._secret

        try:
            resp = await self._client.post(self._hub_url, data=form)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            log.error(
                "hub.request_rejected",
                mode=mode,
                channel_id=channel_id,
                status=exc.response.status_code,
            )
            if self._metrics:
                self._metrics.inc("hub_errors_total")
            raise HubError(f"hub {mode} rejected: {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            log.error("hub.unreachable", mode=mode, channel_id=channel_id, error=str(exc))
            if self._metrics:
                self._metrics.inc("hub_errors_total")
            raise HubError(f"hub {mode} failed: {exc}") from exc

        log.info("hub.requested", mode=mode, channel_id=channel_id, status=resp.status_code)

    # --- Inbound: event dispatch ---

    def on_event(self, handler: EventHandler) -> None:
        """Register an event handler."""
        self._handlers.append(handler)

    def publish(self, event: HubEvent) -> None:
        """Queue an inbound event for the consumer task."""
        self._queue.put_nowait(event)
        self._record_queue_depth()

    async def start(self) -> None:
        self._task = asyncio.create_task(self._consume_loop())

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _consume_loop(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.dispatch(event)
            finally:
                self._queue.task_done()
                self._record_queue_depth()

    def _record_queue_depth(self) -> None:
        if self._metrics:
            self._metrics.set_gauge("hub_queued_events", self._queue.qsize())

    async def dispatch(self, event: HubEvent) -> None:
        for handler in self._handlers:
            try:
                await handler(event)
            except Exception:
                log.exception("hub.handler_error", event_type=type(event).__name__)

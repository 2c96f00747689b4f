"""
HTTP server for the hub callback and health checks.

Exposes:
- GET /                  liveness ("pong")
- GET /metrics           Prometheus-compatible metrics
- GET <listener_path>    hub verification challenge
- POST <listener_path>   hub content notifications (Atom)
"""

from __future__ import annotations

import hashlib
import hmac
import re

import feedparser
import structlog
from aiohttp import web

from .hub import FeedNotification, HubClient, LeaseVerified
from .metrics import MetricsCollector

log = structlog.get_logger()

VERIFY_MODES = ("subscribe", "unsubscribe")
_TOPIC_CHANNEL = re.compile(r"channel_id=([^&]+)")
_URI_CHANNEL = re.compile(r"/channel/([^/?#]+)")


def parse_notification(body: bytes) -> list[FeedNotification]:
    """Decode a hub Atom push into one notification per entry."""
    parsed = feedparser.parse(body)
    notifications = []
    for entry in parsed.entries:
        content_url = entry.get("link")
        if not content_url:
            continue
        author = entry.get("author_detail") or {}
        feed_url = author.get("href")
        channel_id = entry.get("yt_channelid")
        if not channel_id and feed_url:
            match = _URI_CHANNEL.search(feed_url)
            channel_id = match.group(1) if match else None
        notifications.append(
            FeedNotification(
                channel_id=channel_id,
                feed_url=feed_url,
                feed_name=author.get("name") or entry.get("author") or "unknown",
                content_url=content_url,
                content_id=entry.get("yt_videoid") or entry.get("id") or content_url,
                title=entry.get("title"),
            )
        )
    return notifications


def signature_matches(secret: str, body: bytes, header: str | None) -> bool:
    """Check an X-Hub-Signature header (`<algo>=<hexdigest>`) against body."""
    if not header or "=" not in header:
        return False
    algo, _, digest = header.partition("=")
    if algo not in hashlib.algorithms_guaranteed:
        return False
    expected = hmac.new(secret.encode(), body, algo).hexdigest()
    return hmac.compare_digest(expected, digest)


class WebhookServer:
    """aiohttp server for hub callbacks, health and metrics."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 5050,
        listener_path: str = "/youtube/notifications",
        hub: HubClient | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self._host = host
        self._port = port
        self._listener_path = listener_path
        self._hub = hub
        self._metrics = metrics or MetricsCollector()
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self._ping_handler)
        app.router.add_get("/metrics", self._metrics_handler)
        # Without a hub (no token) only the health routes are served
        if self._hub is not None:
            app.router.add_get(self._listener_path, self._verify_handler)
            app.router.add_post(self._listener_path, self._notify_handler)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        log.info("webhook.listening", host=self._host, port=self._port, hub=self._hub is not None)

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def _ping_handler(self, request: web.Request) -> web.Response:
        return web.Response(text="pong")

    async def _metrics_handler(self, request: web.Request) -> web.Response:
        return web.Response(
            text=self._metrics.to_prometheus(),
            content_type="text/plain",
        )

    async def _verify_handler(self, request: web.Request) -> web.Response:
        assert self._hub
        mode = request.query.get("hub.mode")
        topic = request.query.get("hub.topic", "")

        if mode == "denied":
            log.warning("webhook.denied", topic=topic, reason=request.query.get("hub.reason"))
            return web.Response(text="")

        challenge = request.query.get("hub.challenge")
        if mode not in VERIFY_MODES or challenge is None:
            log.warning("webhook.bad_verification", mode=mode, topic=topic)
            return web.Response(status=400, text="bad verification request")

        match = _TOPIC_CHANNEL.search(topic)
        lease = request.query.get("hub.lease_seconds")
        self._hub.publish(
            LeaseVerified(
                mode=mode,
                topic=topic,
                channel_id=match.group(1) if match else None,
                lease_seconds=int(lease) if lease and lease.isdigit() else None,
            )
        )
        return web.Response(text=challenge)

    async def _notify_handler(self, request: web.Request) -> web.Response:
        assert self._hub
        body = await request.read()

        if self._hub.secret and not signature_matches(
            self._hub.secret, body, request.headers.get("X-Hub-Signature")
        ):
            # Acknowledged and dropped
            log.warning("webhook.bad_signature", length=len(body))
            return web.Response(text="")

        notifications = parse_notification(body)
        if not notifications:
            log.info("webhook.no_entries", length=len(body))
        for notification in notifications:
            self._metrics.inc("notifications_received_total")
            self._hub.publish(notification)
        return web.Response(text="")

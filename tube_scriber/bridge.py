"""
Application context: builds every component once and owns their lifecycle.

Startup order: store, HTTP clients, hub event consumer, webhook server, chat
transport. Shutdown stops the webhook first, lets queued hub events reach
their chats, then stops the transport and closes the rest.
"""

from __future__ import annotations

import asyncio
import signal

import structlog

from .config import Settings
from .errors import ConfigurationMissing
from .hub import HubClient
from .metrics import MetricsCollector
from .notifier import NotificationDispatcher
from .resolver import ChannelResolver
from .router import CommandRouter
from .state import SubscriptionStore
from .subscriptions import SubscriptionCoordinator
from .transport import TelegramTransport
from .webhook import WebhookServer

log = structlog.get_logger()

SHUTDOWN_TIMEOUT = 15.0


class ScriberBridge:
    """Wires the Telegram transport, subscription store and hub together."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._metrics = MetricsCollector()
        self._store = SubscriptionStore(
            settings.db_path, delivery_retention=settings.delivery_retention
        )
        self._resolver = ChannelResolver(request_timeout=settings.request_timeout_seconds)
        self._hub = HubClient(
            hub_url=settings.hub_url,
            callback_url=settings.hub_callback_url,
            secret=settings.hub_secret,
            lease_seconds=settings.hub_lease_seconds,
            request_timeout=settings.request_timeout_seconds,
            metrics=self._metrics,
        )
        self._coordinator = SubscriptionCoordinator(
            self._store, self._resolver, self._hub, self._metrics
        )
        self._transport: TelegramTransport | None = None
        self._webhook: WebhookServer | None = None
        self._running = False
        self._messaging = False
        self._shutdown_event = asyncio.Event()

    @property
    def messaging(self) -> bool:
        """True once the chat side is up; False in health-only mode."""
        return self._messaging

    async def start(self) -> None:
        try:
            token = self._settings.require_token()
        except ConfigurationMissing as exc:
            log.error("bridge.missing_token", error=str(exc))
            self._webhook = WebhookServer(
                host=self._settings.listen_host,
                port=self._settings.port,
                metrics=self._metrics,
            )
            await self._webhook.start()
            self._running = True
            return

        log.info("bridge.starting", callback_url=self._hub.callback_url)

        await self._store.open()
        await self._resolver.open()
        await self._hub.open()

        transport = TelegramTransport(token)
        router = CommandRouter(self._coordinator, transport, self._metrics)
        notifier = NotificationDispatcher(self._store, transport, self._metrics)
        transport.on_message(router.handle_message)
        self._hub.on_event(notifier.handle_event)
        await self._hub.start()

        self._webhook = WebhookServer(
            host=self._settings.listen_host,
            port=self._settings.port,
            listener_path=self._settings.listener_path,
            hub=self._hub,
            metrics=self._metrics,
        )
        await self._webhook.start()

        await transport.start()
        self._transport = transport
        self._running = True
        self._messaging = True
        log.info("bridge.started", port=self._settings.port)

    async def stop(self) -> None:
        """Graceful shutdown: drain hub events, stop chat, close connections."""
        if not self._running:
            return
        self._running = False
        log.info("bridge.stopping")

        if self._webhook:
            await self._webhook.stop()
        if self._messaging:
            await self._hub.drain()
            if self._transport:
                await self._transport.stop()
                self._transport = None
            await self._hub.stop()
            await self._hub.close()
            await self._resolver.close()
            await self._store.close()
            self._messaging = False

        log.info("bridge.stopped")

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def run_forever(self) -> None:
        """Run until SIGINT/SIGTERM."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_shutdown)

        await self.start()
        try:
            await self._shutdown_event.wait()
        finally:
            await asyncio.wait_for(self.stop(), timeout=SHUTDOWN_TIMEOUT)

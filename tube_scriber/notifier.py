"""
Fan-out of hub notifications to subscribed chats.
"""

from __future__ import annotations

import structlog

from .hub import FeedNotification, HubEvent, LeaseVerified
from .metrics import MetricsCollector
from .state import Subscription, SubscriptionStore
from .transport import ChatTransport

log = structlog.get_logger()


def format_notification(notification: FeedNotification) -> str:
    return f"New video by {notification.feed_name} \n {notification.content_url}"


class NotificationDispatcher:
    """
    Delivers each notification once to every chat following the channel.

    A delivery is claimed in the store before sending and released again if
    the send fails, so a hub redelivery reaches only the chats that missed it.
    """

    def __init__(
        self,
        store: SubscriptionStore,
        transport: ChatTransport,
        metrics: MetricsCollector | None = None,
    ):
        self._store = store
        self._transport = transport
        self._metrics = metrics

    async def handle_event(self, event: HubEvent) -> None:
        if isinstance(event, LeaseVerified):
            log.info(
                "notifier.lease_verified",
                mode=event.mode,
                channel_id=event.channel_id,
                lease_seconds=event.lease_seconds,
            )
        elif isinstance(event, FeedNotification):
            await self.deliver(event)

    async def deliver(self, notification: FeedNotification) -> int:
        """Send the notification to its recipients. Returns the number sent."""
        recipients = await self._recipients(notification)
        log.info(
            "notifier.received",
            channel=notification.feed_name,
            content=notification.content_url,
            recipients=len(recipients),
        )

        message = format_notification(notification)
        content_id = notification.content_id
        sent = 0
        for subscription in recipients:
            chat_id = subscription.chat_id
            try:
                if not await self._store.claim_delivery(content_id, chat_id):
                    log.debug("notifier.already_delivered", chat_id=chat_id, content_id=content_id)
                    continue
                await self._send(content_id, chat_id, message)
            except Exception as exc:
                log.warning(
                    "notifier.send_failed",
                    chat_id=chat_id,
                    error_kind=type(exc).__name__,
                    error=str(exc),
                )
                if self._metrics:
                    self._metrics.inc("notifications_failed_total")
                continue
            sent += 1
            if self._metrics:
                self._metrics.inc("notifications_delivered_total")
        return sent

    async def _send(self, content_id: str, chat_id: int, message: str) -> None:
        try:
            await self._transport.send_message(chat_id, message)
        except Exception:
            await self._store.release_delivery(content_id, chat_id)
            raise

    async def _recipients(self, notification: FeedNotification) -> list[Subscription]:
        # A chat following one channel under two URLs appears twice here;
        # the delivery claim keeps it to one message.
        if notification.channel_id:
            return await self._store.list_by_channel(notification.channel_id)
        if notification.feed_url:
            return await self._store.list_by_feed(notification.feed_url)
        log.warning("notifier.unaddressed", content=notification.content_url)
        return []

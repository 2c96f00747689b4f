"""Tests for the WebSub hub client."""

from urllib.parse import parse_qs

import httpx
import pytest

from tube_scriber.errors import HubError
from tube_scriber.hub import FeedNotification, HubClient, LeaseVerified, topic_for
from tube_scriber.metrics import MetricsCollector

HUB_URL = "https://hub.example.com/subscribe"
CALLBACK = "https://bot.example.com:5050/youtube/notifications"


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


async def _hub(handler, **kwargs) -> HubClient:
    client = HubClient(
        hub_url=HUB_URL,
        callback_url=CALLBACK,
        request_timeout=1.0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )
    await client.open()
    return client


async def test_subscribe_posts_websub_form():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(202)

    metrics = MetricsCollector()
    hub = await _hub(handler, metrics=metrics)
    try:
        await hub.subscribe("UCabc")
    finally:
        await hub.close()

    assert len(requests) == 1
    assert str(requests[0].url) == HUB_URL
    form = _form(requests[0])
    assert form["hub.mode"] == "subscribe"
    assert form["hub.topic"] == "https://www.youtube.com/xml/feeds/videos.xml?channel_id=UCabc"
    assert form["hub.callback"] == CALLBACK
    assert form["hub.verify"] == "async"
    assert "hub.secret" not in form
    assert metrics.get("hub_subscribe_total") == 1


async def test_unsubscribe_carries_secret_and_lease():
    forms = []

    def handler(request):
        forms.append(_form(request))
        return httpx.Response(202)

    hub = await _hub(handler, secret="s3cret", lease_seconds=3600)
    try:
        await hub.unsubscribe("UCabc")
    finally:
        await hub.close()

    assert forms[0]["hub.mode"] == "unsubscribe"
    assert forms[0]["hub.secret"] == "s3cret"
    assert forms[0]["hub.lease_seconds"] == "3600"


async def test_rejected_request_raises_hub_error():
    metrics = MetricsCollector()
    hub = await _hub(lambda request: httpx.Response(400, text="bad topic"), metrics=metrics)
    try:
        with pytest.raises(HubError):
            await hub.subscribe("UCabc")
    finally:
        await hub.close()
    assert metrics.get("hub_errors_total") == 1
    assert metrics.get("hub_subscribe_total") == 0


async def test_unreachable_hub_raises_hub_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    hub = await _hub(handler)
    try:
        with pytest.raises(HubError):
            await hub.unsubscribe("UCabc")
    finally:
        await hub.close()


def test_topic_for():
    assert topic_for("UCx").endswith("channel_id=UCx")


async def test_published_events_reach_handlers():
    hub = HubClient(hub_url=HUB_URL, callback_url=CALLBACK)
    received = []

    async def handler(event):
        received.append(event)

    hub.on_event(handler)
    await hub.start()
    try:
        verified = LeaseVerified(mode="subscribe", topic=topic_for("UCa"), channel_id="UCa")
        notification = FeedNotification(
            channel_id="UCa",
            feed_url="https://www.youtube.com/channel/UCa",
            feed_name="Channel A",
            content_url="https://www.youtube.com/watch?v=v1",
            content_id="v1",
        )
        hub.publish(verified)
        hub.publish(notification)
        await hub.drain()
    finally:
        await hub.stop()

    assert received == [verified, notification]


async def test_failing_handler_does_not_stop_consumer():
    hub = HubClient(hub_url=HUB_URL, callback_url=CALLBACK)
    received = []

    async def broken(event):
        raise RuntimeError("boom")

    async def handler(event):
        received.append(event)

    hub.on_event(broken)
    hub.on_event(handler)
    await hub.start()
    try:
        hub.publish(LeaseVerified(mode="subscribe", topic="t1"))
        hub.publish(LeaseVerified(mode="unsubscribe", topic="t2"))
        await hub.drain()
    finally:
        await hub.stop()

    assert [e.topic for e in received] == ["t1", "t2"]


async def test_queue_depth_gauge_tracks_pending_events():
    metrics = MetricsCollector()
    hub = HubClient(hub_url=HUB_URL, callback_url=CALLBACK, metrics=metrics)

    async def handler(event):
        pass

    hub.on_event(handler)
    hub.publish(LeaseVerified(mode="subscribe", topic="t1"))
    hub.publish(LeaseVerified(mode="subscribe", topic="t2"))
    assert metrics.get("hub_queued_events") == 2

    await hub.start()
    try:
        await hub.drain()
    finally:
        await hub.stop()

    assert metrics.get("hub_queued_events") == 0
    assert "scriber_hub_queued_events 0" in metrics.to_prometheus()

"""Tests for notification fan-out."""

import pytest

from conftest import CHANNEL_ID, CHANNEL_URL, OTHER_ID, OTHER_URL

from tube_scriber.errors import StorageError
from tube_scriber.hub import FeedNotification, LeaseVerified
from tube_scriber.notifier import NotificationDispatcher, format_notification


def _notification(channel_id=CHANNEL_ID, feed_url=None, content_id="vid1"):
    return FeedNotification(
        channel_id=channel_id,
        feed_url=feed_url,
        feed_name="Some Channel",
        content_url=f"https://www.youtube.com/watch?v={content_id}",
        content_id=content_id,
        title="A video",
    )


@pytest.fixture
def dispatcher(store, transport, metrics):
    return NotificationDispatcher(store, transport, metrics)


def test_format_notification():
    assert format_notification(_notification()) == (
        "New video by Some Channel \n https://www.youtube.com/watch?v=vid1"
    )


async def test_fan_out_reaches_every_subscriber_once(dispatcher, store, transport, metrics):
    await store.add(1, CHANNEL_URL, CHANNEL_ID)
    await store.add(2, CHANNEL_URL, CHANNEL_ID)
    await store.add(3, OTHER_URL, OTHER_ID)

    sent = await dispatcher.deliver(_notification())

    assert sent == 2
    assert sorted(chat for chat, _, _ in transport.sent) == [1, 2]
    assert transport.texts_for(3) == []
    assert metrics.get("notifications_delivered_total") == 2


async def test_redelivery_sends_nothing_new(dispatcher, store, transport):
    await store.add(1, CHANNEL_URL, CHANNEL_ID)

    await dispatcher.deliver(_notification())
    assert await dispatcher.deliver(_notification()) == 0
    assert len(transport.sent) == 1


async def test_chat_following_channel_under_two_urls_gets_one_message(dispatcher, store, transport):
    await store.add(1, CHANNEL_URL, CHANNEL_ID)
    await store.add(1, "https://www.youtube.com/channel/UC_somechannel_id", CHANNEL_ID)

    assert await dispatcher.deliver(_notification()) == 1
    assert len(transport.texts_for(1)) == 1


async def test_failed_send_does_not_block_others(dispatcher, store, transport, metrics):
    await store.add(1, CHANNEL_URL, CHANNEL_ID)
    await store.add(2, CHANNEL_URL, CHANNEL_ID)
    transport.failing_chats.add(1)

    assert await dispatcher.deliver(_notification()) == 1
    assert transport.texts_for(2)
    assert metrics.get("notifications_failed_total") == 1

    # The failed chat is retried on redelivery
    transport.failing_chats.clear()
    assert await dispatcher.deliver(_notification()) == 1
    assert transport.texts_for(1)


async def test_storage_error_for_one_chat_does_not_block_others(
    dispatcher, store, transport, metrics, monkeypatch
):
    await store.add(1, CHANNEL_URL, CHANNEL_ID)
    await store.add(2, CHANNEL_URL, CHANNEL_ID)
    claim = store.claim_delivery

    async def locked_for_chat_one(content_id, chat_id):
        if chat_id == 1:
            raise StorageError("database is locked")
        return await claim(content_id, chat_id)

    monkeypatch.setattr(store, "claim_delivery", locked_for_chat_one)

    assert await dispatcher.deliver(_notification()) == 1
    assert transport.texts_for(1) == []
    assert transport.texts_for(2)
    assert metrics.get("notifications_failed_total") == 1


async def test_failed_release_still_reaches_later_chats(dispatcher, store, transport, monkeypatch):
    await store.add(1, CHANNEL_URL, CHANNEL_ID)
    await store.add(2, CHANNEL_URL, CHANNEL_ID)
    transport.failing_chats.add(1)

    async def broken_release(content_id, chat_id):
        raise StorageError("database is locked")

    monkeypatch.setattr(store, "release_delivery", broken_release)

    assert await dispatcher.deliver(_notification()) == 1
    assert transport.texts_for(2)


async def test_falls_back_to_feed_url(dispatcher, store, transport):
    feed_url = "https://www.youtube.com/channel/UC_somechannel_id"
    await store.add(5, feed_url, CHANNEL_ID)

    assert await dispatcher.deliver(_notification(channel_id=None, feed_url=feed_url)) == 1
    assert transport.texts_for(5)


async def test_no_subscribers(dispatcher, transport):
    assert await dispatcher.deliver(_notification(channel_id="UCnobody")) == 0
    assert transport.sent == []


async def test_handle_event_routes_by_kind(dispatcher, store, transport):
    await store.add(1, CHANNEL_URL, CHANNEL_ID)

    await dispatcher.handle_event(LeaseVerified(mode="subscribe", topic="t", channel_id=CHANNEL_ID))
    assert transport.sent == []

    await dispatcher.handle_event(_notification())
    assert len(transport.sent) == 1

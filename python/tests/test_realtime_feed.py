"""Tests for the in-process change feed.

Tests cover:
- Equality filters: table, and column == value
- Fan-out to several subscribers, isolation between conversations
- Overflow marks the subscription lagged instead of dropping silently
- Close is idempotent and unregisters the handle
- Async get: timeout, cross-thread publish wake-up, closed handle
- row_image serialization
"""

import asyncio
from datetime import UTC, datetime
from uuid import uuid4

import pytest

from donateconnect.db.models import Message
from donateconnect.realtime.feed import (
    ChangeEvent,
    ChangeFeed,
    ChangeFilter,
    SubscriptionClosed,
    SubscriptionLagged,
    publish_change,
    row_image,
)


def _message_event(conversation_id, type: str = "INSERT") -> ChangeEvent:
    return ChangeEvent(
        table="messages", type=type, new={"id": str(uuid4()), "request_id": str(conversation_id)}
    )


# =============================================================================
# Filtering and fan-out
# =============================================================================


class TestChangeFilter:
    def test_table_only(self):
        f = ChangeFilter("messages")

        assert f.matches(_message_event(uuid4()))
        assert not f.matches(ChangeEvent(table="notifications", type="INSERT", new={}))

    def test_column_value_compared_as_text(self):
        """UUID filter values match the string ids carried in row images."""
        cid = uuid4()
        f = ChangeFilter("messages", "request_id", cid)

        assert f.matches(_message_event(cid))
        assert not f.matches(_message_event(uuid4()))

    def test_delete_matches_old_row(self):
        cid = uuid4()
        event = ChangeEvent(table="messages", type="DELETE", old={"request_id": str(cid)})

        assert ChangeFilter("messages", "request_id", cid).matches(event)


class TestChangeFeed:
    """Tests for publish and subscribe."""

    def test_fan_out_and_isolation(self):
        feed = ChangeFeed()
        cid = uuid4()
        a = feed.subscribe(ChangeFilter("messages", "request_id", cid))
        b = feed.subscribe(ChangeFilter("messages", "request_id", cid))
        other = feed.subscribe(ChangeFilter("messages", "request_id", uuid4()))

        delivered = feed.publish(_message_event(cid))

        assert delivered == 2
        assert a.get_nowait() is not None
        assert b.get_nowait() is not None
        assert other.get_nowait() is None

    def test_any_filter_matches(self):
        feed = ChangeFeed()
        cid = uuid4()
        subscription = feed.subscribe(
            ChangeFilter("messages", "request_id", cid),
            ChangeFilter("chat_presence", "request_id", cid),
        )

        feed.publish(ChangeEvent(table="chat_presence", type="UPDATE", new={"request_id": cid}))

        assert subscription.get_nowait().table == "chat_presence"

    def test_subscribe_requires_filter(self):
        with pytest.raises(ValueError):
            ChangeFeed().subscribe()

    def test_events_keep_publish_order(self):
        feed = ChangeFeed()
        cid = uuid4()
        subscription = feed.subscribe(ChangeFilter("messages", "request_id", cid))
        events = [_message_event(cid) for _ in range(5)]

        feed.publish_all(events)

        assert [subscription.get_nowait() for _ in range(5)] == events

    def test_overflow_marks_lagged(self):
        """A slow consumer is told to resync rather than silently missing rows."""
        feed = ChangeFeed(maxsize=2)
        cid = uuid4()
        subscription = feed.subscribe(ChangeFilter("messages", "request_id", cid))

        for _ in range(3):
            feed.publish(_message_event(cid))

        assert subscription.lagged is True
        with pytest.raises(SubscriptionLagged):
            subscription.get_nowait()
        # Reading the lag clears it; the buffer was dropped
        assert subscription.lagged is False
        assert subscription.get_nowait() is None

    def test_close_is_idempotent_and_unregisters(self):
        feed = ChangeFeed()
        subscription = feed.subscribe(ChangeFilter("messages"))
        assert feed.subscriber_count == 1

        subscription.close()
        subscription.close()

        assert subscription.closed is True
        assert feed.subscriber_count == 0
        assert feed.publish(_message_event(uuid4())) == 0

    def test_context_manager_closes(self):
        feed = ChangeFeed()

        with feed.subscribe(ChangeFilter("messages")) as subscription:
            assert feed.subscriber_count == 1

        assert subscription.closed
        assert feed.subscriber_count == 0


class TestPublishChange:
    def test_without_feed_is_noop(self):
        publish_change(None, "messages", "INSERT", new={})

    def test_subscriber_failure_does_not_raise(self):
        class BrokenFeed(ChangeFeed):
            def publish(self, event):
                raise RuntimeError("boom")

        publish_change(BrokenFeed(), "messages", "INSERT", new={})


class TestRowImage:
    def test_serializes_uuids_and_datetimes(self):
        message_id, cid = uuid4(), uuid4()
        created = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
        message = Message(
            id=message_id,
            request_id=cid,
            sender_id=uuid4(),
            seq=3,
            message_type="text",
            content="hi",
            is_read=False,
            created_at=created,
        )

        row = row_image(message)

        assert row["id"] == str(message_id)
        assert row["request_id"] == str(cid)
        assert row["message_type"] == "text"
        assert row["seq"] == 3
        assert row["created_at"] == "2026-01-02T03:04:05+00:00"


# =============================================================================
# Async consumption
# =============================================================================


class TestAsyncGet:
    """Tests for awaiting events."""

    @pytest.mark.asyncio
    async def test_timeout_returns_none(self):
        feed = ChangeFeed()
        subscription = feed.subscribe(ChangeFilter("messages"))

        assert await subscription.get(timeout=0.01) is None
        subscription.close()

    @pytest.mark.asyncio
    async def test_publish_from_worker_thread_wakes_consumer(self):
        """Sync route handlers publish from the threadpool."""
        feed = ChangeFeed()
        cid = uuid4()
        subscription = feed.subscribe(ChangeFilter("messages", "request_id", cid))
        event = _message_event(cid)

        waiter = asyncio.create_task(subscription.get(timeout=5))
        await asyncio.sleep(0)
        await asyncio.to_thread(feed.publish, event)

        assert await waiter == event
        subscription.close()

    @pytest.mark.asyncio
    async def test_closed_handle_raises(self):
        feed = ChangeFeed()
        subscription = feed.subscribe(ChangeFilter("messages"))
        subscription.close()

        with pytest.raises(SubscriptionClosed):
            await subscription.get(timeout=1)

    @pytest.mark.asyncio
    async def test_async_iteration_stops_on_close(self):
        feed = ChangeFeed()
        cid = uuid4()
        subscription = feed.subscribe(ChangeFilter("messages", "request_id", cid))
        feed.publish(_message_event(cid))

        received = []
        async for event in subscription:
            received.append(event)
            subscription.close()

        assert len(received) == 1

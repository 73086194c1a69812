"""
Tests for ChangeFeedClient subscription, delivery and reconnect behavior.
"""

import pytest
from unittest.mock import AsyncMock, Mock

from core.sync.events import ChangeType
from core.sync.feed import ChangeFeedClient, FeedFilter, RetryConfig, SubscriptionStatus
from core.sync.events import ChangeEvent
from smart_bookmarks.backend.memory import InMemoryChangeChannel


def insert(bookmark_id, owner="user-1"):
    return {
        "eventType": "INSERT",
        "table": "bookmarks",
        "new": {
            "id": bookmark_id,
            "user_id": owner,
            "title": f"T{bookmark_id}",
            "url": f"https://example.com/{bookmark_id}",
            "created_at": "2024-01-01T00:00:00+00:00",
        },
    }


def delete(bookmark_id):
    return {"eventType": "DELETE", "table": "bookmarks", "old": {"id": bookmark_id}}


class TestRetryConfig:

    def test_exponential_delay_capped(self):
        config = RetryConfig(initial_delay=1.0, max_delay=5.0, backoff_factor=2.0, jitter=False)

        assert [config.get_delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_jitter_stays_within_twenty_percent(self):
        config = RetryConfig(initial_delay=1.0, max_delay=10.0, jitter=True)

        for _ in range(20):
            assert 1.0 <= config.get_delay(0) <= 1.2


class TestFeedFilter:

    def test_owner_filter(self, bookmark_factory):
        feed_filter = FeedFilter(owner_id="user-1")

        assert feed_filter.matches(ChangeEvent.created(bookmark_factory("a", owner="user-1")))
        assert not feed_filter.matches(ChangeEvent.created(bookmark_factory("b", owner="user-2")))
        # Deletes carry no owner
        assert feed_filter.matches(ChangeEvent.deleted("c"))

    def test_table_filter(self):
        feed_filter = FeedFilter(resource="bookmarks")

        assert not feed_filter.matches(ChangeEvent.deleted("a", table="other"))
        assert feed_filter.matches(ChangeEvent.deleted("a"))


class TestChangeFeedClient:
    """Test suite for the push subscription manager."""

    @pytest.fixture
    def channel(self):
        return InMemoryChangeChannel()

    @pytest.fixture
    def client(self, channel, fast_retry):
        return ChangeFeedClient(channel, retry_config=fast_retry)

    @pytest.fixture
    def feed_filter(self):
        return FeedFilter(owner_id="user-1")

    @pytest.mark.asyncio
    async def test_events_delivered_in_order(self, client, channel, feed_filter, wait_until):
        received = []
        handle = await client.subscribe(feed_filter, received.append)

        try:
            assert handle.status == SubscriptionStatus.SUBSCRIBED
            channel.publish(insert("1"))
            channel.publish(insert("2"))
            channel.publish(delete("1"))

            assert await wait_until(lambda: len(received) == 3)
            assert [(e.change_type, e.bookmark_id) for e in received] == [
                (ChangeType.CREATED, "1"),
                (ChangeType.CREATED, "2"),
                (ChangeType.DELETED, "1"),
            ]
        finally:
            await client.unsubscribe(handle)

    @pytest.mark.asyncio
    async def test_foreign_and_undecodable_payloads_skipped(self, client, channel, feed_filter, wait_until):
        received = []
        handle = await client.subscribe(feed_filter, received.append)

        try:
            channel.publish(insert("other", owner="user-2"))
            channel.publish({"eventType": "UPDATE", "new": {}, "old": {}})
            channel.publish({"eventType": "INSERT", "new": {"id": "broken"}})
            channel.publish(insert("mine"))

            assert await wait_until(lambda: len(received) == 1)
            assert received[0].bookmark_id == "mine"
            assert handle.events_filtered == 2
            assert handle.payload_errors == 1
        finally:
            await client.unsubscribe(handle)

    @pytest.mark.asyncio
    async def test_async_callback_supported(self, client, channel, feed_filter, wait_until):
        on_event = AsyncMock()
        handle = await client.subscribe(feed_filter, on_event)

        try:
            channel.publish(delete("1"))
            assert await wait_until(lambda: on_event.await_count == 1)
        finally:
            await client.unsubscribe(handle)

    @pytest.mark.asyncio
    async def test_callback_error_does_not_stop_delivery(self, client, channel, feed_filter, wait_until):
        received = []

        def on_event(event):
            if event.bookmark_id == "bad":
                raise RuntimeError("listener failure")
            received.append(event)

        handle = await client.subscribe(feed_filter, on_event)

        try:
            channel.publish(delete("bad"))
            channel.publish(delete("good"))

            assert await wait_until(lambda: len(received) == 1)
            assert handle.is_connected
        finally:
            await client.unsubscribe(handle)

    @pytest.mark.asyncio
    async def test_disconnect_then_resubscribe(self, client, channel, feed_filter, wait_until):
        """Every resubscription after the first is reported."""
        received = []
        on_disconnect = Mock()
        on_resubscribed = Mock()

        handle = await client.subscribe(
            feed_filter,
            received.append,
            on_resubscribed=on_resubscribed,
            on_disconnect=on_disconnect
        )

        try:
            on_resubscribed.assert_not_called()

            channel.disconnect_all()
            assert await wait_until(lambda: on_resubscribed.call_count == 1)
            on_disconnect.assert_called_once_with(handle)
            assert handle.connect_count == 2
            assert handle.is_connected

            channel.publish(delete("after"))
            assert await wait_until(lambda: len(received) == 1)
        finally:
            await client.unsubscribe(handle)

    @pytest.mark.asyncio
    async def test_initial_failure_degrades_then_recovers(self, client, channel, feed_filter, wait_until):
        """Exhausted attempts report degraded while retrying continues."""
        channel.set_available(False)
        on_degraded = Mock()
        on_resubscribed = Mock()

        handle = await client.subscribe(
            feed_filter,
            Mock(),
            on_resubscribed=on_resubscribed,
            on_degraded=on_degraded
        )

        try:
            assert handle.status == SubscriptionStatus.DEGRADED
            on_degraded.assert_called_once_with(handle)
            assert handle.failed_attempts == 3

            channel.set_available(True)
            assert await wait_until(lambda: on_resubscribed.call_count == 1)
            assert handle.is_connected
            on_degraded.assert_called_once()
        finally:
            await client.unsubscribe(handle)

    @pytest.mark.asyncio
    async def test_reconnect_exhaustion_degrades(self, client, channel, feed_filter, wait_until):
        on_degraded = Mock()
        handle = await client.subscribe(feed_filter, Mock(), on_degraded=on_degraded)

        try:
            channel.set_available(False)
            channel.disconnect_all()

            assert await wait_until(lambda: on_degraded.call_count == 1)
            assert handle.is_degraded
        finally:
            await client.unsubscribe(handle)

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self, client, channel, feed_filter):
        handle = await client.subscribe(feed_filter, Mock())
        assert len(channel.connections) == 1

        await client.unsubscribe(handle)
        await client.unsubscribe(handle)
        await client.unsubscribe(None)

        assert handle.is_closed
        assert channel.connections == []
        assert client.active_handles == 0

    @pytest.mark.asyncio
    async def test_no_delivery_after_unsubscribe(self, client, channel, feed_filter):
        received = []
        handle = await client.subscribe(feed_filter, received.append)
        await client.unsubscribe(handle)

        channel.publish(delete("late"))

        assert received == []

    @pytest.mark.asyncio
    async def test_close_releases_all(self, client, feed_filter):
        first = await client.subscribe(feed_filter, Mock())
        second = await client.subscribe(feed_filter, Mock())

        await client.close()

        assert first.is_closed and second.is_closed

"""
Change Feed Client.

Maintains the push-channel subscription for one session, decodes and
filters delivered payloads into ChangeEvents, and owns reconnect with
exponential backoff. The channel offers no gap replay, so every
resubscription is reported to the owner, which must resnapshot.
"""

import asyncio
import inspect
import logging
import random
import uuid
from datetime import datetime
from enum import Enum
from typing import (
    Any, AsyncIterator, Awaitable, Callable, Dict, FrozenSet, Optional, Protocol,
    Union, runtime_checkable
)
from pydantic import BaseModel, ConfigDict, Field

from ..models.config import RetrySettings
from .errors import ChannelDisconnect, PayloadError
from .events import ChangeEvent, ChangeType

logger = logging.getLogger(__name__)


class RetryConfig:
    """Retry configuration for subscription attempts"""

    def __init__(
        self,
        max_attempts: int = 5,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_factor: float = 2.0,
        jitter: bool = True
    ):
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> 'RetryConfig':
        return cls(
            max_attempts=settings.max_attempts,
            initial_delay=settings.initial_delay,
            max_delay=settings.max_delay,
            backoff_factor=settings.backoff_factor,
            jitter=settings.jitter
        )

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt number"""
        delay = self.initial_delay * (self.backoff_factor ** attempt)
        delay = min(delay, self.max_delay)

        if self.jitter:
            # Up to 20% jitter so sessions do not reconnect in lockstep
            delay += delay * 0.2 * random.random()

        return delay


class FeedFilter(BaseModel):
    """Subscription scope for the bookmark change feed"""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    channel: str = Field(default="bookmark-updates", min_length=1)
    schema_name: str = Field(default="public", min_length=1)
    resource: str = Field(default="bookmarks", min_length=1)
    event_kinds: FrozenSet[ChangeType] = frozenset({ChangeType.CREATED, ChangeType.DELETED})
    owner_id: Optional[str] = None

    def matches(self, event: ChangeEvent) -> bool:
        """Check whether a decoded event belongs to this subscription"""
        if event.change_type not in self.event_kinds:
            return False
        if event.table is not None and event.table != self.resource:
            return False
        # Deleted events carry only the id and always pass
        if self.owner_id is not None and event.owner_id is not None:
            return event.owner_id == self.owner_id
        return True


@runtime_checkable
class ChannelConnection(Protocol):
    """An open push channel: async iterator of raw payloads"""

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class ChangeChannel(Protocol):
    """Transport able to open push channel connections"""

    async def open(self, feed_filter: FeedFilter) -> ChannelConnection:
        ...


class SubscriptionStatus(Enum):
    """Subscription handle states"""
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    RECONNECTING = "reconnecting"
    DEGRADED = "degraded"
    CLOSED = "closed"


HandleCallback = Callable[['SubscriptionHandle'], Union[None, Awaitable[None]]]
EventCallback = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


class SubscriptionHandle:
    """Teardown handle and live state for one subscribe() call"""

    def __init__(
        self,
        feed_filter: FeedFilter,
        on_event: EventCallback,
        on_resubscribed: Optional[HandleCallback] = None,
        on_disconnect: Optional[HandleCallback] = None,
        on_degraded: Optional[HandleCallback] = None
    ):
        self.handle_id = str(uuid.uuid4())
        self.feed_filter = feed_filter
        self.on_event = on_event
        self.on_resubscribed = on_resubscribed
        self.on_disconnect = on_disconnect
        self.on_degraded = on_degraded

        self.status = SubscriptionStatus.CONNECTING
        self.connection: Optional[ChannelConnection] = None
        self.task: Optional[asyncio.Task] = None

        # Counters
        self.connect_count = 0
        self.failed_attempts = 0
        self.events_delivered = 0
        self.events_filtered = 0
        self.payload_errors = 0
        self.connected_at: Optional[datetime] = None
        self.last_error: Optional[str] = None

    @property
    def is_closed(self) -> bool:
        return self.status == SubscriptionStatus.CLOSED

    @property
    def is_connected(self) -> bool:
        return self.status == SubscriptionStatus.SUBSCRIBED

    @property
    def is_degraded(self) -> bool:
        return self.status == SubscriptionStatus.DEGRADED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "handle_id": self.handle_id,
            "channel": self.feed_filter.channel,
            "status": self.status.value,
            "connect_count": self.connect_count,
            "failed_attempts": self.failed_attempts,
            "events_delivered": self.events_delivered,
            "events_filtered": self.events_filtered,
            "payload_errors": self.payload_errors,
            "connected_at": self.connected_at.isoformat() if self.connected_at else None,
            "last_error": self.last_error,
        }

    def __repr__(self) -> str:
        return f"SubscriptionHandle({self.feed_filter.channel}, {self.status.value})"


async def _invoke(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    """Call a sync or async callback"""
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class ChangeFeedClient:
    """
    Push subscription manager for the bookmark resource.

    Features:
    - Inline initial establishment with bounded exponential backoff
    - Background pump delivering events in channel order
    - Automatic reconnect; every later successful subscription is reported
      through on_resubscribed so the owner can resnapshot
    - SyncDegraded reporting once retries are exhausted, while retrying
      continues at max_delay
    - Idempotent teardown that releases the connection exactly once
    """

    def __init__(
        self,
        channel: ChangeChannel,
        retry_config: Optional[RetryConfig] = None
    ):
        """
        Initialize the feed client.

        Args:
            channel: Transport used to open connections
            retry_config: Backoff policy for (re)subscription
        """
        self.channel = channel
        self.retry_config = retry_config or RetryConfig()
        self._handles: Dict[str, SubscriptionHandle] = {}

    @property
    def active_handles(self) -> int:
        return sum(1 for handle in self._handles.values() if not handle.is_closed)

    async def subscribe(
        self,
        feed_filter: FeedFilter,
        on_event: EventCallback,
        *,
        on_resubscribed: Optional[HandleCallback] = None,
        on_disconnect: Optional[HandleCallback] = None,
        on_degraded: Optional[HandleCallback] = None
    ) -> SubscriptionHandle:
        """
        Open the channel and start delivering events.

        Returns once the first subscription is live, or once the initial
        attempts are exhausted (handle left DEGRADED, retrying in the
        background).

        Args:
            feed_filter: Scope of the subscription
            on_event: Called once per delivered event, in delivery order
            on_resubscribed: Called after every successful resubscription
            on_disconnect: Called when a live subscription drops
            on_degraded: Called when retries are exhausted

        Returns:
            Handle used for teardown
        """
        handle = SubscriptionHandle(
            feed_filter,
            on_event,
            on_resubscribed=on_resubscribed,
            on_disconnect=on_disconnect,
            on_degraded=on_degraded
        )
        self._handles[handle.handle_id] = handle

        logger.info(f"Subscribing to channel '{feed_filter.channel}' ({feed_filter.resource})")

        connection = await self._connect_with_retry(handle)
        if handle.is_closed:
            # Unsubscribed while establishing
            if connection is not None:
                await self._close_connection(handle, connection)
            return handle

        if connection is None:
            await self._mark_degraded(handle)

        handle.task = asyncio.create_task(self._pump(handle, connection))
        return handle

    async def unsubscribe(self, handle: Optional[SubscriptionHandle]) -> None:
        """
        Release a subscription.

        Safe to call repeatedly and for handles whose channel never opened.
        """
        if handle is None or handle.is_closed:
            return

        handle.status = SubscriptionStatus.CLOSED
        self._handles.pop(handle.handle_id, None)

        task = handle.task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"Feed pump ended with error during unsubscribe: {e}")

        connection = handle.connection
        if connection is not None:
            await self._close_connection(handle, connection)

        logger.info(f"Unsubscribed from channel '{handle.feed_filter.channel}'")

    async def close(self) -> None:
        """Release every open subscription"""
        for handle in list(self._handles.values()):
            await self.unsubscribe(handle)

    async def _connect_with_retry(self, handle: SubscriptionHandle) -> Optional[ChannelConnection]:
        """Bounded establishment loop; None when attempts are exhausted"""
        for attempt in range(self.retry_config.max_attempts):
            if handle.is_closed:
                return None

            connection = await self._try_open(handle, attempt)
            if connection is not None:
                return connection

            if attempt < self.retry_config.max_attempts - 1:
                delay = self.retry_config.get_delay(attempt)
                logger.info(f"Retrying subscription in {delay:.1f}s...")
                await asyncio.sleep(delay)

        logger.error(
            f"Failed to subscribe to '{handle.feed_filter.channel}' "
            f"after {self.retry_config.max_attempts} attempts"
        )
        return None

    async def _try_open(self, handle: SubscriptionHandle, attempt: int) -> Optional[ChannelConnection]:
        try:
            connection = await self.channel.open(handle.feed_filter)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            handle.failed_attempts += 1
            handle.last_error = str(e)
            logger.warning(f"Subscription attempt {attempt + 1} failed: {e}")
            return None

        if handle.is_closed:
            await self._close_connection(handle, connection)
            return None

        handle.connection = connection
        handle.connect_count += 1
        handle.status = SubscriptionStatus.SUBSCRIBED
        handle.connected_at = datetime.now()
        logger.info(
            f"Subscribed to '{handle.feed_filter.channel}' "
            f"(connection #{handle.connect_count})"
        )
        return connection

    async def _reconnect(self, handle: SubscriptionHandle) -> Optional[ChannelConnection]:
        """Reconnect until success or teardown; degrade once attempts run out"""
        if handle.is_degraded:
            # Initial establishment already exhausted its attempts
            attempt = self.retry_config.max_attempts
        else:
            handle.status = SubscriptionStatus.RECONNECTING
            attempt = 0

        while not handle.is_closed:
            if attempt >= self.retry_config.max_attempts:
                if not handle.is_degraded:
                    await self._mark_degraded(handle)
                delay = self.retry_config.max_delay
            else:
                delay = self.retry_config.get_delay(attempt)

            await asyncio.sleep(delay)
            if handle.is_closed:
                return None

            connection = await self._try_open(handle, attempt)
            if connection is not None:
                return connection
            attempt += 1

        return None

    async def _pump(self, handle: SubscriptionHandle, connection: Optional[ChannelConnection]) -> None:
        """Read the channel, deliver events, reconnect on failure"""
        try:
            while not handle.is_closed:
                if connection is None:
                    connection = await self._reconnect(handle)
                    if connection is None:
                        return
                    await self._notify(handle, handle.on_resubscribed, "on_resubscribed")

                try:
                    async for payload in connection:
                        if handle.is_closed:
                            return
                        await self._deliver(handle, payload)
                    if handle.is_closed:
                        return
                    logger.warning(f"Channel '{handle.feed_filter.channel}' closed by remote")
                except ChannelDisconnect as e:
                    handle.last_error = str(e)
                    logger.warning(f"Channel '{handle.feed_filter.channel}' disconnected: {e}")
                except Exception as e:
                    handle.last_error = str(e)
                    logger.warning(f"Channel '{handle.feed_filter.channel}' transport error: {e}")

                await self._close_connection(handle, connection)
                connection = None
                if handle.is_closed:
                    return

                handle.status = SubscriptionStatus.RECONNECTING
                await self._notify(handle, handle.on_disconnect, "on_disconnect")

        except asyncio.CancelledError:
            raise
        except Exception as e:
            handle.last_error = str(e)
            logger.error(f"Feed pump for '{handle.feed_filter.channel}' failed: {e}")
            raise

    async def _deliver(self, handle: SubscriptionHandle, payload: Dict[str, Any]) -> None:
        try:
            event = ChangeEvent.from_payload(payload)
        except PayloadError as e:
            handle.payload_errors += 1
            logger.warning(f"Dropping undecodable payload: {e}")
            return

        if event is None or not handle.feed_filter.matches(event):
            handle.events_filtered += 1
            return

        handle.events_delivered += 1
        logger.debug(f"Delivering event: {event}")
        try:
            await _invoke(handle.on_event, event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in on_event callback for {event}: {e}")

    async def _notify(self, handle: SubscriptionHandle, callback: Optional[HandleCallback], name: str) -> None:
        try:
            await _invoke(callback, handle)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Error in {name} callback: {e}")

    async def _mark_degraded(self, handle: SubscriptionHandle) -> None:
        handle.status = SubscriptionStatus.DEGRADED
        logger.warning(
            f"Channel '{handle.feed_filter.channel}' degraded after "
            f"{handle.failed_attempts} failed attempts; list may be stale"
        )
        await self._notify(handle, handle.on_degraded, "on_degraded")

    async def _close_connection(self, handle: SubscriptionHandle, connection: ChannelConnection) -> None:
        """Close once; failures are logged and ignored"""
        if handle.connection is connection:
            handle.connection = None
        try:
            await connection.close()
        except Exception as e:
            logger.warning(f"Failed to release channel connection: {e}")

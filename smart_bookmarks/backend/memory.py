"""
In-process backend and push channel.

Used by the demo command and the test suite. The backend stores rows in a
dict and publishes change payloads in the same shape the hosted change feed
emits, so the full decode path is exercised.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from core.models.bookmarks import Bookmark
from core.sync.errors import ChannelDisconnect, NetworkFailure
from core.sync.feed import FeedFilter

logger = logging.getLogger(__name__)


_CLOSED = object()


class InMemoryChannelConnection:
    """One open channel connection; iterates payloads until closed or failed"""

    def __init__(self, channel: 'InMemoryChangeChannel', feed_filter: FeedFilter):
        self.channel = channel
        self.feed_filter = feed_filter
        self.connection_id = str(uuid.uuid4())
        self._items: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def push(self, item: Union[Dict[str, Any], Exception]) -> None:
        if not self._closed:
            self._items.put_nowait(item)

    def fail(self, error: Exception) -> None:
        """Terminate the stream with a transport error"""
        if not self._closed:
            self._items.put_nowait(error)
            self._closed = True

    def __aiter__(self) -> 'InMemoryChannelConnection':
        return self

    async def __anext__(self) -> Dict[str, Any]:
        item = await self._items.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._items.put_nowait(_CLOSED)
        self.channel._release(self)


class InMemoryChangeChannel:
    """Push channel broadcasting published payloads to every open connection"""

    def __init__(self):
        self._connections: List[InMemoryChannelConnection] = []
        self._available = True

        self.open_count = 0
        self.failed_opens = 0
        self.published = 0

    @property
    def connections(self) -> List[InMemoryChannelConnection]:
        return list(self._connections)

    @property
    def is_available(self) -> bool:
        return self._available

    def set_available(self, available: bool) -> None:
        """When unavailable, open() fails with ChannelDisconnect"""
        self._available = available

    async def open(self, feed_filter: FeedFilter) -> InMemoryChannelConnection:
        if not self._available:
            self.failed_opens += 1
            raise ChannelDisconnect("channel unavailable")

        connection = InMemoryChannelConnection(self, feed_filter)
        self._connections.append(connection)
        self.open_count += 1
        logger.debug(f"Opened channel connection {connection.connection_id}")
        return connection

    def publish(self, payload: Dict[str, Any]) -> int:
        """
        Deliver a payload to every open connection.

        Returns:
            Number of connections reached
        """
        self.published += 1
        reached = 0
        for connection in self._connections:
            if not connection.is_closed:
                connection.push(payload)
                reached += 1
        return reached

    def disconnect_all(self, reason: str = "connection lost") -> int:
        """Drop every open connection with a transport error"""
        dropped = 0
        for connection in list(self._connections):
            connection.fail(ChannelDisconnect(reason))
            dropped += 1
        self._connections.clear()
        if dropped:
            logger.info(f"Dropped {dropped} channel connections: {reason}")
        return dropped

    def _release(self, connection: InMemoryChannelConnection) -> None:
        if connection in self._connections:
            self._connections.remove(connection)


class InMemoryBookmarkBackend:
    """
    Dict-backed bookmark backend.

    Successful creates and deletes publish INSERT/DELETE payloads on the
    attached channel. Deleting an unknown id succeeds and publishes nothing.
    """

    def __init__(
        self,
        channel: Optional[InMemoryChangeChannel] = None,
        table: str = "bookmarks",
        schema_name: str = "public",
        id_factory: Optional[Callable[[], str]] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.channel = channel
        self.table = table
        self.schema_name = schema_name
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._rows: Dict[str, Bookmark] = {}
        self._available = True
        self._fetch_gate: Optional[asyncio.Event] = None

        # Call tracking
        self.fetch_calls = 0
        self.create_calls = 0
        self.delete_calls = 0

    def set_available(self, available: bool) -> None:
        """When unavailable every call raises NetworkFailure"""
        self._available = available

    def hold_fetches(self) -> None:
        """Block fetch_all until release_fetches()"""
        if self._fetch_gate is None:
            self._fetch_gate = asyncio.Event()

    def release_fetches(self) -> None:
        if self._fetch_gate is not None:
            self._fetch_gate.set()
            self._fetch_gate = None

    def insert_row(self, bookmark: Bookmark) -> None:
        """Store a row without publishing a change"""
        self._rows[bookmark.id] = bookmark

    def remove_row(self, bookmark_id: str) -> None:
        """Remove a row without publishing a change"""
        self._rows.pop(bookmark_id, None)

    @property
    def rows(self) -> List[Bookmark]:
        return list(self._rows.values())

    def _check_available(self, operation: str) -> None:
        if not self._available:
            raise NetworkFailure(f"Backend unavailable during {operation}", status_code=503)

    async def fetch_all(self, owner_id: str) -> List[Bookmark]:
        self.fetch_calls += 1
        gate = self._fetch_gate
        if gate is not None:
            await gate.wait()
        self._check_available("fetch_all")

        rows = [b for b in self._rows.values() if b.owner_id == owner_id]
        rows.sort(key=lambda b: b.created_at, reverse=True)
        return rows

    async def create(self, title: str, url: str, owner_id: str) -> Bookmark:
        self.create_calls += 1
        self._check_available("create")

        bookmark = Bookmark(
            id=self._id_factory(),
            owner_id=owner_id,
            title=title,
            url=url,
            created_at=self._clock()
        )
        self._rows[bookmark.id] = bookmark
        self._publish("INSERT", new=bookmark.to_record())
        return bookmark

    async def delete(self, bookmark_id: str) -> None:
        self.delete_calls += 1
        self._check_available("delete")

        if self._rows.pop(bookmark_id, None) is not None:
            self._publish("DELETE", old={"id": bookmark_id})

    def _publish(self, event_type: str, new: Optional[Dict[str, Any]] = None,
                 old: Optional[Dict[str, Any]] = None) -> None:
        if self.channel is None:
            return
        self.channel.publish({
            "eventType": event_type,
            "schema": self.schema_name,
            "table": self.table,
            "commit_timestamp": self._clock().isoformat(),
            "new": new or {},
            "old": old or {},
        })

"""
Bookmark Synchronization Engine.

Orchestrates one authenticated session: seeds the CollectionStore from a
snapshot, streams change-feed events into it through a single consumer
task, resnapshots after every resubscription, and exposes a read-only
ordered view plus create/delete entry points.
"""

import asyncio
import functools
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..models.bookmarks import Bookmark
from ..models.config import SyncConfig
from ..models.results import FailureKind, OperationResult
from .events import ChangeEvent, ChangeType
from .feed import ChangeFeedClient, FeedFilter, SubscriptionHandle
from .gateway import MutationGateway
from .queue import ChangeEventQueue
from .store import CollectionStore

logger = logging.getLogger(__name__)


SnapshotListener = Callable[[Tuple[Bookmark, ...]], Any]


class SyncState(Enum):
    """Engine lifecycle states"""
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    SNAPSHOTTING = "snapshotting"
    SUBSCRIBED = "subscribed"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


@dataclass
class SyncEngineMetrics:
    """Counters for the synchronization engine."""

    # Event processing
    events_received: int = 0
    events_applied: int = 0
    events_held: int = 0
    events_dropped: int = 0
    stale_events_ignored: int = 0

    # Snapshots
    snapshots_completed: int = 0
    snapshots_failed: int = 0
    resubscriptions: int = 0

    # Responses that outlived their session
    stale_responses_discarded: int = 0

    # Error tracking
    last_error_time: Optional[datetime] = None
    last_error_message: Optional[str] = None


@dataclass
class ResnapshotRequest:
    """Queue item asking the consumer to re-fetch ground truth"""

    generation: int
    reason: str
    future: asyncio.Future
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __str__(self) -> str:
        return f"RESNAPSHOT: {self.reason}"


@dataclass
class SyncSession:
    """State of one authenticated session"""

    user_id: str
    generation: int
    started_at: datetime = field(default_factory=datetime.now)
    handle: Optional[SubscriptionHandle] = None
    consumer: Optional[asyncio.Task] = None
    initial_request: Optional[ResnapshotRequest] = None

    # True once a snapshot succeeded and no later one has failed
    snapshot_ok: bool = False


class SyncEngine:
    """
    Client-side synchronization engine for one user's bookmark list.

    Three sources feed the store: the snapshot fetch, mutation requests and
    the change feed. Only the snapshot and the feed mutate local state;
    mutation responses never do. Events are applied in the order they are
    handed to the engine; events handed over while a snapshot is pending
    are held and replayed after seed().

    Every start() bumps a generation token; responses and feed callbacks
    tagged with an older generation are discarded.
    """

    def __init__(
        self,
        gateway: MutationGateway,
        feed: ChangeFeedClient,
        config: Optional[SyncConfig] = None,
        on_error: Optional[Callable[[OperationResult], Any]] = None,
        on_degraded: Optional[Callable[[bool], Any]] = None
    ):
        """
        Initialize the synchronization engine.

        Args:
            gateway: Backend call wrapper
            feed: Change feed client
            config: Engine configuration
            on_error: Called with background failures (snapshot errors)
            on_degraded: Called with True when the channel is degraded and
                False when it recovers
        """
        self.gateway = gateway
        self.feed = feed
        self.config = config or SyncConfig()
        self.on_error = on_error
        self.on_degraded = on_degraded

        self._store = CollectionStore(tombstone_ttl=self.config.tombstone_ttl_seconds)
        self.queue = ChangeEventQueue(max_queue_size=self.config.max_queue_size)

        self._state = SyncState.IDLE
        self._session: Optional[SyncSession] = None
        self._generation = 0
        self._lifecycle_lock = asyncio.Lock()

        self._listeners: List[SnapshotListener] = []
        self._pending_resnapshot: Optional[ResnapshotRequest] = None
        self._held: List[ChangeEvent] = []
        self._awaiting_echo: Dict[str, datetime] = {}  # bookmark_id -> create acknowledged
        self._degraded = False
        self._busy = False

        self.metrics = SyncEngineMetrics()

        logger.info("Initialized SyncEngine")

    # ------------------------------------------------------------------
    # Read-only surface

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def user_id(self) -> Optional[str]:
        return self._session.user_id if self._session else None

    @property
    def is_degraded(self) -> bool:
        """True when retries are exhausted and the list may be stale"""
        return self._degraded

    @property
    def is_settled(self) -> bool:
        """Subscribed, snapshot applied and nothing left to process"""
        session = self._session
        return (
            session is not None
            and session.snapshot_ok
            and self._state == SyncState.SUBSCRIBED
            and self._pending_resnapshot is None
            and not self._busy
            and len(self.queue) == 0
        )

    def get_snapshot(self) -> Tuple[Bookmark, ...]:
        """Current ordered list, newest first"""
        return self._store.snapshot()

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        """
        Register a change callback fired after every applied change or seed.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(self, user_id: str) -> OperationResult:
        """
        Start a session for a user.

        A repeated start for the active user is a no-op; a start for a
        different user stops the current session first.

        Returns:
            Result of the initial snapshot
        """
        if not user_id or not str(user_id).strip():
            return OperationResult.failure(
                FailureKind.NOT_AUTHENTICATED, "A user id is required to start", "start"
            )
        user_id = str(user_id).strip()

        async with self._lifecycle_lock:
            session = self._session
            if session is not None and session.user_id == user_id:
                logger.debug(f"Session for {user_id} already active")
                initial = session.initial_request
            else:
                if session is not None:
                    logger.info(f"Identity changed from {session.user_id} to {user_id}; stopping session")
                    await self._stop_locked()
                initial = await self._start_locked(user_id)

        if initial is None:
            return OperationResult.success_result(data=self.get_snapshot(), operation_type="start")
        return await asyncio.shield(initial.future)

    async def _start_locked(self, user_id: str) -> ResnapshotRequest:
        self._generation += 1
        generation = self._generation
        session = SyncSession(user_id=user_id, generation=generation)
        self._session = session

        self._set_state(SyncState.AUTHENTICATING)
        logger.info(f"Starting sync session for {user_id} (generation {generation})")

        self._store.clear()
        self._held.clear()
        self._awaiting_echo.clear()
        self._pending_resnapshot = None
        self._set_degraded(False)
        await self.queue.clear()
        await self.queue.start()

        session.consumer = asyncio.create_task(self._consume(session))
        self._set_state(SyncState.SNAPSHOTTING)

        # Subscribe before fetching so nothing between the two is missed
        feed_filter = FeedFilter(
            channel=self.config.channel_name,
            schema_name=self.config.schema_name,
            resource=self.config.backend.table,
            owner_id=user_id
        )
        session.handle = await self.feed.subscribe(
            feed_filter,
            functools.partial(self._handle_feed_event, generation),
            on_resubscribed=functools.partial(self._handle_resubscribed, generation),
            on_disconnect=functools.partial(self._handle_disconnect, generation),
            on_degraded=functools.partial(self._handle_degraded, generation)
        )

        session.initial_request = await self._request_resnapshot(session, "initial snapshot")
        return session.initial_request

    async def stop(self) -> None:
        """Tear down the session; idempotent"""
        async with self._lifecycle_lock:
            await self._stop_locked()

    async def _stop_locked(self) -> None:
        session = self._session
        if session is None:
            return

        logger.info(f"Stopping sync session for {session.user_id}")

        # Invalidate every in-flight response and callback of this session
        self._generation += 1
        self._session = None

        try:
            await self.feed.unsubscribe(session.handle)
        except Exception as e:
            logger.warning(f"Failed to release subscription: {e}")
        finally:
            await self.queue.stop()

            consumer = session.consumer
            if consumer is not None and consumer is not asyncio.current_task():
                consumer.cancel()
                try:
                    await consumer
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.warning(f"Consumer task ended with error: {e}")

            self._discard_queued_items()
            self._store.clear()
            self._held.clear()
            self._awaiting_echo.clear()
            self._pending_resnapshot = None
            self._busy = False
            self._set_degraded(False)
            self._set_state(SyncState.STOPPED)

        self._notify_listeners()

    async def resync(self) -> OperationResult:
        """Force a full resnapshot and wait for it"""
        session = self._session
        if session is None:
            return self._not_authenticated("resync")

        request = await self._request_resnapshot(session, "manual resync")
        return await asyncio.shield(request.future)

    # ------------------------------------------------------------------
    # Mutation entry points

    async def request_create(self, title: str, url: str) -> OperationResult:
        """
        Ask the backend to create a bookmark.

        The bookmark becomes visible only when its Created event arrives.
        """
        session = self._session
        if session is None:
            return self._not_authenticated("create")

        generation = session.generation
        result = await self.gateway.create(title, url, session.user_id)

        if generation != self._generation:
            return self._stale_response("create")

        if result.success:
            bookmark = result.data
            if bookmark.id not in self._store:
                self._awaiting_echo[bookmark.id] = datetime.now()
        return result

    async def request_delete(self, bookmark_id: str) -> OperationResult:
        """
        Ask the backend to delete a bookmark.

        The bookmark stays visible until its Deleted event arrives.
        """
        session = self._session
        if session is None:
            return self._not_authenticated("delete")

        generation = session.generation
        result = await self.gateway.delete(bookmark_id)

        if generation != self._generation:
            return self._stale_response("delete")
        return result

    # ------------------------------------------------------------------
    # Feed callbacks

    def _current_session(self, generation: int) -> Optional[SyncSession]:
        session = self._session
        if session is None or session.generation != generation:
            return None
        return session

    async def _handle_feed_event(self, generation: int, event: ChangeEvent) -> None:
        session = self._current_session(generation)
        if session is None:
            self.metrics.stale_events_ignored += 1
            return

        self.metrics.events_received += 1
        if not await self.queue.enqueue(event):
            # Dropped event is a gap; only a snapshot taken after every
            # event still queued ahead of it can close it
            self.metrics.events_dropped += 1
            await self._request_resnapshot(session, "event queue overflow", coalesce=False)

    async def _handle_resubscribed(self, generation: int, handle: SubscriptionHandle) -> None:
        session = self._current_session(generation)
        if session is None:
            return

        self.metrics.resubscriptions += 1
        self._set_degraded(False)
        self._set_state(SyncState.SNAPSHOTTING)
        await self._request_resnapshot(session, "channel resubscribed")

    async def _handle_disconnect(self, generation: int, handle: SubscriptionHandle) -> None:
        if self._current_session(generation) is None:
            return
        self._set_state(SyncState.RECONNECTING)

    async def _handle_degraded(self, generation: int, handle: SubscriptionHandle) -> None:
        if self._current_session(generation) is None:
            return
        self._record_error(f"Change feed degraded: {handle.last_error or 'retries exhausted'}")
        self._set_degraded(True)
        if self._state == SyncState.SUBSCRIBED:
            self._set_state(SyncState.RECONNECTING)

    # ------------------------------------------------------------------
    # Consumer

    async def _request_resnapshot(
        self,
        session: SyncSession,
        reason: str,
        coalesce: bool = True
    ) -> ResnapshotRequest:
        """
        Queue a resnapshot.

        A queued one that has not started absorbs this request unless
        `coalesce` is False; then a fresh request goes to the tail so events
        queued ahead of it cannot be replayed over the newer snapshot.
        """
        pending = self._pending_resnapshot
        if coalesce and pending is not None and pending.generation == session.generation:
            logger.debug(f"Resnapshot already queued; absorbing '{reason}'")
            return pending

        request = ResnapshotRequest(
            generation=session.generation,
            reason=reason,
            future=asyncio.get_running_loop().create_future()
        )
        self._pending_resnapshot = request
        if not await self.queue.enqueue(request, force=True):
            self._pending_resnapshot = None
            self._resolve(request, self._stale_response("snapshot"))
        else:
            logger.info(f"Queued resnapshot: {reason}")
        return request

    async def _consume(self, session: SyncSession) -> None:
        """Single consumer applying queue items in arrival order"""
        logger.debug(f"Started consumer for generation {session.generation}")

        while self._session is session:
            item = await self.queue.dequeue()
            if item is None:
                if not self.queue.is_active:
                    break
                continue

            self._busy = True
            try:
                if isinstance(item, ResnapshotRequest):
                    await self._run_resnapshot(session, item)
                else:
                    self._process_event(session, item)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._record_error(f"Error processing {item}: {e}")
                logger.error(f"Error processing {item}: {e}")
            finally:
                self._busy = False

        logger.debug(f"Stopped consumer for generation {session.generation}")

    async def _run_resnapshot(self, session: SyncSession, request: ResnapshotRequest) -> None:
        if self._pending_resnapshot is request:
            self._pending_resnapshot = None

        try:
            if request.generation != self._generation:
                self._resolve(request, self._stale_response("snapshot"))
                return

            self._set_state(SyncState.SNAPSHOTTING)
            logger.info(f"Fetching snapshot for {session.user_id} ({request.reason})")
            result = await self.gateway.fetch_all(session.user_id)

            if request.generation != self._generation or self._session is not session:
                self._resolve(request, self._stale_response("snapshot"))
                return

            if not result.success:
                self.metrics.snapshots_failed += 1
                session.snapshot_ok = False
                self._record_error(f"Snapshot failed: {result.error}")
                self._report_error(result)
                self._resolve(request, result)
                return

            self._store.seed(result.data)
            session.snapshot_ok = True

            held, self._held = self._held, []
            for event in held:
                self._apply(event)

            for bookmark_id in list(self._awaiting_echo):
                if bookmark_id in self._store:
                    del self._awaiting_echo[bookmark_id]

            self.metrics.snapshots_completed += 1
            self._set_state(self._steady_state(session))
            logger.info(f"Snapshot applied: {len(self._store)} bookmarks, {len(held)} held events replayed")

            self._notify_listeners()
            self._resolve(request, OperationResult.success_result(
                data=self.get_snapshot(),
                operation_type="snapshot",
                processing_time_ms=result.processing_time_ms
            ))
        finally:
            if not request.future.done():
                self._resolve(request, self._stale_response("snapshot"))

    def _process_event(self, session: SyncSession, event: ChangeEvent) -> None:
        if not session.snapshot_ok:
            if len(self._held) >= self.config.max_queue_size:
                # Any later snapshot is fetched after these events, so they
                # can be dropped instead of replayed
                self.metrics.events_dropped += len(self._held)
                logger.warning(f"Held events exceeded {self.config.max_queue_size}; "
                               f"dropping {len(self._held)} and relying on the next snapshot")
                self._held.clear()
            self._held.append(event)
            self.metrics.events_held += 1
            logger.debug(f"Holding event until snapshot completes: {event}")
            return

        if self._apply(event):
            self._notify_listeners()

    def _apply(self, event: ChangeEvent) -> bool:
        if event.change_type == ChangeType.CREATED:
            changed = self._store.apply_create(event.bookmark)
            self._awaiting_echo.pop(event.bookmark_id, None)
        else:
            changed = self._store.apply_delete(event.bookmark_id)

        if changed:
            self.metrics.events_applied += 1
            logger.debug(f"Applied event: {event}")
        return changed

    def _steady_state(self, session: SyncSession) -> SyncState:
        handle = session.handle
        if handle is not None and handle.is_connected:
            return SyncState.SUBSCRIBED
        return SyncState.RECONNECTING

    # ------------------------------------------------------------------
    # Helpers

    def _set_state(self, state: SyncState) -> None:
        if state != self._state:
            logger.info(f"Sync state: {self._state.value} -> {state.value}")
            self._state = state

    def _set_degraded(self, degraded: bool) -> None:
        if degraded == self._degraded:
            return
        self._degraded = degraded
        if degraded:
            logger.warning("Sync degraded: bookmark list may be stale")
        else:
            logger.info("Sync recovered from degraded state")
        if self.on_degraded:
            try:
                self.on_degraded(degraded)
            except Exception as e:
                logger.warning(f"Error in degraded callback: {e}")

    def _notify_listeners(self) -> None:
        snapshot = self.get_snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning(f"Error in snapshot listener: {e}")

    def _report_error(self, result: OperationResult) -> None:
        if self.on_error:
            try:
                self.on_error(result)
            except Exception as e:
                logger.warning(f"Error in error callback: {e}")

    def _record_error(self, message: str) -> None:
        self.metrics.last_error_message = message
        self.metrics.last_error_time = datetime.now()

    def _stale_response(self, operation_type: str) -> OperationResult:
        self.metrics.stale_responses_discarded += 1
        logger.debug(f"Discarding {operation_type} response from a superseded session")
        return OperationResult.failure(
            FailureKind.STALE_SESSION,
            "Session ended before the response arrived",
            operation_type
        )

    @staticmethod
    def _not_authenticated(operation_type: str) -> OperationResult:
        return OperationResult.failure(
            FailureKind.NOT_AUTHENTICATED, "No active session", operation_type
        )

    @staticmethod
    def _resolve(request: ResnapshotRequest, result: OperationResult) -> None:
        if not request.future.done():
            request.future.set_result(result)

    def _discard_queued_items(self) -> None:
        while True:
            item = self.queue.get_nowait()
            if item is None:
                break
            if isinstance(item, ResnapshotRequest):
                self._resolve(item, self._stale_response("snapshot"))

    async def wait_until_settled(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the engine is subscribed with nothing left to process.

        Events still travelling inside the channel are not visible here.

        Returns:
            True if settled before the timeout
        """
        return await self._wait(lambda: self.is_settled, timeout)

    async def wait_for_snapshot(
        self,
        predicate: Callable[[Tuple[Bookmark, ...]], bool],
        timeout: Optional[float] = None
    ) -> bool:
        """Wait until the ordered view satisfies a predicate"""
        return await self._wait(lambda: predicate(self.get_snapshot()), timeout)

    async def _wait(self, condition: Callable[[], bool], timeout: Optional[float]) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (timeout if timeout is not None else self.config.settle_timeout)
        while not condition():
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(0.01)
        return True

    def get_status(self) -> Dict[str, Any]:
        """
        Get status information about the engine.

        Returns:
            Dictionary with status information
        """
        session = self._session
        return {
            "state": self._state.value,
            "user_id": session.user_id if session else None,
            "generation": self._generation,
            "degraded": self._degraded,
            "bookmarks": len(self._store),
            "queue_size": len(self.queue),
            "held_events": len(self._held),
            "awaiting_echo": sorted(self._awaiting_echo),
            "resnapshot_pending": self._pending_resnapshot is not None,
            "subscription": session.handle.to_dict() if session and session.handle else None,
            "events_received": self.metrics.events_received,
            "events_applied": self.metrics.events_applied,
            "events_dropped": self.metrics.events_dropped,
            "snapshots_completed": self.metrics.snapshots_completed,
            "snapshots_failed": self.metrics.snapshots_failed,
            "resubscriptions": self.metrics.resubscriptions,
            "stale_responses_discarded": self.metrics.stale_responses_discarded,
            "last_error": self.metrics.last_error_message,
            "last_error_time": self.metrics.last_error_time.isoformat() if self.metrics.last_error_time else None,
        }

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()

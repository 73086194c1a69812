"""
Real-time bookmark synchronization.

Keeps a client-side, per-user bookmark list consistent with the backend by
seeding it from a snapshot and applying change-feed events in order.

Key Components:
- CollectionStore: Deduplicated, ordered in-memory bookmark list
- ChangeEvent: Decoded push-channel notifications
- ChangeEventQueue: FIFO hand-off to the single consumer
- ChangeFeedClient: Subscription with reconnect and degraded reporting
- MutationGateway: Backend calls mapped onto OperationResult values
- SyncEngine: Session lifecycle and event application
- AuthGate: Identity changes mapped onto engine start/stop
"""

from .errors import (
    SyncError, ValidationFailure, NetworkFailure, ChannelDisconnect, PayloadError
)
from .events import ChangeEvent, ChangeType
from .store import CollectionStore
from .queue import ChangeEventQueue
from .feed import (
    ChangeFeedClient, ChangeChannel, ChannelConnection, FeedFilter,
    RetryConfig, SubscriptionHandle, SubscriptionStatus
)
from .gateway import BookmarkBackend, MutationGateway, validate_bookmark_input
from .engine import SyncEngine, SyncState, SyncEngineMetrics
from .auth import AuthGate

__all__ = [
    "SyncError",
    "ValidationFailure",
    "NetworkFailure",
    "ChannelDisconnect",
    "PayloadError",
    "ChangeEvent",
    "ChangeType",
    "CollectionStore",
    "ChangeEventQueue",
    "ChangeFeedClient",
    "ChangeChannel",
    "ChannelConnection",
    "FeedFilter",
    "RetryConfig",
    "SubscriptionHandle",
    "SubscriptionStatus",
    "BookmarkBackend",
    "MutationGateway",
    "validate_bookmark_input",
    "SyncEngine",
    "SyncState",
    "SyncEngineMetrics",
    "AuthGate",
]

__version__ = "1.0.0"

"""
Smart Bookmarks - real-time synchronized bookmark lists.

Keeps a per-user bookmark list consistent with a hosted backend by seeding
it from a snapshot and applying push-channel changes as they arrive.
"""

__version__ = "1.0.0"
__author__ = "Smart Bookmarks Team"
__email__ = "team@smart-bookmarks.dev"

from core.models.bookmarks import Bookmark
from core.models.config import SyncConfig
from core.models.results import OperationResult, FailureKind
from core.sync.engine import SyncEngine, SyncState

__all__ = [
    "Bookmark",
    "SyncConfig",
    "OperationResult",
    "FailureKind",
    "SyncEngine",
    "SyncState",
    "__version__",
]

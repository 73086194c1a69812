"""
smart-bookmarks core package

Client-side synchronization of a personal bookmark list with a remote
authoritative store and its change feed.
"""

__version__ = "1.0.0"
__author__ = "Smart Bookmarks Team"

from .models import Bookmark, OperationResult, FailureKind, SyncConfig

__all__ = [
    "Bookmark",
    "OperationResult",
    "FailureKind",
    "SyncConfig",
]

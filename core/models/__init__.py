"""
Core data models for smart-bookmarks

All Pydantic models for bookmarks, operation results and configuration.
"""

from .bookmarks import Bookmark, sort_bookmarks
from .results import OperationResult, OperationStatus, FailureKind
from .config import BackendConfig, RetrySettings, SyncConfig, GlobalSettings

__all__ = [
    # Entities
    "Bookmark",
    "sort_bookmarks",

    # Results
    "OperationResult",
    "OperationStatus",
    "FailureKind",

    # Configuration
    "BackendConfig",
    "RetrySettings",
    "SyncConfig",
    "GlobalSettings",
]

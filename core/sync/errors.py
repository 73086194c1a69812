"""
Synchronization error taxonomy.

Backends and transports raise these; MutationGateway converts backend
failures into OperationResult values and ChangeFeedClient absorbs channel
failures into its reconnect loop.
"""

from typing import Optional

from ..models.results import FailureKind


class SyncError(Exception):
    """Base class for synchronization errors"""

    kind: Optional[FailureKind] = None


class ValidationFailure(SyncError):
    """Request rejected locally before any network call"""

    kind = FailureKind.VALIDATION


class NetworkFailure(SyncError):
    """Transient failure of a backend call"""

    kind = FailureKind.NETWORK

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ChannelDisconnect(SyncError):
    """Push channel transport failure; handled by reconnecting"""

    kind = FailureKind.NETWORK


class PayloadError(SyncError):
    """Push channel delivered a payload that cannot be decoded"""
    pass

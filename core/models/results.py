"""
Operation result models.

Every backend call made by the synchronization core returns an
OperationResult instead of raising, so callers can display failures
without the engine ever terminating.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Generic, TypeVar
from pydantic import BaseModel, Field, ConfigDict, computed_field


T = TypeVar('T')


class OperationStatus(Enum):
    """Status of backend operations"""
    SUCCESS = "success"
    FAILED = "failed"


class FailureKind(Enum):
    """Typed failure taxonomy carried in OperationResult.error_code"""
    VALIDATION = "validation"               # Rejected locally, no network call
    NETWORK = "network"                     # Transient backend failure
    STALE_SESSION = "stale_session"         # Response outlived its session
    NOT_AUTHENTICATED = "not_authenticated" # No active session to act for


class OperationResult(BaseModel, Generic[T]):
    """Standard operation result wrapper for backend operations"""
    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        json_encoders={
            datetime: lambda v: v.isoformat()
        }
    )

    status: OperationStatus
    data: Optional[T] = None

    error: Optional[str] = None
    error_code: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None

    operation_type: str
    timestamp: datetime = Field(default_factory=datetime.now)
    processing_time_ms: Optional[float] = None

    @computed_field
    @property
    def success(self) -> bool:
        """Computed property for success status"""
        return self.status == OperationStatus.SUCCESS

    @property
    def failure_kind(self) -> Optional[FailureKind]:
        """Failure kind for failed results, None on success"""
        if self.error_code is None:
            return None
        try:
            return FailureKind(self.error_code)
        except ValueError:
            return None

    @classmethod
    def success_result(
        cls,
        data: Any,
        operation_type: str,
        processing_time_ms: Optional[float] = None
    ) -> 'OperationResult':
        """Create successful result"""
        return cls(
            status=OperationStatus.SUCCESS,
            data=data,
            operation_type=operation_type,
            processing_time_ms=processing_time_ms
        )

    @classmethod
    def error_result(
        cls,
        error: str,
        operation_type: str,
        error_code: Optional[str] = None,
        error_details: Optional[Dict[str, Any]] = None,
        processing_time_ms: Optional[float] = None
    ) -> 'OperationResult':
        """Create error result"""
        return cls(
            status=OperationStatus.FAILED,
            error=error,
            error_code=error_code,
            error_details=error_details,
            operation_type=operation_type,
            processing_time_ms=processing_time_ms
        )

    @classmethod
    def failure(
        cls,
        kind: FailureKind,
        error: str,
        operation_type: str,
        **kwargs: Any
    ) -> 'OperationResult':
        """Create error result for a typed failure kind"""
        return cls.error_result(
            error=error,
            operation_type=operation_type,
            error_code=kind.value,
            **kwargs
        )

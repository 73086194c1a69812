"""
Mutation Gateway.

Issues fetch/create/delete calls against the bookmark backend and maps
every outcome onto an OperationResult. Performs no local state mutation:
visibility of created and deleted bookmarks is driven by the change feed.
"""

import asyncio
import logging
import time
from typing import Optional, Protocol, Sequence, Tuple, runtime_checkable

from ..models.bookmarks import Bookmark
from ..models.results import FailureKind, OperationResult
from .errors import SyncError, ValidationFailure

logger = logging.getLogger(__name__)


@runtime_checkable
class BookmarkBackend(Protocol):
    """Backend API surface consumed by the core; adapters raise NetworkFailure"""

    async def fetch_all(self, owner_id: str) -> Sequence[Bookmark]:
        ...

    async def create(self, title: str, url: str, owner_id: str) -> Bookmark:
        ...

    async def delete(self, bookmark_id: str) -> None:
        ...


def validate_bookmark_input(title: Optional[str], url: Optional[str]) -> Tuple[str, str]:
    """
    Trim and check create input.

    Returns:
        (title, url) trimmed

    Raises:
        ValidationFailure: If either value is empty after trimming
    """
    clean_title = (title or "").strip()
    clean_url = (url or "").strip()

    if not clean_title:
        raise ValidationFailure("Title must not be empty")
    if not clean_url:
        raise ValidationFailure("URL must not be empty")

    return clean_title, clean_url


class MutationGateway:
    """
    Backend call wrapper returning OperationResult values.

    Failures never escape as exceptions: validation failures are detected
    locally with no network call, backend failures become `network` results.
    """

    def __init__(self, backend: BookmarkBackend):
        self.backend = backend

        # Operation tracking
        self._operation_count = 0
        self._error_count = 0

    async def fetch_all(self, owner_id: str) -> OperationResult:
        """
        Fetch every bookmark of an owner.

        The source order is returned as-is; the store re-sorts.
        """
        start_time = time.perf_counter()
        try:
            bookmarks = await self.backend.fetch_all(owner_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._failure(e, "fetch_all", start_time)

        self._operation_count += 1
        return OperationResult.success_result(
            data=list(bookmarks),
            operation_type="fetch_all",
            processing_time_ms=self._elapsed_ms(start_time)
        )

    async def create(self, title: str, url: str, owner_id: str) -> OperationResult:
        """
        Create a bookmark.

        The returned entity is informational only; it must not be inserted
        locally, the feed's Created event is the single source of visibility.
        """
        try:
            clean_title, clean_url = validate_bookmark_input(title, url)
        except ValidationFailure as e:
            logger.info(f"Rejected create locally: {e}")
            return OperationResult.failure(FailureKind.VALIDATION, str(e), "create")

        start_time = time.perf_counter()
        try:
            bookmark = await self.backend.create(clean_title, clean_url, owner_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._failure(e, "create", start_time)

        self._operation_count += 1
        logger.info(f"Created bookmark {bookmark.id} at backend")
        return OperationResult.success_result(
            data=bookmark,
            operation_type="create",
            processing_time_ms=self._elapsed_ms(start_time)
        )

    async def delete(self, bookmark_id: str) -> OperationResult:
        """Delete a bookmark; local removal waits for the feed's Deleted event"""
        start_time = time.perf_counter()
        try:
            await self.backend.delete(bookmark_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._failure(e, "delete", start_time)

        self._operation_count += 1
        logger.info(f"Deleted bookmark {bookmark_id} at backend")
        return OperationResult.success_result(
            data=None,
            operation_type="delete",
            processing_time_ms=self._elapsed_ms(start_time)
        )

    def _failure(self, error: Exception, operation_type: str, start_time: float) -> OperationResult:
        self._error_count += 1

        kind = error.kind if isinstance(error, SyncError) and error.kind else FailureKind.NETWORK
        details = {"exception": type(error).__name__}
        status_code = getattr(error, "status_code", None)
        if status_code is not None:
            details["status_code"] = status_code

        logger.warning(f"Backend {operation_type} failed: {error}")
        return OperationResult.failure(
            kind,
            str(error) or type(error).__name__,
            operation_type,
            error_details=details,
            processing_time_ms=self._elapsed_ms(start_time)
        )

    @staticmethod
    def _elapsed_ms(start_time: float) -> float:
        return (time.perf_counter() - start_time) * 1000

    def get_stats(self) -> dict:
        return {
            "operations": self._operation_count,
            "errors": self._error_count,
        }

"""
Unit tests for the Bookmark entity and OperationResult models.
"""

from datetime import datetime, timezone, timedelta

import pytest
from pydantic import ValidationError

from core.models.bookmarks import Bookmark, sort_bookmarks
from core.models.results import FailureKind, OperationResult, OperationStatus


class TestBookmark:
    """Test Bookmark model"""

    def test_from_record_uses_wire_names(self):
        bookmark = Bookmark.from_record({
            "id": 42,
            "user_id": "user-1",
            "title": "  GitHub ",
            "url": "https://github.com",
            "created_at": "2024-03-01T10:00:00.123456Z",
        })

        assert bookmark.id == "42"
        assert bookmark.owner_id == "user-1"
        assert bookmark.title == "GitHub"
        assert bookmark.created_at == datetime(2024, 3, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)

    def test_to_record(self, bookmark_factory):
        record = bookmark_factory("a").to_record()

        assert record["user_id"] == "user-1"
        assert "owner_id" not in record
        assert Bookmark.from_record(record) == bookmark_factory("a")

    def test_timestamps_normalised_to_utc(self):
        offset = timezone(timedelta(hours=2))
        aware = Bookmark(id="a", owner_id="u", title="t", url="u",
                         created_at=datetime(2024, 1, 1, 14, 0, tzinfo=offset))
        naive = Bookmark(id="b", owner_id="u", title="t", url="u",
                         created_at=datetime(2024, 1, 1, 12, 0))

        assert aware.created_at == naive.created_at
        assert aware.created_at.tzinfo == timezone.utc

    def test_frozen(self, bookmark_factory):
        bookmark = bookmark_factory("a")

        with pytest.raises(ValidationError):
            bookmark.title = "changed"

    def test_requires_id(self):
        with pytest.raises(ValidationError):
            Bookmark(id="", owner_id="u", title="t", url="u", created_at=datetime.now(timezone.utc))

    def test_sort_newest_first_then_id(self, bookmark_factory):
        bookmarks = [
            bookmark_factory("b", minutes=0),
            bookmark_factory("c", minutes=1),
            bookmark_factory("a", minutes=0),
        ]

        assert [b.id for b in sort_bookmarks(bookmarks)] == ["c", "a", "b"]


class TestOperationResult:
    """Test OperationResult model"""

    def test_success_result(self):
        result = OperationResult.success_result(data=[1], operation_type="fetch_all", processing_time_ms=1.5)

        assert result.success
        assert result.status == OperationStatus.SUCCESS
        assert result.failure_kind is None
        assert result.data == [1]

    def test_failure_result(self):
        result = OperationResult.failure(
            FailureKind.NETWORK, "timeout", "create", error_details={"status_code": 504}
        )

        assert not result.success
        assert result.error_code == "network"
        assert result.failure_kind == FailureKind.NETWORK
        assert result.error_details == {"status_code": 504}

    def test_unknown_error_code(self):
        result = OperationResult.error_result("odd", "create", error_code="something_else")

        assert result.failure_kind is None

    def test_success_in_dump(self):
        dumped = OperationResult.success_result(data=None, operation_type="delete").model_dump()

        assert dumped["success"] is True

"""Shared fixtures for the smart-bookmarks test suite."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from core.models.bookmarks import Bookmark
from core.sync.feed import RetryConfig


BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def bookmark_factory():
    """Build bookmarks whose created_at is BASE_TIME plus `minutes`"""

    def make(bookmark_id: str, minutes: int = 0, owner: str = "user-1",
             title: str = None, url: str = None) -> Bookmark:
        return Bookmark(
            id=bookmark_id,
            owner_id=owner,
            title=title or f"Bookmark {bookmark_id}",
            url=url or f"https://example.com/{bookmark_id}",
            created_at=BASE_TIME + timedelta(minutes=minutes)
        )

    return make


@pytest.fixture
def wait_until():
    """Poll a condition from async tests"""

    async def wait(condition, timeout: float = 2.0) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(0.005)
        return True

    return wait


@pytest.fixture
def fast_retry():
    """Reconnect policy with millisecond delays"""
    return RetryConfig(max_attempts=3, initial_delay=0.01, max_delay=0.02, jitter=False)

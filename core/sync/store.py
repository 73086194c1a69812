"""
Collection Store.

In-memory, deduplicated and ordered representation of the bookmark
collection. Pure state plus apply functions; owned by one SyncEngine.
"""

import logging
import time
from typing import Callable, Dict, Iterable, Optional, Tuple

from ..models.bookmarks import Bookmark, sort_bookmarks

logger = logging.getLogger(__name__)


class CollectionStore:
    """
    Mapping from bookmark id to Bookmark plus the derived ordered view.

    The ordered view is rebuilt as a new tuple on every change and swapped in
    with a single assignment, so readers see either the state before or the
    state after a change, never an intermediate one.

    Ordering: created_at descending, ties broken by id ascending.

    With `tombstone_ttl` > 0, deleted ids are remembered for that many
    seconds and creates for them are rejected. With the default 0.0 no
    tombstones are kept and a delete that overtakes its create lets the
    create resurrect the bookmark.
    """

    def __init__(
        self,
        tombstone_ttl: float = 0.0,
        clock: Optional[Callable[[], float]] = None
    ):
        """
        Initialize an empty store.

        Args:
            tombstone_ttl: Seconds to remember deleted ids (0 disables)
            clock: Monotonic clock used for tombstone expiry
        """
        self.tombstone_ttl = tombstone_ttl
        self._clock = clock or time.monotonic

        self._entries: Dict[str, Bookmark] = {}
        self._ordered: Tuple[Bookmark, ...] = ()
        self._tombstones: Dict[str, float] = {}  # bookmark_id -> expiry

        self._version = 0

    @property
    def version(self) -> int:
        """Incremented on every visible change"""
        return self._version

    @property
    def tombstones_enabled(self) -> bool:
        return self.tombstone_ttl > 0

    def seed(self, bookmarks: Iterable[Bookmark]) -> None:
        """
        Replace all state with an authoritative snapshot.

        Source order is not trusted; the view is re-sorted. Duplicate ids in
        the snapshot keep the first occurrence.
        """
        entries: Dict[str, Bookmark] = {}
        for bookmark in bookmarks:
            if bookmark.id not in entries:
                entries[bookmark.id] = bookmark

        ordered = tuple(sort_bookmarks(entries.values()))

        if self._tombstones:
            self._prune_tombstones()
            for bookmark_id in entries:
                self._tombstones.pop(bookmark_id, None)

        # Single transition for readers
        self._entries, self._ordered = entries, ordered
        self._version += 1
        logger.debug(f"Seeded store with {len(ordered)} bookmarks")

    def apply_create(self, bookmark: Bookmark) -> bool:
        """
        Insert a bookmark unless its id is already present.

        First writer wins: a duplicate delivery never overwrites fields.

        Returns:
            True if the store changed
        """
        if bookmark.id in self._entries:
            logger.debug(f"Ignoring duplicate create for {bookmark.id}")
            return False

        if self._is_tombstoned(bookmark.id):
            logger.debug(f"Ignoring create for tombstoned id {bookmark.id}")
            return False

        entries = dict(self._entries)
        entries[bookmark.id] = bookmark
        ordered = tuple(sort_bookmarks(entries.values()))

        self._entries, self._ordered = entries, ordered
        self._version += 1
        return True

    def apply_delete(self, bookmark_id: str) -> bool:
        """
        Remove a bookmark if present.

        Returns:
            True if the store changed
        """
        if self.tombstones_enabled:
            self._tombstones[bookmark_id] = self._clock() + self.tombstone_ttl

        if bookmark_id not in self._entries:
            logger.debug(f"Ignoring delete for absent id {bookmark_id}")
            return False

        entries = dict(self._entries)
        del entries[bookmark_id]
        ordered = tuple(b for b in self._ordered if b.id != bookmark_id)

        self._entries, self._ordered = entries, ordered
        self._version += 1
        return True

    def snapshot(self) -> Tuple[Bookmark, ...]:
        """Current ordered view; immutable, safe to hold across changes"""
        return self._ordered

    def get(self, bookmark_id: str) -> Optional[Bookmark]:
        return self._entries.get(bookmark_id)

    def clear(self) -> None:
        """Drop all entries and tombstones"""
        self._entries, self._ordered = {}, ()
        self._tombstones.clear()
        self._version += 1

    def _is_tombstoned(self, bookmark_id: str) -> bool:
        expiry = self._tombstones.get(bookmark_id)
        if expiry is None:
            return False
        if self._clock() >= expiry:
            del self._tombstones[bookmark_id]
            return False
        return True

    def _prune_tombstones(self) -> None:
        now = self._clock()
        expired = [key for key, expiry in self._tombstones.items() if now >= expiry]
        for key in expired:
            del self._tombstones[key]

    @property
    def tombstone_count(self) -> int:
        return len(self._tombstones)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, bookmark_id: object) -> bool:
        return bookmark_id in self._entries

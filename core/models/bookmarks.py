"""
Bookmark entity model.

Defines the single entity type replicated by the synchronization core and
the ordering rule every local view of the collection follows.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List
from pydantic import BaseModel, ConfigDict, Field, field_validator


# Wire column name -> model field name
RECORD_FIELD_ALIASES = {
    "user_id": "owner_id",
}


class Bookmark(BaseModel):
    """A named link owned by one user. Identity is `id`, assigned by the backend."""
    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
    )

    id: str = Field(..., min_length=1)
    owner_id: str = Field(..., min_length=1)
    title: str
    url: str
    created_at: datetime

    @field_validator('id', 'owner_id', mode='before')
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        """Backends may hand out integer ids; identity is compared as text"""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator('created_at', mode='before')
    @classmethod
    def parse_created_at(cls, v: Any) -> Any:
        """Accept ISO-8601 strings with a trailing 'Z'"""
        if isinstance(v, str) and v.endswith('Z'):
            return v[:-1] + '+00:00'
        return v

    @field_validator('created_at')
    @classmethod
    def normalize_created_at(cls, v: datetime) -> datetime:
        """Normalise to aware UTC so naive and aware values never meet in a sort"""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'Bookmark':
        """Create from a backend row using either wire or model field names"""
        data = {}
        for key, value in record.items():
            data[RECORD_FIELD_ALIASES.get(key, key)] = value
        return cls(**data)

    def to_record(self) -> Dict[str, Any]:
        """Convert to a backend row with wire column names"""
        return {
            "id": self.id,
            "user_id": self.owner_id,
            "title": self.title,
            "url": self.url,
            "created_at": self.created_at.isoformat(),
        }

    def __str__(self) -> str:
        return f"{self.title} <{self.url}> [{self.id}]"


def sort_bookmarks(bookmarks: Iterable[Bookmark]) -> List[Bookmark]:
    """
    Order bookmarks newest first, ties broken by id ascending.

    Two stable sorts: by id, then by created_at descending, which keeps the
    id order inside equal timestamps.
    """
    by_id = sorted(bookmarks, key=lambda b: b.id)
    return sorted(by_id, key=lambda b: b.created_at, reverse=True)

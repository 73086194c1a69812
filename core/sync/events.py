"""
Change Event Models.

Defines the change notifications delivered by the push channel and the
decoding of raw channel payloads into them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, ValidationError, model_validator
import uuid

from ..models.bookmarks import Bookmark
from .errors import PayloadError


class ChangeType(Enum):
    """Kinds of change relevant to the bookmark collection"""
    CREATED = "created"
    DELETED = "deleted"


# Channel payload eventType -> ChangeType; other event types are not relevant
PAYLOAD_EVENT_TYPES = {
    "INSERT": ChangeType.CREATED,
    "DELETE": ChangeType.DELETED,
}


class ChangeEvent(BaseModel):
    """
    A single change notification: Created(bookmark) or Deleted(id).

    Events may arrive duplicated, out of order, or not at all; consumers
    must apply them idempotently.
    """

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    change_type: ChangeType
    bookmark_id: str = Field(..., min_length=1)
    bookmark: Optional[Bookmark] = None

    # Source table, when the transport reports one
    table: Optional[str] = None

    received_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode='after')
    def check_variant(self) -> 'ChangeEvent':
        """Created events carry the bookmark; its id must match"""
        if self.change_type == ChangeType.CREATED:
            if self.bookmark is None:
                raise ValueError('Created event requires a bookmark')
            if self.bookmark.id != self.bookmark_id:
                raise ValueError('Created event bookmark id does not match bookmark_id')
        return self

    @classmethod
    def created(cls, bookmark: Bookmark, **kwargs) -> 'ChangeEvent':
        """Create a Created event"""
        return cls(
            change_type=ChangeType.CREATED,
            bookmark_id=bookmark.id,
            bookmark=bookmark,
            **kwargs
        )

    @classmethod
    def deleted(cls, bookmark_id: str, **kwargs) -> 'ChangeEvent':
        """Create a Deleted event"""
        return cls(
            change_type=ChangeType.DELETED,
            bookmark_id=str(bookmark_id),
            **kwargs
        )

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> Optional['ChangeEvent']:
        """
        Decode a postgres-changes channel payload.

        Args:
            payload: {"eventType": ..., "table": ..., "new": {...}, "old": {...}}

        Returns:
            The decoded event, or None for event types this entity ignores

        Raises:
            PayloadError: If the payload is malformed
        """
        if not isinstance(payload, dict):
            raise PayloadError(f"Payload must be a mapping, got {type(payload).__name__}")

        event_type = str(payload.get("eventType", payload.get("type", ""))).upper()
        change_type = PAYLOAD_EVENT_TYPES.get(event_type)
        if change_type is None:
            return None

        table = payload.get("table")

        try:
            if change_type == ChangeType.CREATED:
                record = payload.get("new") or payload.get("record")
                if not isinstance(record, dict) or not record:
                    raise PayloadError("INSERT payload has no 'new' record")
                return cls.created(Bookmark.from_record(record), table=table)

            old = payload.get("old") or payload.get("old_record") or {}
            if not isinstance(old, dict):
                raise PayloadError("DELETE payload 'old' must be a mapping")
            bookmark_id = old.get("id")
            if bookmark_id is None or bookmark_id == "":
                raise PayloadError("DELETE payload has no 'old.id'")
            return cls.deleted(str(bookmark_id), table=table)

        except ValidationError as e:
            raise PayloadError(f"Invalid {event_type} payload: {e}") from e

    @property
    def owner_id(self) -> Optional[str]:
        """Owner of the affected bookmark, when the event carries it"""
        return self.bookmark.owner_id if self.bookmark else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging"""
        return {
            "event_id": self.event_id,
            "change_type": self.change_type.value,
            "bookmark_id": self.bookmark_id,
            "table": self.table,
            "received_at": self.received_at.isoformat(),
        }

    def __str__(self) -> str:
        """String representation for logging"""
        return f"{self.change_type.value.upper()}: {self.bookmark_id}"

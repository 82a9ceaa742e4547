"""
Suppression Models
==================
Denylist entries and append-only delivery feedback records.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class BounceType(str, Enum):
    PERMANENT = "Permanent"
    TRANSIENT = "Transient"


class SuppressionSource(str, Enum):
    """Where a block decision came from."""
    DENYLIST = "denylist"
    DISPOSABLE_EMAIL = "disposable_email"


@dataclass(frozen=True)
class DenylistEntry:
    """A suppressed identifier. No ``expires_at`` means permanent."""
    identifier_hash: str
    reason: str
    created_at: datetime
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at


@dataclass(frozen=True)
class DenylistCheck:
    blocked: bool
    reason: Optional[str] = None
    source: Optional[SuppressionSource] = None


def _event_key(timestamp: datetime, message_id: str) -> str:
    return f"{int(timestamp.timestamp() * 1000)}:{message_id}"


@dataclass(frozen=True)
class BounceRecord:
    """A delivery bounce. Never mutated after creation."""
    identifier_hash: str
    bounce_type: BounceType
    message_id: str
    timestamp: datetime
    bounce_sub_type: Optional[str] = None

    @property
    def event_key(self) -> str:
        """Deduplication key within one identifier's records."""
        return _event_key(self.timestamp, self.message_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier_hash": self.identifier_hash,
            "bounce_type": self.bounce_type.value,
            "message_id": self.message_id,
            "timestamp": self.timestamp.isoformat(),
            "bounce_sub_type": self.bounce_sub_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BounceRecord":
        return cls(
            identifier_hash=data["identifier_hash"],
            bounce_type=BounceType(data["bounce_type"]),
            message_id=data["message_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            bounce_sub_type=data.get("bounce_sub_type"),
        )


@dataclass(frozen=True)
class ComplaintRecord:
    """A spam complaint. Never mutated after creation."""
    identifier_hash: str
    message_id: str
    timestamp: datetime
    complaint_type: Optional[str] = None

    @property
    def event_key(self) -> str:
        return _event_key(self.timestamp, self.message_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier_hash": self.identifier_hash,
            "message_id": self.message_id,
            "timestamp": self.timestamp.isoformat(),
            "complaint_type": self.complaint_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComplaintRecord":
        return cls(
            identifier_hash=data["identifier_hash"],
            message_id=data["message_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            complaint_type=data.get("complaint_type"),
        )

"""
Device Models
=============
A named, trust-scoped binding between a user and a device fingerprint.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from .fingerprint import DeviceFingerprint


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Device:
    """
    A device bound to a user.

    Effectively trusted means ``trusted`` and not revoked. One row exists per
    (user_id, fingerprint id).
    """
    id: str
    user_id: str
    fingerprint: DeviceFingerprint
    trusted: bool
    last_seen_at: datetime
    created_at: datetime
    push_token: Optional[str] = None
    revoked_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        user_id: str,
        fingerprint: DeviceFingerprint,
        push_token: Optional[str] = None,
        trusted: bool = True,
        now: Optional[datetime] = None,
    ) -> "Device":
        now = now or utcnow()
        return cls(
            id=fingerprint.id,
            user_id=user_id,
            fingerprint=fingerprint,
            trusted=trusted,
            last_seen_at=now,
            created_at=now,
            push_token=push_token,
        )

    def mark_as_seen(self, now: Optional[datetime] = None) -> None:
        self.last_seen_at = now or utcnow()

    def revoke(self, now: Optional[datetime] = None) -> None:
        self.trusted = False
        self.revoked_at = now or utcnow()

    def trust(self) -> None:
        self.trusted = True
        self.revoked_at = None

    def update_push_token(self, token: str) -> None:
        self.push_token = token

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    @property
    def is_trusted(self) -> bool:
        return self.trusted and not self.is_revoked

    def is_stale(self, max_days_inactive: int = 90, now: Optional[datetime] = None) -> bool:
        """True if the device has not been seen for more than ``max_days_inactive`` days."""
        return (now or utcnow()) - self.last_seen_at > timedelta(days=max_days_inactive)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "fingerprint": self.fingerprint.to_dict(),
            "trusted": self.trusted,
            "push_token": self.push_token,
            "last_seen_at": self.last_seen_at.isoformat(),
            "created_at": self.created_at.isoformat(),
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Device":
        revoked_at = data.get("revoked_at")
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            fingerprint=DeviceFingerprint.from_dict(data["fingerprint"]),
            trusted=bool(data["trusted"]),
            last_seen_at=datetime.fromisoformat(data["last_seen_at"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            push_token=data.get("push_token"),
            revoked_at=datetime.fromisoformat(revoked_at) if revoked_at else None,
        )

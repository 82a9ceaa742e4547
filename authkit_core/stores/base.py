"""
Store Contracts
===============
Narrow storage interfaces the authentication core depends on.

All state that must be consistent across workers lives behind these
protocols. ``ChallengeStore.verify_and_consume``, ``ChallengeStore.resend``
and ``CounterStore.increment`` must each be a single atomic operation
against the backing store.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol

from ..device.models import Device
from ..otp.models import OTPChallenge
from ..suppression.models import (
    BounceRecord,
    BounceType,
    ComplaintRecord,
    DenylistCheck,
    DenylistEntry,
)


class DuplicateChallengeError(ValueError):
    """Raised when creating a challenge whose id already exists."""


@dataclass(frozen=True)
class CounterValue:
    """State of a fixed-window counter after an increment or read."""
    key: str
    count: int
    window_start: datetime
    expires_at: datetime


class ChallengeStore(Protocol):
    async def create(self, challenge: OTPChallenge) -> None:
        ...

    async def get_by_id(self, challenge_id: str) -> Optional[OTPChallenge]:
        ...

    async def get_active_by_identifier(
        self, identifier_hash: str, now: Optional[datetime] = None
    ) -> Optional[OTPChallenge]:
        """Newest pending, unexpired challenge for the identifier."""
        ...

    async def verify_and_consume(
        self, challenge_id: str, code: str, now: Optional[datetime] = None
    ) -> bool:
        ...

    async def resend(
        self, challenge_id: str, new_code: str, now: Optional[datetime] = None
    ) -> bool:
        ...

    async def increment_send_count(self, challenge_id: str) -> int:
        ...

    async def mark_expired(self, challenge_id: str) -> None:
        ...

    async def delete_by_id(self, challenge_id: str) -> None:
        ...


class CounterStore(Protocol):
    async def increment(
        self, key: str, window_seconds: int, now: Optional[datetime] = None
    ) -> CounterValue:
        """Increment, starting a new window if absent or expired."""
        ...

    async def get(self, key: str, now: Optional[datetime] = None) -> Optional[CounterValue]:
        ...

    async def reset(self, key: str) -> None:
        ...


class DeviceStore(Protocol):
    async def upsert(self, device: Device) -> None:
        ...

    async def get_by_user_and_device_id(self, user_id: str, device_id: str) -> Optional[Device]:
        ...

    async def get_by_fingerprint(self, user_id: str, fingerprint_hash: str) -> Optional[Device]:
        ...

    async def list_by_user(self, user_id: str) -> List[Device]:
        ...

    async def revoke(self, user_id: str, device_id: str, now: Optional[datetime] = None) -> bool:
        ...

    async def trust(self, user_id: str, device_id: str) -> bool:
        ...

    async def delete(self, user_id: str, device_id: str) -> None:
        ...


class DenylistStore(Protocol):
    async def add(
        self, identifier_hash: str, reason: str, expires_at: Optional[datetime] = None
    ) -> None:
        ...

    async def remove(self, identifier_hash: str) -> None:
        ...

    async def is_blocked(self, identifier_hash: str, now: Optional[datetime] = None) -> DenylistCheck:
        ...

    async def list(self, limit: int = 100) -> List[DenylistEntry]:
        ...


class BounceStore(Protocol):
    async def record_bounce(self, record: BounceRecord) -> bool:
        """Store a bounce. Returns False if the same event was already recorded."""
        ...

    async def record_complaint(self, record: ComplaintRecord) -> bool:
        ...

    async def get_bounce_count(
        self, identifier_hash: str, bounce_type: Optional[BounceType] = None
    ) -> int:
        ...

    async def get_complaint_count(self, identifier_hash: str) -> int:
        ...

    async def get_last_bounce(self, identifier_hash: str) -> Optional[BounceRecord]:
        ...

    async def get_last_complaint(self, identifier_hash: str) -> Optional[ComplaintRecord]:
        ...


class RedeemedTokenStore(Protocol):
    async def mark_redeemed(
        self, token_id: str, expires_at: datetime, now: Optional[datetime] = None
    ) -> bool:
        """Record a token id until expires_at. True only for the first caller."""
        ...

    async def is_redeemed(self, token_id: str) -> bool:
        ...

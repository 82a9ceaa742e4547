"""
In-Memory Stores
================
Single-process store implementations for development and testing.

Each operation completes without awaiting inside its critical section, so it
is atomic with respect to other coroutines on the same event loop. State is
not shared between processes: use the Redis stores in production.
"""

import copy
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from ..device.models import Device
from ..otp.models import ChallengeStatus, OTPChallenge
from ..suppression.models import (
    BounceRecord,
    BounceType,
    ComplaintRecord,
    DenylistCheck,
    DenylistEntry,
    SuppressionSource,
)
from .base import CounterValue, DuplicateChallengeError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryChallengeStore:
    def __init__(self):
        self._challenges: Dict[str, OTPChallenge] = {}

    async def create(self, challenge: OTPChallenge) -> None:
        if challenge.id in self._challenges:
            raise DuplicateChallengeError(f"Challenge {challenge.id} already exists")
        self._challenges[challenge.id] = copy.copy(challenge)

    async def get_by_id(self, challenge_id: str) -> Optional[OTPChallenge]:
        challenge = self._challenges.get(challenge_id)
        return copy.copy(challenge) if challenge else None

    async def get_active_by_identifier(
        self, identifier_hash: str, now: Optional[datetime] = None
    ) -> Optional[OTPChallenge]:
        now = now or utcnow()
        active = [
            c for c in self._challenges.values()
            if c.identifier_hash == identifier_hash
            and c.status == ChallengeStatus.PENDING
            and not c.is_expired(now)
        ]
        if not active:
            return None
        newest = max(active, key=lambda c: c.created_at)
        return copy.copy(newest)

    async def verify_and_consume(
        self, challenge_id: str, code: str, now: Optional[datetime] = None
    ) -> bool:
        challenge = self._challenges.get(challenge_id)
        if challenge is None:
            return False
        return challenge.consume(code, now)

    async def resend(
        self, challenge_id: str, new_code: str, now: Optional[datetime] = None
    ) -> bool:
        challenge = self._challenges.get(challenge_id)
        if challenge is None:
            return False
        return challenge.resend(new_code, now)

    async def increment_send_count(self, challenge_id: str) -> int:
        challenge = self._challenges.get(challenge_id)
        if challenge is None:
            return 0
        challenge.resend_count += 1
        return challenge.resend_count

    async def mark_expired(self, challenge_id: str) -> None:
        challenge = self._challenges.get(challenge_id)
        if challenge is not None:
            challenge.mark_expired()

    async def delete_by_id(self, challenge_id: str) -> None:
        self._challenges.pop(challenge_id, None)


class InMemoryCounterStore:
    def __init__(self):
        self._counters: Dict[str, Tuple[int, datetime, datetime]] = {}

    async def increment(
        self, key: str, window_seconds: int, now: Optional[datetime] = None
    ) -> CounterValue:
        now = now or utcnow()
        current = self._counters.get(key)

        if current is None or now >= current[2]:
            count, window_start, expires_at = 1, now, now + timedelta(seconds=window_seconds)
        else:
            count, window_start, expires_at = current[0] + 1, current[1], current[2]

        self._counters[key] = (count, window_start, expires_at)
        return CounterValue(key=key, count=count, window_start=window_start, expires_at=expires_at)

    async def get(self, key: str, now: Optional[datetime] = None) -> Optional[CounterValue]:
        current = self._counters.get(key)
        if current is None:
            return None
        if (now or utcnow()) >= current[2]:
            del self._counters[key]
            return None
        count, window_start, expires_at = current
        return CounterValue(key=key, count=count, window_start=window_start, expires_at=expires_at)

    async def reset(self, key: str) -> None:
        self._counters.pop(key, None)


class InMemoryDeviceStore:
    def __init__(self):
        # key: (user_id, device_id)
        self._devices: Dict[Tuple[str, str], Device] = {}

    async def upsert(self, device: Device) -> None:
        self._devices[(device.user_id, device.id)] = copy.copy(device)

    async def get_by_user_and_device_id(self, user_id: str, device_id: str) -> Optional[Device]:
        device = self._devices.get((user_id, device_id))
        return copy.copy(device) if device else None

    async def get_by_fingerprint(self, user_id: str, fingerprint_hash: str) -> Optional[Device]:
        for (owner, _), device in self._devices.items():
            if owner == user_id and device.fingerprint.hash == fingerprint_hash:
                return copy.copy(device)
        return None

    async def list_by_user(self, user_id: str) -> List[Device]:
        return [copy.copy(d) for (owner, _), d in self._devices.items() if owner == user_id]

    async def revoke(self, user_id: str, device_id: str, now: Optional[datetime] = None) -> bool:
        device = self._devices.get((user_id, device_id))
        if device is None:
            return False
        device.revoke(now)
        return True

    async def trust(self, user_id: str, device_id: str) -> bool:
        device = self._devices.get((user_id, device_id))
        if device is None:
            return False
        device.trust()
        return True

    async def delete(self, user_id: str, device_id: str) -> None:
        self._devices.pop((user_id, device_id), None)


class InMemoryDenylistStore:
    def __init__(self):
        self._entries: Dict[str, DenylistEntry] = {}

    async def add(
        self, identifier_hash: str, reason: str, expires_at: Optional[datetime] = None
    ) -> None:
        self._entries[identifier_hash] = DenylistEntry(
            identifier_hash=identifier_hash,
            reason=reason,
            created_at=utcnow(),
            expires_at=expires_at,
        )

    async def remove(self, identifier_hash: str) -> None:
        self._entries.pop(identifier_hash, None)

    async def is_blocked(self, identifier_hash: str, now: Optional[datetime] = None) -> DenylistCheck:
        entry = self._entries.get(identifier_hash)
        if entry is None:
            return DenylistCheck(blocked=False)
        if entry.is_expired(now):
            # Lazy eviction
            del self._entries[identifier_hash]
            return DenylistCheck(blocked=False)
        return DenylistCheck(blocked=True, reason=entry.reason, source=SuppressionSource.DENYLIST)

    async def list(self, limit: int = 100) -> List[DenylistEntry]:
        entries = sorted(
            (e for e in self._entries.values() if not e.is_expired()),
            key=lambda e: e.created_at,
            reverse=True,
        )
        return entries[:limit]


class InMemoryBounceStore:
    def __init__(self):
        self._bounces: Dict[str, Dict[str, BounceRecord]] = {}
        self._complaints: Dict[str, Dict[str, ComplaintRecord]] = {}

    async def record_bounce(self, record: BounceRecord) -> bool:
        records = self._bounces.setdefault(record.identifier_hash, {})
        if record.event_key in records:
            return False
        records[record.event_key] = record
        return True

    async def record_complaint(self, record: ComplaintRecord) -> bool:
        records = self._complaints.setdefault(record.identifier_hash, {})
        if record.event_key in records:
            return False
        records[record.event_key] = record
        return True

    async def get_bounce_count(
        self, identifier_hash: str, bounce_type: Optional[BounceType] = None
    ) -> int:
        records = self._bounces.get(identifier_hash, {}).values()
        if bounce_type is None:
            return len(records)
        return sum(1 for r in records if r.bounce_type == bounce_type)

    async def get_complaint_count(self, identifier_hash: str) -> int:
        return len(self._complaints.get(identifier_hash, {}))

    async def get_last_bounce(self, identifier_hash: str) -> Optional[BounceRecord]:
        records = self._bounces.get(identifier_hash)
        if not records:
            return None
        return max(records.values(), key=lambda r: r.timestamp)

    async def get_last_complaint(self, identifier_hash: str) -> Optional[ComplaintRecord]:
        records = self._complaints.get(identifier_hash)
        if not records:
            return None
        return max(records.values(), key=lambda r: r.timestamp)


class InMemoryRedeemedTokenStore:
    """Redeemed magic link token ids with expiry."""

    def __init__(self):
        self._tokens: Dict[str, datetime] = {}

    async def mark_redeemed(
        self, token_id: str, expires_at: datetime, now: Optional[datetime] = None
    ) -> bool:
        self._cleanup(now)
        if token_id in self._tokens:
            return False
        self._tokens[token_id] = expires_at
        return True

    async def is_redeemed(self, token_id: str) -> bool:
        self._cleanup(None)
        return token_id in self._tokens

    def _cleanup(self, now: Optional[datetime]) -> None:
        """Drop ids whose tokens can no longer verify anyway."""
        now = now or utcnow()
        expired = [t for t, exp in self._tokens.items() if exp <= now]
        for token_id in expired:
            del self._tokens[token_id]

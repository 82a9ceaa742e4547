"""
OTP Models
==========
Challenge lifecycle state machine and its configuration.

States: ``pending -> verified | failed | expired``. Terminal states never
change. Mutating methods here apply a transition in place and are meant to
run inside a single atomic store operation; the predicates never mutate.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from ..identifier import Identifier
from .hashing import generate_salt, hash_code, verify_code_hash


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChallengeChannel(str, Enum):
    """Delivery channels for a challenge."""
    SMS = "sms"
    EMAIL = "email"
    WHATSAPP = "whatsapp"


class ChallengeIntent(str, Enum):
    """Why the challenge was issued."""
    LOGIN = "login"
    BIND = "bind"
    VERIFY_CONTACT = "verifyContact"


class ChallengeStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"
    EXPIRED = "expired"


TERMINAL_STATUSES = frozenset(
    {ChallengeStatus.VERIFIED, ChallengeStatus.FAILED, ChallengeStatus.EXPIRED}
)


@dataclass
class OTPConfig:
    """Configuration for OTP challenges."""
    length: int = 6
    validity_seconds: int = 300  # 5 minutes
    max_attempts: int = 3
    max_resends: int = 5


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class OTPChallenge:
    """A one-time code challenge. Only the salted hash of the code is kept."""
    id: str
    identifier_hash: str
    channel: ChallengeChannel
    intent: ChallengeIntent
    code_hash: str
    salt: str
    created_at: datetime
    expires_at: datetime
    attempts: int = 0
    max_attempts: int = 3
    resend_count: int = 0
    max_resends: int = 5
    status: ChallengeStatus = ChallengeStatus.PENDING
    ip_hash: Optional[str] = None
    device_id: Optional[str] = None
    last_attempt_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        identifier: Identifier,
        channel: ChallengeChannel,
        intent: ChallengeIntent,
        code: str,
        validity: timedelta = timedelta(minutes=5),
        max_attempts: int = 3,
        max_resends: int = 5,
        ip_hash: Optional[str] = None,
        device_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "OTPChallenge":
        """Create a pending challenge. ``code`` is hashed and discarded."""
        now = now or utcnow()
        salt = generate_salt()
        return cls(
            id=uuid.uuid4().hex,
            identifier_hash=identifier.hash,
            channel=ChallengeChannel(channel),
            intent=ChallengeIntent(intent),
            code_hash=hash_code(code, salt),
            salt=salt,
            created_at=now,
            expires_at=now + validity,
            max_attempts=max_attempts,
            max_resends=max_resends,
            ip_hash=ip_hash,
            device_id=device_id,
        )

    # -- predicates -----------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def can_attempt(self, now: Optional[datetime] = None) -> bool:
        return (
            self.status == ChallengeStatus.PENDING
            and self.attempts < self.max_attempts
            and not self.is_expired(now)
        )

    def can_resend(self, now: Optional[datetime] = None) -> bool:
        return (
            self.status == ChallengeStatus.PENDING
            and self.resend_count < self.max_resends
            and not self.is_expired(now)
        )

    def matches_code(self, code: str) -> bool:
        return verify_code_hash(code, self.salt, self.code_hash)

    # -- transitions ----------------------------------------------------

    def consume(self, code: str, now: Optional[datetime] = None) -> bool:
        """
        Verify ``code`` and apply the resulting transition.

        Success requires pending, unexpired and a matching hash. Otherwise a
        pending, unexpired challenge records a failed attempt and fails once
        attempts reach ``max_attempts``; a pending but expired one is marked
        expired without counting an attempt.
        """
        now = now or utcnow()

        if self.status != ChallengeStatus.PENDING:
            return False

        if self.is_expired(now):
            self.status = ChallengeStatus.EXPIRED
            return False

        if self.matches_code(code):
            self.status = ChallengeStatus.VERIFIED
            self.verified_at = now
            self.last_attempt_at = now
            return True

        self.attempts += 1
        self.last_attempt_at = now
        if self.attempts >= self.max_attempts:
            self.status = ChallengeStatus.FAILED
        return False

    def resend(self, new_code: str, now: Optional[datetime] = None) -> bool:
        """Replace the code and reset attempts. Rejected once resends are used up."""
        if not self.can_resend(now):
            return False

        self.resend_count += 1
        self.code_hash = hash_code(new_code, self.salt)
        self.attempts = 0
        return True

    def mark_expired(self) -> None:
        if self.status == ChallengeStatus.PENDING:
            self.status = ChallengeStatus.EXPIRED

    # -- persistence ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "identifier_hash": self.identifier_hash,
            "channel": self.channel.value,
            "intent": self.intent.value,
            "code_hash": self.code_hash,
            "salt": self.salt,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "resend_count": self.resend_count,
            "max_resends": self.max_resends,
            "status": self.status.value,
            "ip_hash": self.ip_hash,
            "device_id": self.device_id,
            "last_attempt_at": _iso(self.last_attempt_at),
            "verified_at": _iso(self.verified_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OTPChallenge":
        return cls(
            id=data["id"],
            identifier_hash=data["identifier_hash"],
            channel=ChallengeChannel(data["channel"]),
            intent=ChallengeIntent(data["intent"]),
            code_hash=data["code_hash"],
            salt=data["salt"],
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            attempts=int(data.get("attempts", 0)),
            max_attempts=int(data.get("max_attempts", 3)),
            resend_count=int(data.get("resend_count", 0)),
            max_resends=int(data.get("max_resends", 5)),
            status=ChallengeStatus(data.get("status", "pending")),
            ip_hash=data.get("ip_hash") or None,
            device_id=data.get("device_id") or None,
            last_attempt_at=_parse(data.get("last_attempt_at")),
            verified_at=_parse(data.get("verified_at")),
        )

    def to_public_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Client-safe view (no hash, no salt)."""
        return {
            "id": self.id,
            "channel": self.channel.value,
            "intent": self.intent.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "resend_count": self.resend_count,
            "max_resends": self.max_resends,
            "can_attempt": self.can_attempt(now),
            "can_resend": self.can_resend(now),
            "expires_at": self.expires_at.isoformat(),
            "created_at": self.created_at.isoformat(),
        }

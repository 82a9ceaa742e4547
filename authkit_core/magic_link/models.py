"""
Magic Link Models
=================
Token payload and configuration for signed magic links.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict

from ..otp.models import ChallengeIntent


@dataclass
class MagicLinkConfig:
    """Configuration for magic link tokens."""
    validity_seconds: int = 900  # 15 minutes
    issuer: str = "authkit"
    audience: str = "authkit-client"
    verify_path: str = "/auth/verify"
    algorithm: str = "HS256"


@dataclass(frozen=True)
class MagicLinkPayload:
    """
    Claims carried by a magic link token.

    ``token_id`` (the JWT ``jti``) is the single-use key checked against the
    redeemed-token store.
    """
    identifier: str
    identifier_type: str
    intent: ChallengeIntent
    challenge_id: str
    issued_at: datetime
    expires_at: datetime
    token_id: str

    def to_claims(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "identifier_type": self.identifier_type,
            "intent": self.intent.value,
            "challenge_id": self.challenge_id,
            "iat": int(self.issued_at.timestamp()),
            "exp": int(self.expires_at.timestamp()),
            "jti": self.token_id,
        }

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "MagicLinkPayload":
        return cls(
            identifier=claims["identifier"],
            identifier_type=claims["identifier_type"],
            intent=ChallengeIntent(claims["intent"]),
            challenge_id=claims["challenge_id"],
            issued_at=datetime.fromtimestamp(int(claims["iat"]), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc),
            token_id=claims["jti"],
        )

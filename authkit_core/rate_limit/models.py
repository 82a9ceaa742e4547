"""
Rate Limit Models
=================
Scopes, rules and decision results for fixed-window rate limiting.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional


class RateLimitScope(str, Enum):
    """Independent dimensions a request is counted in."""
    IDENTIFIER = "identifier"
    IP = "ip"
    ASN = "asn"
    GLOBAL = "global"


class RateLimitResult(str, Enum):
    """Rate limit decision result."""
    ALLOWED = "allowed"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class RateLimitRule:
    """At most ``max_attempts`` requests per ``window_seconds`` in ``scope``."""
    scope: RateLimitScope
    max_attempts: int
    window_seconds: int


def default_rules() -> List[RateLimitRule]:
    return [
        RateLimitRule(RateLimitScope.IDENTIFIER, max_attempts=5, window_seconds=3600),
        RateLimitRule(RateLimitScope.IP, max_attempts=10, window_seconds=3600),
        RateLimitRule(RateLimitScope.GLOBAL, max_attempts=1000, window_seconds=3600),
    ]


@dataclass
class RateLimitInfo:
    """Rate limit check result with quota information."""
    scope: RateLimitScope
    allowed: bool
    count: int
    remaining: int
    limit: int
    reset_at: datetime  # fixed when the window was opened
    retry_after: Optional[int] = None  # Seconds until retry allowed

    @property
    def result(self) -> RateLimitResult:
        return RateLimitResult.ALLOWED if self.allowed else RateLimitResult.BLOCKED

    def to_dict(self) -> dict:
        return {
            "scope": self.scope.value,
            "allowed": self.allowed,
            "remaining": self.remaining,
            "limit": self.limit,
            "reset_at": self.reset_at.isoformat(),
            "retry_after": self.retry_after,
        }

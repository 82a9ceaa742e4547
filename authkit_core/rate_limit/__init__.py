"""
Rate Limiting
=============
Fixed-window rate limiting across identifier, IP, ASN and global scopes.
"""

from .models import (
    RateLimitInfo,
    RateLimitResult,
    RateLimitRule,
    RateLimitScope,
    default_rules,
)
from .limiter import RateLimiter, make_counter_key

__all__ = [
    # Models
    "RateLimitInfo",
    "RateLimitResult",
    "RateLimitRule",
    "RateLimitScope",
    "default_rules",
    # Limiter
    "RateLimiter",
    "make_counter_key",
]

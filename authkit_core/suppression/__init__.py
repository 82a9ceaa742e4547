"""
Suppression
===========
Denylist checks and bounce/complaint escalation.
"""

from .models import (
    BounceRecord,
    BounceType,
    ComplaintRecord,
    DenylistCheck,
    DenylistEntry,
    SuppressionSource,
)
from .denylist import DEFAULT_DISPOSABLE_DOMAINS, DenylistService
from .bounces import (
    PERMANENT_BOUNCE_THRESHOLD,
    BounceHandler,
    BounceStats,
    ProcessBounceResult,
)

__all__ = [
    # Models
    "BounceRecord",
    "BounceType",
    "ComplaintRecord",
    "DenylistCheck",
    "DenylistEntry",
    "SuppressionSource",
    # Denylist
    "DEFAULT_DISPOSABLE_DOMAINS",
    "DenylistService",
    # Bounces
    "PERMANENT_BOUNCE_THRESHOLD",
    "BounceHandler",
    "BounceStats",
    "ProcessBounceResult",
]

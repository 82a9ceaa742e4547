"""
OTP Challenges
==============
One-time code challenge lifecycle, hashing and engine.
"""

from .hashing import generate_code, generate_salt, hash_code, verify_code_hash
from .models import (
    TERMINAL_STATUSES,
    ChallengeChannel,
    ChallengeIntent,
    ChallengeStatus,
    OTPChallenge,
    OTPConfig,
)
from .engine import ChallengeEngine

__all__ = [
    # Hashing
    "generate_code",
    "generate_salt",
    "hash_code",
    "verify_code_hash",
    # Models
    "ChallengeChannel",
    "ChallengeIntent",
    "ChallengeStatus",
    "OTPChallenge",
    "OTPConfig",
    "TERMINAL_STATUSES",
    # Engine
    "ChallengeEngine",
]

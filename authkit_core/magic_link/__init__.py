"""
Magic Links
===========
Signed single-use magic link tokens and their redemption.
"""

from .models import MagicLinkConfig, MagicLinkPayload
from .token import MagicLinkTokenService, generate_token_id
from .redemption import redeem_token

__all__ = [
    # Models
    "MagicLinkConfig",
    "MagicLinkPayload",
    # Token
    "MagicLinkTokenService",
    "generate_token_id",
    # Redemption
    "redeem_token",
]

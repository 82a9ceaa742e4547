"""
Magic Link Redemption
=====================
Single-use enforcement on top of stateless token verification.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

import structlog

from ..errors import AuthKitError, TokenReplay
from ..metrics import MAGIC_LINK_VERIFICATIONS
from .models import MagicLinkPayload
from .token import MagicLinkTokenService

if TYPE_CHECKING:
    from ..stores.base import RedeemedTokenStore

logger = structlog.get_logger(__name__)


async def redeem_token(
    token_service: MagicLinkTokenService,
    store: "RedeemedTokenStore",
    token: str,
    now: Optional[datetime] = None,
) -> MagicLinkPayload:
    """
    Verify a token and record its id as redeemed.

    The id is kept until the token would have expired, so every worker
    sharing the store rejects a second redemption.

    Raises:
        InvalidSignature, TokenExpired: from verification
        TokenReplay: the token id was already redeemed
    """
    try:
        payload = token_service.verify(token, now)
    except AuthKitError as e:
        MAGIC_LINK_VERIFICATIONS.labels(outcome=e.code.lower()).inc()
        raise

    if not await store.mark_redeemed(payload.token_id, payload.expires_at, now):
        MAGIC_LINK_VERIFICATIONS.labels(outcome="replay").inc()
        logger.warning(
            "magic_link_replay",
            token_id=payload.token_id,
            challenge_id=payload.challenge_id,
        )
        raise TokenReplay("Magic link token already used")

    MAGIC_LINK_VERIFICATIONS.labels(outcome="verified").inc()
    logger.info("magic_link_redeemed", token_id=payload.token_id, challenge_id=payload.challenge_id)
    return payload

"""
Challenge Engine
================
Creates, verifies and resends OTP challenges against an injected store.

The engine holds no mutable state of its own; exactly-once verification is
delegated to the store's atomic ``verify_and_consume``.
"""

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional, Tuple

import structlog

from ..identifier import Identifier
from ..metrics import CHALLENGE_RESENDS, CHALLENGES_CREATED, CODE_VERIFICATIONS
from .hashing import generate_code
from .models import ChallengeChannel, ChallengeIntent, OTPChallenge, OTPConfig

if TYPE_CHECKING:
    from ..stores.base import ChallengeStore

logger = structlog.get_logger(__name__)


class ChallengeEngine:
    """
    OTP challenge lifecycle.

    Usage:
        engine = ChallengeEngine(InMemoryChallengeStore())
        challenge, code = await engine.issue(identifier, ChallengeChannel.SMS, ChallengeIntent.LOGIN)
        ok = await engine.verify_and_consume(challenge.id, code)
    """

    def __init__(self, store: "ChallengeStore", config: Optional[OTPConfig] = None):
        self.store = store
        self.config = config or OTPConfig()

    def generate_code(self) -> str:
        return generate_code(self.config.length)

    async def create(
        self,
        identifier: Identifier,
        channel: ChallengeChannel,
        intent: ChallengeIntent,
        code: str,
        validity: Optional[timedelta] = None,
        max_attempts: Optional[int] = None,
        max_resends: Optional[int] = None,
        ip_hash: Optional[str] = None,
        device_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OTPChallenge:
        """
        Persist a new pending challenge for a caller-supplied plaintext code.

        Args:
            identifier: Normalized contact the challenge is for
            channel: Delivery channel
            intent: Why the challenge was issued
            code: Plaintext code (hashed before storage)
            validity: Lifetime, defaults to the configured validity
            max_attempts: Overrides the configured attempt limit
            max_resends: Overrides the configured resend limit

        Returns:
            The stored challenge
        """
        if validity is None:
            validity = timedelta(seconds=self.config.validity_seconds)

        challenge = OTPChallenge.create(
            identifier=identifier,
            channel=channel,
            intent=intent,
            code=code,
            validity=validity,
            max_attempts=max_attempts if max_attempts is not None else self.config.max_attempts,
            max_resends=max_resends if max_resends is not None else self.config.max_resends,
            ip_hash=ip_hash,
            device_id=device_id,
            now=now,
        )
        await self.store.create(challenge)

        CHALLENGES_CREATED.labels(channel=challenge.channel.value, intent=challenge.intent.value).inc()
        logger.info(
            "challenge_created",
            challenge_id=challenge.id,
            identifier_hash=challenge.identifier_hash,
            channel=challenge.channel.value,
            intent=challenge.intent.value,
            expires_at=challenge.expires_at.isoformat(),
        )
        return challenge

    async def issue(
        self,
        identifier: Identifier,
        channel: ChallengeChannel,
        intent: ChallengeIntent,
        ip_hash: Optional[str] = None,
        device_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[OTPChallenge, str]:
        """Generate a fresh code and create a challenge for it. Returns (challenge, code)."""
        code = self.generate_code()
        challenge = await self.create(
            identifier, channel, intent, code, ip_hash=ip_hash, device_id=device_id, now=now
        )
        return challenge, code

    async def verify_and_consume(
        self, challenge_id: str, code: str, now: Optional[datetime] = None
    ) -> bool:
        """
        Verify a submitted code.

        Exactly one of any number of concurrent calls with the correct code
        returns True. Failed attempts are counted by the store.
        """
        verified = await self.store.verify_and_consume(challenge_id, code, now)

        CODE_VERIFICATIONS.labels(outcome="verified" if verified else "rejected").inc()
        if verified:
            logger.info("challenge_verified", challenge_id=challenge_id)
        else:
            logger.info("challenge_verification_failed", challenge_id=challenge_id)
        return verified

    async def resend(
        self, challenge_id: str, new_code: str, now: Optional[datetime] = None
    ) -> bool:
        """Replace the code of a pending challenge. False once resends are used up."""
        resent = await self.store.resend(challenge_id, new_code, now)

        CHALLENGE_RESENDS.labels(outcome="resent" if resent else "rejected").inc()
        if resent:
            logger.info("challenge_resent", challenge_id=challenge_id)
        else:
            logger.warning("challenge_resend_rejected", challenge_id=challenge_id)
        return resent

    async def redeliver(self, challenge_id: str) -> int:
        """Count a re-delivery of the unchanged code. Returns the new send count."""
        count = await self.store.increment_send_count(challenge_id)
        logger.info("challenge_redelivered", challenge_id=challenge_id, send_count=count)
        return count

    async def get(self, challenge_id: str) -> Optional[OTPChallenge]:
        return await self.store.get_by_id(challenge_id)

    async def get_active(
        self, identifier: Identifier, now: Optional[datetime] = None
    ) -> Optional[OTPChallenge]:
        return await self.store.get_active_by_identifier(identifier.hash, now)

    async def expire(self, challenge_id: str) -> None:
        await self.store.mark_expired(challenge_id)
        logger.info("challenge_expired", challenge_id=challenge_id)

    async def delete(self, challenge_id: str) -> None:
        await self.store.delete_by_id(challenge_id)

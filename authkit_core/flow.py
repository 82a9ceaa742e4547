"""
Authentication Flow
===================
Orchestrates one passwordless sign-in: normalise the identifier, check the
denylist, score abuse (with CAPTCHA step-up), apply rate limits, skip the
challenge for a trusted device, then issue a magic link (email login) or an
OTP and hand it to the delivery provider.

Every expected rejection is raised as an ``AuthKitError`` subclass. Delivery
failures are reported in the result and never change challenge state.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol, Tuple

import structlog

from .abuse_detector import AbuseAction, AbuseCheckParams, AbuseDetector, hash_ip
from .captcha import CaptchaVerifier
from .device.fingerprint import FingerprintComponents
from .device.service import DeviceTrustService
from .errors import (
    AttemptsExhausted,
    Blocked,
    CaptchaRequired,
    ChallengeExpired,
    ChallengeNotFound,
    InvalidCode,
    InvalidSignature,
    RateLimited,
    ResendLimitExceeded,
    ValidationError,
)
from .identifier import Identifier, IdentifierKind
from .logging import mask_identifier
from .magic_link.redemption import redeem_token
from .magic_link.token import MagicLinkTokenService, generate_token_id
from .otp.engine import ChallengeEngine
from .otp.models import ChallengeChannel, ChallengeIntent, ChallengeStatus, OTPChallenge
from .rate_limit.limiter import RateLimiter
from .rate_limit.models import RateLimitInfo, RateLimitScope
from .suppression.denylist import DenylistService

if TYPE_CHECKING:
    from .stores.base import RedeemedTokenStore

logger = structlog.get_logger(__name__)

GLOBAL_RATE_LIMIT_KEY = "global"


class AuthMethod(str, Enum):
    OTP = "otp"
    MAGIC_LINK = "magic-link"
    TRUSTED_DEVICE = "trusted-device"


class DeliveryError(Exception):
    """Raised by a delivery provider that could not hand off a message."""


@dataclass(frozen=True)
class DeliveryMessage:
    """What a delivery provider sends. Carries the plaintext code or link; never log it."""
    channel: ChallengeChannel
    recipient: str
    intent: ChallengeIntent
    challenge_id: str
    expires_at: datetime
    code: Optional[str] = None
    link: Optional[str] = None


class DeliveryProvider(Protocol):
    async def deliver(self, message: DeliveryMessage) -> bool:
        """Attempt delivery. Return False or raise DeliveryError on failure."""
        ...


@dataclass
class StartRequest:
    identifier: str
    channel: ChallengeChannel
    intent: ChallengeIntent
    ip: str
    user_agent: Optional[str] = None
    geo_country: Optional[str] = None
    asn: Optional[str] = None
    captcha_token: Optional[str] = None
    user_id: Optional[str] = None
    device: Optional[FingerprintComponents] = None
    device_id: Optional[str] = None


@dataclass
class StartResult:
    method: AuthMethod
    sent_to: str
    challenge_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    delivered: bool = False
    can_resend: bool = False
    risk_score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method.value,
            "sent_to": self.sent_to,
            "challenge_id": self.challenge_id,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "delivered": self.delivered,
            "can_resend": self.can_resend,
        }


@dataclass
class VerifyResult:
    challenge_id: str
    identifier_hash: str
    intent: ChallengeIntent
    method: AuthMethod

    def to_dict(self) -> Dict[str, Any]:
        return {
            "challenge_id": self.challenge_id,
            "intent": self.intent.value,
            "method": self.method.value,
        }


def uses_magic_link(channel: ChallengeChannel, intent: ChallengeIntent) -> bool:
    return channel == ChallengeChannel.EMAIL and intent == ChallengeIntent.LOGIN


def _check_channel(identifier: Identifier, channel: ChallengeChannel) -> None:
    expected = IdentifierKind.EMAIL if channel == ChallengeChannel.EMAIL else IdentifierKind.PHONE
    if identifier.kind != expected:
        raise ValidationError(f"Channel {channel.value} cannot deliver to a {identifier.kind.value}")


def _first_denied(decisions) -> Optional[RateLimitInfo]:
    for info in decisions:
        if not info.allowed:
            return info
    return None


class AuthFlow:
    """
    Usage:
        flow = AuthFlow(engine, limiter, detector, denylist, tokens, redeemed, delivery,
                        base_url="https://app.example.com")
        started = await flow.start(StartRequest(identifier="+14155551234", channel=ChallengeChannel.SMS,
                                                intent=ChallengeIntent.LOGIN, ip=client_ip))
        await flow.verify_code("+14155551234", code)
    """

    def __init__(
        self,
        engine: ChallengeEngine,
        limiter: RateLimiter,
        abuse_detector: AbuseDetector,
        denylist: DenylistService,
        token_service: MagicLinkTokenService,
        redeemed_tokens: "RedeemedTokenStore",
        delivery: DeliveryProvider,
        base_url: str,
        captcha: Optional[CaptchaVerifier] = None,
        devices: Optional[DeviceTrustService] = None,
    ):
        self.engine = engine
        self.limiter = limiter
        self.abuse_detector = abuse_detector
        self.denylist = denylist
        self.token_service = token_service
        self.redeemed_tokens = redeemed_tokens
        self.delivery = delivery
        self.base_url = base_url
        self.captcha = captcha
        self.devices = devices

    # -- start ------------------------------------------------------------

    async def start(self, request: StartRequest, now: Optional[datetime] = None) -> StartResult:
        """
        Begin authentication for a raw identifier.

        Raises:
            ValidationError: malformed identifier or channel mismatch
            Blocked: denylisted, disposable, or scored as abusive
            CaptchaRequired: risk requires a CAPTCHA that was missing or failed
            RateLimited: any rate limit scope denied
        """
        try:
            channel = ChallengeChannel(request.channel)
            intent = ChallengeIntent(request.intent)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        identifier = Identifier.create(request.identifier)
        _check_channel(identifier, channel)

        suppression = await self.denylist.check_identifier(identifier, now)
        if suppression.blocked:
            raise Blocked(
                "Identifier is blocked",
                reason=suppression.reason,
                source=suppression.source.value if suppression.source else None,
            )

        abuse = await self.abuse_detector.check(
            AbuseCheckParams(
                identifier_hash=identifier.hash,
                ip=request.ip,
                user_agent=request.user_agent,
                geo_country=request.geo_country,
                timestamp=now,
            )
        )
        if abuse.action == AbuseAction.BLOCK:
            raise Blocked("Request blocked due to suspicious activity", reason="abuse", source="abuse_detector")
        if abuse.action == AbuseAction.CHALLENGE:
            await self._require_captcha(request)

        await self._apply_rate_limits(identifier, request, now)

        if await self._can_skip_challenge(request, intent, now):
            logger.info("challenge_skipped_trusted_device", identifier_hash=identifier.hash)
            return StartResult(
                method=AuthMethod.TRUSTED_DEVICE,
                sent_to=mask_identifier(identifier.value),
                risk_score=abuse.risk_score,
            )

        ip_hash = hash_ip(request.ip)
        if uses_magic_link(channel, intent):
            challenge, message = await self._issue_magic_link(identifier, intent, ip_hash, request.device_id, now)
            method = AuthMethod.MAGIC_LINK
        else:
            challenge, code = await self.engine.issue(
                identifier, channel, intent, ip_hash=ip_hash, device_id=request.device_id, now=now
            )
            message = DeliveryMessage(
                channel=channel,
                recipient=identifier.value,
                intent=intent,
                challenge_id=challenge.id,
                expires_at=challenge.expires_at,
                code=code,
            )
            method = AuthMethod.OTP

        delivered = await self._deliver(message)
        logger.info(
            "auth_started",
            method=method.value,
            challenge_id=challenge.id,
            sent_to=mask_identifier(identifier.value),
            delivered=delivered,
        )
        return StartResult(
            method=method,
            sent_to=mask_identifier(identifier.value),
            challenge_id=challenge.id,
            expires_at=challenge.expires_at,
            delivered=delivered,
            can_resend=challenge.can_resend(now),
            risk_score=abuse.risk_score,
        )

    async def _require_captcha(self, request: StartRequest) -> None:
        if self.captcha is None or not request.captcha_token:
            raise CaptchaRequired("CAPTCHA verification required")
        result = await self.captcha.verify(request.captcha_token, remote_ip=request.ip)
        if not result.success:
            raise CaptchaRequired("CAPTCHA verification failed")

    async def _apply_rate_limits(
        self, identifier: Identifier, request: StartRequest, now: Optional[datetime]
    ) -> None:
        keys = {
            RateLimitScope.IDENTIFIER: identifier.hash,
            RateLimitScope.IP: request.ip,
        }
        if request.asn and RateLimitScope.ASN in self.limiter.rules:
            keys[RateLimitScope.ASN] = request.asn
        if RateLimitScope.GLOBAL in self.limiter.rules:
            keys[RateLimitScope.GLOBAL] = GLOBAL_RATE_LIMIT_KEY

        denied = _first_denied(await self.limiter.check_all(keys, now))
        if denied is not None:
            raise RateLimited(
                "Rate limit exceeded",
                scope=denied.scope.value,
                reset_at=denied.reset_at,
                retry_after=denied.retry_after,
            )

    async def _can_skip_challenge(
        self, request: StartRequest, intent: ChallengeIntent, now: Optional[datetime]
    ) -> bool:
        if self.devices is None or intent != ChallengeIntent.LOGIN:
            return False
        if not request.user_id or request.device is None:
            return False
        return await self.devices.can_skip_challenge(request.user_id, request.device, now)

    async def _issue_magic_link(
        self,
        identifier: Identifier,
        intent: ChallengeIntent,
        ip_hash: str,
        device_id: Optional[str],
        now: Optional[datetime],
    ) -> Tuple[OTPChallenge, DeliveryMessage]:
        # The token id doubles as the challenge code so redeeming the link
        # consumes the challenge through the same atomic path as an OTP.
        token_id = generate_token_id()
        challenge = await self.engine.create(
            identifier,
            ChallengeChannel.EMAIL,
            intent,
            code=token_id,
            validity=timedelta(seconds=self.token_service.config.validity_seconds),
            ip_hash=ip_hash,
            device_id=device_id,
            now=now,
        )
        link = self.token_service.generate_link(
            identifier, intent, challenge.id, self.base_url, token_id=token_id, now=now
        )
        message = DeliveryMessage(
            channel=ChallengeChannel.EMAIL,
            recipient=identifier.value,
            intent=intent,
            challenge_id=challenge.id,
            expires_at=challenge.expires_at,
            link=link,
        )
        return challenge, message

    async def _deliver(self, message: DeliveryMessage) -> bool:
        try:
            delivered = await self.delivery.deliver(message)
        except DeliveryError as e:
            logger.error(
                "delivery_failed",
                challenge_id=message.challenge_id,
                channel=message.channel.value,
                error=str(e),
            )
            return False
        if not delivered:
            logger.warning("delivery_rejected", challenge_id=message.challenge_id, channel=message.channel.value)
        return bool(delivered)

    # -- verify -----------------------------------------------------------

    async def verify_code(
        self,
        identifier: str,
        code: str,
        challenge_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> VerifyResult:
        """
        Verify an OTP for the identifier's active (or the given) challenge.

        Raises:
            ValidationError: malformed identifier or code
            ChallengeNotFound, ChallengeExpired, InvalidCode, AttemptsExhausted
        """
        parsed = Identifier.create(identifier)
        if not code or not code.isdigit():
            raise ValidationError("Code must be numeric")

        challenge = await self._find_challenge(parsed, challenge_id, now)
        if await self.engine.verify_and_consume(challenge.id, code, now):
            return VerifyResult(
                challenge_id=challenge.id,
                identifier_hash=parsed.hash,
                intent=challenge.intent,
                method=AuthMethod.OTP,
            )

        raise await self._rejection(challenge.id, now)

    async def _find_challenge(
        self, identifier: Identifier, challenge_id: Optional[str], now: Optional[datetime]
    ) -> OTPChallenge:
        if challenge_id:
            challenge = await self.engine.get(challenge_id)
            # A challenge of another identifier is indistinguishable from none
            if challenge is None or challenge.identifier_hash != identifier.hash:
                raise ChallengeNotFound("No active challenge")
            return challenge

        challenge = await self.engine.get_active(identifier, now)
        if challenge is None:
            raise ChallengeNotFound("No active challenge")
        return challenge

    async def _rejection(self, challenge_id: str, now: Optional[datetime]) -> Exception:
        """Map a failed verification to its typed outcome from the stored state."""
        challenge = await self.engine.get(challenge_id)
        if challenge is None or challenge.status == ChallengeStatus.VERIFIED:
            return ChallengeNotFound("No active challenge")
        if challenge.status == ChallengeStatus.FAILED:
            return AttemptsExhausted("Maximum attempts exceeded")
        if challenge.status == ChallengeStatus.EXPIRED or challenge.is_expired(now):
            return ChallengeExpired("Challenge expired")
        return InvalidCode("Invalid code", attempts_remaining=challenge.attempts_remaining)

    async def verify_magic_link(self, token: str, now: Optional[datetime] = None) -> VerifyResult:
        """
        Redeem a magic link token and consume its challenge.

        Raises:
            InvalidSignature, TokenExpired, TokenReplay: from redemption
            ChallengeNotFound, ChallengeExpired: challenge no longer valid
        """
        payload = await redeem_token(self.token_service, self.redeemed_tokens, token, now)

        # Superseded links are rejected without spending an attempt
        challenge = await self.engine.get(payload.challenge_id)
        if (
            challenge is not None
            and challenge.status == ChallengeStatus.PENDING
            and not challenge.matches_code(payload.token_id)
        ):
            raise InvalidSignature("Magic link was superseded")

        if not await self.engine.verify_and_consume(payload.challenge_id, payload.token_id, now):
            challenge = await self.engine.get(payload.challenge_id)
            if challenge is None or challenge.status == ChallengeStatus.VERIFIED:
                raise ChallengeNotFound("No active challenge")
            if challenge.status == ChallengeStatus.PENDING and not challenge.is_expired(now):
                # A resend issued a newer link
                raise InvalidSignature("Magic link was superseded")
            raise ChallengeExpired("Challenge expired")

        identifier = Identifier(value=payload.identifier, kind=IdentifierKind(payload.identifier_type))
        logger.info("magic_link_verified", challenge_id=payload.challenge_id)
        return VerifyResult(
            challenge_id=payload.challenge_id,
            identifier_hash=identifier.hash,
            intent=payload.intent,
            method=AuthMethod.MAGIC_LINK,
        )

    # -- resend -----------------------------------------------------------

    async def resend(self, identifier: str, ip: str, now: Optional[datetime] = None) -> StartResult:
        """
        Re-issue the active challenge with a fresh code (or link).

        Raises:
            RateLimited, ChallengeNotFound, ChallengeExpired, ResendLimitExceeded
        """
        parsed = Identifier.create(identifier)

        denied = _first_denied(await self.limiter.check_all(
            {RateLimitScope.IDENTIFIER: parsed.hash, RateLimitScope.IP: ip}, now
        ))
        if denied is not None:
            raise RateLimited(
                "Rate limit exceeded for resend",
                scope=denied.scope.value,
                reset_at=denied.reset_at,
                retry_after=denied.retry_after,
            )

        challenge = await self.engine.get_active(parsed, now)
        if challenge is None:
            raise ChallengeNotFound("No active challenge")

        magic_link = uses_magic_link(challenge.channel, challenge.intent)
        new_code = generate_token_id() if magic_link else self.engine.generate_code()

        if not await self.engine.resend(challenge.id, new_code, now):
            current = await self.engine.get(challenge.id)
            if current is not None and current.resend_count >= current.max_resends:
                raise ResendLimitExceeded("Maximum number of resends reached")
            if current is not None and current.is_expired(now):
                raise ChallengeExpired("Challenge expired")
            raise ChallengeNotFound("No active challenge")

        message = DeliveryMessage(
            channel=challenge.channel,
            recipient=parsed.value,
            intent=challenge.intent,
            challenge_id=challenge.id,
            expires_at=challenge.expires_at,
        )
        if magic_link:
            link = self.token_service.generate_link(
                parsed, challenge.intent, challenge.id, self.base_url, token_id=new_code, now=now
            )
            message = replace(message, link=link)
        else:
            message = replace(message, code=new_code)

        delivered = await self._deliver(message)
        resends_used = challenge.resend_count + 1
        return StartResult(
            method=AuthMethod.MAGIC_LINK if magic_link else AuthMethod.OTP,
            sent_to=mask_identifier(parsed.value),
            challenge_id=challenge.id,
            expires_at=challenge.expires_at,
            delivered=delivered,
            can_resend=resends_used < challenge.max_resends,
        )

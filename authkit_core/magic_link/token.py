"""
Magic Link Token
================
HS256-signed JWTs carrying a single-use, time-boxed authentication proof.

Verification is stateless: it checks signature, issuer, audience and expiry
only. Single use is enforced separately by recording ``token_id`` in a
redeemed-token store (see ``redemption.redeem_token``).
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse

import jwt
import structlog

from ..errors import InvalidSignature, TokenExpired
from ..identifier import Identifier
from ..otp.models import ChallengeIntent
from ..secrets import KeyProvider
from .models import MagicLinkConfig, MagicLinkPayload

logger = structlog.get_logger(__name__)


def generate_token_id() -> str:
    return secrets.token_urlsafe(16)


class MagicLinkTokenService:
    """
    Signs and verifies magic link tokens.

    Usage:
        tokens = MagicLinkTokenService(StaticKeyProvider(secret))
        link = tokens.generate_link(identifier, ChallengeIntent.LOGIN, challenge.id, "https://app.example.com")
        payload = tokens.verify(tokens.extract_token_from_url(link))
    """

    def __init__(self, key_provider: KeyProvider, config: Optional[MagicLinkConfig] = None):
        self.key_provider = key_provider
        self.config = config or MagicLinkConfig()

    def create_payload(
        self,
        identifier: Identifier,
        intent: ChallengeIntent,
        challenge_id: str,
        token_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> MagicLinkPayload:
        now = (now or datetime.now(timezone.utc)).replace(microsecond=0)
        return MagicLinkPayload(
            identifier=identifier.value,
            identifier_type=identifier.kind.value,
            intent=ChallengeIntent(intent),
            challenge_id=challenge_id,
            issued_at=now,
            expires_at=now + timedelta(seconds=self.config.validity_seconds),
            token_id=token_id or generate_token_id(),
        )

    def sign(self, payload: MagicLinkPayload) -> str:
        claims = payload.to_claims()
        claims["iss"] = self.config.issuer
        claims["aud"] = self.config.audience
        key = self.key_provider.get_signing_keys().current
        return jwt.encode(claims, key, algorithm=self.config.algorithm)

    def generate(
        self,
        identifier: Identifier,
        intent: ChallengeIntent,
        challenge_id: str,
        token_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Sign a fresh token for the challenge. A new token id is minted unless given."""
        return self.sign(self.create_payload(identifier, intent, challenge_id, token_id, now))

    def verify(self, token: str, now: Optional[datetime] = None) -> MagicLinkPayload:
        """
        Verify signature, issuer, audience and expiry.

        Tries the current key first, then previous keys still in their
        rotation grace window.

        Raises:
            InvalidSignature: tampered, malformed or signed with an unknown key
            TokenExpired: signature valid but past ``exp``
        """
        now = now or datetime.now(timezone.utc)
        keys = self.key_provider.get_signing_keys()

        claims = None
        for key in keys.verification_keys:
            try:
                claims = jwt.decode(
                    token,
                    key,
                    algorithms=[self.config.algorithm],
                    audience=self.config.audience,
                    issuer=self.config.issuer,
                    # Expiry is checked below against the injected clock
                    options={
                        "verify_exp": False,
                        "verify_iat": False,
                        "require": ["exp", "iat", "jti"],
                    },
                )
                break
            except jwt.InvalidSignatureError:
                continue
            except jwt.InvalidTokenError as e:
                logger.warning("magic_link_invalid", error=type(e).__name__)
                raise InvalidSignature("Invalid magic link token") from e

        if claims is None:
            logger.warning("magic_link_invalid", error="InvalidSignatureError")
            raise InvalidSignature("Invalid magic link token")

        try:
            payload = MagicLinkPayload.from_claims(claims)
        except (KeyError, ValueError) as e:
            raise InvalidSignature("Magic link token is missing claims") from e

        if now >= payload.expires_at:
            logger.info("magic_link_expired", token_id=payload.token_id)
            raise TokenExpired("Magic link has expired")

        return payload

    def decode(self, token: str) -> Optional[MagicLinkPayload]:
        """Decode without verification (for inspection only)."""
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
            return MagicLinkPayload.from_claims(claims)
        except (jwt.InvalidTokenError, KeyError, ValueError):
            return None

    @staticmethod
    def is_expired(payload: MagicLinkPayload, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= payload.expires_at

    @staticmethod
    def time_to_expire(payload: MagicLinkPayload, now: Optional[datetime] = None) -> int:
        """Seconds until expiry, never negative."""
        remaining = payload.expires_at - (now or datetime.now(timezone.utc))
        return max(0, int(remaining.total_seconds()))

    def build_link(self, token: str, intent: ChallengeIntent, base_url: str) -> str:
        query = urlencode({"token": token, "intent": ChallengeIntent(intent).value})
        return f"{base_url.rstrip('/')}{self.config.verify_path}?{query}"

    def generate_link(
        self,
        identifier: Identifier,
        intent: ChallengeIntent,
        challenge_id: str,
        base_url: str,
        token_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Sign a token and embed it in ``<base_url>/auth/verify?token=...&intent=...``."""
        token = self.generate(identifier, intent, challenge_id, token_id, now)
        return self.build_link(token, intent, base_url)

    @staticmethod
    def extract_token_from_url(url: str) -> Optional[str]:
        """Token query parameter of a magic link URL, None if absent or malformed."""
        try:
            parsed = urlparse(url)
        except ValueError:
            return None
        if not parsed.scheme or not parsed.netloc:
            return None
        values = parse_qs(parsed.query).get("token")
        return values[0] if values else None

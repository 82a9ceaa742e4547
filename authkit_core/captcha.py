"""
CAPTCHA Verifier
================
Step-up verification of hCaptcha / reCAPTCHA tokens via the provider's
site-verify endpoint.

Transport errors are retried; any remaining failure (network, non-2xx,
unparseable body) yields ``success=False``. A request is never let through
because the provider could not be reached.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import ValidationError

logger = structlog.get_logger(__name__)


class CaptchaProvider(str, Enum):
    HCAPTCHA = "hcaptcha"
    RECAPTCHA = "recaptcha"


VERIFY_URLS = {
    CaptchaProvider.HCAPTCHA: "https://hcaptcha.com/siteverify",
    CaptchaProvider.RECAPTCHA: "https://www.google.com/recaptcha/api/siteverify",
}


@dataclass
class CaptchaConfig:
    provider: CaptchaProvider
    secret_key: str
    verify_url: Optional[str] = None
    timeout: float = 5.0
    max_attempts: int = 3
    retry_wait_multiplier: float = 0.5
    min_score: float = 0.5  # reCAPTCHA v3

    @property
    def url(self) -> str:
        return self.verify_url or VERIFY_URLS[CaptchaProvider(self.provider)]


class SiteVerifyResponse(BaseModel):
    """Provider site-verify response body."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    success: bool = False
    score: Optional[float] = None
    challenge_ts: Optional[str] = None
    hostname: Optional[str] = None
    error_codes: List[str] = Field(default_factory=list, alias="error-codes")


@dataclass
class CaptchaResult:
    success: bool
    score: Optional[float] = None
    hostname: Optional[str] = None
    challenge_ts: Optional[str] = None
    error: Optional[str] = None


class CaptchaVerifier:
    """
    Usage:
        verifier = CaptchaVerifier(CaptchaConfig(provider=CaptchaProvider.HCAPTCHA, secret_key="..."))
        result = await verifier.verify(token, remote_ip="203.0.113.7")
    """

    def __init__(self, config: CaptchaConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.client = client or httpx.AsyncClient(timeout=config.timeout)

    async def aclose(self):
        """Close the underlying HTTP client."""
        await self.client.aclose()

    async def _post(self, data: dict) -> httpx.Response:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(httpx.TransportError),
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(multiplier=self.config.retry_wait_multiplier, max=5),
            before_sleep=before_sleep_log(logging.getLogger(__name__), logging.WARNING),
            reraise=True,
        ):
            with attempt:
                return await self.client.post(self.config.url, data=data)

    async def verify(self, token: str, remote_ip: Optional[str] = None) -> CaptchaResult:
        """
        Verify a client CAPTCHA token.

        Raises:
            ValidationError: if the token is empty
        """
        if not token:
            raise ValidationError("CAPTCHA token is required")

        data = {"secret": self.config.secret_key, "response": token}
        if remote_ip:
            data["remoteip"] = remote_ip

        try:
            response = await self._post(data)
        except httpx.HTTPError as e:
            logger.error("captcha_verification_unavailable", provider=self.config.provider, error=str(e))
            return CaptchaResult(success=False, error=f"Verification service unreachable: {e}")

        if response.status_code != 200:
            logger.error("captcha_verification_http_error", status_code=response.status_code)
            return CaptchaResult(
                success=False,
                error=f"Verification service returned status {response.status_code}",
            )

        try:
            body = SiteVerifyResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            logger.error("captcha_verification_bad_response", error=str(e))
            return CaptchaResult(success=False, error="Unparseable verification response")

        success = body.success
        error = ", ".join(body.error_codes) or None
        if success and body.score is not None and body.score < self.config.min_score:
            success = False
            error = f"Score {body.score} below {self.config.min_score}"

        logger.info("captcha_verified", provider=self.config.provider, success=success, score=body.score)
        return CaptchaResult(
            success=success,
            score=body.score,
            hostname=body.hostname,
            challenge_ts=body.challenge_ts,
            error=None if success else error,
        )

    def requires_captcha(self, score: Optional[float] = None) -> bool:
        """Provider score below the minimum (or no score at all) requires a CAPTCHA."""
        if score is None:
            return True
        return score < self.config.min_score

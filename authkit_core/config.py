"""
AuthKit Configuration
=====================
Environment-driven settings for services embedding the authentication core.

Usage:
    settings = AuthKitSettings.from_env()
    settings.configure_logging()
    engine = ChallengeEngine(store, settings.otp)
"""

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from .abuse_detector import AbusePolicy
from .captcha import CaptchaConfig, CaptchaProvider
from .logging import setup_logging
from .magic_link.models import MagicLinkConfig
from .otp.models import OTPConfig
from .rate_limit.models import RateLimitRule, RateLimitScope, default_rules

ENV_PREFIX = "AUTHKIT_"
TRUE_VALUES = {"1", "true", "yes", "on"}


def parse_rule(scope: RateLimitScope, value: str) -> RateLimitRule:
    """Parse ``"<max_attempts>/<window_seconds>"``, e.g. ``"5/3600"``."""
    try:
        max_attempts, window_seconds = (int(part) for part in value.split("/", 1))
    except ValueError as e:
        raise ValueError(f"Invalid rate limit rule for {scope.value}: {value!r}") from e
    return RateLimitRule(scope, max_attempts=max_attempts, window_seconds=window_seconds)


@dataclass
class AuthKitSettings:
    """All tunables of the authentication core."""
    service_name: str = "authkit"
    log_level: str = "INFO"
    json_logs: bool = True
    redis_url: str = "redis://localhost:6379/0"
    base_url: str = "http://localhost:3000"
    device_max_days_inactive: int = 90
    otp: OTPConfig = field(default_factory=OTPConfig)
    magic_link: MagicLinkConfig = field(default_factory=MagicLinkConfig)
    rate_limit_rules: List[RateLimitRule] = field(default_factory=default_rules)
    abuse: AbusePolicy = field(default_factory=AbusePolicy)
    captcha: Optional[CaptchaConfig] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AuthKitSettings":
        """
        Build settings from ``AUTHKIT_*`` variables; unset variables keep defaults.

        Raises:
            ValueError: on unparseable numeric values or rules
        """
        env = os.environ if environ is None else environ

        def get(name: str, default=None):
            return env.get(f"{ENV_PREFIX}{name}", default)

        def get_int(name: str, default: int) -> int:
            value = get(name)
            return int(value) if value not in (None, "") else default

        def get_float(name: str, default: float) -> float:
            value = get(name)
            return float(value) if value not in (None, "") else default

        otp_defaults = OTPConfig()
        otp = OTPConfig(
            length=get_int("OTP_LENGTH", otp_defaults.length),
            validity_seconds=get_int("OTP_VALIDITY_SECONDS", otp_defaults.validity_seconds),
            max_attempts=get_int("OTP_MAX_ATTEMPTS", otp_defaults.max_attempts),
            max_resends=get_int("OTP_MAX_RESENDS", otp_defaults.max_resends),
        )

        link_defaults = MagicLinkConfig()
        magic_link = MagicLinkConfig(
            validity_seconds=get_int("MAGIC_LINK_VALIDITY_SECONDS", link_defaults.validity_seconds),
            issuer=get("MAGIC_LINK_ISSUER", link_defaults.issuer),
            audience=get("MAGIC_LINK_AUDIENCE", link_defaults.audience),
        )

        rules = {rule.scope: rule for rule in default_rules()}
        for scope in RateLimitScope:
            value = get(f"RATE_LIMIT_{scope.name}")
            if value:
                rules[scope] = parse_rule(scope, value)

        abuse_defaults = AbusePolicy()
        abuse = AbusePolicy(
            window_seconds=get_int("ABUSE_WINDOW_SECONDS", abuse_defaults.window_seconds),
            identifier_velocity_threshold=get_int(
                "ABUSE_IDENTIFIER_THRESHOLD", abuse_defaults.identifier_velocity_threshold
            ),
            ip_velocity_threshold=get_int("ABUSE_IP_THRESHOLD", abuse_defaults.ip_velocity_threshold),
            geo_velocity_threshold=get_int("ABUSE_GEO_THRESHOLD", abuse_defaults.geo_velocity_threshold),
            identifier_velocity_weight=get_float(
                "ABUSE_IDENTIFIER_WEIGHT", abuse_defaults.identifier_velocity_weight
            ),
            ip_velocity_weight=get_float("ABUSE_IP_WEIGHT", abuse_defaults.ip_velocity_weight),
            geo_velocity_weight=get_float("ABUSE_GEO_WEIGHT", abuse_defaults.geo_velocity_weight),
            user_agent_weight=get_float("ABUSE_USER_AGENT_WEIGHT", abuse_defaults.user_agent_weight),
            block_threshold=get_float("ABUSE_BLOCK_THRESHOLD", abuse_defaults.block_threshold),
            challenge_threshold=get_float("ABUSE_CHALLENGE_THRESHOLD", abuse_defaults.challenge_threshold),
        )

        captcha = None
        captcha_secret = get("CAPTCHA_SECRET")
        if captcha_secret:
            captcha = CaptchaConfig(
                provider=CaptchaProvider(get("CAPTCHA_PROVIDER", CaptchaProvider.HCAPTCHA.value)),
                secret_key=captcha_secret,
                verify_url=get("CAPTCHA_VERIFY_URL"),
            )

        return cls(
            service_name=get("SERVICE_NAME", "authkit"),
            log_level=get("LOG_LEVEL", "INFO"),
            json_logs=get("JSON_LOGS", "true").lower() in TRUE_VALUES,
            redis_url=get("REDIS_URL", "redis://localhost:6379/0"),
            base_url=get("BASE_URL", "http://localhost:3000"),
            device_max_days_inactive=get_int("DEVICE_MAX_DAYS_INACTIVE", 90),
            otp=otp,
            magic_link=magic_link,
            rate_limit_rules=list(rules.values()),
            abuse=abuse,
            captcha=captcha,
        )

    def configure_logging(self) -> None:
        setup_logging(self.service_name, level=self.log_level, json_output=self.json_logs)

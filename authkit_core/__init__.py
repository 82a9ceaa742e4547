"""
AuthKit Core Library
====================
Passwordless authentication core: OTP and magic link challenges, rate
limiting, abuse scoring, device trust and suppression.
"""

__version__ = "0.1.0"

# Errors
from authkit_core.errors import (
    AuthKitError,
    ValidationError,
    ChallengeNotFound,
    ChallengeExpired,
    InvalidCode,
    AttemptsExhausted,
    ResendLimitExceeded,
    RateLimited,
    Blocked,
    CaptchaRequired,
    TokenExpired,
    InvalidSignature,
    TokenReplay,
    StorageError,
)

# Identifier
from authkit_core.identifier import (
    Identifier,
    IdentifierKind,
    hash_identifier,
    normalize_phone,
    validate_e164,
)

# OTP
from authkit_core.otp import (
    ChallengeChannel,
    ChallengeEngine,
    ChallengeIntent,
    ChallengeStatus,
    OTPChallenge,
    OTPConfig,
    generate_code,
)

# Magic Links
from authkit_core.magic_link import (
    MagicLinkConfig,
    MagicLinkPayload,
    MagicLinkTokenService,
    redeem_token,
)

# Rate Limiting
from authkit_core.rate_limit import (
    RateLimiter,
    RateLimitInfo,
    RateLimitRule,
    RateLimitScope,
)

# Abuse
from authkit_core.abuse_detector import (
    AbuseAction,
    AbuseCheckParams,
    AbuseCheckResult,
    AbuseDetector,
    AbusePolicy,
)

# Devices
from authkit_core.device import (
    Device,
    DeviceFingerprint,
    DeviceTrustService,
    FingerprintComponents,
)

# Suppression
from authkit_core.suppression import (
    BounceHandler,
    BounceType,
    DenylistService,
)

# Secrets / CAPTCHA
from authkit_core.secrets import EnvKeyProvider, SigningKeys, StaticKeyProvider, VaultKeyProvider
from authkit_core.captcha import CaptchaConfig, CaptchaProvider, CaptchaVerifier

# Flow
from authkit_core.flow import (
    AuthFlow,
    AuthMethod,
    DeliveryError,
    DeliveryMessage,
    DeliveryProvider,
    StartRequest,
    StartResult,
    VerifyResult,
)

# Configuration / Logging
from authkit_core.config import AuthKitSettings
from authkit_core.logging import mask_identifier, setup_logging

__all__ = [
    "__version__",
    # Errors
    "AuthKitError",
    "ValidationError",
    "ChallengeNotFound",
    "ChallengeExpired",
    "InvalidCode",
    "AttemptsExhausted",
    "ResendLimitExceeded",
    "RateLimited",
    "Blocked",
    "CaptchaRequired",
    "TokenExpired",
    "InvalidSignature",
    "TokenReplay",
    "StorageError",
    # Identifier
    "Identifier",
    "IdentifierKind",
    "hash_identifier",
    "normalize_phone",
    "validate_e164",
    # OTP
    "ChallengeChannel",
    "ChallengeEngine",
    "ChallengeIntent",
    "ChallengeStatus",
    "OTPChallenge",
    "OTPConfig",
    "generate_code",
    # Magic Links
    "MagicLinkConfig",
    "MagicLinkPayload",
    "MagicLinkTokenService",
    "redeem_token",
    # Rate Limiting
    "RateLimiter",
    "RateLimitInfo",
    "RateLimitRule",
    "RateLimitScope",
    # Abuse
    "AbuseAction",
    "AbuseCheckParams",
    "AbuseCheckResult",
    "AbuseDetector",
    "AbusePolicy",
    # Devices
    "Device",
    "DeviceFingerprint",
    "DeviceTrustService",
    "FingerprintComponents",
    # Suppression
    "BounceHandler",
    "BounceType",
    "DenylistService",
    # Secrets / CAPTCHA
    "EnvKeyProvider",
    "SigningKeys",
    "StaticKeyProvider",
    "VaultKeyProvider",
    "CaptchaConfig",
    "CaptchaProvider",
    "CaptchaVerifier",
    # Flow
    "AuthFlow",
    "AuthMethod",
    "DeliveryError",
    "DeliveryMessage",
    "DeliveryProvider",
    "StartRequest",
    "StartResult",
    "VerifyResult",
    # Configuration / Logging
    "AuthKitSettings",
    "mask_identifier",
    "setup_logging",
]

"""
AuthKit Errors
==============
Typed outcomes for the authentication core.

Every expected, caller-recoverable outcome is an ``AuthKitError`` subclass with a
stable ``code`` and a generic ``public_message`` that is safe to show end users.
Storage failures are a separate root (``StorageError``) so callers can retry them
with backoff without confusing them with policy decisions.

CRITICAL: Never put plaintext codes, signing keys or raw tokens into an error.
"""

from datetime import datetime
from typing import Optional


# Shared by every outcome of a code check so responses cannot reveal
# whether an identifier has a pending challenge.
INVALID_CODE_MESSAGE = "The code is invalid or has expired."


class AuthKitError(Exception):
    """Base class for expected authentication outcomes."""

    code: str = "AUTH_ERROR"
    public_message: str = "Authentication failed."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.public_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Client-safe representation."""
        return {"code": self.code, "message": self.public_message}


class ValidationError(AuthKitError):
    """Malformed identifier, code or request shape."""

    code = "VALIDATION_ERROR"
    public_message = "The request is invalid."


class ChallengeNotFound(AuthKitError):
    """No active challenge exists for the identifier."""

    code = "CHALLENGE_NOT_FOUND"
    public_message = INVALID_CODE_MESSAGE


class ChallengeExpired(AuthKitError):
    """The challenge is past its validity window."""

    code = "CHALLENGE_EXPIRED"
    public_message = INVALID_CODE_MESSAGE


class InvalidCode(AuthKitError):
    """Submitted code does not match."""

    code = "INVALID_CODE"
    public_message = INVALID_CODE_MESSAGE

    def __init__(self, message: Optional[str] = None, attempts_remaining: Optional[int] = None):
        super().__init__(message)
        self.attempts_remaining = attempts_remaining

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.attempts_remaining is not None:
            data["attempts_remaining"] = self.attempts_remaining
        return data


class AttemptsExhausted(AuthKitError):
    """The challenge failed terminally after too many attempts."""

    code = "ATTEMPTS_EXHAUSTED"
    public_message = INVALID_CODE_MESSAGE


class ResendLimitExceeded(AuthKitError):
    code = "RESEND_LIMIT_EXCEEDED"
    public_message = "Maximum number of resends reached."


class RateLimited(AuthKitError):
    """A rate-limit scope denied the request."""

    code = "RATE_LIMITED"
    public_message = "Too many requests. Please try again later."

    def __init__(
        self,
        message: Optional[str] = None,
        scope: Optional[str] = None,
        reset_at: Optional[datetime] = None,
        retry_after: Optional[int] = None,
    ):
        super().__init__(message)
        self.scope = scope
        self.reset_at = reset_at
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.reset_at is not None:
            data["reset_at"] = self.reset_at.isoformat()
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        return data


class Blocked(AuthKitError):
    """Identifier is suppressed or the request was scored as abusive."""

    code = "BLOCKED"
    public_message = "This request cannot be completed."

    def __init__(
        self,
        message: Optional[str] = None,
        reason: Optional[str] = None,
        source: Optional[str] = None,
    ):
        super().__init__(message)
        self.reason = reason
        self.source = source


class CaptchaRequired(AuthKitError):
    """Risk score requires a step-up CAPTCHA that was missing or failed."""

    code = "CAPTCHA_REQUIRED"
    public_message = "Additional verification is required."


class TokenExpired(AuthKitError):
    code = "TOKEN_EXPIRED"
    public_message = "This link has expired."


class InvalidSignature(AuthKitError):
    """Token is tampered, malformed or signed with an unknown key."""

    code = "INVALID_SIGNATURE"
    public_message = "This link is invalid."


class TokenReplay(AuthKitError):
    """Magic link token id has already been redeemed."""

    code = "TOKEN_REPLAY"
    public_message = "This link has already been used."


class StorageError(Exception):
    """Raised when a backing store call itself fails."""

    def __init__(self, message: str, operation: Optional[str] = None, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"[{operation or 'store'}] {message}")

"""
Identifier
==========
Normalized user contact (phone or email) with a stable privacy-preserving hash.

The hash is the partition key for every per-contact record (challenges,
counters, denylist entries, bounces).
"""

import hashlib
import re
from dataclasses import dataclass, field
from enum import Enum

from .errors import ValidationError

E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")
PHONE_SHAPE_PATTERN = re.compile(r"^\+?[\d\s().-]{7,24}$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class IdentifierKind(str, Enum):
    """Supported identifier types."""
    EMAIL = "email"
    PHONE = "phone"


def hash_identifier(value: str) -> str:
    """SHA-256 hex digest of a canonical identifier value."""
    return hashlib.sha256(value.encode()).hexdigest()


def validate_e164(phone: str) -> bool:
    """Check a phone number is in E.164 format."""
    return bool(E164_PATTERN.match(phone))


def normalize_phone(phone: str, default_country: str = "1") -> str:
    """
    Normalize a phone number to E.164 format.

    Args:
        phone: Raw phone number
        default_country: Country code (without +) used for bare 10-digit numbers

    Returns:
        E.164 formatted number (not validated)
    """
    digits = re.sub(r"\D", "", phone)

    if phone.startswith("+"):
        return f"+{digits}"

    # International dialing prefix
    if digits.startswith("00"):
        return f"+{digits[2:]}"

    # If 10 digits, assume national number in the default country
    if len(digits) == 10:
        return f"+{default_country}{digits}"

    return f"+{digits}"


def looks_like_phone(value: str) -> bool:
    """Loose phone-shape check: digits with common separators and an optional +."""
    if "@" in value:
        return False
    return bool(PHONE_SHAPE_PATTERN.match(value))


@dataclass(frozen=True)
class Identifier:
    """
    Canonical contact identifier.

    Two identifiers are equal iff ``value`` and ``kind`` match; ``hash`` follows
    from the value and takes no part in equality.
    """
    value: str
    kind: IdentifierKind
    hash: str = field(init=False, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "hash", hash_identifier(self.value))

    @classmethod
    def create(cls, raw: str) -> "Identifier":
        """
        Classify and normalize a raw contact string.

        Raises:
            ValidationError: if the input is neither a valid phone nor email
        """
        if not isinstance(raw, str):
            raise ValidationError("Identifier must be a string")

        trimmed = raw.strip()
        if looks_like_phone(trimmed):
            return cls.create_phone(trimmed)
        return cls.create_email(trimmed)

    @classmethod
    def create_phone(cls, phone: str) -> "Identifier":
        normalized = normalize_phone(phone.strip())
        if not validate_e164(normalized):
            raise ValidationError("Invalid phone number format")
        return cls(value=normalized, kind=IdentifierKind.PHONE)

    @classmethod
    def create_email(cls, email: str) -> "Identifier":
        normalized = email.strip().lower()
        if not EMAIL_PATTERN.match(normalized):
            raise ValidationError("Invalid email format")
        return cls(value=normalized, kind=IdentifierKind.EMAIL)

    @property
    def is_phone(self) -> bool:
        return self.kind == IdentifierKind.PHONE

    @property
    def is_email(self) -> bool:
        return self.kind == IdentifierKind.EMAIL

    @property
    def email_domain(self) -> str:
        """Domain part of an email identifier, empty for phones."""
        if not self.is_email:
            return ""
        return self.value.rsplit("@", 1)[1]

    def __str__(self) -> str:
        return self.value

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "kind": self.kind.value,
            "hash": self.hash,
        }

"""
Device Fingerprint
==================
Stable hash over client-reported device signals.
"""

import hashlib
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class FingerprintComponents:
    """Client signals a fingerprint is derived from."""
    user_agent: str
    platform: str
    timezone: str
    language: Optional[str] = None
    screen_resolution: Optional[str] = None
    entropy: Optional[str] = None

    def canonical(self) -> str:
        return "|".join([
            self.user_agent,
            self.platform,
            self.timezone,
            self.language or "",
            self.screen_resolution or "",
            self.entropy or "",
        ])

    def core(self) -> tuple:
        """Components that must agree for a fuzzy match."""
        return (self.user_agent, self.platform, self.timezone)


def compute_fingerprint_hash(components: FingerprintComponents) -> str:
    return hashlib.sha256(components.canonical().encode()).hexdigest()


@dataclass(frozen=True)
class DeviceFingerprint:
    """
    Fingerprint with an opaque id.

    The id is minted fresh, not derived from the hash: two independently
    created fingerprints of the same device share a hash but not an id.
    """
    id: str
    hash: str
    components: FingerprintComponents

    @classmethod
    def create(cls, components: FingerprintComponents) -> "DeviceFingerprint":
        return cls(
            id=uuid.uuid4().hex,
            hash=compute_fingerprint_hash(components),
            components=components,
        )

    @classmethod
    def from_existing(cls, fingerprint_id: str, components: FingerprintComponents) -> "DeviceFingerprint":
        return cls(
            id=fingerprint_id,
            hash=compute_fingerprint_hash(components),
            components=components,
        )

    @property
    def user_agent(self) -> str:
        return self.components.user_agent

    @property
    def platform(self) -> str:
        return self.components.platform

    @property
    def timezone(self) -> str:
        return self.components.timezone

    def matches(self, other: "DeviceFingerprint", strict: bool = False) -> bool:
        """
        Strict: full hash equality. Fuzzy: user agent, platform and timezone
        agree, tolerating drift in language, resolution and entropy.
        """
        if strict:
            return self.hash == other.hash
        return self.components.core() == other.components.core()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "hash": self.hash,
            "user_agent": self.components.user_agent,
            "platform": self.components.platform,
            "timezone": self.components.timezone,
            "language": self.components.language,
            "screen_resolution": self.components.screen_resolution,
            "entropy": self.components.entropy,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceFingerprint":
        components = FingerprintComponents(
            user_agent=data["user_agent"],
            platform=data["platform"],
            timezone=data["timezone"],
            language=data.get("language"),
            screen_resolution=data.get("screen_resolution"),
            entropy=data.get("entropy"),
        )
        return cls.from_existing(data["id"], components)

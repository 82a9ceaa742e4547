"""
Signing Key Providers
=====================
Supply the symmetric keys magic link tokens are signed and verified with.

Usage:
    from authkit_core.secrets import VaultKeyProvider

    provider = VaultKeyProvider(url="https://vault.example.com", token="...")
    keys = provider.get_signing_keys()   # current + previous for rotation grace
    provider.rotate_key(new_key)

CRITICAL: Key material is never logged.
"""

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, Tuple

import hvac
import hvac.exceptions
import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SigningKeys:
    """
    Active signing key plus keys still accepted for verification.

    Tokens are always signed with ``current``; ``previous`` keys cover the
    grace window after a rotation.
    """
    current: str
    previous: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.current:
            raise ValueError("A current signing key is required")

    @property
    def verification_keys(self) -> Tuple[str, ...]:
        return (self.current,) + tuple(k for k in self.previous if k and k != self.current)


class KeyProvider(Protocol):
    def get_signing_keys(self) -> SigningKeys:
        ...


class StaticKeyProvider:
    """Fixed keys, for tests and single-instance deployments."""

    def __init__(self, current: str, *previous: str):
        self._keys = SigningKeys(current=current, previous=tuple(previous))

    def get_signing_keys(self) -> SigningKeys:
        return self._keys


class EnvKeyProvider:
    """Keys from ``AUTHKIT_MAGIC_LINK_SECRET`` and ``AUTHKIT_MAGIC_LINK_PREVIOUS_SECRET``."""

    def __init__(
        self,
        current_var: str = "AUTHKIT_MAGIC_LINK_SECRET",
        previous_var: str = "AUTHKIT_MAGIC_LINK_PREVIOUS_SECRET",
    ):
        self.current_var = current_var
        self.previous_var = previous_var

    def get_signing_keys(self) -> SigningKeys:
        current = os.environ.get(self.current_var, "")
        if not current:
            raise ValueError(f"{self.current_var} is not set")
        previous = os.environ.get(self.previous_var, "")
        return SigningKeys(current=current, previous=(previous,) if previous else ())


class VaultKeyProvider:
    """
    Rotating keys stored in HashiCorp Vault KV v2.

    The secret at ``rotating-keys/<key_type>`` holds ``current_key``,
    ``previous_key`` and ``rotated_at``.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        mount_point: str = "authkit",
        key_type: str = "magic-link",
        client: Optional[hvac.Client] = None,
    ):
        self.url = url or os.environ.get("VAULT_ADDR", "http://127.0.0.1:8200")
        self.token = token or os.environ.get("VAULT_TOKEN")
        self.mount_point = mount_point
        self.key_type = key_type
        self._client = client

    @property
    def client(self) -> hvac.Client:
        """Lazy-loaded Vault client."""
        if self._client is None:
            self._client = hvac.Client(url=self.url, token=self.token)
            if not self._client.is_authenticated():
                raise ValueError("Vault authentication failed. Check VAULT_TOKEN.")
        return self._client

    @property
    def path(self) -> str:
        return f"rotating-keys/{self.key_type}"

    def _read(self) -> Dict[str, Any]:
        try:
            secret = self.client.secrets.kv.v2.read_secret_version(
                path=self.path,
                mount_point=self.mount_point,
            )
        except hvac.exceptions.InvalidPath:
            logger.error("signing_key_not_found", mount_point=self.mount_point, path=self.path)
            raise
        return secret["data"]["data"]

    def get_signing_keys(self) -> SigningKeys:
        data = self._read()
        previous = data.get("previous_key") or ""
        return SigningKeys(
            current=data.get("current_key", ""),
            previous=(previous,) if previous else (),
        )

    def rotate_key(self, new_key: str) -> None:
        """Move the current key to previous and store ``new_key`` as current."""
        try:
            previous_key = self._read().get("current_key", "")
        except hvac.exceptions.InvalidPath:
            previous_key = ""

        self.client.secrets.kv.v2.create_or_update_secret(
            path=self.path,
            secret={
                "current_key": new_key,
                "previous_key": previous_key,
                "rotated_at": datetime.now(timezone.utc).isoformat(),
            },
            mount_point=self.mount_point,
        )
        logger.info("signing_key_rotated", key_type=self.key_type, had_previous=bool(previous_key))

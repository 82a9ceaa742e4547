"""
Device Trust Service
====================
Bind, revoke and recognise user devices, and decide when a returning,
trusted device may skip a challenge.
"""

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

import structlog

from .fingerprint import DeviceFingerprint, FingerprintComponents, compute_fingerprint_hash
from .models import Device

if TYPE_CHECKING:
    from ..stores.base import DeviceStore

logger = structlog.get_logger(__name__)


class DeviceTrustService:
    """
    Usage:
        devices = DeviceTrustService(InMemoryDeviceStore())
        device = await devices.bind(user_id, components)
        if await devices.can_skip_challenge(user_id, components):
            ...
    """

    def __init__(self, store: "DeviceStore", max_days_inactive: int = 90, strict_matching: bool = False):
        self.store = store
        self.max_days_inactive = max_days_inactive
        self.strict_matching = strict_matching

    async def bind(
        self,
        user_id: str,
        components: FingerprintComponents,
        push_token: Optional[str] = None,
        trusted: bool = True,
        now: Optional[datetime] = None,
    ) -> Device:
        """
        Bind a device to a user.

        A device already bound with the same fingerprint hash is re-used and
        marked seen; its trust is set to ``trusted``.
        """
        existing = await self.store.get_by_fingerprint(user_id, compute_fingerprint_hash(components))
        if existing is not None:
            existing.mark_as_seen(now)
            if trusted:
                existing.trust()
            else:
                existing.revoke(now)
            if push_token:
                existing.update_push_token(push_token)
            await self.store.upsert(existing)
            logger.info("device_rebound", user_id=user_id, device_id=existing.id, trusted=existing.is_trusted)
            return existing

        device = Device.create(
            user_id=user_id,
            fingerprint=DeviceFingerprint.create(components),
            push_token=push_token,
            trusted=trusted,
            now=now,
        )
        await self.store.upsert(device)
        logger.info("device_bound", user_id=user_id, device_id=device.id, trusted=trusted)
        return device

    async def revoke(self, user_id: str, device_id: str, now: Optional[datetime] = None) -> bool:
        revoked = await self.store.revoke(user_id, device_id, now)
        if revoked:
            logger.info("device_revoked", user_id=user_id, device_id=device_id)
        return revoked

    async def trust(self, user_id: str, device_id: str) -> bool:
        trusted = await self.store.trust(user_id, device_id)
        if trusted:
            logger.info("device_trusted", user_id=user_id, device_id=device_id)
        return trusted

    async def get(self, user_id: str, device_id: str) -> Optional[Device]:
        return await self.store.get_by_user_and_device_id(user_id, device_id)

    async def list_devices(self, user_id: str) -> List[Device]:
        return await self.store.list_by_user(user_id)

    async def list_trusted(self, user_id: str) -> List[Device]:
        return [d for d in await self.store.list_by_user(user_id) if d.is_trusted]

    async def recognize(
        self,
        user_id: str,
        components: FingerprintComponents,
        strict: Optional[bool] = None,
    ) -> Optional[Device]:
        """
        Find the user's device matching the presented components.

        An exact hash match always wins; otherwise fuzzy matching (user agent,
        platform and timezone) applies unless ``strict``.
        """
        strict = self.strict_matching if strict is None else strict

        exact = await self.store.get_by_fingerprint(user_id, compute_fingerprint_hash(components))
        if exact is not None or strict:
            return exact

        presented = DeviceFingerprint.create(components)
        candidates = [d for d in await self.store.list_by_user(user_id) if d.fingerprint.matches(presented)]
        if not candidates:
            return None
        # Prefer the most recently seen device
        return max(candidates, key=lambda d: d.last_seen_at)

    async def can_skip_challenge(
        self,
        user_id: str,
        components: FingerprintComponents,
        now: Optional[datetime] = None,
        strict: bool = True,
    ) -> bool:
        """
        True if the device is recognised, effectively trusted and not stale. Marks it seen.

        Only an exact fingerprint match skips the challenge unless ``strict`` is False.
        """
        device = await self.recognize(user_id, components, strict=strict)
        if device is None or not device.is_trusted:
            return False
        if device.is_stale(self.max_days_inactive, now):
            logger.info("device_stale", user_id=user_id, device_id=device.id)
            return False

        device.mark_as_seen(now)
        await self.store.upsert(device)
        return True

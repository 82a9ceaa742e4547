"""
Shared fixtures for authkit-core tests.
"""

from datetime import datetime, timezone
from typing import List

import pytest

from authkit_core.abuse_detector import AbuseDetector
from authkit_core.device.service import DeviceTrustService
from authkit_core.flow import AuthFlow, DeliveryError, DeliveryMessage
from authkit_core.identifier import Identifier
from authkit_core.magic_link.token import MagicLinkTokenService
from authkit_core.otp.engine import ChallengeEngine
from authkit_core.rate_limit.limiter import RateLimiter
from authkit_core.secrets import StaticKeyProvider
from authkit_core.stores.memory import (
    InMemoryBounceStore,
    InMemoryChallengeStore,
    InMemoryCounterStore,
    InMemoryDenylistStore,
    InMemoryDeviceStore,
    InMemoryRedeemedTokenStore,
)
from authkit_core.suppression.denylist import DenylistService

SIGNING_KEY = "test-signing-key-0123456789abcdef0123456789"
PREVIOUS_SIGNING_KEY = "old-signing-key-fedcba9876543210fedcba98765"
BASE_URL = "https://app.example.com"


class RecordingDelivery:
    """Delivery provider that keeps every message in memory."""

    def __init__(self, fail: bool = False, raise_error: bool = False):
        self.messages: List[DeliveryMessage] = []
        self.fail = fail
        self.raise_error = raise_error

    async def deliver(self, message: DeliveryMessage) -> bool:
        if self.raise_error:
            raise DeliveryError("provider unavailable")
        self.messages.append(message)
        return not self.fail

    @property
    def last(self) -> DeliveryMessage:
        return self.messages[-1]


@pytest.fixture
def now():
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def phone():
    return Identifier.create("+14155551234")


@pytest.fixture
def email():
    return Identifier.create("John.Doe@Example.com")


@pytest.fixture
def challenge_store():
    return InMemoryChallengeStore()


@pytest.fixture
def counter_store():
    return InMemoryCounterStore()


@pytest.fixture
def device_store():
    return InMemoryDeviceStore()


@pytest.fixture
def denylist_store():
    return InMemoryDenylistStore()


@pytest.fixture
def bounce_store():
    return InMemoryBounceStore()


@pytest.fixture
def redeemed_store():
    return InMemoryRedeemedTokenStore()


@pytest.fixture
def engine(challenge_store):
    return ChallengeEngine(challenge_store)


@pytest.fixture
def token_service():
    return MagicLinkTokenService(StaticKeyProvider(SIGNING_KEY))


@pytest.fixture
def delivery():
    return RecordingDelivery()


@pytest.fixture
def flow(engine, counter_store, denylist_store, device_store, token_service, redeemed_store, delivery):
    return AuthFlow(
        engine=engine,
        limiter=RateLimiter(counter_store),
        abuse_detector=AbuseDetector(InMemoryCounterStore()),
        denylist=DenylistService(denylist_store),
        token_service=token_service,
        redeemed_tokens=redeemed_store,
        delivery=delivery,
        base_url=BASE_URL,
        devices=DeviceTrustService(device_store),
    )

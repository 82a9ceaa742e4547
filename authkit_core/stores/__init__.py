"""
Stores
======
Storage contracts and their in-memory and Redis implementations.
"""

from .base import (
    BounceStore,
    ChallengeStore,
    CounterStore,
    CounterValue,
    DenylistStore,
    DeviceStore,
    DuplicateChallengeError,
    RedeemedTokenStore,
)
from .memory import (
    InMemoryBounceStore,
    InMemoryChallengeStore,
    InMemoryCounterStore,
    InMemoryDenylistStore,
    InMemoryDeviceStore,
    InMemoryRedeemedTokenStore,
)
from .redis import (
    RedisBounceStore,
    RedisChallengeStore,
    RedisCounterStore,
    RedisDenylistStore,
    RedisDeviceStore,
    RedisRedeemedTokenStore,
    create_redis_client,
)

__all__ = [
    # Contracts
    "BounceStore",
    "ChallengeStore",
    "CounterStore",
    "CounterValue",
    "DenylistStore",
    "DeviceStore",
    "DuplicateChallengeError",
    "RedeemedTokenStore",
    # In-memory
    "InMemoryBounceStore",
    "InMemoryChallengeStore",
    "InMemoryCounterStore",
    "InMemoryDenylistStore",
    "InMemoryDeviceStore",
    "InMemoryRedeemedTokenStore",
    # Redis
    "RedisBounceStore",
    "RedisChallengeStore",
    "RedisCounterStore",
    "RedisDenylistStore",
    "RedisDeviceStore",
    "RedisRedeemedTokenStore",
    "create_redis_client",
]

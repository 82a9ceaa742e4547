"""
Redis Store Tests
=================
Atomic store operations against a live Redis.

Set ``AUTHKIT_TEST_REDIS_URL`` (e.g. ``redis://localhost:6379/15``) to run
them; keys are namespaced per test with random ids.
"""

import asyncio
import os
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from authkit_core.errors import StorageError
from authkit_core.identifier import Identifier
from authkit_core.otp.models import ChallengeChannel, ChallengeIntent, ChallengeStatus, OTPChallenge
from authkit_core.stores.base import DuplicateChallengeError
from authkit_core.stores.redis import (
    RedisBounceStore,
    RedisChallengeStore,
    RedisCounterStore,
    RedisDenylistStore,
    RedisRedeemedTokenStore,
    create_redis_client,
)
from authkit_core.suppression.models import BounceRecord, BounceType

REDIS_URL = os.environ.get("AUTHKIT_TEST_REDIS_URL")

requires_redis = pytest.mark.skipif(not REDIS_URL, reason="AUTHKIT_TEST_REDIS_URL not set")


def utcnow():
    return datetime.now(timezone.utc)


def unique_phone() -> Identifier:
    return Identifier.create(f"+1415{uuid.uuid4().int % 10**7:07d}")


class TestStorageErrors:
    """Tests for Redis failure translation."""

    @pytest.mark.asyncio
    async def test_connection_failure_raises_storage_error(self):
        client = create_redis_client("redis://127.0.0.1:1/0")
        store = RedisCounterStore(client)

        with pytest.raises(StorageError) as exc_info:
            await store.increment("k", 60)

        assert exc_info.value.operation == "counter.increment"
        await client.aclose()


@requires_redis
class TestRedisChallengeStore:
    """Tests for the Lua-backed challenge store."""

    @pytest.mark.asyncio
    async def test_create_get_and_duplicate(self):
        client = create_redis_client(REDIS_URL)
        store = RedisChallengeStore(client)
        challenge = OTPChallenge.create(unique_phone(), ChallengeChannel.SMS, ChallengeIntent.LOGIN, "123456")

        await store.create(challenge)
        with pytest.raises(DuplicateChallengeError):
            await store.create(challenge)

        assert await store.get_by_id(challenge.id) == challenge
        await client.aclose()

    @pytest.mark.asyncio
    async def test_concurrent_verification_succeeds_once(self):
        client = create_redis_client(REDIS_URL)
        store = RedisChallengeStore(client)
        challenge = OTPChallenge.create(unique_phone(), ChallengeChannel.SMS, ChallengeIntent.LOGIN, "123456")
        await store.create(challenge)

        results = await asyncio.gather(*(store.verify_and_consume(challenge.id, "123456") for _ in range(20)))

        assert results.count(True) == 1
        assert (await store.get_by_id(challenge.id)).status == ChallengeStatus.VERIFIED
        await client.aclose()

    @pytest.mark.asyncio
    async def test_wrong_codes_fail_challenge(self):
        client = create_redis_client(REDIS_URL)
        store = RedisChallengeStore(client)
        challenge = OTPChallenge.create(
            unique_phone(), ChallengeChannel.SMS, ChallengeIntent.LOGIN, "123456", max_attempts=2
        )
        await store.create(challenge)

        assert await store.verify_and_consume(challenge.id, "000000") is False
        assert await store.verify_and_consume(challenge.id, "000000") is False
        assert await store.verify_and_consume(challenge.id, "123456") is False

        stored = await store.get_by_id(challenge.id)
        assert stored.status == ChallengeStatus.FAILED
        assert stored.attempts == 2
        await client.aclose()

    @pytest.mark.asyncio
    async def test_resend_and_active_lookup(self):
        client = create_redis_client(REDIS_URL)
        store = RedisChallengeStore(client)
        identifier = unique_phone()
        challenge = OTPChallenge.create(
            identifier, ChallengeChannel.SMS, ChallengeIntent.LOGIN, "123456", max_resends=1
        )
        await store.create(challenge)

        assert (await store.get_active_by_identifier(identifier.hash)).id == challenge.id
        assert await store.resend(challenge.id, "654321") is True
        assert await store.resend(challenge.id, "111111") is False
        assert await store.verify_and_consume(challenge.id, "654321") is True
        assert await store.get_active_by_identifier(identifier.hash) is None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_active_lookup_past_many_terminal_challenges(self):
        """A pending challenge is found behind more than a page of newer finished ones."""
        client = create_redis_client(REDIS_URL)
        store = RedisChallengeStore(client)
        identifier = unique_phone()
        base = utcnow()
        pending = OTPChallenge.create(
            identifier, ChallengeChannel.SMS, ChallengeIntent.LOGIN, "123456",
            validity=timedelta(minutes=10), now=base,
        )
        await store.create(pending)
        for i in range(1, 61):
            finished = OTPChallenge.create(
                identifier, ChallengeChannel.SMS, ChallengeIntent.LOGIN, "654321",
                validity=timedelta(minutes=10), now=base + timedelta(seconds=i),
            )
            await store.create(finished)
            assert await store.verify_and_consume(finished.id, "654321", base + timedelta(seconds=i)) is True

        active = await store.get_active_by_identifier(identifier.hash, base + timedelta(minutes=2))

        assert active is not None
        assert active.id == pending.id
        await client.aclose()


@requires_redis
class TestRedisCounterStore:
    """Tests for the fixed-window counter script."""

    @pytest.mark.asyncio
    async def test_concurrent_increments(self):
        client = create_redis_client(REDIS_URL)
        store = RedisCounterStore(client)
        key = f"test:{uuid.uuid4().hex}"

        results = await asyncio.gather(*(store.increment(key, 60) for _ in range(30)))

        assert sorted(r.count for r in results) == list(range(1, 31))
        assert len({r.expires_at for r in results}) == 1
        await store.reset(key)
        assert await store.get(key) is None
        await client.aclose()


@requires_redis
class TestRedisSuppressionStores:
    """Tests for denylist, bounce and redeemed-token stores."""

    @pytest.mark.asyncio
    async def test_denylist_expiry(self):
        client = create_redis_client(REDIS_URL)
        store = RedisDenylistStore(client)
        identifier_hash = uuid.uuid4().hex
        now = utcnow()

        await store.add(identifier_hash, "cooldown", now + timedelta(hours=1))

        assert (await store.is_blocked(identifier_hash, now)).blocked is True
        assert (await store.is_blocked(identifier_hash, now + timedelta(hours=2))).blocked is False
        await store.remove(identifier_hash)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_bounce_dedup(self):
        client = create_redis_client(REDIS_URL)
        store = RedisBounceStore(client)
        record = BounceRecord(
            identifier_hash=uuid.uuid4().hex,
            bounce_type=BounceType.PERMANENT,
            message_id="msg-1",
            timestamp=utcnow(),
        )

        assert await store.record_bounce(record) is True
        assert await store.record_bounce(record) is False
        assert await store.get_bounce_count(record.identifier_hash, BounceType.PERMANENT) == 1
        assert (await store.get_last_bounce(record.identifier_hash)).message_id == "msg-1"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_redeemed_token_single_use(self):
        client = create_redis_client(REDIS_URL)
        store = RedisRedeemedTokenStore(client)
        token_id = uuid.uuid4().hex
        expires_at = utcnow() + timedelta(minutes=15)

        results = await asyncio.gather(*(store.mark_redeemed(token_id, expires_at) for _ in range(10)))

        assert results.count(True) == 1
        assert await store.is_redeemed(token_id) is True
        await client.aclose()

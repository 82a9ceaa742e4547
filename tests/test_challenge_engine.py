"""
Challenge Engine Tests
======================
Engine behaviour against the in-memory challenge store, including the
exactly-once verification property under concurrency.
"""

import asyncio
from datetime import timedelta

import pytest

from authkit_core.otp.engine import ChallengeEngine
from authkit_core.otp.models import ChallengeChannel, ChallengeIntent, ChallengeStatus, OTPConfig
from authkit_core.stores.base import DuplicateChallengeError
from authkit_core.stores.memory import InMemoryChallengeStore


class TestChallengeEngine:
    """Tests for challenge creation and verification."""

    @pytest.mark.asyncio
    async def test_issue_returns_plaintext_once(self, engine, phone, now):
        """The plaintext code is returned to the caller but never stored."""
        challenge, code = await engine.issue(phone, ChallengeChannel.SMS, ChallengeIntent.LOGIN, now=now)

        stored = await engine.get(challenge.id)
        assert len(code) == 6
        assert code not in stored.to_dict().values()
        assert stored.status == ChallengeStatus.PENDING

    @pytest.mark.asyncio
    async def test_config_is_applied(self, phone, now):
        engine = ChallengeEngine(
            InMemoryChallengeStore(),
            OTPConfig(length=8, validity_seconds=60, max_attempts=5, max_resends=1),
        )

        challenge, code = await engine.issue(phone, ChallengeChannel.SMS, ChallengeIntent.BIND, now=now)

        assert len(code) == 8
        assert challenge.expires_at == now + timedelta(seconds=60)
        assert challenge.max_attempts == 5
        assert challenge.max_resends == 1

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, challenge_store, engine, phone, now):
        challenge, _ = await engine.issue(phone, ChallengeChannel.SMS, ChallengeIntent.LOGIN, now=now)

        with pytest.raises(DuplicateChallengeError):
            await challenge_store.create(challenge)

    @pytest.mark.asyncio
    async def test_verify_correct_code(self, engine, phone, now):
        challenge, code = await engine.issue(phone, ChallengeChannel.SMS, ChallengeIntent.LOGIN, now=now)

        assert await engine.verify_and_consume(challenge.id, code, now) is True
        assert (await engine.get(challenge.id)).status == ChallengeStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_verify_unknown_challenge(self, engine, now):
        assert await engine.verify_and_consume("missing", "123456", now) is False

    @pytest.mark.asyncio
    async def test_concurrent_verification_succeeds_exactly_once(self, engine, phone, now):
        """N concurrent verifications with the correct code yield exactly one success."""
        challenge, code = await engine.issue(phone, ChallengeChannel.SMS, ChallengeIntent.LOGIN, now=now)

        results = await asyncio.gather(
            *(engine.verify_and_consume(challenge.id, code, now) for _ in range(25))
        )

        assert results.count(True) == 1
        assert results.count(False) == 24

    @pytest.mark.asyncio
    async def test_attempt_exhaustion(self, engine, phone, now):
        """Three wrong codes fail the challenge; a fourth call with the right code fails."""
        challenge = await engine.create(
            phone, ChallengeChannel.SMS, ChallengeIntent.LOGIN, "123456", max_attempts=3, now=now
        )

        for _ in range(3):
            assert await engine.verify_and_consume(challenge.id, "000000", now) is False

        stored = await engine.get(challenge.id)
        assert stored.status == ChallengeStatus.FAILED
        assert await engine.verify_and_consume(challenge.id, "123456", now) is False

    @pytest.mark.asyncio
    async def test_expired_challenge_rejects_correct_code(self, engine, phone, now):
        challenge = await engine.create(
            phone,
            ChallengeChannel.SMS,
            ChallengeIntent.LOGIN,
            "123456",
            validity=timedelta(minutes=-1),
            now=now,
        )

        assert await engine.verify_and_consume(challenge.id, "123456", now) is False
        assert (await engine.get(challenge.id)).status == ChallengeStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_resend_cap(self, engine, phone, now):
        """max_resends=2: two resends succeed, the third is rejected without changing the code."""
        challenge = await engine.create(
            phone, ChallengeChannel.SMS, ChallengeIntent.LOGIN, "123456", max_resends=2, now=now
        )

        assert await engine.resend(challenge.id, "111111", now) is True
        assert await engine.resend(challenge.id, "222222", now) is True
        before = (await engine.get(challenge.id)).code_hash

        assert await engine.resend(challenge.id, "333333", now) is False
        after = await engine.get(challenge.id)
        assert after.code_hash == before
        assert await engine.verify_and_consume(challenge.id, "222222", now) is True

    @pytest.mark.asyncio
    async def test_resend_rejected_for_terminal_challenge(self, engine, phone, now):
        challenge, code = await engine.issue(phone, ChallengeChannel.SMS, ChallengeIntent.LOGIN, now=now)
        await engine.verify_and_consume(challenge.id, code, now)

        assert await engine.resend(challenge.id, "111111", now) is False


class TestChallengeLookup:
    """Tests for active challenge lookup and housekeeping."""

    @pytest.mark.asyncio
    async def test_get_active_returns_newest_pending(self, engine, phone, now):
        older = await engine.create(phone, ChallengeChannel.SMS, ChallengeIntent.LOGIN, "111111", now=now)
        newer = await engine.create(
            phone, ChallengeChannel.SMS, ChallengeIntent.LOGIN, "222222", now=now + timedelta(seconds=30)
        )

        active = await engine.get_active(phone, now + timedelta(seconds=31))

        assert active.id == newer.id
        assert active.id != older.id

    @pytest.mark.asyncio
    async def test_get_active_skips_expired_and_terminal(self, engine, phone, now):
        challenge = await engine.create(phone, ChallengeChannel.SMS, ChallengeIntent.LOGIN, "111111", now=now)

        assert await engine.get_active(phone, challenge.expires_at) is None

        await engine.verify_and_consume(challenge.id, "111111", now)
        assert await engine.get_active(phone, now) is None

    @pytest.mark.asyncio
    async def test_expire_marks_pending_only(self, engine, phone, now):
        challenge = await engine.create(phone, ChallengeChannel.SMS, ChallengeIntent.LOGIN, "111111", now=now)

        await engine.expire(challenge.id)

        assert (await engine.get(challenge.id)).status == ChallengeStatus.EXPIRED
        assert await engine.verify_and_consume(challenge.id, "111111", now) is False

    @pytest.mark.asyncio
    async def test_redeliver_counts_sends(self, engine, phone, now):
        challenge = await engine.create(phone, ChallengeChannel.SMS, ChallengeIntent.LOGIN, "111111", now=now)

        assert await engine.redeliver(challenge.id) == 1
        assert await engine.redeliver(challenge.id) == 2
        assert await engine.redeliver("missing") == 0

    @pytest.mark.asyncio
    async def test_delete(self, engine, phone, now):
        challenge = await engine.create(phone, ChallengeChannel.SMS, ChallengeIntent.LOGIN, "111111", now=now)

        await engine.delete(challenge.id)
        await engine.delete(challenge.id)

        assert await engine.get(challenge.id) is None

    @pytest.mark.asyncio
    async def test_stored_copy_is_isolated(self, engine, phone, now):
        """Mutating a returned challenge does not change the store."""
        challenge = await engine.create(phone, ChallengeChannel.SMS, ChallengeIntent.LOGIN, "111111", now=now)
        fetched = await engine.get(challenge.id)
        fetched.status = ChallengeStatus.VERIFIED

        assert (await engine.get(challenge.id)).status == ChallengeStatus.PENDING

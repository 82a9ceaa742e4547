"""
OTP Tests
=========
Code generation, hashing and the challenge state machine.
"""

from datetime import timedelta

import pytest

from authkit_core.otp.hashing import generate_code, generate_salt, hash_code, verify_code_hash
from authkit_core.otp.models import (
    ChallengeChannel,
    ChallengeIntent,
    ChallengeStatus,
    OTPChallenge,
)


def make_challenge(identifier, now, code="123456", **kwargs):
    return OTPChallenge.create(
        identifier=identifier,
        channel=ChallengeChannel.SMS,
        intent=ChallengeIntent.LOGIN,
        code=code,
        now=now,
        **kwargs,
    )


class TestCodeGeneration:
    """Tests for numeric code generation."""

    def test_fixed_length_numeric(self):
        """Codes always have exactly the requested number of digits."""
        for _ in range(200):
            code = generate_code(6)
            assert len(code) == 6
            assert code.isdigit()
            assert code[0] != "0"

    def test_single_digit(self):
        assert len(generate_code(1)) == 1

    def test_single_digit_range(self, monkeypatch):
        """One-digit codes span 1..9, never 0."""
        from authkit_core.otp import hashing

        monkeypatch.setattr(hashing.secrets, "randbelow", lambda n: 0)
        assert generate_code(1) == "1"

        monkeypatch.setattr(hashing.secrets, "randbelow", lambda n: n - 1)
        assert generate_code(1) == "9"

    def test_invalid_length(self):
        with pytest.raises(ValueError):
            generate_code(0)

    def test_codes_vary(self):
        """Codes come from a random source."""
        assert len({generate_code(8) for _ in range(50)}) > 1


class TestCodeHashing:
    """Tests for salted code hashes."""

    def test_hash_is_not_plaintext(self):
        salt = generate_salt()
        code_hash = hash_code("123456", salt)

        assert "123456" not in code_hash
        assert len(code_hash) == 64

    def test_verify(self):
        salt = generate_salt()
        code_hash = hash_code("123456", salt)

        assert verify_code_hash("123456", salt, code_hash) is True
        assert verify_code_hash("654321", salt, code_hash) is False

    def test_salt_changes_hash(self):
        """Same code under different salts hashes differently."""
        assert hash_code("123456", generate_salt()) != hash_code("123456", generate_salt())


class TestChallengeStateMachine:
    """Tests for OTPChallenge transitions."""

    def test_create_defaults(self, phone, now):
        """New challenges are pending with zero attempts and resends."""
        challenge = make_challenge(phone, now)

        assert challenge.status == ChallengeStatus.PENDING
        assert challenge.attempts == 0
        assert challenge.resend_count == 0
        assert challenge.expires_at == now + timedelta(minutes=5)
        assert challenge.code_hash != "123456"
        assert challenge.identifier_hash == phone.hash

    def test_correct_code_verifies(self, phone, now):
        challenge = make_challenge(phone, now)

        assert challenge.consume("123456", now) is True
        assert challenge.status == ChallengeStatus.VERIFIED
        assert challenge.verified_at == now

    def test_terminal_state_never_changes(self, phone, now):
        """A verified challenge rejects even the correct code."""
        challenge = make_challenge(phone, now)
        challenge.consume("123456", now)

        assert challenge.consume("123456", now) is False
        assert challenge.status == ChallengeStatus.VERIFIED
        challenge.mark_expired()
        assert challenge.status == ChallengeStatus.VERIFIED

    def test_wrong_codes_exhaust_attempts(self, phone, now):
        """Three wrong codes fail the challenge; the correct code then fails too."""
        challenge = make_challenge(phone, now, max_attempts=3)

        for _ in range(3):
            assert challenge.consume("000000", now) is False

        assert challenge.status == ChallengeStatus.FAILED
        assert challenge.attempts == 3
        assert challenge.consume("123456", now) is False

    def test_negative_validity_is_expired(self, phone, now):
        """A challenge created already past expiry never verifies."""
        challenge = make_challenge(phone, now, validity=timedelta(minutes=-1))

        assert challenge.is_expired(now) is True
        assert challenge.consume("123456", now) is False
        assert challenge.status == ChallengeStatus.EXPIRED
        assert challenge.attempts == 0

    def test_expiry_boundary(self, phone, now):
        """Expired at exactly expires_at."""
        challenge = make_challenge(phone, now)

        assert challenge.is_expired(challenge.expires_at - timedelta(seconds=1)) is False
        assert challenge.is_expired(challenge.expires_at) is True

    def test_predicates_do_not_mutate(self, phone, now):
        challenge = make_challenge(phone, now, validity=timedelta(minutes=-1))

        challenge.is_expired(now)
        challenge.can_attempt(now)
        challenge.can_resend(now)

        assert challenge.status == ChallengeStatus.PENDING

    def test_resend_cap(self, phone, now):
        """max_resends=2 allows two resends; the third leaves the hash alone."""
        challenge = make_challenge(phone, now, max_resends=2)

        assert challenge.resend("111111", now) is True
        assert challenge.resend("222222", now) is True
        code_hash = challenge.code_hash

        assert challenge.resend("333333", now) is False
        assert challenge.code_hash == code_hash
        assert challenge.resend_count == 2

    def test_resend_resets_attempts_and_replaces_code(self, phone, now):
        challenge = make_challenge(phone, now)
        challenge.consume("000000", now)

        assert challenge.resend("654321", now) is True
        assert challenge.attempts == 0
        assert challenge.matches_code("123456") is False
        assert challenge.consume("654321", now) is True

    def test_resend_rejected_after_expiry(self, phone, now):
        challenge = make_challenge(phone, now)

        assert challenge.resend("654321", challenge.expires_at) is False

    def test_dict_round_trip(self, phone, now):
        """Persistence mapping preserves every field."""
        challenge = make_challenge(phone, now, ip_hash="abc", device_id="dev-1")
        challenge.consume("000000", now)

        restored = OTPChallenge.from_dict(challenge.to_dict())

        assert restored == challenge

    def test_public_dict_hides_secrets(self, phone, now):
        public = make_challenge(phone, now).to_public_dict(now)

        assert "code_hash" not in public
        assert "salt" not in public
        assert public["can_attempt"] is True

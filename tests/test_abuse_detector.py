"""
Abuse Detector Tests
====================
Signal weights, thresholds and counter handling of the risk scorer.
"""

from datetime import timedelta

import pytest

from authkit_core.abuse_detector import (
    AbuseAction,
    AbuseCheckParams,
    AbuseDetector,
    AbusePolicy,
)
from authkit_core.stores.memory import InMemoryCounterStore

BROWSER_UA = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) AppleWebKit/605.1.15"


def params(identifier_hash="h1", ip="203.0.113.7", now=None, **kwargs):
    return AbuseCheckParams(identifier_hash=identifier_hash, ip=ip, timestamp=now, **kwargs)


@pytest.fixture
def detector():
    return AbuseDetector(InMemoryCounterStore())


class TestScoring:
    """Tests for individual signals and their weights."""

    @pytest.mark.asyncio
    async def test_clean_request_allowed(self, detector, now):
        result = await detector.check(params(now=now, user_agent=BROWSER_UA, geo_country="US"))

        assert result.risk_score == 0.0
        assert result.action == AbuseAction.ALLOW
        assert result.suspicious is False
        assert result.reasons == []

    @pytest.mark.asyncio
    async def test_identifier_velocity(self, detector, now):
        """The 11th request per window trips identifier velocity (0.3)."""
        for i in range(10):
            result = await detector.check(params(ip=f"10.0.0.{i}", now=now))
        assert result.risk_score == 0.0

        result = await detector.check(params(ip="10.0.1.1", now=now))
        assert result.risk_score == 0.3
        assert result.signals["identifier_velocity"] == 11
        assert result.action == AbuseAction.ALLOW

    @pytest.mark.asyncio
    async def test_ip_velocity(self, detector, now):
        """The 21st request from one IP trips IP velocity (0.2)."""
        for i in range(20):
            await detector.check(params(identifier_hash=f"user-{i}", now=now))

        result = await detector.check(params(identifier_hash="user-x", now=now))
        assert result.risk_score == 0.2
        assert result.signals["ip_velocity"] == 21

    @pytest.mark.asyncio
    async def test_geo_velocity_counts_distinct_countries(self, detector, now):
        """Repeat countries do not count; the 6th distinct country trips geo velocity."""
        for country in ["US", "US", "GB", "FR", "DE", "US", "ES"]:
            result = await detector.check(params(ip=f"ip-{country}", now=now, geo_country=country))
        assert result.signals["geo_velocity"] == 5
        assert result.risk_score == 0.0

        result = await detector.check(params(ip="ip-it", now=now, geo_country="IT"))
        assert result.signals["geo_velocity"] == 6
        assert result.risk_score == 0.2

    @pytest.mark.asyncio
    async def test_bot_user_agent(self, detector, now):
        result = await detector.check(params(now=now, user_agent="Googlebot/2.1 (+http://www.google.com/bot.html)"))

        assert result.risk_score == 0.1
        assert any("Suspicious user agent" in r for r in result.reasons)

    @pytest.mark.asyncio
    async def test_empty_user_agent_is_suspicious(self, detector, now):
        result = await detector.check(params(now=now, user_agent=""))

        assert result.risk_score == 0.1
        assert "User agent too short or missing" in result.reasons

    @pytest.mark.asyncio
    async def test_missing_user_agent_not_evaluated(self, detector, now):
        result = await detector.check(params(now=now, user_agent=None))

        assert result.risk_score == 0.0


class TestActions:
    """Tests for threshold mapping and policy."""

    @pytest.mark.asyncio
    async def test_combined_signals_challenge(self, now):
        """Identifier (0.3) + IP (0.2) = 0.5 requires a challenge."""
        detector = AbuseDetector(
            InMemoryCounterStore(),
            AbusePolicy(identifier_velocity_threshold=1, ip_velocity_threshold=1),
        )
        await detector.check(params(now=now))

        result = await detector.check(params(now=now))

        assert result.risk_score == 0.5
        assert result.action == AbuseAction.CHALLENGE
        assert result.suspicious is True

    @pytest.mark.asyncio
    async def test_all_signals_block(self, now):
        detector = AbuseDetector(
            InMemoryCounterStore(),
            AbusePolicy(identifier_velocity_threshold=1, ip_velocity_threshold=1, geo_velocity_threshold=1),
        )
        await detector.check(params(now=now, geo_country="US"))

        result = await detector.check(params(now=now, geo_country="BR", user_agent="curl/8"))

        assert result.risk_score == 0.8
        assert result.action == AbuseAction.BLOCK

    @pytest.mark.asyncio
    async def test_score_is_clamped(self, now):
        detector = AbuseDetector(
            InMemoryCounterStore(),
            AbusePolicy(identifier_velocity_threshold=0, identifier_velocity_weight=0.9, user_agent_weight=0.9),
        )

        result = await detector.check(params(now=now, user_agent="bot"))

        assert result.risk_score == 1.0

    @pytest.mark.asyncio
    async def test_window_expiry_resets_velocity(self, now):
        detector = AbuseDetector(InMemoryCounterStore(), AbusePolicy(identifier_velocity_threshold=1))
        await detector.check(params(now=now))
        tripped = await detector.check(params(ip="other", now=now))
        assert tripped.risk_score == 0.3

        later = await detector.check(params(ip="third", now=now + timedelta(hours=1)))
        assert later.risk_score == 0.0

    @pytest.mark.asyncio
    async def test_reset_counters(self, now):
        detector = AbuseDetector(InMemoryCounterStore(), AbusePolicy(identifier_velocity_threshold=1))
        await detector.check(params(now=now))

        await detector.reset_counters("h1")
        result = await detector.check(params(ip="other", now=now))

        assert result.signals["identifier_velocity"] == 1
        assert result.risk_score == 0.0

    @pytest.mark.asyncio
    async def test_geo_window_rollover_recounts_countries(self, detector, now):
        """Countries seen late in one window count again in the next."""
        countries = ["DE", "FR", "BR", "JP", "IN", "NG"]
        await detector.check(params(now=now, geo_country="US"))
        for i, country in enumerate(countries):
            await detector.check(params(now=now + timedelta(minutes=50 + i), geo_country=country))

        seen = []
        for i, country in enumerate(countries):
            result = await detector.check(params(now=now + timedelta(minutes=61 + i), geo_country=country))
            seen.append(result.signals["geo_velocity"])

        assert seen == [1, 2, 3, 4, 5, 6]
        assert "Rapid geo switching: 6 countries/window" in result.reasons

    @pytest.mark.asyncio
    async def test_reset_counters_clears_geo(self, detector, now):
        for country in ["US", "DE", "FR"]:
            await detector.check(params(now=now, geo_country=country))

        await detector.reset_counters("h1")
        later = now + timedelta(minutes=1)
        await detector.check(params(now=later, geo_country="US"))
        result = await detector.check(params(now=later, geo_country="DE"))

        assert result.signals["geo_velocity"] == 2

    def test_invalid_thresholds(self):
        with pytest.raises(ValueError):
            AbusePolicy(block_threshold=0.4, challenge_threshold=0.5)

    def test_action_for(self):
        policy = AbusePolicy()

        assert policy.action_for(0.49) == AbuseAction.ALLOW
        assert policy.action_for(0.5) == AbuseAction.CHALLENGE
        assert policy.action_for(0.79) == AbuseAction.CHALLENGE
        assert policy.action_for(0.8) == AbuseAction.BLOCK

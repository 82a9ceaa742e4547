"""
Abuse Detector
==============
Weighted heuristic risk scoring for authentication requests.

Signals are velocity counters (identifier, IP, distinct countries per
identifier) read and incremented through the counter store, plus a static
user-agent check. Each triggered signal adds its weight; the clamped sum maps
to an action. The detector only counts; acting on the result is the caller's
job.
"""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

import structlog

from .metrics import ABUSE_ACTIONS

if TYPE_CHECKING:
    from .stores.base import CounterStore, CounterValue

logger = structlog.get_logger(__name__)


class AbuseAction(str, Enum):
    ALLOW = "allow"
    CHALLENGE = "challenge"
    BLOCK = "block"


@dataclass
class AbusePolicy:
    """Tunable thresholds and weights. Same counter state always yields the same score."""
    window_seconds: int = 3600
    identifier_velocity_threshold: int = 10  # requests per window
    ip_velocity_threshold: int = 20  # requests per window from one IP
    geo_velocity_threshold: int = 5  # distinct countries per window

    identifier_velocity_weight: float = 0.3
    ip_velocity_weight: float = 0.2
    geo_velocity_weight: float = 0.2
    user_agent_weight: float = 0.1

    block_threshold: float = 0.8
    challenge_threshold: float = 0.5

    bot_user_agent_patterns: Tuple[str, ...] = ("bot", "crawler", "spider", "scraper")
    min_user_agent_length: int = 10

    def __post_init__(self):
        if not 0 <= self.challenge_threshold <= self.block_threshold <= 1:
            raise ValueError("Thresholds must satisfy 0 <= challenge <= block <= 1")

    def action_for(self, score: float) -> AbuseAction:
        if score >= self.block_threshold:
            return AbuseAction.BLOCK
        if score >= self.challenge_threshold:
            return AbuseAction.CHALLENGE
        return AbuseAction.ALLOW


@dataclass
class AbuseCheckParams:
    identifier_hash: str
    ip: str
    user_agent: Optional[str] = None
    geo_country: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass
class AbuseCheckResult:
    risk_score: float
    action: AbuseAction
    reasons: List[str] = field(default_factory=list)
    signals: Dict[str, int] = field(default_factory=dict)

    @property
    def suspicious(self) -> bool:
        return self.action != AbuseAction.ALLOW

    def to_dict(self) -> Dict[str, Any]:
        return {
            "risk_score": self.risk_score,
            "action": self.action.value,
            "suspicious": self.suspicious,
            "reasons": list(self.reasons),
        }


def hash_ip(ip: str) -> str:
    return hashlib.sha256(ip.encode()).hexdigest()[:16]


class AbuseDetector:
    """
    Usage:
        detector = AbuseDetector(InMemoryCounterStore())
        result = await detector.check(AbuseCheckParams(identifier_hash=h, ip="203.0.113.7"))
        if result.action == AbuseAction.BLOCK:
            ...
    """

    def __init__(self, store: "CounterStore", policy: Optional[AbusePolicy] = None):
        self.store = store
        self.policy = policy or AbusePolicy()
        self._bot_pattern = re.compile(
            "|".join(re.escape(p) for p in self.policy.bot_user_agent_patterns),
            re.IGNORECASE,
        ) if self.policy.bot_user_agent_patterns else None

    @staticmethod
    def _identifier_key(identifier_hash: str) -> str:
        return f"velocity:identifier:{identifier_hash}"

    @staticmethod
    def _geo_key(identifier_hash: str) -> str:
        return f"geo:identifier:{identifier_hash}"

    async def check(self, params: AbuseCheckParams) -> AbuseCheckResult:
        """Score one request. Increments the velocity counters it reads."""
        policy = self.policy
        now = params.timestamp or datetime.now(timezone.utc)
        reasons: List[str] = []
        signals: Dict[str, int] = {}
        score = 0.0

        identifier_counter = await self.store.increment(
            self._identifier_key(params.identifier_hash), policy.window_seconds, now
        )
        signals["identifier_velocity"] = identifier_counter.count
        if identifier_counter.count > policy.identifier_velocity_threshold:
            score += policy.identifier_velocity_weight
            reasons.append(f"High identifier velocity: {identifier_counter.count} requests/window")

        if params.geo_country:
            countries = await self._count_countries(params.identifier_hash, params.geo_country, now)
            signals["geo_velocity"] = countries
            if countries > policy.geo_velocity_threshold:
                score += policy.geo_velocity_weight
                reasons.append(f"Rapid geo switching: {countries} countries/window")

        ip_counter = await self.store.increment(
            f"velocity:ip:{hash_ip(params.ip)}", policy.window_seconds, now
        )
        signals["ip_velocity"] = ip_counter.count
        if ip_counter.count > policy.ip_velocity_threshold:
            score += policy.ip_velocity_weight
            reasons.append(f"High IP velocity: {ip_counter.count} requests/window")

        # None means the client sent nothing to evaluate; "" is suspicious
        if params.user_agent is not None:
            ua_reasons = self.check_user_agent(params.user_agent)
            if ua_reasons:
                score += policy.user_agent_weight
                reasons.extend(ua_reasons)

        score = round(min(max(score, 0.0), 1.0), 4)
        action = policy.action_for(score)

        ABUSE_ACTIONS.labels(action=action.value).inc()
        if reasons:
            logger.warning(
                "abuse_signals_detected",
                identifier_hash=params.identifier_hash,
                risk_score=score,
                action=action.value,
                reasons=reasons,
            )

        return AbuseCheckResult(risk_score=score, action=action, reasons=reasons, signals=signals)

    async def _count_countries(self, identifier_hash: str, country: str, now: datetime) -> int:
        """Distinct countries seen for the identifier in the current window.

        Country markers are keyed by the aggregate's window start, so a marker
        left over from an earlier window never hides a country from the new one.
        """
        window = self.policy.window_seconds
        aggregate_key = self._geo_key(identifier_hash)

        counter = await self.store.get(aggregate_key, now)
        if counter is None:
            counter = await self.store.increment(aggregate_key, window, now)
            await self.store.increment(self._country_key(counter, country), window, now)
            return counter.count

        seen = await self.store.increment(self._country_key(counter, country), window, now)
        if seen.count == 1:
            counter = await self.store.increment(aggregate_key, window, now)
        return counter.count

    @staticmethod
    def _country_key(counter: "CounterValue", country: str) -> str:
        window_id = int(counter.window_start.timestamp() * 1000)
        return f"{counter.key}:{window_id}:{country.upper()}"

    def check_user_agent(self, user_agent: str) -> List[str]:
        """Static user-agent heuristics. Returns the reasons found."""
        reasons = []
        if not user_agent or (self._bot_pattern and self._bot_pattern.search(user_agent)):
            reasons.append(f"Suspicious user agent: {user_agent[:50]}")
        if len(user_agent) < self.policy.min_user_agent_length:
            reasons.append("User agent too short or missing")
        return reasons

    async def reset_counters(self, identifier_hash: str) -> None:
        """Clear identifier velocity and geo counters (manual intervention)."""
        await self.store.reset(self._identifier_key(identifier_hash))
        await self.store.reset(self._geo_key(identifier_hash))
        logger.info("abuse_counters_reset", identifier_hash=identifier_hash)

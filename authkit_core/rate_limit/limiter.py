"""
Rate Limiter
============
Fixed-window request counting across independent scopes.

Each (scope, key) pair owns one counter in the injected ``CounterStore``. The
store increments atomically and opens a new window only when the counter is
absent or its window has ended, so concurrent workers never lose an update.
Scopes are evaluated independently; combining them is up to the caller.
"""

import hashlib
import math
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Union

import structlog

from ..metrics import RATE_LIMIT_DECISIONS
from .models import RateLimitInfo, RateLimitRule, RateLimitScope, default_rules

if TYPE_CHECKING:
    from ..stores.base import CounterStore

logger = structlog.get_logger(__name__)


def make_counter_key(scope: Union[RateLimitScope, str], key: str) -> str:
    """Counter key ``<scope>#<sha256(key)[:16]>``; raw keys (IPs, contacts) are never stored."""
    scope_value = RateLimitScope(scope).value
    digest = hashlib.sha256(key.encode()).hexdigest()[:16]
    return f"{scope_value}#{digest}"


class RateLimiter:
    """
    Multi-scope fixed-window rate limiter.

    Usage:
        limiter = RateLimiter(InMemoryCounterStore())
        info = await limiter.check_and_increment(RateLimitScope.IP, "203.0.113.7")
        if not info.allowed:
            ...
    """

    def __init__(self, store: "CounterStore", rules: Optional[Iterable[RateLimitRule]] = None):
        self.store = store
        self.rules: Dict[RateLimitScope, RateLimitRule] = {
            rule.scope: rule for rule in (rules if rules is not None else default_rules())
        }

    def rule_for(self, scope: Union[RateLimitScope, str]) -> RateLimitRule:
        """
        Raises:
            ValueError: if no rule is configured for the scope
        """
        scope = RateLimitScope(scope)
        rule = self.rules.get(scope)
        if rule is None:
            raise ValueError(f"No rate limit rule configured for scope '{scope.value}'")
        return rule

    async def check_and_increment(
        self,
        scope: Union[RateLimitScope, str],
        key: str,
        now: Optional[datetime] = None,
    ) -> RateLimitInfo:
        """
        Count one request and decide whether it is allowed.

        Args:
            scope: Scope whose rule applies
            key: Raw scope key (identifier hash, IP address, ASN, ...)
            now: Evaluation time

        Returns:
            RateLimitInfo; ``allowed`` iff the post-increment count is within the limit
        """
        rule = self.rule_for(scope)
        now = now or datetime.now(timezone.utc)

        counter = await self.store.increment(
            make_counter_key(rule.scope, key), rule.window_seconds, now
        )

        allowed = counter.count <= rule.max_attempts
        info = RateLimitInfo(
            scope=rule.scope,
            allowed=allowed,
            count=counter.count,
            remaining=max(0, rule.max_attempts - counter.count),
            limit=rule.max_attempts,
            reset_at=counter.expires_at,
            retry_after=None if allowed else self._retry_after(counter.expires_at, now),
        )

        RATE_LIMIT_DECISIONS.labels(scope=rule.scope.value, result=info.result.value).inc()
        if not allowed:
            logger.warning(
                "rate_limit_exceeded",
                scope=rule.scope.value,
                count=counter.count,
                limit=rule.max_attempts,
                reset_at=counter.expires_at.isoformat(),
            )
        return info

    async def check_all(
        self,
        keys: Dict[RateLimitScope, str],
        now: Optional[datetime] = None,
    ) -> List[RateLimitInfo]:
        """Increment every given scope. Each decision is independent."""
        return [await self.check_and_increment(scope, key, now) for scope, key in keys.items()]

    async def get(
        self,
        scope: Union[RateLimitScope, str],
        key: str,
        now: Optional[datetime] = None,
    ) -> Optional[RateLimitInfo]:
        """Inspect a counter without counting a request. None if no window is open."""
        rule = self.rule_for(scope)
        now = now or datetime.now(timezone.utc)

        counter = await self.store.get(make_counter_key(rule.scope, key), now)
        if counter is None:
            return None

        allowed = counter.count <= rule.max_attempts
        return RateLimitInfo(
            scope=rule.scope,
            allowed=allowed,
            count=counter.count,
            remaining=max(0, rule.max_attempts - counter.count),
            limit=rule.max_attempts,
            reset_at=counter.expires_at,
            retry_after=None if allowed else self._retry_after(counter.expires_at, now),
        )

    async def reset(self, scope: Union[RateLimitScope, str], key: str) -> None:
        """Drop a counter early. Resetting an absent counter is a no-op."""
        scope = RateLimitScope(scope)
        await self.store.reset(make_counter_key(scope, key))
        logger.info("rate_limit_reset", scope=scope.value)

    @staticmethod
    def _retry_after(reset_at: datetime, now: datetime) -> int:
        return max(1, math.ceil((reset_at - now).total_seconds()))

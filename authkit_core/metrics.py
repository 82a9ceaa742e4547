"""
AuthKit Metrics
===============
Prometheus counters for challenge, rate-limit and abuse decisions.
"""

from prometheus_client import CollectorRegistry, Counter, generate_latest

AUTHKIT_REGISTRY = CollectorRegistry()

CHALLENGES_CREATED = Counter(
    name="authkit_challenges_created_total",
    documentation="OTP challenges created",
    labelnames=["channel", "intent"],
    registry=AUTHKIT_REGISTRY,
)

CODE_VERIFICATIONS = Counter(
    name="authkit_code_verifications_total",
    documentation="OTP verification attempts by outcome",
    labelnames=["outcome"],
    registry=AUTHKIT_REGISTRY,
)

CHALLENGE_RESENDS = Counter(
    name="authkit_challenge_resends_total",
    documentation="Resend requests by outcome",
    labelnames=["outcome"],
    registry=AUTHKIT_REGISTRY,
)

RATE_LIMIT_DECISIONS = Counter(
    name="authkit_rate_limit_decisions_total",
    documentation="Rate limit decisions per scope",
    labelnames=["scope", "result"],
    registry=AUTHKIT_REGISTRY,
)

ABUSE_ACTIONS = Counter(
    name="authkit_abuse_actions_total",
    documentation="Abuse detector actions",
    labelnames=["action"],
    registry=AUTHKIT_REGISTRY,
)

DENYLIST_HITS = Counter(
    name="authkit_denylist_hits_total",
    documentation="Identifiers rejected by suppression checks",
    labelnames=["source"],
    registry=AUTHKIT_REGISTRY,
)

DELIVERY_FEEDBACK = Counter(
    name="authkit_delivery_feedback_total",
    documentation="Bounce and complaint notifications processed",
    labelnames=["kind"],
    registry=AUTHKIT_REGISTRY,
)

MAGIC_LINK_VERIFICATIONS = Counter(
    name="authkit_magic_link_verifications_total",
    documentation="Magic link verifications by outcome",
    labelnames=["outcome"],
    registry=AUTHKIT_REGISTRY,
)


def get_metrics_text() -> bytes:
    """Render the AuthKit registry in Prometheus exposition format."""
    return generate_latest(AUTHKIT_REGISTRY)

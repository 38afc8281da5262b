"""
metrics.py — Prometheus metrics for the data layer.

All collectors live in an isolated registry so importing this module twice
(tests, reloads) never trips prometheus_client's duplicate-registration check
on the global REGISTRY.  api.py serves render_latest() on /metrics.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from prometheus_client import CONTENT_TYPE_LATEST

REGISTRY = CollectorRegistry()

CACHE_OPERATIONS = Counter(
    "dotabot_cache_operations_total",
    "Redis cache operations by result",
    ["operation", "result"],  # get: hit/miss/error, set: ok/error
    registry=REGISTRY,
)

API_REQUESTS = Counter(
    "dotabot_api_requests_total",
    "Upstream provider calls by outcome",
    ["service", "operation", "outcome"],
    registry=REGISTRY,
)

API_LATENCY = Histogram(
    "dotabot_api_latency_seconds",
    "Upstream provider call latency",
    ["service", "operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

RATE_LIMIT_DECISIONS = Counter(
    "dotabot_rate_limit_decisions_total",
    "Rate limiter decisions per resource",
    ["resource", "decision"],  # allowed / denied / fail_open
    registry=REGISTRY,
)

KEY_COOLDOWNS = Counter(
    "dotabot_key_cooldowns_total",
    "API keys placed on cooldown",
    ["service"],
    registry=REGISTRY,
)

FALLBACKS = Counter(
    "dotabot_fallbacks_total",
    "Requests cascaded from the primary to the secondary provider",
    ["operation", "reason"],
    registry=REGISTRY,
)

INFLIGHT = Gauge(
    "dotabot_inflight_requests",
    "Upstream fetches currently in flight (after de-duplication)",
    registry=REGISTRY,
)


def render_latest() -> tuple[bytes, str]:
    """Returns (body, content_type) for the /metrics endpoint."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST

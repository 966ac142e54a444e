"""Prometheus counters for admission, caching and scaling."""
from prometheus_client import CollectorRegistry, Counter, generate_latest, CONTENT_TYPE_LATEST

REGISTRY = CollectorRegistry()

ADMISSION_DECISIONS = Counter(
    "capacity_gate_admission_decisions_total",
    "Admission decisions by tier and reason",
    ["tier", "reason"],
    registry=REGISTRY,
)

CACHE_LOOKUPS = Counter(
    "capacity_gate_cache_lookups_total",
    "Result cache lookups by tier and outcome",
    ["tier", "outcome"],
    registry=REGISTRY,
)

USAGE_COMMITS = Counter(
    "capacity_gate_usage_commits_total",
    "Billable requests recorded in the usage ledger",
    ["tier"],
    registry=REGISTRY,
)

STORE_ERRORS = Counter(
    "capacity_gate_store_errors_total",
    "Key-value store failures by operation",
    ["operation"],
    registry=REGISTRY,
)

SCALING_DECISIONS = Counter(
    "capacity_gate_scaling_decisions_total",
    "Scaling decisions by action",
    ["action"],
    registry=REGISTRY,
)

SCALING_APPLY_FAILURES = Counter(
    "capacity_gate_scaling_apply_failures_total",
    "Failed desired-count updates by action",
    ["action"],
    registry=REGISTRY,
)


def render_latest():
    """Exposition payload and content type for the /metrics endpoint"""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST

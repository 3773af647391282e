"""
Prometheus metrics for research runs.

Exposed through the default registry; call :func:`metrics_text` to render
them for a scrape endpoint.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

RESEARCH_RUNS_TOTAL = Counter(
    "marginalia_research_runs_total",
    "Research runs by mode and outcome",
    ["mode", "status"],
)

RESEARCH_IN_PROGRESS = Gauge(
    "marginalia_research_in_progress",
    "Research runs currently executing",
)

RESEARCH_DURATION = Histogram(
    "marginalia_research_duration_seconds",
    "Research run duration in seconds",
    ["mode"],
    buckets=(1, 2.5, 5, 10, 20, 30, 40, 60),
)

RESEARCH_COALESCED = Counter(
    "marginalia_research_coalesced_total",
    "Triggers that joined an already running research job",
)

FETCH_FAILURES = Counter(
    "marginalia_fetch_failures_total",
    "Source fetches that failed, by error code",
    ["reason"],
)

RATE_LIMIT_DENIED = Counter(
    "marginalia_rate_limit_denied_total",
    "Research triggers rejected by the rate limiter",
)


def metrics_text() -> tuple[bytes, str]:
    """Return the Prometheus exposition body and its content type."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST

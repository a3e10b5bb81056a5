# ==== PROMETHEUS METRICS ==== #

"""
Prometheus metrics for the Ichiran bridge and its resilience layer.

Tracks engine invocations by mode and outcome, circuit breaker state and
short-circuited calls, and rate limiter rejections.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    REGISTRY,
    generate_latest,
)


# ==== ENGINE METRICS ==== #

engine_invocations_total = Counter(
    "japanese_parser_engine_invocations_total",
    "Total Ichiran engine invocations by mode and outcome",
    ["mode", "outcome"]
)

engine_invocation_duration_seconds = Histogram(
    "japanese_parser_engine_invocation_duration_seconds",
    "Ichiran engine invocation latency in seconds",
    ["mode"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)


# ==== CIRCUIT BREAKER METRICS ==== #

circuit_breaker_state = Gauge(
    "japanese_parser_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["breaker"]
)

circuit_breaker_rejections_total = Counter(
    "japanese_parser_circuit_breaker_rejections_total",
    "Calls short-circuited by an open breaker",
    ["breaker"]
)


# ==== RATE LIMITER METRICS ==== #

rate_limited_total = Counter(
    "japanese_parser_rate_limited_total",
    "Requests rejected by the rate limiter"
)

rate_limit_windows = Gauge(
    "japanese_parser_rate_limit_windows",
    "Client windows currently tracked by the rate limiter"
)


# ==== TOOL METRICS ==== #

tool_calls_total = Counter(
    "japanese_parser_tool_calls_total",
    "Tool calls by tool name and result",
    ["tool", "status"]
)


def render_metrics() -> tuple[bytes, str]:
    """Render the default registry in Prometheus exposition format.

    Returns:
        Payload bytes and the matching content type
    """
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST

"""
Prometheus metrics collection module.

Metrics Categories:
- RED Metrics: HTTP rate, errors, duration
- LLM Metrics: provider requests, latency, vendor errors
- Orchestration Metrics: dispatch iterations, tool calls, guard retries
- Job Metrics: created jobs, dispatch failures, terminal states
- Ticket Vendor Metrics: page fetches, rate-limiter waits
- Connection Metrics: stored credential checks

Naming follows Prometheus conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for durations
- Gauges: No special suffix
"""
from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    REGISTRY,
    CONTENT_TYPE_LATEST,
)

registry = REGISTRY

# ============================================================================
# RED METRICS - Rate, Errors, Duration
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=registry,
)

# ============================================================================
# LLM METRICS
# ============================================================================

llm_requests_total = Counter(
    "llm_requests_total",
    "Total number of LLM provider requests",
    ["provider", "mode", "outcome"],
    registry=registry,
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "LLM provider request latency in seconds",
    ["provider", "mode"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=registry,
)

# ============================================================================
# ORCHESTRATION METRICS
# ============================================================================

dispatch_iterations = Histogram(
    "dispatch_iterations",
    "Model rounds used by one tool dispatch loop run",
    buckets=[1, 2, 3, 4, 5, 6, 8, 10],
    registry=registry,
)

dispatch_iteration_limit_total = Counter(
    "dispatch_iteration_limit_total",
    "Tool dispatch loop runs that hit the iteration ceiling",
    registry=registry,
)

tool_calls_total = Counter(
    "tool_calls_total",
    "Total number of executed tool calls",
    ["tool", "outcome"],
    registry=registry,
)

hallucination_guard_retries_total = Counter(
    "hallucination_guard_retries_total",
    "Corrective retries triggered by fabricated job identifiers",
    registry=registry,
)

hallucination_guard_exhausted_total = Counter(
    "hallucination_guard_exhausted_total",
    "Guarded runs that ended with the fixed apology",
    registry=registry,
)

# ============================================================================
# JOB METRICS
# ============================================================================

ticket_search_mode_total = Counter(
    "ticket_search_mode_total",
    "Ticket searches routed by the sizing heuristic",
    ["mode"],
    registry=registry,
)

jobs_created_total = Counter(
    "jobs_created_total",
    "Background jobs inserted",
    registry=registry,
)

job_dispatch_failures_total = Counter(
    "job_dispatch_failures_total",
    "Worker trigger calls that failed to start a job",
    ["reason"],
    registry=registry,
)

jobs_finished_total = Counter(
    "jobs_finished_total",
    "Jobs reaching a terminal state",
    ["status"],
    registry=registry,
)

job_dispatches_in_flight = Gauge(
    "job_dispatches_in_flight",
    "Worker trigger calls started but not yet finished",
    registry=registry,
)

connection_checks_total = Counter(
    "connection_checks_total",
    "Stored connection credential checks",
    ["connection_type", "outcome"],
    registry=registry,
)

# ============================================================================
# TICKET VENDOR METRICS
# ============================================================================

ticket_pages_fetched_total = Counter(
    "ticket_pages_fetched_total",
    "Ticket vendor pages fetched",
    ["outcome"],
    registry=registry,
)

rate_limit_wait_seconds = Histogram(
    "rate_limit_wait_seconds",
    "Time spent waiting for per-service call spacing",
    ["service"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=registry,
)


def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path for metrics (remove query params).

    Example:
        /jobs/status?x=1 -> /jobs/status
    """
    if "?" in path:
        path = path.split("?")[0]
    return path


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record HTTP request metrics (RED metrics)."""
    normalized_endpoint = normalize_endpoint(endpoint)

    http_requests_total.labels(
        method=method,
        endpoint=normalized_endpoint,
        status=str(status_code),
    ).inc()

    if status_code >= 400:
        http_errors_total.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code),
        ).inc()

    http_request_duration_seconds.labels(
        method=method,
        endpoint=normalized_endpoint,
    ).observe(duration_seconds)


def record_llm_request(provider: str, mode: str, outcome: str, duration_seconds: float) -> None:
    """
    Record one provider call.

    Args:
        provider: "openai" or "gemini"
        mode: "complete" or "stream"
        outcome: "success", "http_error" or "transport_error"
        duration_seconds: Wall time of the call
    """
    llm_requests_total.labels(provider=provider, mode=mode, outcome=outcome).inc()
    llm_request_duration_seconds.labels(provider=provider, mode=mode).observe(duration_seconds)


def record_dispatch_iterations(iterations: int) -> None:
    dispatch_iterations.observe(iterations)


def record_dispatch_iteration_limit() -> None:
    dispatch_iteration_limit_total.inc()


def record_tool_call(tool: str, outcome: str) -> None:
    tool_calls_total.labels(tool=tool, outcome=outcome).inc()


def record_guard_retry() -> None:
    hallucination_guard_retries_total.inc()


def record_guard_exhausted() -> None:
    hallucination_guard_exhausted_total.inc()


def record_search_mode(mode: str) -> None:
    ticket_search_mode_total.labels(mode=mode).inc()


def record_job_created() -> None:
    jobs_created_total.inc()


def record_job_dispatch_failure(reason: str) -> None:
    job_dispatch_failures_total.labels(reason=reason).inc()


def record_job_finished(status: str) -> None:
    jobs_finished_total.labels(status=status).inc()


def set_job_dispatches_in_flight(count: int) -> None:
    job_dispatches_in_flight.set(count)


def record_connection_check(connection_type: str, success: bool) -> None:
    connection_checks_total.labels(connection_type=connection_type, outcome="success" if success else "failure").inc()


def record_ticket_page(outcome: str) -> None:
    ticket_pages_fetched_total.labels(outcome=outcome).inc()


def record_rate_limit_wait(service: str, seconds: float) -> None:
    rate_limit_wait_seconds.labels(service=service).observe(seconds)


def get_metrics() -> bytes:
    """Get Prometheus metrics in text format."""
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    """Content type for the metrics endpoint."""
    return CONTENT_TYPE_LATEST

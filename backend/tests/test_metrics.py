"""
Unit tests for Prometheus metrics.

Tests verify:
- Recording helpers update the default registry
- Endpoint normalization strips query strings
- Exposition output carries the orchestrator metric families
"""
from prometheus_client import REGISTRY

from ticketchat.core.metrics import (
    get_metrics,
    get_metrics_content_type,
    normalize_endpoint,
    record_guard_retry,
    record_http_request,
    record_job_dispatch_failure,
    record_tool_call,
)


def sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def test_normalize_endpoint():
    assert normalize_endpoint("/jobs/status?x=1") == "/jobs/status"
    assert normalize_endpoint("/chat") == "/chat"


def test_http_errors_are_counted_separately():
    labels = {"method": "POST", "endpoint": "/chat", "status_code": "429"}
    before = sample("http_errors_total", labels)

    record_http_request("POST", "/chat", 429, 0.2)
    record_http_request("POST", "/chat", 200, 0.2)

    assert sample("http_errors_total", labels) == before + 1


def test_tool_and_guard_counters():
    tool_labels = {"tool": "search_tickets", "outcome": "error"}
    tool_before = sample("tool_calls_total", tool_labels)
    guard_before = sample("hallucination_guard_retries_total")

    record_tool_call("search_tickets", "error")
    record_guard_retry()

    assert sample("tool_calls_total", tool_labels) == tool_before + 1
    assert sample("hallucination_guard_retries_total") == guard_before + 1


def test_dispatch_failure_reason_label():
    before = sample("job_dispatch_failures_total", {"reason": "http_status"})
    record_job_dispatch_failure("http_status")
    assert sample("job_dispatch_failures_total", {"reason": "http_status"}) == before + 1


def test_exposition_format():
    output = get_metrics().decode()
    assert "# TYPE tool_calls_total counter" in output
    assert get_metrics_content_type().startswith("text/plain")

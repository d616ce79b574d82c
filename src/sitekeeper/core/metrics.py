"""Prometheus metrics for the scheduler daemon and deployment tracker.

Metrics exported:
- sitekeeper_job_runs_total: Counter of scheduled/manual job runs by outcome
- sitekeeper_events_changed_total: Counter of events/exclusions added or removed
- sitekeeper_store_requests_total: Counter of document store calls by outcome
- sitekeeper_deployments_total: Counter of tracked deployments by final outcome
- sitekeeper_deployment_seconds: Histogram of commit-to-live latency
- sitekeeper_deployments_pending: Gauge of deployments currently being polled
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

job_runs_total = Counter(
    "sitekeeper_job_runs_total",
    "Total number of scheduler job runs",
    labelnames=["job", "status"],
)

events_changed_total = Counter(
    "sitekeeper_events_changed_total",
    "Total number of documents entries changed by scheduler jobs",
    labelnames=["job", "kind"],
)

store_requests_total = Counter(
    "sitekeeper_store_requests_total",
    "Total number of document store requests",
    labelnames=["operation", "status"],
)

deployments_total = Counter(
    "sitekeeper_deployments_total",
    "Total number of tracked deployments by outcome",
    labelnames=["outcome"],
)

deployment_seconds = Histogram(
    "sitekeeper_deployment_seconds",
    "Time from commit to confirmed-live deployment in seconds",
    buckets=(15, 30, 45, 60, 90, 120, 180, 240, 300, 600),
)

deployments_pending = Gauge(
    "sitekeeper_deployments_pending",
    "Number of deployments currently awaiting confirmation",
)


def record_job_run(job: str, status: str) -> None:
    """Record one job run.

    Args:
        job: Job name ("cleanup", "repeating")
        status: Run outcome ("changed", "unchanged", "error")
    """
    job_runs_total.labels(job=job, status=status).inc()


def record_events_changed(job: str, kind: str, count: int) -> None:
    """Record entries changed by a job.

    Args:
        job: Job name
        kind: What changed ("added", "removed", "pruned", "exclusions_pruned")
        count: Number of entries; zero is ignored
    """
    if count > 0:
        events_changed_total.labels(job=job, kind=kind).inc(count)


def record_store_request(operation: str, status: str) -> None:
    """Record a document store call.

    Args:
        operation: Store operation ("get", "put", "batch_put")
        status: Call status ("success", "not_found", "conflict", "error")
    """
    store_requests_total.labels(operation=operation, status=status).inc()


def record_deployment(outcome: str, elapsed_s: float | None = None) -> None:
    """Record the final outcome of a tracked deployment.

    Args:
        outcome: "live" or "timeout"
        elapsed_s: Seconds since the commit was tracked (observed for "live" only)
    """
    deployments_total.labels(outcome=outcome).inc()
    if outcome == "live" and elapsed_s is not None:
        deployment_seconds.observe(elapsed_s)


def get_error_type(exc: Exception) -> str:
    """Extract a coarse error type from an exception for labels and audit."""
    exc_type = type(exc).__name__

    if "Conflict" in exc_type:
        return "conflict"
    if "NotFound" in exc_type:
        return "not_found"
    if "HTTPStatus" in exc_type or "HTTP" in exc_type:
        return "http_error"
    if "Timeout" in exc_type:
        return "timeout"
    if "ConnectionError" in exc_type or "ConnectError" in exc_type:
        return "connection_error"
    if "JSON" in exc_type or "Parse" in exc_type:
        return "parse_error"
    if "ValueError" in exc_type or "ValidationError" in exc_type:
        return "validation_error"

    return exc_type.lower()

"""Prometheus metrics for the transcode orchestration client.

Tracks worker request volume and latency, poll failures absorbed by backoff,
job outcomes and post-completion side effects.
"""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
)

# Custom registry so embedding applications keep their own default registry clean
REGISTRY = CollectorRegistry()


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "gpu_transcoder_client",
    "Transcode client information",
    registry=REGISTRY,
)


# ============================================
# GPU Worker Request Metrics
# ============================================
WORKER_REQUESTS_TOTAL = Counter(
    "gpu_worker_requests_total",
    "Total requests sent to the GPU worker",
    ["operation", "status"],
    registry=REGISTRY,
)

WORKER_REQUEST_DURATION_SECONDS = Histogram(
    "gpu_worker_request_duration_seconds",
    "GPU worker request duration in seconds",
    ["operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
    registry=REGISTRY,
)


# ============================================
# Job Tracking Metrics
# ============================================
TRACKED_JOBS = Gauge(
    "transcode_tracked_jobs",
    "Number of jobs currently being polled",
    registry=REGISTRY,
)

POLL_ERRORS_TOTAL = Counter(
    "transcode_poll_errors_total",
    "Transient poll errors absorbed by backoff",
    registry=REGISTRY,
)

JOB_OUTCOMES_TOTAL = Counter(
    "transcode_job_outcomes_total",
    "Terminal job states observed by the tracker",
    ["state"],
    registry=REGISTRY,
)


# ============================================
# Side Effect Metrics
# ============================================
SIDE_EFFECTS_TOTAL = Counter(
    "transcode_side_effects_total",
    "Post-completion side effects by kind and result",
    ["kind", "result"],
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format."""
    return generate_latest(REGISTRY)



def set_app_info(version: str, environment: str) -> None:
    """Set application info metrics.

    Args:
        version: Application version
        environment: Deployment environment
    """
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })

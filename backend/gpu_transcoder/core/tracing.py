"""OpenTelemetry tracing for calls to the GPU worker.

Every worker request runs inside a CLIENT span named after the operation, so
slow uploads and flaky status polls show up with their timing and HTTP status
in the trace backend. Without ``setup_tracing`` the OpenTelemetry API hands out
no-op spans and nothing is exported.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, SpanKind, Status, StatusCode

logger = logging.getLogger(__name__)

INSTRUMENTATION_NAME = "gpu_transcoder"

_provider: Optional[TracerProvider] = None


def setup_tracing(
    service_name: str,
    service_version: str,
    environment: str = "development",
    enable_console_export: bool = False,
) -> trace.Tracer:
    """Install a tracer provider for this process.

    Args:
        service_name: Name reported on every span
        service_version: Version reported on every span
        environment: Deployment environment
        enable_console_export: Print finished spans to stdout

    Returns:
        Tracer for worker spans
    """
    global _provider

    _provider = TracerProvider(resource=Resource.create({
        SERVICE_NAME: service_name,
        SERVICE_VERSION: service_version,
        "deployment.environment": environment,
    }))
    if enable_console_export:
        _provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(_provider)
    logger.info(f"Tracing initialized for {service_name} v{service_version}")
    return get_tracer()


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(INSTRUMENTATION_NAME)


def current_trace_ids() -> tuple[Optional[str], Optional[str]]:
    """Hex trace and span IDs of the active span, or ``(None, None)``."""
    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return None, None
    return format(context.trace_id, "032x"), format(context.span_id, "016x")


@contextmanager
def worker_span(operation: str, method: str, path: str, server: str) -> Iterator[Span]:
    """Span around one request to the GPU worker.

    Args:
        operation: Human-readable operation, e.g. ``job status check``
        method: HTTP method
        path: Request path on the worker
        server: Worker base URL
    """
    with get_tracer().start_as_current_span(
        f"gpu_worker {operation}",
        kind=SpanKind.CLIENT,
        attributes={
            "gpu_worker.operation": operation,
            "http.request.method": method,
            "url.path": path,
            "server.address": server,
        },
    ) as span:
        yield span


def mark_response(span: Span, status_code: int) -> None:
    """Attach the worker's HTTP status to a span; 4xx and 5xx mark it errored."""
    span.set_attribute("http.response.status_code", status_code)
    if status_code >= 400:
        span.set_status(Status(StatusCode.ERROR, f"HTTP {status_code}"))


def record_exception(exception: BaseException) -> None:
    """Record an exception on the active span and mark it errored."""
    span = trace.get_current_span()
    span.record_exception(exception)
    span.set_status(Status(StatusCode.ERROR, str(exception)))


def shutdown_tracing() -> None:
    """Flush pending spans and drop the provider."""
    global _provider
    if _provider is not None:
        _provider.shutdown()
        _provider = None

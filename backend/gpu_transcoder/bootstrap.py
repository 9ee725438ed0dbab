"""Process-level wiring for embedding applications.

Call ``configure()`` once at startup, build a service with
``create_service()`` and release it with ``shutdown()``.
"""

import logging
from typing import Optional

import httpx

from gpu_transcoder.core.config import Settings, settings as default_settings
from gpu_transcoder.core.logging import setup_logging
from gpu_transcoder.core.metrics import set_app_info
from gpu_transcoder.core.tracing import setup_tracing, shutdown_tracing
from gpu_transcoder.modules.transcoding.client import TranscodeClient
from gpu_transcoder.modules.transcoding.scheduler import Scheduler
from gpu_transcoder.modules.transcoding.service import TranscodingService
from gpu_transcoder.modules.transcoding.tracker import JobStateTracker

logger = logging.getLogger(__name__)


def configure(config: Optional[Settings] = None) -> None:
    """Set up logging, tracing and the app info metric."""
    config = config or default_settings

    setup_logging(
        level=config.LOG_LEVEL,
        json_format=config.LOG_JSON,
        include_stack_trace=True,
    )

    if config.TRACING_ENABLED:
        setup_tracing(
            service_name=config.PROJECT_NAME,
            service_version=config.VERSION,
            environment=config.ENVIRONMENT,
            enable_console_export=config.TRACING_CONSOLE_EXPORT,
        )

    set_app_info(version=config.VERSION, environment=config.ENVIRONMENT)


def create_service(
    config: Optional[Settings] = None,
    scheduler: Optional[Scheduler] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> TranscodingService:
    """Build a TranscodingService and its collaborators from configuration."""
    config = config or default_settings

    client = TranscodeClient(
        base_url=config.GPU_SERVER_URL,
        timeout=config.GPU_REQUEST_TIMEOUT_SECONDS,
        transport=transport,
        thumbnail_timestamp=config.THUMBNAIL_TIMESTAMP_SECONDS,
        thumbnail_format=config.THUMBNAIL_FORMAT,
        thumbnail_quality=config.THUMBNAIL_QUALITY,
        thumbnail_size=config.THUMBNAIL_SIZE,
    )
    tracker = JobStateTracker(
        client,
        scheduler=scheduler,
        poll_interval=config.JOB_POLL_INTERVAL_SECONDS,
        backoff_interval=config.JOB_POLL_BACKOFF_SECONDS,
    )
    logger.info(f"GPU transcode client configured for {config.GPU_SERVER_URL}")
    return TranscodingService(client, tracker=tracker, config=config)


async def shutdown(service: TranscodingService) -> None:
    """Stop all polling, close the HTTP client and flush spans."""
    service.tracker.stop_all()
    await service.client.aclose()
    shutdown_tracing()

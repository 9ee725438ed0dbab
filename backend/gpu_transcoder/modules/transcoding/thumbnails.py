"""Post-transcode thumbnail generation.

A thumbnail is a best-effort side effect of a completed transcode: every
failure here is logged and reported as ``ThumbnailResult(success=False)``.
"""

import logging
import time
from typing import Callable, Optional

from gpu_transcoder.core.config import settings
from gpu_transcoder.core.logging import log_info, log_warning
from gpu_transcoder.core.metrics import SIDE_EFFECTS_TOTAL
from gpu_transcoder.modules.transcoding.client import TranscodeClient
from gpu_transcoder.modules.transcoding.exceptions import PathTranslationError
from gpu_transcoder.modules.transcoding.paths import PathTranslator
from gpu_transcoder.modules.transcoding.schemas import ThumbnailResult

logger = logging.getLogger(__name__)


def thumbnail_filename(video_id: str, epoch_ms: int, fmt: str) -> str:
    """Build the thumbnail file name, e.g. ``abc_thumb_1700000000000.webp``."""
    return f"{video_id}_thumb_{epoch_ms}.{fmt}"


class ThumbnailOrchestrator:
    """Asks the worker for a still frame and maps the result back locally.

    Args:
        client: Worker client
        translator: Local/worker path translator
        thumbnails_dir: Local directory the worker writes thumbnails into
        url_prefix: Public URL prefix thumbnails are served under
        clock: Returns epoch seconds; used for unique file names
        timestamp: Default frame offset in seconds
        size: Default size as ``WIDTHxHEIGHT``
        fmt: Default image format
        quality: Default image quality (0-100)
    """

    def __init__(
        self,
        client: TranscodeClient,
        translator: PathTranslator,
        thumbnails_dir: Optional[str] = None,
        url_prefix: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        timestamp: Optional[float] = None,
        size: Optional[str] = None,
        fmt: Optional[str] = None,
        quality: Optional[int] = None,
    ):
        self.client = client
        self.translator = translator
        self.thumbnails_dir = (thumbnails_dir or settings.thumbnails_path).rstrip("/")
        self.url_prefix = (url_prefix or settings.THUMBNAIL_URL_PREFIX).rstrip("/")
        self.clock = clock
        self.timestamp = timestamp if timestamp is not None else settings.THUMBNAIL_TIMESTAMP_SECONDS
        self.size = size or settings.THUMBNAIL_SIZE
        self.fmt = fmt or settings.THUMBNAIL_FORMAT
        self.quality = quality if quality is not None else settings.THUMBNAIL_QUALITY

    async def generate_after_transcode(
        self,
        video_id: str,
        source_path: str,
        timestamp: Optional[float] = None,
        size: Optional[str] = None,
        fmt: Optional[str] = None,
        quality: Optional[int] = None,
    ) -> ThumbnailResult:
        """Generate a thumbnail for a transcoded video.

        Args:
            video_id: Video identifier used in the file name
            source_path: Local path of the transcoded video
            timestamp: Frame offset in seconds
            size: Thumbnail size as ``WIDTHxHEIGHT``
            fmt: Image format
            quality: Image quality (0-100)

        Returns:
            ThumbnailResult with local path and public URL, or a soft failure
        """
        fmt = fmt or self.fmt
        filename = thumbnail_filename(video_id, int(self.clock() * 1000), fmt)
        local_output = f"{self.thumbnails_dir}/{filename}"

        try:
            remote_source = self.translator.to_remote(source_path)
            remote_output = self.translator.to_remote(local_output)
            response = await self.client.generate_thumbnail(
                input_file=remote_source,
                output_path=remote_output,
                timestamp=timestamp if timestamp is not None else self.timestamp,
                size=size or self.size,
                fmt=fmt,
                quality=quality if quality is not None else self.quality,
            )
            if not response.success:
                return self._failed(
                    video_id, response.error or response.message or "Thumbnail generation failed"
                )
            local_path = self.translator.to_local(response.thumbnail_path or remote_output)
        except Exception as e:
            return self._failed(video_id, str(e))

        SIDE_EFFECTS_TOTAL.labels(kind="thumbnail", result="success").inc()
        log_info(
            logger,
            "Thumbnail generated",
            video_id=video_id,
            thumbnail_path=local_path,
            size_mb=response.thumbnail_size_mb,
        )
        return ThumbnailResult(
            success=True,
            thumbnail_path=local_path,
            thumbnail_url=self._public_url(local_path),
            thumbnail_size_mb=response.thumbnail_size_mb,
        )

    def from_worker_path(self, video_id: str, remote_path: str) -> ThumbnailResult:
        """Describe a thumbnail the worker already produced during the transcode."""
        try:
            local_path = self.translator.to_local(remote_path)
        except PathTranslationError as e:
            return self._failed(video_id, str(e))
        return ThumbnailResult(
            success=True,
            thumbnail_path=local_path,
            thumbnail_url=self._public_url(local_path),
        )

    def _public_url(self, local_path: str) -> str:
        return f"{self.url_prefix}/{local_path.rsplit('/', 1)[-1]}"

    def _failed(self, video_id: str, error: str) -> ThumbnailResult:
        SIDE_EFFECTS_TOTAL.labels(kind="thumbnail", result="failure").inc()
        log_warning(logger, f"Thumbnail generation failed: {error}", video_id=video_id)
        return ThumbnailResult.failed(error)

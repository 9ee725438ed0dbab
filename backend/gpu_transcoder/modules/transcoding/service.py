"""Service layer for the GPU upload pipeline.

Ties the worker client, the job tracker and the post-completion side effects
together: admission check, preset resolution, submission, tracking, then
thumbnail and temp upload cleanup once the job completes.
"""

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from gpu_transcoder.core.config import Settings, settings as default_settings
from gpu_transcoder.core.logging import log_info, log_warning
from gpu_transcoder.modules.transcoding.cleanup import CleanupCoordinator
from gpu_transcoder.modules.transcoding.client import TranscodeClient, normalize_preset
from gpu_transcoder.modules.transcoding.exceptions import AdmissionError, PathTranslationError
from gpu_transcoder.modules.transcoding.models import AUTO_PRESET, Preset
from gpu_transcoder.modules.transcoding.multipart import UploadFile
from gpu_transcoder.modules.transcoding.paths import PathTranslator
from gpu_transcoder.modules.transcoding.presets import PresetSelector, QualityAnalyzer
from gpu_transcoder.modules.transcoding.schemas import (
    CleanupResult,
    CompressionStats,
    SubmitResult,
    ThumbnailResult,
    TranscodeJob,
    TranscodeMetadata,
    TranscodeOutcome,
)
from gpu_transcoder.modules.transcoding.thumbnails import ThumbnailOrchestrator
from gpu_transcoder.modules.transcoding.tracker import (
    FailureCallback,
    JobCallback,
    JobStateTracker,
)

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[[TranscodeOutcome], Union[None, Awaitable[None]]]


class TranscodingService:
    """Upload pipeline facade over the transcoding components.

    Every collaborator can be injected; anything left out is built from the
    client and configuration.
    """

    def __init__(
        self,
        client: TranscodeClient,
        tracker: Optional[JobStateTracker] = None,
        selector: Optional[PresetSelector] = None,
        thumbnails: Optional[ThumbnailOrchestrator] = None,
        cleanup: Optional[CleanupCoordinator] = None,
        translator: Optional[PathTranslator] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or default_settings
        self.client = client
        self.translator = translator or PathTranslator.from_settings(self.config)
        self.tracker = tracker or JobStateTracker(
            client,
            poll_interval=self.config.JOB_POLL_INTERVAL_SECONDS,
            backoff_interval=self.config.JOB_POLL_BACKOFF_SECONDS,
        )
        self.selector = selector or PresetSelector(QualityAnalyzer(client))
        self.thumbnails = thumbnails or ThumbnailOrchestrator(
            client,
            self.translator,
            thumbnails_dir=self.config.thumbnails_path,
            url_prefix=self.config.THUMBNAIL_URL_PREFIX,
            timestamp=self.config.THUMBNAIL_TIMESTAMP_SECONDS,
            size=self.config.THUMBNAIL_SIZE,
            fmt=self.config.THUMBNAIL_FORMAT,
            quality=self.config.THUMBNAIL_QUALITY,
        )
        self.cleanup = cleanup or CleanupCoordinator(
            client, self.translator, uploads_prefix=self.config.uploads_path
        )

    # ============================================
    # Submission
    # ============================================

    async def check_capacity(self) -> bool:
        """Advisory check whether the worker accepts new jobs right now."""
        return await self.client.is_available()

    async def resolve_preset(
        self,
        requested: Union[str, Preset],
        size_bytes: int,
        duration_seconds: float,
        input_file: Optional[str] = None,
    ) -> str:
        """Decide which preset name to submit.

        Explicit presets pass through. ``auto`` is forwarded when the worker
        selects presets itself, otherwise the local heuristic decides.

        Args:
            requested: Preset name or ``auto``
            size_bytes: Source size in bytes
            duration_seconds: Source duration in seconds
            input_file: Local path of the source, enables bitrate analysis

        Returns:
            Wire name of the preset

        Raises:
            ValueError: If ``requested`` is not a known preset
        """
        name = normalize_preset(requested)
        if name != AUTO_PRESET or self.config.GPU_REMOTE_AUTO_PRESET:
            return name

        remote_input = None
        if input_file:
            try:
                remote_input = self.translator.to_remote(input_file)
            except PathTranslationError as e:
                log_warning(logger, f"Skipping bitrate analysis: {e}", input_file=input_file)

        preset = await self.selector.choose(size_bytes, duration_seconds, remote_input)
        return preset.value

    async def submit_upload(
        self,
        file: UploadFile,
        size_bytes: int,
        duration_seconds: float,
        preset: Union[str, Preset] = AUTO_PRESET,
        output_path: Optional[str] = None,
        metadata: Optional[Union[TranscodeMetadata, dict]] = None,
        enforce_capacity: Optional[bool] = None,
        source_path: Optional[str] = None,
    ) -> SubmitResult:
        """Check capacity, resolve the preset and submit an upload.

        Args:
            file: Video bytes or a binary file handle
            size_bytes: Source size in bytes
            duration_seconds: Source duration in seconds
            preset: Preset name or ``auto``
            output_path: Local output path, translated for the worker
            metadata: Submission metadata
            enforce_capacity: Override for ``ENFORCE_CAPACITY_CHECK``
            source_path: Local path of the source, enables bitrate analysis

        Returns:
            SubmitResult from the worker

        Raises:
            AdmissionError: If the worker reports no capacity and enforcement is on
            PathTranslationError: If ``output_path`` is outside the shared storage
            TransportError: If the submission request fails
        """
        enforce = (
            self.config.ENFORCE_CAPACITY_CHECK if enforce_capacity is None else enforce_capacity
        )
        if not await self.check_capacity():
            if enforce:
                raise AdmissionError("GPU server is at capacity and not accepting new jobs")
            log_warning(logger, "GPU server reports no capacity, submitting anyway")

        preset_name = await self.resolve_preset(preset, size_bytes, duration_seconds, source_path)
        remote_output = self.translator.to_remote(output_path) if output_path else None

        result = await self.client.submit(
            file,
            preset=preset_name,
            output_path=remote_output,
            metadata=metadata,
        )
        log_info(
            logger,
            "Upload submitted for GPU transcoding",
            job_id=result.job_id,
            preset=preset_name,
            size_bytes=size_bytes,
        )
        return result

    # ============================================
    # Tracking
    # ============================================

    def track(
        self,
        job_id: str,
        on_finished: OutcomeCallback,
        on_failed: FailureCallback,
        on_progress: Optional[JobCallback] = None,
        source_path: Optional[str] = None,
        video_id: Optional[str] = None,
        generate_thumbnail: bool = True,
    ) -> None:
        """Watch a job and run the completion side effects.

        ``on_finished`` receives a TranscodeOutcome once the thumbnail and
        cleanup steps ran. Their failures are reported in the outcome; they
        never turn a completed job into a failure. Pass
        ``generate_thumbnail=False`` when the upload opted out of thumbnails.

        Raises:
            ValueError: If the job is already being watched
        """

        async def completed(job: TranscodeJob) -> None:
            outcome = await self.finalize(
                job,
                source_path=source_path,
                video_id=video_id,
                generate_thumbnail=generate_thumbnail,
            )
            result = on_finished(outcome)
            if inspect.isawaitable(result):
                await result

        self.tracker.watch_job(
            job_id,
            on_complete=completed,
            on_error=on_failed,
            on_progress=on_progress,
        )

    async def finalize(
        self,
        job: TranscodeJob,
        source_path: Optional[str] = None,
        video_id: Optional[str] = None,
        generate_thumbnail: bool = True,
    ) -> TranscodeOutcome:
        """Run the thumbnail and cleanup steps for a completed job."""
        video_id = video_id or job.data.video_id or job.id
        thumbnail = await self._thumbnail_step(job, video_id) if generate_thumbnail else None
        cleanup = await self._cleanup_step(job, source_path)
        return TranscodeOutcome(
            job=job,
            compression=CompressionStats.from_job(job),
            thumbnail=thumbnail,
            cleanup=cleanup,
        )

    async def _thumbnail_step(self, job: TranscodeJob, video_id: str) -> Optional[ThumbnailResult]:
        if job.thumbnail_path:
            return self.thumbnails.from_worker_path(video_id, job.thumbnail_path)

        output = _output_file(job)
        if not output:
            log_warning(logger, "Completed job has no output file, skipping thumbnail", job_id=job.id)
            return None
        try:
            local_output = self.translator.to_local(output)
        except PathTranslationError as e:
            return ThumbnailResult.failed(str(e))
        return await self.thumbnails.generate_after_transcode(video_id, local_output)

    async def _cleanup_step(
        self, job: TranscodeJob, source_path: Optional[str]
    ) -> Optional[CleanupResult]:
        if source_path:
            return await self.cleanup.delete(source_path)

        # Fall back to the worker-side input when it is a temp upload
        if not job.data.input_file:
            return None
        try:
            local_input = self.translator.to_local(job.data.input_file)
        except PathTranslationError:
            return None
        if not self.cleanup.is_deletable(local_input):
            return None
        return await self.cleanup.delete(local_input)


def _output_file(job: TranscodeJob) -> Optional[str]:
    result = job.result
    if result is not None and result.output_file:
        return result.output_file
    return job.data.output_file

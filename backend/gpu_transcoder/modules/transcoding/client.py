"""HTTP client for the remote GPU transcoding worker.

One method call is one request/response. The client never retries and holds no
job state; polling and retry discipline live in the job tracker.
"""

import logging
import time
from typing import Any, Optional, Union

import httpx
from pydantic import BaseModel, ValidationError

from gpu_transcoder.core.config import settings
from gpu_transcoder.core.logging import log_info, log_warning
from gpu_transcoder.core.metrics import (
    WORKER_REQUESTS_TOTAL,
    WORKER_REQUEST_DURATION_SECONDS,
)
from gpu_transcoder.core.tracing import mark_response, record_exception, worker_span
from gpu_transcoder.modules.transcoding.exceptions import TransportError
from gpu_transcoder.modules.transcoding.models import (
    AUTO_PRESET,
    KNOWN_PRESETS,
    DynamicQuality,
    JobState,
    Preset,
    QualityLevel,
)
from gpu_transcoder.modules.transcoding.multipart import (
    DEFAULT_FILENAME,
    HttpxMultipartBuilder,
    MultipartRequestBuilder,
    UploadFile,
    ensure_upload_file,
)
from gpu_transcoder.modules.transcoding.schemas import (
    CleanupResponse,
    EndpointAvailability,
    JobProgress,
    PresetDefinition,
    QualityAnalysis,
    QueueCounts,
    SubmitResult,
    SystemStatus,
    ThumbnailResponse,
    TranscodeJob,
    TranscodeMetadata,
    TranscodeResponse,
)

logger = logging.getLogger(__name__)


def normalize_preset(preset: Union[str, Preset]) -> str:
    """Return the wire name of a preset, accepting enum members.

    Raises:
        ValueError: If the name is neither a known preset nor ``auto``
    """
    name = preset.value if isinstance(preset, Preset) else preset
    if name != AUTO_PRESET and name not in KNOWN_PRESETS:
        raise ValueError(
            f"Unknown preset {name!r}; expected 'auto' or one of {sorted(KNOWN_PRESETS)}"
        )
    return name


def progress_status(state: JobState, progress: float) -> str:
    """Human-readable status text for a progress snapshot."""
    if state == JobState.ACTIVE:
        if progress <= 0:
            return "starting"
        if progress >= 100:
            return "finalizing"
        return "processing"
    if state in (JobState.COMPLETED, JobState.FAILED, JobState.WAITING):
        return state.value
    return "unknown"


def _format_number(value: float) -> str:
    return f"{value:g}"


class TranscodeClient:
    """Client for the GPU transcoding worker API.

    Construct one per worker and pass it to the tracker and orchestrators.
    The underlying ``httpx.AsyncClient`` carries a single timeout for every
    request; exceeding it is a TransportError like any other network failure.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        multipart_builder: Optional[MultipartRequestBuilder] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        thumbnail_timestamp: Optional[float] = None,
        thumbnail_format: Optional[str] = None,
        thumbnail_quality: Optional[int] = None,
        thumbnail_size: Optional[str] = None,
    ):
        """Initialize client.

        Args:
            base_url: Worker base URL. Uses settings if not provided.
            timeout: Per-request timeout in seconds
            multipart_builder: Upload body builder
            transport: Optional httpx transport (used by tests)
            thumbnail_timestamp: Default thumbnail offset in seconds
            thumbnail_format: Default thumbnail image format
            thumbnail_quality: Default thumbnail quality (0-100)
            thumbnail_size: Default thumbnail size as ``WIDTHxHEIGHT``
        """
        self.base_url = (base_url or settings.GPU_SERVER_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.GPU_REQUEST_TIMEOUT_SECONDS
        self.multipart_builder = multipart_builder or HttpxMultipartBuilder()
        self.thumbnail_timestamp = (
            thumbnail_timestamp if thumbnail_timestamp is not None
            else settings.THUMBNAIL_TIMESTAMP_SECONDS
        )
        self.thumbnail_format = thumbnail_format or settings.THUMBNAIL_FORMAT
        self.thumbnail_quality = (
            thumbnail_quality if thumbnail_quality is not None else settings.THUMBNAIL_QUALITY
        )
        self.thumbnail_size = thumbnail_size or settings.THUMBNAIL_SIZE

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "TranscodeClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ============================================
    # Request plumbing
    # ============================================

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        json: Optional[dict] = None,
        data: Optional[dict] = None,
        files: Optional[dict] = None,
    ) -> Any:
        """Send one request to the worker and return its decoded JSON body.

        Raises:
            TransportError: On network failure, timeout, non-2xx status or an
                undecodable body
        """
        with worker_span(operation, method, path, self.base_url) as span:
            started = time.perf_counter()
            try:
                response = await self._client.request(
                    method,
                    path,
                    json=json,
                    data=data,
                    files=files,
                )
            except httpx.TimeoutException as e:
                WORKER_REQUESTS_TOTAL.labels(operation=operation, status="timeout").inc()
                record_exception(e)
                raise TransportError(
                    f"GPU {operation} failed: request timed out after {self.timeout}s",
                    operation=operation,
                ) from e
            except httpx.RequestError as e:
                WORKER_REQUESTS_TOTAL.labels(operation=operation, status="error").inc()
                record_exception(e)
                raise TransportError(
                    f"GPU {operation} failed: {e}",
                    operation=operation,
                ) from e
            finally:
                WORKER_REQUEST_DURATION_SECONDS.labels(operation=operation).observe(
                    time.perf_counter() - started
                )

            WORKER_REQUESTS_TOTAL.labels(
                operation=operation, status=str(response.status_code)
            ).inc()
            mark_response(span, response.status_code)

            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                details = _error_body(response)
                message = f"GPU {operation} failed (HTTP {response.status_code})"
                if isinstance(details, dict) and details.get("error"):
                    message += f": {details['error']}"
                raise TransportError(
                    message,
                    operation=operation,
                    status_code=response.status_code,
                    details=details,
                ) from e

            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                raise TransportError(
                    f"GPU {operation} returned a non-JSON body",
                    operation=operation,
                    status_code=response.status_code,
                ) from e

    def _parse(self, model: type[BaseModel], payload: Any, operation: str):
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise TransportError(
                f"GPU {operation} returned an unexpected payload",
                operation=operation,
                details=e.errors(include_url=False),
            ) from e

    # ============================================
    # Submission
    # ============================================

    def _thumbnail_fields(self, metadata: Optional[TranscodeMetadata]) -> dict[str, str]:
        if metadata is not None and not metadata.generate_thumbnail:
            return {}
        timestamp = self.thumbnail_timestamp
        if metadata is not None and metadata.thumbnail_timestamp is not None:
            timestamp = metadata.thumbnail_timestamp
        width, _, height = self.thumbnail_size.partition("x")
        return {
            "generateThumbnail": "true",
            "thumbnailTimestamp": _format_number(timestamp),
            "thumbnailFormat": self.thumbnail_format,
            "thumbnailQuality": str(self.thumbnail_quality),
            "thumbnailSize": self.thumbnail_size,
            "thumbnailWidth": width,
            "thumbnailHeight": height,
        }

    async def submit(
        self,
        file: UploadFile,
        preset: Union[str, Preset] = AUTO_PRESET,
        output_path: Optional[str] = None,
        metadata: Optional[Union[TranscodeMetadata, dict]] = None,
    ) -> SubmitResult:
        """Upload a video and enqueue a transcode job on the worker.

        Args:
            file: Video bytes or a binary file handle
            preset: Preset name, or ``auto`` to let the worker choose
            output_path: Output path in the worker's namespace
            metadata: Versioned submission metadata

        Returns:
            SubmitResult with the job ID and the source probe

        Raises:
            TypeError: If ``file`` is not bytes or a binary handle
            ValueError: If ``preset`` is not recognized
            pydantic.ValidationError: If ``metadata`` has unknown fields
            TransportError: If the worker call fails
        """
        file = ensure_upload_file(file)
        preset_name = normalize_preset(preset)
        if isinstance(metadata, dict):
            metadata = TranscodeMetadata.model_validate(metadata)

        fields: dict[str, str] = {"preset": preset_name}
        if output_path:
            fields["outputPath"] = output_path
        fields.update(self._thumbnail_fields(metadata))
        if metadata is not None:
            fields["metadata"] = metadata.to_json()

        filename = (metadata.original_filename if metadata else None) or DEFAULT_FILENAME
        payload = self.multipart_builder.build(file, fields, filename=filename)

        log_info(
            logger,
            "Submitting upload-and-transcode request",
            preset=preset_name,
            output_path=output_path,
            base_url=self.base_url,
        )
        body = await self._request(
            "upload and transcode",
            "POST",
            "/upload-and-transcode",
            data=payload.data,
            files=payload.files,
        )
        result = self._parse(SubmitResult, body, "upload and transcode")
        log_info(logger, "Transcode job accepted", job_id=result.job_id, preset=result.preset)
        return result

    async def transcode(
        self,
        input_file: str,
        output_file: str,
        preset: Union[str, Preset] = AUTO_PRESET,
        metadata: Optional[TranscodeMetadata] = None,
        quality_hint: Optional[QualityLevel] = None,
    ) -> TranscodeResponse:
        """Enqueue a transcode of a file already on shared storage.

        Paths are in the worker's namespace.
        """
        body: dict[str, Any] = {
            "inputFile": input_file,
            "outputFile": output_file,
            "preset": normalize_preset(preset),
        }
        if metadata is not None:
            body["metadata"] = metadata.wire_fields()
        if quality_hint is not None and quality_hint != QualityLevel.UNKNOWN:
            body["quality_hint"] = quality_hint.value

        response = await self._request("transcoding", "POST", "/transcode", json=body)
        return self._parse(TranscodeResponse, response, "transcoding")

    async def transcode_dynamic(
        self,
        input_file: str,
        output_file: str,
        quality: Union[str, DynamicQuality] = DynamicQuality.OPTIMIZE,
    ) -> dict[str, Any]:
        """Enqueue a dynamic-bitrate transcode."""
        quality = DynamicQuality(quality)
        return await self._request(
            "dynamic bitrate transcode",
            "POST",
            "/transcode-dynamic",
            json={"inputFile": input_file, "outputFile": output_file, "quality": quality.value},
        )

    # ============================================
    # Job status
    # ============================================

    async def get_status(self, job_id: str) -> TranscodeJob:
        """Fetch the full job snapshot."""
        body = await self._request("job status check", "GET", f"/job/{job_id}")
        return self._parse(TranscodeJob, body, "job status check")

    async def get_failure_reason(self, job_id: str) -> Optional[str]:
        """Why a job failed, from the job detail endpoint.

        ``GET /job/{id}`` omits the failure reason, so it is looked up
        separately. Returns None when the worker has no reason or the lookup
        fails.
        """
        try:
            body = await self._request("job details check", "GET", f"/job/{job_id}/details")
        except TransportError as e:
            logger.debug(f"Failure reason unavailable for job {job_id}: {e}")
            return None
        reason = body.get("error") if isinstance(body, dict) else None
        return str(reason) if reason else None

    async def get_progress(self, job_id: str) -> JobProgress:
        """Fetch a lightweight progress snapshot.

        Falls back to the full status endpoint when the progress endpoint is
        unavailable; callers get the same shape either way.
        """
        try:
            body = await self._request("job progress check", "GET", f"/job/{job_id}/progress")
            return self._parse(JobProgress, body, "job progress check")
        except TransportError as e:
            logger.debug(f"Progress endpoint unavailable for job {job_id}, using full status: {e}")

        job = await self.get_status(job_id)
        return JobProgress(
            id=job.id,
            progress=job.progress,
            state=job.state,
            status=progress_status(job.state, job.progress),
            estimated_time_remaining=None,
            current_time=0,
            completed=job.completed,
        )

    # ============================================
    # Capacity and catalog
    # ============================================

    async def get_system_status(self) -> SystemStatus:
        body = await self._request("system status check", "GET", "/status")
        return self._parse(SystemStatus, body, "system status check")

    async def is_available(self) -> bool:
        """Whether the worker currently accepts new jobs.

        Advisory only. An unreachable worker is reported as unavailable.
        """
        try:
            status = await self.get_system_status()
        except TransportError as e:
            log_warning(
                logger,
                f"GPU server availability check failed: {e}",
                status_code=e.status_code,
            )
            return False

        log_info(
            logger,
            "GPU server capacity",
            available=status.available_for_new_jobs,
            gpu_usage=status.capacity.gpu_usage,
            queue_active=status.queue.active,
            queue_waiting=status.queue.waiting,
        )
        return status.available_for_new_jobs

    async def get_presets(self) -> list[PresetDefinition]:
        body = await self._request("presets fetch", "GET", "/presets")
        names = body.get("presets", []) if isinstance(body, dict) else []
        details = body.get("details", {}) if isinstance(body, dict) else {}
        presets = []
        for name in names:
            detail = details.get(name) or {}
            presets.append(
                self._parse(PresetDefinition, {**detail, "name": name}, "presets fetch")
            )
        return presets

    async def analyze_bitrate(self, input_file: str) -> QualityAnalysis:
        """Ask the worker to classify the source bitrate.

        Never raises: any failure yields an ``unknown`` analysis, since the
        result only feeds an optional heuristic.
        """
        try:
            body = await self._request(
                "bitrate analysis",
                "POST",
                "/analyze-bitrate",
                json={"inputFile": input_file},
            )
        except TransportError as e:
            log_warning(logger, f"Bitrate analysis failed: {e}", input_file=input_file)
            return QualityAnalysis.unknown()

        if not isinstance(body, dict) or not body.get("success"):
            return QualityAnalysis.unknown()

        analysis = body.get("analysis") or {}
        try:
            return QualityAnalysis(
                quality=analysis.get("qualityLevel", QualityLevel.UNKNOWN),
                bitrate_ratio=analysis.get("bitrateRatio"),
                current_bitrate=analysis.get("currentBitrate"),
                standard_bitrate=analysis.get("standardBitrate"),
                recommendations=body.get("recommendations") or {},
            )
        except ValidationError as e:
            log_warning(logger, f"Unrecognized bitrate analysis payload: {e}", input_file=input_file)
            return QualityAnalysis.unknown()

    async def get_video_metadata(self, file_path: str) -> Optional[dict[str, Any]]:
        """Probe a file on shared storage. Returns None on failure."""
        try:
            return await self._request(
                "video metadata", "POST", "/video/metadata", json={"filePath": file_path}
            )
        except TransportError as e:
            log_warning(logger, f"Video metadata lookup failed: {e}", file_path=file_path)
            return None

    # ============================================
    # Side-effect endpoints
    # ============================================

    async def generate_thumbnail(
        self,
        input_file: str,
        output_path: str,
        timestamp: Optional[float] = None,
        size: Optional[str] = None,
        fmt: Optional[str] = None,
        quality: Optional[int] = None,
    ) -> ThumbnailResponse:
        """Request a still frame extraction. Paths are in the worker's namespace."""
        body = await self._request(
            "generate thumbnail",
            "POST",
            "/generate-thumbnail",
            json={
                "inputFile": input_file,
                "outputPath": output_path,
                "timestamp": timestamp if timestamp is not None else self.thumbnail_timestamp,
                "size": size or self.thumbnail_size,
                "format": fmt or self.thumbnail_format,
                "quality": quality if quality is not None else self.thumbnail_quality,
            },
        )
        return self._parse(ThumbnailResponse, body, "generate thumbnail")

    async def cleanup_upload(self, file_path: str) -> CleanupResponse:
        """Delete a temp upload on the worker. Path is in the worker's namespace."""
        body = await self._request(
            "cleanup uploads", "POST", "/cleanup-uploads", json={"filePath": file_path}
        )
        return self._parse(CleanupResponse, body, "cleanup uploads")

    # ============================================
    # Operations
    # ============================================

    async def health_check(self) -> dict[str, Any]:
        return await self._request("health check", "GET", "/health")

    async def get_queue_stats(self) -> QueueCounts:
        body = await self._request("queue stats", "GET", "/queue/stats")
        return self._parse(QueueCounts, body, "queue stats")

    async def clear_queue(self) -> dict[str, Any]:
        """Remove completed and failed jobs from the worker queue."""
        return await self._request("queue clear", "DELETE", "/queue/clear")

    async def check_available_endpoints(self) -> EndpointAvailability:
        """Probe which worker endpoints respond.

        A 404 from the job status probe still means the endpoint exists; the
        probe job ID simply does not.
        """
        results = EndpointAvailability()
        probes = (
            ("health", "health check", "/health"),
            ("system_status", "system status check", "/status"),
            ("presets", "presets fetch", "/presets"),
            ("job_status", "job status check", "/job/test"),
            ("job_progress", "job progress check", "/job/test/progress"),
        )
        for attr, operation, path in probes:
            try:
                await self._request(operation, "GET", path)
                setattr(results, attr, True)
            except TransportError as e:
                if attr == "job_status" and e.is_not_found:
                    results.job_status = True
        return results


def _error_body(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {"error": response.text[:500]}

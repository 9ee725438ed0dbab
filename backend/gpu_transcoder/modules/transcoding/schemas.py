"""Pydantic schemas for the GPU transcoding worker wire format.

The worker speaks camelCase JSON; every schema accepts both the wire alias and
the Python field name, and ignores fields it does not know about so worker
upgrades that add fields do not break polling.
"""

import json
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from gpu_transcoder.modules.transcoding.models import (
    JobState,
    QualityLevel,
    SCHEMA_VERSION,
)


class WorkerModel(BaseModel):
    """Base for payloads exchanged with the worker."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )


# ============================================
# Job snapshots
# ============================================

class JobData(WorkerModel):
    """Input description the job was queued with."""
    input_file: Optional[str] = None
    output_file: Optional[str] = None
    preset: Optional[str] = None
    original_name: Optional[str] = None
    video_id: Optional[str] = None


class StreamMetadata(WorkerModel):
    """Probe data for a single output stream."""
    codec_type: Optional[str] = Field(None, alias="codec_type")
    codec_name: Optional[str] = Field(None, alias="codec_name")
    width: Optional[int] = None
    height: Optional[int] = None
    bitrate: Optional[float] = None
    frame_rate: Optional[float] = Field(None, alias="frame_rate")
    sample_rate: Optional[float] = Field(None, alias="sample_rate")
    channels: Optional[int] = None


class OutputMetadata(WorkerModel):
    """Probe data for the finished output file."""
    duration: Optional[float] = None
    resolution: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    codec: Optional[str] = None
    streams: list[StreamMetadata] = Field(default_factory=list)
    video: Optional[StreamMetadata] = None
    audio: Optional[StreamMetadata] = None


class JobResult(WorkerModel):
    """Result bundle of a completed job."""
    status: Optional[str] = None
    output_file: Optional[str] = None
    input_size_mb: Optional[float] = Field(None, alias="inputSizeMB")
    output_size_mb: Optional[float] = Field(None, alias="outputSizeMB")
    output_size: Optional[float] = None
    processing_time: Optional[float] = None
    preset: Optional[str] = None
    compression_rate: Optional[Union[float, str]] = None
    efficiency: Optional[str] = None
    output_metadata: Optional[OutputMetadata] = None
    thumbnail_path: Optional[str] = None


class TranscodeJob(WorkerModel):
    """Observed snapshot of a worker-owned job.

    The worker holds the authoritative state; this is only what the last poll
    returned.
    """
    id: str
    state: JobState
    progress: float = 0
    data: JobData = Field(default_factory=JobData)
    processed_on: Optional[int] = None
    finished_on: Optional[int] = None
    returnvalue: Optional[JobResult] = None
    completed: Optional[JobResult] = None
    failed_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def result(self) -> Optional[JobResult]:
        """Completed summary if present, else the raw queue return value."""
        return self.completed or self.returnvalue

    @property
    def thumbnail_path(self) -> Optional[str]:
        result = self.result
        if result and result.thumbnail_path:
            return result.thumbnail_path
        if self.returnvalue and self.returnvalue.thumbnail_path:
            return self.returnvalue.thumbnail_path
        return None


class JobProgress(WorkerModel):
    """Lightweight progress snapshot."""
    id: str
    progress: float = 0
    state: JobState
    status: str = "processing"
    estimated_time_remaining: Optional[float] = None
    current_time: float = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed: Optional[JobResult] = None


# ============================================
# System status
# ============================================

class GPUStats(WorkerModel):
    utilization: float = 0
    memory_used: float = 0
    memory_total: float = 0
    temperature: float = 0


class HostStats(WorkerModel):
    ram_usage: float = 0
    tmpfs_usage: float = 0
    load_average: float = 0


class ResourceSnapshot(WorkerModel):
    gpu: GPUStats = Field(default_factory=GPUStats)
    system: HostStats = Field(default_factory=HostStats)
    timestamp: Optional[str] = None


class QueueCounts(WorkerModel):
    active: int = 0
    waiting: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0

    @property
    def depth(self) -> int:
        return self.active + self.waiting + self.delayed


class Capacity(WorkerModel):
    available_for_new_jobs: bool = False
    tmpfs_usage: float = 0
    ram_usage: float = 0
    gpu_usage: float = 0


class SystemStatus(WorkerModel):
    """Point-in-time worker resource snapshot.

    Advisory only: a positive capacity reading is not a reservation.
    """
    system: ResourceSnapshot = Field(default_factory=ResourceSnapshot)
    queue: QueueCounts = Field(default_factory=QueueCounts)
    capacity: Capacity = Field(default_factory=Capacity)
    performance: dict[str, Any] = Field(default_factory=dict)
    presets: list[str] = Field(default_factory=list)

    @property
    def available_for_new_jobs(self) -> bool:
        return self.capacity.available_for_new_jobs


# ============================================
# Presets and quality analysis
# ============================================

class PresetDefinition(WorkerModel):
    """A named bundle of encode parameters."""
    name: str
    description: str = ""
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    resolution: Optional[str] = None
    bitrate: Optional[str] = None
    fps: Optional[float] = None


class QualityAnalysis(WorkerModel):
    """Remote bitrate analysis of a source file. Never persisted."""
    quality: QualityLevel = QualityLevel.UNKNOWN
    bitrate_ratio: Optional[float] = None
    current_bitrate: Optional[float] = None
    standard_bitrate: Optional[float] = None
    recommendations: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def unknown(cls) -> "QualityAnalysis":
        return cls(quality=QualityLevel.UNKNOWN)

    @property
    def is_known(self) -> bool:
        return self.quality != QualityLevel.UNKNOWN


# ============================================
# Submission
# ============================================

class TranscodeMetadata(BaseModel):
    """Versioned metadata sent along with a submission.

    A closed field set: unknown keys are rejected so the client and worker
    cannot drift apart silently.
    """
    model_config = ConfigDict(extra="forbid")

    schema_version: int = Field(default=SCHEMA_VERSION, ge=1)
    title: Optional[str] = None
    video_id: Optional[str] = None
    original_filename: Optional[str] = None
    quality_hint: Optional[QualityLevel] = None
    generate_thumbnail: bool = True
    thumbnail_timestamp: Optional[float] = Field(None, ge=0)

    def wire_fields(self) -> dict[str, Any]:
        """Metadata fields forwarded as the JSON ``metadata`` part.

        Thumbnail switches travel as their own form fields and are excluded.
        """
        payload = {"schemaVersion": self.schema_version}
        if self.title is not None:
            payload["title"] = self.title
        if self.video_id is not None:
            payload["videoId"] = self.video_id
        if self.original_filename is not None:
            payload["originalFilename"] = self.original_filename
        if self.quality_hint is not None:
            payload["quality_hint"] = self.quality_hint.value
        return payload

    def to_json(self) -> str:
        return json.dumps(self.wire_fields(), ensure_ascii=False)


class VideoProbe(WorkerModel):
    """Source video probe returned on submission."""
    width: int = 0
    height: int = 0
    duration: float = 0
    resolution: Optional[str] = None
    bitrate: Optional[float] = None
    frame_rate: Optional[float] = None
    codec: Optional[str] = None


class AudioProbe(WorkerModel):
    codec: Optional[str] = None
    bitrate: Optional[float] = None
    sample_rate: Optional[float] = None
    channels: Optional[int] = None
    channel_layout: Optional[str] = None


class SubmitResult(WorkerModel):
    """Worker acknowledgement of an upload-and-transcode request."""
    job_id: str
    input_file: Optional[str] = None
    output_file: Optional[str] = None
    preset: Optional[str] = None
    estimated_duration: Optional[float] = None
    video_probe: VideoProbe = Field(default_factory=VideoProbe, alias="videoInfo")
    audio_probe: Optional[AudioProbe] = Field(None, alias="audioInfo")
    thumbnail_generation: bool = False
    thumbnail_path: Optional[str] = None
    message: str = ""


class TranscodeResponse(WorkerModel):
    """Worker acknowledgement of a transcode request for an existing file."""
    job_id: str
    preset: Optional[str] = None
    message: str = ""
    system_status: Optional[dict[str, Any]] = None


class ThumbnailResponse(WorkerModel):
    """Worker reply to a thumbnail extraction request."""
    success: bool = False
    thumbnail_path: Optional[str] = None
    thumbnail_size_mb: float = Field(0, alias="thumbnailSizeMB")
    timestamp: Optional[float] = None
    size: Optional[str] = None
    format: Optional[str] = None
    message: str = ""
    error: Optional[str] = None


class CleanupResponse(WorkerModel):
    """Worker reply to a temp upload deletion request."""
    success: bool = False
    message: str = ""
    file_path: Optional[str] = None
    error: Optional[str] = None


class EndpointAvailability(BaseModel):
    """Which worker endpoints answered a probe."""
    health: bool = False
    job_status: bool = False
    job_progress: bool = False
    system_status: bool = False
    presets: bool = False


# ============================================
# Orchestration results
# ============================================

class ThumbnailResult(BaseModel):
    """Outcome of a post-transcode thumbnail step. Failure is soft."""
    success: bool
    thumbnail_path: str = ""
    thumbnail_url: str = ""
    thumbnail_size_mb: float = 0
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "ThumbnailResult":
        return cls(success=False, error=error)


class CleanupResult(BaseModel):
    """Outcome of a temp upload deletion. Failure is soft."""
    success: bool
    path: str
    rejected: bool = False
    already_absent: bool = False
    error: Optional[str] = None


class CompressionStats(BaseModel):
    """Size and timing figures of a finished transcode."""
    input_size_mb: Optional[float] = None
    output_size_mb: Optional[float] = None
    compression_rate: Optional[Union[float, str]] = None
    processing_time: Optional[float] = None

    @classmethod
    def from_job(cls, job: TranscodeJob) -> "CompressionStats":
        result = job.result
        if result is None:
            return cls()
        output_size_mb = result.output_size_mb
        if output_size_mb is None and result.output_size is not None:
            output_size_mb = result.output_size
        return cls(
            input_size_mb=result.input_size_mb,
            output_size_mb=output_size_mb,
            compression_rate=result.compression_rate,
            processing_time=result.processing_time,
        )


class TranscodeOutcome(BaseModel):
    """Everything the caller needs to persist about a completed job."""
    job: TranscodeJob
    compression: CompressionStats
    thumbnail: Optional[ThumbnailResult] = None
    cleanup: Optional[CleanupResult] = None

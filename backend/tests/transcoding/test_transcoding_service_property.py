"""Property-based tests for the upload pipeline service."""

import pytest
from hypothesis import given, settings, strategies as st
from unittest.mock import AsyncMock, MagicMock

from gpu_transcoder.core.config import Settings
from gpu_transcoder.modules.transcoding.exceptions import (
    AdmissionError,
    JobFailure,
    TransportError,
)
from gpu_transcoder.modules.transcoding.models import KNOWN_PRESETS, Preset, QualityLevel
from gpu_transcoder.modules.transcoding.presets import BYTES_PER_MB
from gpu_transcoder.modules.transcoding.scheduler import ManualScheduler
from gpu_transcoder.modules.transcoding.schemas import (
    CleanupResponse,
    QualityAnalysis,
    SubmitResult,
    ThumbnailResponse,
    TranscodeJob,
    TranscodeOutcome,
)
from gpu_transcoder.modules.transcoding.service import TranscodingService
from gpu_transcoder.modules.transcoding.tracker import JobStateTracker


LOCAL = "/Volumes/videos"
REMOTE = "/mnt/nas/videos"


def make_config(**overrides) -> Settings:
    values = {
        "NAS_VIDEOS_PATH": LOCAL,
        "GPU_NAS_VIDEOS_PATH": REMOTE,
        "GPU_REMOTE_AUTO_PRESET": True,
        "ENFORCE_CAPACITY_CHECK": True,
    }
    values.update(overrides)
    return Settings(**values)


def make_client(available: bool = True) -> MagicMock:
    client = MagicMock()
    client.is_available = AsyncMock(return_value=available)
    client.submit = AsyncMock(return_value=SubmitResult(job_id="42", preset="web_1080p"))
    client.analyze_bitrate = AsyncMock(return_value=QualityAnalysis(quality=QualityLevel.HIGH))
    client.generate_thumbnail = AsyncMock(side_effect=lambda input_file, output_path, **kw: (
        ThumbnailResponse(success=True, thumbnail_path=output_path, thumbnail_size_mb=0.1)
    ))
    client.cleanup_upload = AsyncMock(
        return_value=CleanupResponse(success=True, message="File deleted")
    )
    client.get_failure_reason = AsyncMock(return_value=None)
    return client


def make_service(client: MagicMock, scheduler: ManualScheduler = None, **overrides):
    scheduler = scheduler or ManualScheduler()
    tracker = JobStateTracker(client, scheduler, poll_interval=2.0, backoff_interval=5.0)
    return TranscodingService(client, tracker=tracker, config=make_config(**overrides))


def completed_job(**result) -> TranscodeJob:
    return TranscodeJob.model_validate({
        "id": "42",
        "state": "completed",
        "progress": 100,
        "data": {
            "inputFile": f"{REMOTE}/uploads/video-1.mp4",
            "outputFile": f"{REMOTE}/video-1_web_1080p.mp4",
            "videoId": "vid-1",
        },
        "completed": {
            "outputFile": f"{REMOTE}/video-1_web_1080p.mp4",
            "inputSizeMB": 300,
            "outputSizeMB": 100,
            "compressionRate": 66.7,
            "processingTime": 42.0,
            **result,
        },
    })


class TestAdmission:
    """Capacity check before submission."""

    @pytest.mark.asyncio
    async def test_rejects_when_worker_full(self) -> None:
        client = make_client(available=False)
        service = make_service(client)

        with pytest.raises(AdmissionError) as exc_info:
            await service.submit_upload(b"video", 100 * BYTES_PER_MB, 60)

        assert exc_info.value.reason == "capacity"
        client.submit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_override_submits_anyway(self) -> None:
        client = make_client(available=False)
        service = make_service(client)

        result = await service.submit_upload(
            b"video", 100 * BYTES_PER_MB, 60, enforce_capacity=False
        )

        assert result.job_id == "42"
        client.submit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_configured_without_enforcement(self) -> None:
        client = make_client(available=False)
        service = make_service(client, ENFORCE_CAPACITY_CHECK=False)

        await service.submit_upload(b"video", 100 * BYTES_PER_MB, 60)

        client.submit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_output_path_translated(self) -> None:
        client = make_client()
        service = make_service(client)

        await service.submit_upload(
            b"video", 100 * BYTES_PER_MB, 60, output_path=f"{LOCAL}/out/video-1.mp4"
        )

        assert client.submit.await_args.kwargs["output_path"] == f"{REMOTE}/out/video-1.mp4"
        assert client.submit.await_args.kwargs["preset"] == "auto"


class TestPresetResolution:

    @given(preset=st.sampled_from(sorted(KNOWN_PRESETS)))
    @settings(max_examples=50)
    @pytest.mark.asyncio
    async def test_explicit_presets_pass_through(self, preset: str) -> None:
        client = make_client()
        service = make_service(client, GPU_REMOTE_AUTO_PRESET=False)

        resolved = await service.resolve_preset(preset, 10 * BYTES_PER_MB, 30)

        assert resolved == preset
        client.analyze_bitrate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_auto_forwarded_when_worker_selects(self) -> None:
        service = make_service(make_client())

        assert await service.resolve_preset("auto", 4000 * BYTES_PER_MB, 45 * 60) == "auto"

    @pytest.mark.asyncio
    async def test_local_heuristic_with_analysis(self) -> None:
        client = make_client()
        service = make_service(client, GPU_REMOTE_AUTO_PRESET=False)

        resolved = await service.resolve_preset(
            "auto", 4000 * BYTES_PER_MB, 45 * 60, input_file=f"{LOCAL}/uploads/a.mp4"
        )

        assert resolved == Preset.WEB_2K.value
        client.analyze_bitrate.assert_awaited_once_with(f"{REMOTE}/uploads/a.mp4")

    @pytest.mark.asyncio
    async def test_local_heuristic_without_analysis(self) -> None:
        client = make_client()
        service = make_service(client, GPU_REMOTE_AUTO_PRESET=False)

        resolved = await service.resolve_preset("auto", 200 * BYTES_PER_MB, 10 * 60)

        assert resolved == Preset.WEB_720P.value

    @pytest.mark.asyncio
    async def test_unknown_preset_rejected(self) -> None:
        service = make_service(make_client())

        with pytest.raises(ValueError):
            await service.resolve_preset("ultra", 1, 1)


class TestTracking:
    """Completion side effects and outcome delivery."""

    @pytest.mark.asyncio
    async def test_completed_job_runs_thumbnail_then_cleanup(self) -> None:
        client = make_client()
        client.get_status = AsyncMock(return_value=completed_job())
        scheduler = ManualScheduler()
        service = make_service(client, scheduler)
        outcomes: list[TranscodeOutcome] = []
        failures: list[JobFailure] = []

        service.track(
            "42",
            outcomes.append,
            failures.append,
            source_path=f"{LOCAL}/uploads/video-1.mp4",
            video_id="vid-1",
        )
        await scheduler.run_until_idle()

        assert failures == []
        assert len(outcomes) == 1
        outcome = outcomes[0]
        assert outcome.job.id == "42"
        assert outcome.compression.input_size_mb == 300
        assert outcome.compression.output_size_mb == 100
        assert outcome.thumbnail.success
        assert outcome.thumbnail.thumbnail_path.startswith(f"{LOCAL}/thumbnails/vid-1_thumb_")
        assert outcome.thumbnail.thumbnail_url.startswith("/videos/thumbnails/vid-1_thumb_")
        assert client.generate_thumbnail.await_args.kwargs["input_file"] == (
            f"{REMOTE}/video-1_web_1080p.mp4"
        )
        assert outcome.cleanup.success
        client.cleanup_upload.assert_awaited_once_with(f"{REMOTE}/uploads/video-1.mp4")

    @pytest.mark.asyncio
    async def test_worker_thumbnail_reused_and_input_cleaned(self) -> None:
        client = make_client()
        client.get_status = AsyncMock(
            return_value=completed_job(thumbnailPath=f"{REMOTE}/thumbnails/vid-1.webp")
        )
        scheduler = ManualScheduler()
        service = make_service(client, scheduler)
        outcomes: list[TranscodeOutcome] = []

        service.track("42", outcomes.append, lambda failure: None)
        await scheduler.run_until_idle()

        outcome = outcomes[0]
        client.generate_thumbnail.assert_not_awaited()
        assert outcome.thumbnail.thumbnail_path == f"{LOCAL}/thumbnails/vid-1.webp"
        assert outcome.thumbnail.thumbnail_url == "/videos/thumbnails/vid-1.webp"
        client.cleanup_upload.assert_awaited_once_with(f"{REMOTE}/uploads/video-1.mp4")

    @pytest.mark.asyncio
    async def test_side_effect_failures_keep_job_completed(self) -> None:
        client = make_client()
        client.get_status = AsyncMock(return_value=completed_job())
        client.generate_thumbnail = AsyncMock(side_effect=TransportError(
            "GPU generate thumbnail failed (HTTP 500)", operation="generate thumbnail", status_code=500
        ))
        client.cleanup_upload = AsyncMock(side_effect=TransportError(
            "GPU cleanup uploads failed: timed out", operation="cleanup uploads"
        ))
        scheduler = ManualScheduler()
        service = make_service(client, scheduler)
        outcomes: list[TranscodeOutcome] = []
        failures: list[JobFailure] = []

        service.track(
            "42", outcomes.append, failures.append, source_path=f"{LOCAL}/uploads/video-1.mp4"
        )
        await scheduler.run_until_idle()

        assert failures == []
        assert len(outcomes) == 1
        assert not outcomes[0].thumbnail.success
        assert not outcomes[0].cleanup.success

    @pytest.mark.asyncio
    async def test_failed_job_skips_side_effects(self) -> None:
        client = make_client()
        client.get_status = AsyncMock(return_value=TranscodeJob.model_validate({
            "id": "42", "state": "failed", "progress": 12, "failedReason": "corrupt input",
        }))
        scheduler = ManualScheduler()
        service = make_service(client, scheduler)
        outcomes: list[TranscodeOutcome] = []
        failures: list[JobFailure] = []

        service.track("42", outcomes.append, failures.append)
        await scheduler.run_until_idle()

        assert outcomes == []
        assert [failure.reason for failure in failures] == ["corrupt input"]
        client.generate_thumbnail.assert_not_awaited()
        client.cleanup_upload.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_thumbnail_opt_out_skips_thumbnail_step(self) -> None:
        client = make_client()
        client.get_status = AsyncMock(return_value=completed_job())
        scheduler = ManualScheduler()
        service = make_service(client, scheduler)
        outcomes: list[TranscodeOutcome] = []

        service.track(
            "42",
            outcomes.append,
            lambda failure: None,
            source_path=f"{LOCAL}/uploads/video-1.mp4",
            generate_thumbnail=False,
        )
        await scheduler.run_until_idle()

        assert len(outcomes) == 1
        assert outcomes[0].thumbnail is None
        assert outcomes[0].cleanup.success
        client.generate_thumbnail.assert_not_awaited()
        client.cleanup_upload.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_async_outcome_callback(self) -> None:
        client = make_client()
        client.get_status = AsyncMock(return_value=completed_job())
        scheduler = ManualScheduler()
        service = make_service(client, scheduler)
        delivered = []

        async def on_finished(outcome: TranscodeOutcome) -> None:
            delivered.append(outcome.job.id)

        service.track("42", on_finished, lambda failure: None)
        await scheduler.run_until_idle()

        assert delivered == ["42"]

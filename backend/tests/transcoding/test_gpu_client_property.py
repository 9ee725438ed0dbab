"""Property-based tests for the GPU worker HTTP client.

The worker is faked with httpx.MockTransport so every request the client
builds can be inspected and every failure mode reproduced.
"""

import io
import json

import httpx
import pytest
from hypothesis import given, settings, strategies as st
from pydantic import ValidationError

from gpu_transcoder.modules.transcoding.client import TranscodeClient, progress_status
from gpu_transcoder.modules.transcoding.exceptions import TransportError
from gpu_transcoder.modules.transcoding.models import JobState, Preset, QualityLevel
from gpu_transcoder.modules.transcoding.schemas import TranscodeMetadata


BASE_URL = "http://gpu-worker.test:3001"

SUBMIT_RESPONSE = {
    "jobId": 42,
    "inputFile": "/mnt/nas/videos/uploads/video-1.mp4",
    "outputFile": "/mnt/nas/videos/video-1_web_1080p.mp4",
    "preset": "web_1080p",
    "estimatedDuration": 120,
    "videoInfo": {
        "width": 1920,
        "height": 1080,
        "duration": 300.5,
        "resolution": "1920x1080",
        "bitrate": 8000000,
        "frameRate": 29.97,
        "codec": "h264",
    },
    "audioInfo": {"codec": "aac", "bitrate": 128000, "sampleRate": 48000, "channels": 2},
    "thumbnailGeneration": True,
    "message": "Video uploaded and transcoding job created",
}


def make_client(handler) -> TranscodeClient:
    return TranscodeClient(
        base_url=BASE_URL,
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


def job_payload(job_id: str = "7", state: str = "active", progress: float = 50) -> dict:
    return {
        "id": job_id,
        "state": state,
        "progress": progress,
        "data": {
            "inputFile": "/mnt/nas/videos/uploads/a.mp4",
            "outputFile": "/mnt/nas/videos/a_web_720p.mp4",
            "preset": "web_720p",
        },
        "processedOn": 1700000000000,
        "finishedOn": None,
    }


class TestSubmit:
    """Upload-and-transcode request construction."""

    @pytest.mark.asyncio
    async def test_multipart_fields_and_typed_result(self) -> None:
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["path"] = request.url.path
            captured["content_type"] = request.headers["content-type"]
            captured["body"] = request.content
            return httpx.Response(200, json=SUBMIT_RESPONSE)

        metadata = TranscodeMetadata(title="Demo", video_id="vid-1", original_filename="demo.mov")
        async with make_client(handler) as client:
            result = await client.submit(b"\x00\x01video", preset="web_1080p", metadata=metadata)

        assert captured["path"] == "/upload-and-transcode"
        assert captured["content_type"].startswith("multipart/form-data")
        body = captured["body"]
        assert b'name="video"; filename="demo.mov"' in body
        assert b"web_1080p" in body
        assert b'name="generateThumbnail"' in body
        assert b'name="thumbnailFormat"' in body
        assert b'"schemaVersion": 1' in body
        assert b'"videoId": "vid-1"' in body

        assert result.job_id == "42"
        assert result.video_probe.width == 1920
        assert result.video_probe.frame_rate == 29.97
        assert result.audio_probe is not None and result.audio_probe.channels == 2
        assert result.thumbnail_generation is True

    @pytest.mark.asyncio
    async def test_defaults_to_auto_preset(self) -> None:
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            return httpx.Response(200, json=SUBMIT_RESPONSE)

        async with make_client(handler) as client:
            await client.submit(io.BytesIO(b"data"))

        assert b'name="preset"\r\n\r\nauto' in bodies[0]

    @pytest.mark.asyncio
    async def test_thumbnail_fields_omitted_when_disabled(self) -> None:
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            return httpx.Response(200, json=SUBMIT_RESPONSE)

        async with make_client(handler) as client:
            await client.submit(b"data", metadata={"generate_thumbnail": False})

        assert b"generateThumbnail" not in bodies[0]

    @pytest.mark.asyncio
    async def test_local_validation_before_any_request(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json=SUBMIT_RESPONSE)

        async with make_client(handler) as client:
            with pytest.raises(ValueError):
                await client.submit(b"data", preset="web_8k")
            with pytest.raises(TypeError):
                await client.submit(io.StringIO("not binary"))
            with pytest.raises(TypeError):
                await client.submit("/Volumes/videos/a.mp4")
            with pytest.raises(ValidationError):
                await client.submit(b"data", metadata={"title": "x", "color": "red"})

        assert calls == []

    @pytest.mark.asyncio
    async def test_accepts_preset_enum(self) -> None:
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            return httpx.Response(200, json=SUBMIT_RESPONSE)

        async with make_client(handler) as client:
            await client.submit(b"data", preset=Preset.PORTRAIT_720P)

        assert b"portrait_720p" in bodies[0]

    @pytest.mark.asyncio
    async def test_transcode_existing_file(self) -> None:
        payloads = []

        def handler(request: httpx.Request) -> httpx.Response:
            payloads.append(json.loads(request.content))
            return httpx.Response(200, json={"jobId": "9", "preset": "web_720p"})

        async with make_client(handler) as client:
            response = await client.transcode(
                "/mnt/nas/videos/a.mp4",
                "/mnt/nas/videos/a_out.mp4",
                quality_hint=QualityLevel.LOW,
            )

        assert response.job_id == "9"
        assert payloads[0] == {
            "inputFile": "/mnt/nas/videos/a.mp4",
            "outputFile": "/mnt/nas/videos/a_out.mp4",
            "preset": "auto",
            "quality_hint": "low",
        }


class TestTransportErrors:
    """Every failure surfaces as a typed TransportError."""

    @given(status=st.integers(min_value=400, max_value=599))
    @settings(max_examples=50)
    @pytest.mark.asyncio
    async def test_non_2xx_carries_status(self, status: int) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json={"error": "worker says no"})

        async with make_client(handler) as client:
            with pytest.raises(TransportError) as exc_info:
                await client.get_status("1")

        error = exc_info.value
        assert error.status_code == status
        assert error.operation == "job status check"
        assert error.details == {"error": "worker says no"}
        assert "worker says no" in str(error)
        assert isinstance(error.__cause__, httpx.HTTPStatusError)

    @pytest.mark.asyncio
    async def test_network_failure_keeps_cause(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(TransportError) as exc_info:
                await client.get_system_status()

        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_timeout_is_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with make_client(handler) as client:
            with pytest.raises(TransportError) as exc_info:
                await client.get_status("1")

        assert "timed out" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>proxy</html>")

        async with make_client(handler) as client:
            with pytest.raises(TransportError):
                await client.get_status("1")

    @pytest.mark.asyncio
    async def test_unexpected_payload_shape(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"state": "active"})

        async with make_client(handler) as client:
            with pytest.raises(TransportError):
                await client.get_status("1")


class TestJobStatus:

    @pytest.mark.asyncio
    async def test_numeric_job_id_and_result_bundle(self) -> None:
        payload = job_payload(state="completed", progress=100)
        payload["id"] = 7
        payload["completed"] = {
            "outputFile": "/mnt/nas/videos/a_web_720p.mp4",
            "inputSizeMB": 120.5,
            "outputSizeMB": 40.1,
            "compressionRate": "66.7",
            "processingTime": 35.2,
            "thumbnailPath": "/mnt/nas/videos/thumbnails/a.webp",
        }

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=payload)

        async with make_client(handler) as client:
            job = await client.get_status("7")

        assert job.id == "7"
        assert job.state == JobState.COMPLETED
        assert job.is_terminal
        assert job.result.input_size_mb == 120.5
        assert job.thumbnail_path == "/mnt/nas/videos/thumbnails/a.webp"

    @pytest.mark.asyncio
    async def test_failure_reason_from_details_endpoint(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/job/7/details"
            return httpx.Response(200, json={
                "id": "7",
                "status": "failed",
                "error": "Invalid preset: web_8k",
                "result": None,
            })

        async with make_client(handler) as client:
            reason = await client.get_failure_reason("7")

        assert reason == "Invalid preset: web_8k"

    @given(reply=st.sampled_from([
        (200, {"id": "7", "status": "failed", "error": None}),
        (200, {"id": "7", "status": "failed", "error": ""}),
        (404, {"error": "job not found"}),
        (500, {"error": "boom"}),
    ]))
    @settings(max_examples=20)
    @pytest.mark.asyncio
    async def test_failure_reason_missing_is_none(self, reply) -> None:
        status_code, body = reply

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, json=body)

        async with make_client(handler) as client:
            assert await client.get_failure_reason("7") is None

    @pytest.mark.asyncio
    async def test_progress_endpoint(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/job/7/progress"
            return httpx.Response(200, json={
                "id": "7",
                "progress": 35,
                "state": "active",
                "status": "processing",
                "estimatedTimeRemaining": 60,
                "currentTime": 12,
                "timestamp": "2024-01-01T00:00:00Z",
            })

        async with make_client(handler) as client:
            progress = await client.get_progress("7")

        assert progress.progress == 35
        assert progress.estimated_time_remaining == 60
        assert progress.current_time == 12

    @pytest.mark.asyncio
    async def test_progress_falls_back_to_full_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/progress"):
                return httpx.Response(404, json={"error": "Cannot GET"})
            return httpx.Response(200, json=job_payload(progress=0))

        async with make_client(handler) as client:
            progress = await client.get_progress("7")

        assert progress.id == "7"
        assert progress.state == JobState.ACTIVE
        assert progress.status == "starting"
        assert progress.estimated_time_remaining is None
        assert progress.current_time == 0
        assert progress.timestamp is not None

    @given(progress=st.floats(min_value=0, max_value=100))
    @settings(max_examples=100)
    def test_progress_status_for_active_jobs(self, progress: float) -> None:
        status = progress_status(JobState.ACTIVE, progress)
        if progress <= 0:
            assert status == "starting"
        elif progress >= 100:
            assert status == "finalizing"
        else:
            assert status == "processing"

    def test_progress_status_for_other_states(self) -> None:
        assert progress_status(JobState.COMPLETED, 100) == "completed"
        assert progress_status(JobState.FAILED, 40) == "failed"
        assert progress_status(JobState.WAITING, 0) == "waiting"
        assert progress_status(JobState.DELAYED, 0) == "unknown"


class TestCapacityAndCatalog:

    @pytest.mark.asyncio
    async def test_is_available_reads_capacity(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "system": {"gpu": {"utilization": 35}, "system": {"tmpfsUsage": 20}},
                "queue": {"active": 1, "waiting": 2, "completed": 10, "failed": 0},
                "capacity": {"availableForNewJobs": True, "tmpfsUsage": 20, "gpuUsage": 35},
                "performance": {"expectedSpeed": "fast"},
            })

        async with make_client(handler) as client:
            assert await client.is_available() is True
            status = await client.get_system_status()

        assert status.queue.depth == 3

    @pytest.mark.asyncio
    async def test_unreachable_worker_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        async with make_client(handler) as client:
            assert await client.is_available() is False

    @pytest.mark.asyncio
    async def test_presets_catalog(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "presets": ["web_1080p", "preview"],
                "details": {
                    "web_1080p": {"description": "1080p high quality", "videoCodec": "av1_nvenc"},
                },
            })

        async with make_client(handler) as client:
            presets = await client.get_presets()

        assert [p.name for p in presets] == ["web_1080p", "preview"]
        assert presets[0].video_codec == "av1_nvenc"
        assert presets[1].description == ""

    @pytest.mark.asyncio
    async def test_analyze_bitrate(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "success": True,
                "analysis": {
                    "qualityLevel": "high",
                    "currentBitrate": 12000000,
                    "standardBitrate": 8000000,
                    "bitrateRatio": 1.5,
                },
                "recommendations": {"preset": "web_1080p"},
            })

        async with make_client(handler) as client:
            analysis = await client.analyze_bitrate("/mnt/nas/videos/a.mp4")

        assert analysis.quality == QualityLevel.HIGH
        assert analysis.bitrate_ratio == 1.5
        assert analysis.recommendations == {"preset": "web_1080p"}

    @pytest.mark.asyncio
    async def test_analyze_bitrate_never_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": "ffprobe crashed"})

        async with make_client(handler) as client:
            analysis = await client.analyze_bitrate("/mnt/nas/videos/a.mp4")

        assert analysis.quality == QualityLevel.UNKNOWN

    @pytest.mark.asyncio
    async def test_endpoint_probe_treats_missing_test_job_as_available(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.startswith("/job/test"):
                return httpx.Response(404, json={"error": "Job not found"})
            return httpx.Response(200, json={})

        async with make_client(handler) as client:
            availability = await client.check_available_endpoints()

        assert availability.health
        assert availability.system_status
        assert availability.presets
        assert availability.job_status
        assert not availability.job_progress


class TestSideEffectEndpoints:

    @pytest.mark.asyncio
    async def test_generate_thumbnail_defaults(self) -> None:
        payloads = []

        def handler(request: httpx.Request) -> httpx.Response:
            payloads.append(json.loads(request.content))
            return httpx.Response(200, json={
                "success": True,
                "thumbnailPath": "/mnt/nas/videos/thumbnails/x.webp",
                "thumbnailSizeMB": 0.12,
            })

        async with make_client(handler) as client:
            response = await client.generate_thumbnail(
                "/mnt/nas/videos/a.mp4", "/mnt/nas/videos/thumbnails/x.webp"
            )

        assert response.success
        assert response.thumbnail_size_mb == 0.12
        assert payloads[0]["timestamp"] == client.thumbnail_timestamp
        assert payloads[0]["format"] == client.thumbnail_format
        assert payloads[0]["size"] == client.thumbnail_size

    @pytest.mark.asyncio
    async def test_cleanup_upload(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content) == {"filePath": "/mnt/nas/videos/uploads/a.mp4"}
            return httpx.Response(200, json={"success": True, "message": "File deleted"})

        async with make_client(handler) as client:
            response = await client.cleanup_upload("/mnt/nas/videos/uploads/a.mp4")

        assert response.success

"""Preset selection heuristics.

Used only when the worker does not auto-select a preset. Selection itself is
pure; the quality analyzer may ask the worker for a bitrate classification but
always degrades to ``unknown`` so the size/duration rules can still decide.
"""

import logging
from typing import Optional, TYPE_CHECKING

from gpu_transcoder.core.logging import log_warning
from gpu_transcoder.modules.transcoding.models import (
    FALLBACK_PRESET_CATALOG,
    Preset,
    QualityLevel,
)
from gpu_transcoder.modules.transcoding.schemas import PresetDefinition, QualityAnalysis

if TYPE_CHECKING:
    from gpu_transcoder.modules.transcoding.client import TranscodeClient

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


def select_preset(
    size_mb: float,
    duration_minutes: float,
    detected_quality: Optional[QualityLevel] = None,
) -> Preset:
    """Pick an encode preset from file size, duration and source quality.

    Rules, first match wins:

    1. High quality source: keep quality (2K for large or long files, else 1080p).
    2. Long video (over 30 minutes): size decides between 2K, 1080p and 720p.
    3. Anything else: 2K, 1080p or 720p by size and duration.

    Args:
        size_mb: Source size in megabytes
        duration_minutes: Source duration in minutes
        detected_quality: Classification from bitrate analysis, if any

    Returns:
        Selected preset
    """
    if detected_quality == QualityLevel.HIGH:
        if size_mb > 1000 or duration_minutes > 60:
            return Preset.WEB_2K
        return Preset.WEB_1080P

    if duration_minutes > 30:
        if size_mb > 3000:
            return Preset.WEB_2K
        if size_mb > 1500:
            return Preset.WEB_1080P
        return Preset.WEB_720P

    if size_mb > 1000 or duration_minutes > 60:
        return Preset.WEB_2K
    if size_mb > 500 or duration_minutes > 30:
        return Preset.WEB_1080P
    return Preset.WEB_720P


def fallback_catalog() -> list[PresetDefinition]:
    """Built-in preset definitions for when the worker catalog is unreachable."""
    return [
        PresetDefinition(
            name=preset.value,
            description=description,
            video_codec=video_codec,
            audio_codec=audio_codec,
            resolution=resolution,
            bitrate=bitrate,
            fps=fps,
        )
        for preset, (description, video_codec, audio_codec, resolution, bitrate, fps)
        in FALLBACK_PRESET_CATALOG.items()
    ]


class QualityAnalyzer:
    """Classifies source quality through the worker's bitrate analysis."""

    def __init__(self, client: "TranscodeClient"):
        self.client = client

    async def analyze(self, input_file: str) -> QualityAnalysis:
        """Analyze a source file in the worker's namespace.

        Never raises; failures come back as an ``unknown`` analysis.
        """
        try:
            return await self.client.analyze_bitrate(input_file)
        except Exception as e:
            log_warning(logger, f"Quality analysis failed: {e}", input_file=input_file)
            return QualityAnalysis.unknown()


class PresetSelector:
    """Chooses a preset for a source file, consulting quality analysis when possible."""

    def __init__(self, analyzer: Optional[QualityAnalyzer] = None):
        self.analyzer = analyzer

    async def choose(
        self,
        size_bytes: int,
        duration_seconds: float,
        input_file: Optional[str] = None,
    ) -> Preset:
        """Select a preset for a source.

        Args:
            size_bytes: Source size in bytes
            duration_seconds: Source duration in seconds
            input_file: Worker-namespace path for bitrate analysis, if available

        Returns:
            Selected preset
        """
        quality: Optional[QualityLevel] = None
        if input_file and self.analyzer is not None:
            analysis = await self.analyzer.analyze(input_file)
            if analysis.is_known:
                quality = analysis.quality

        preset = select_preset(
            size_mb=size_bytes / BYTES_PER_MB,
            duration_minutes=duration_seconds / 60,
            detected_quality=quality,
        )
        logger.debug(
            f"Selected preset {preset.value} for {size_bytes} bytes, "
            f"{duration_seconds}s, quality={quality.value if quality else None}"
        )
        return preset

"""Enumerations and constants for the GPU transcoding worker.

The worker owns job state; nothing here is persisted client-side.
"""

from enum import Enum


class JobState(str, Enum):
    """Job state as reported by the worker queue."""
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"
    PAUSED = "paused"
    STUCK = "stuck"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED})


class QualityLevel(str, Enum):
    """Source quality classification from remote bitrate analysis."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNKNOWN = "unknown"


class Preset(str, Enum):
    """Encode presets known to the worker."""
    WEB_4K = "web_4k"
    WEB_2K = "web_2k"
    WEB_1080P = "web_1080p"
    WEB_720P = "web_720p"
    PORTRAIT_4K = "portrait_4k"
    PORTRAIT_2K = "portrait_2k"
    PORTRAIT_1080P = "portrait_1080p"
    PORTRAIT_720P = "portrait_720p"
    PREVIEW = "preview"


# Lets the worker pick a preset from the probed source
AUTO_PRESET = "auto"

KNOWN_PRESETS = frozenset(p.value for p in Preset)


class DynamicQuality(str, Enum):
    """Quality targets for dynamic-bitrate transcodes."""
    MAINTAIN = "maintain"
    OPTIMIZE = "optimize"
    HIGH = "high"
    LOW = "low"
    SPECIAL = "special"


# Static catalog used when the worker's /presets endpoint is unreachable:
# (description, video codec, audio codec, resolution, max bitrate, fps)
FALLBACK_PRESET_CATALOG = {
    Preset.WEB_4K: ("4K high quality", "av1_nvenc", "aac", "3840x2160", "40M", 60),
    Preset.WEB_2K: ("2K high quality", "av1_nvenc", "aac", "2560x1440", "20M", 60),
    Preset.WEB_1080P: ("1080p high quality", "av1_nvenc", "aac", "1920x1080", "10M", 30),
    Preset.WEB_720P: ("720p standard", "av1_nvenc", "aac", "1280x720", "5M", 30),
    Preset.PORTRAIT_4K: ("4K portrait high quality", "av1_nvenc", "aac", "2160x3840", "30M", 60),
    Preset.PORTRAIT_2K: ("2K portrait high quality", "av1_nvenc", "aac", "1440x2560", "15M", 60),
    Preset.PORTRAIT_1080P: ("1080p portrait high quality", "av1_nvenc", "aac", "1080x1920", "8M", 30),
    Preset.PORTRAIT_720P: ("720p portrait standard", "av1_nvenc", "aac", "720x1280", "4M", 30),
    Preset.PREVIEW: ("Preview", "av1_nvenc", "aac", "854x480", "2M", 30),
}


SCHEMA_VERSION = 1

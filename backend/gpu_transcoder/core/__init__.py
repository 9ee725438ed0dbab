"""Core module for configuration and utilities."""

from gpu_transcoder.core.config import Settings, settings
from gpu_transcoder.core.logging import setup_logging

__all__ = [
    "Settings",
    "settings",
    "setup_logging",
]

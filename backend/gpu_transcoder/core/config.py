"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
Components accept explicit arguments and only fall back to these values.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "GPU Transcode Client"
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"

    # Remote GPU worker
    GPU_SERVER_URL: str = "http://localhost:3001"
    GPU_REQUEST_TIMEOUT_SECONDS: float = 120.0  # Long uploads must fit in one request

    # Path namespaces for the same NAS volume seen from each host
    NAS_VIDEOS_PATH: str = "/Volumes/videos"
    GPU_NAS_VIDEOS_PATH: str = "/mnt/nas/videos"
    UPLOADS_SUBDIR: str = "uploads"
    THUMBNAILS_SUBDIR: str = "thumbnails"
    THUMBNAIL_URL_PREFIX: str = "/videos/thumbnails"

    # Job polling
    JOB_POLL_INTERVAL_SECONDS: float = 2.0
    JOB_POLL_BACKOFF_SECONDS: float = 5.0

    # Thumbnail defaults
    THUMBNAIL_TIMESTAMP_SECONDS: float = 5.0
    THUMBNAIL_FORMAT: str = "webp"
    THUMBNAIL_QUALITY: int = 85
    THUMBNAIL_SIZE: str = "1280x720"

    # Preset selection and admission control
    GPU_REMOTE_AUTO_PRESET: bool = True
    ENFORCE_CAPACITY_CHECK: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Tracing
    TRACING_ENABLED: bool = False
    TRACING_CONSOLE_EXPORT: bool = False

    @property
    def uploads_path(self) -> str:
        """Local directory holding pre-transcode temporary uploads."""
        return f"{self.NAS_VIDEOS_PATH.rstrip('/')}/{self.UPLOADS_SUBDIR}"

    @property
    def thumbnails_path(self) -> str:
        """Local directory holding generated thumbnails."""
        return f"{self.NAS_VIDEOS_PATH.rstrip('/')}/{self.THUMBNAILS_SUBDIR}"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()

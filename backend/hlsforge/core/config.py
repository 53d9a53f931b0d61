"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "HLSForge"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Security - REQUIRED (no defaults for sensitive values)
    API_KEY: str

    # Database (embedded SQLite unless overridden)
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/videos.db"

    # Redis / Celery
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = ""
    # Seconds before an unacknowledged job is handed to another consumer.
    # Must exceed the longest expected transcode.
    QUEUE_VISIBILITY_TIMEOUT_SECONDS: int = 6 * 3600

    # CORS
    CORS_ORIGINS: list[str] = []

    # Uploads (tusd writes into UPLOAD_DIR)
    UPLOAD_DIR: str = "./uploads"
    WORK_DIR: str = "./uploads/processed"
    TUS_PUBLIC_URL: str = "http://localhost:8080/files"
    # Shared secret tusd sends with each hook (X-Hook-Secret header or
    # ?secret= on the hook URL). Hooks are unauthenticated when unset.
    TUS_HOOK_SECRET: Optional[str] = None
    UPLOAD_SESSION_TTL_SECONDS: int = 3600
    MAX_UPLOAD_SIZE: int = 5 * 1024 * 1024 * 1024  # 5 GB
    ALLOWED_VIDEO_EXTENSIONS: list[str] = [
        ".mp4", ".mov", ".avi", ".mkv", ".webm", ".flv", ".wmv", ".m4v", ".ts",
    ]

    # Transcoding
    FFMPEG_PATH: str = "ffmpeg"
    HLS_SEGMENT_SECONDS: int = 3
    TRANSCODE_TIMEOUT_SECONDS: Optional[float] = None  # None = unbounded

    # Storage Configuration
    # STORAGE_BACKEND: local, s3, minio
    STORAGE_BACKEND: str = "local"

    # Local Storage (when STORAGE_BACKEND=local)
    LOCAL_STORAGE_PATH: str = "./storage"

    # S3/MinIO/Compatible Storage (when STORAGE_BACKEND=s3 or minio)
    STORAGE_BUCKET: str = ""
    STORAGE_REGION: str = ""
    STORAGE_ACCESS_KEY: str = ""
    STORAGE_SECRET_KEY: str = ""
    STORAGE_ENDPOINT_URL: Optional[str] = None  # Required for MinIO
    STORAGE_PUBLIC_READ: bool = True
    STORAGE_TIMEOUT_SECONDS: int = 60

    # Public base URL for stored objects (CDN or bucket website)
    STORAGE_PUBLIC_URL: Optional[str] = None

    # Webhook callbacks
    CALLBACK_TIMEOUT_SECONDS: float = 10.0
    CALLBACK_MAX_ATTEMPTS: int = 4
    CALLBACK_SWEEP_INTERVAL_SECONDS: int = 60
    # The sweep skips records attempted more recently than this
    CALLBACK_RETRY_BACKOFF_SECONDS: int = 30

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    @property
    def broker_url(self) -> str:
        return self.CELERY_BROKER_URL or self.REDIS_URL


settings = Settings()

"""Application configuration via environment variables.

Provides type-safe settings loading using pydantic-settings.
Environment variables can be loaded from a .env file.
"""

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings have sensible defaults for local development.

    Environment Variables:
        STORAGE_BACKEND: "filesystem" (default) or "s3"
        MESSAGE_DIRECTORY: Directory for the filesystem store
        S3_ENDPOINT_URL: S3-compatible endpoint (MinIO in dev)
        S3_ACCESS_KEY_ID: S3 access key
        S3_SECRET_ACCESS_KEY: S3 secret key
        S3_BUCKET_NAME: Bucket holding the messages
        S3_KEY_PREFIX: Key prefix for message objects
        DEFAULT_PAGE_SIZE: List page size when none is requested
        MAX_PAGE_SIZE: Upper bound for the list page size
        SMTP_ENABLED: Start the SMTP listener with the API
        LOG_LEVEL: Logging level (default INFO)
        LOG_JSON: Emit JSON log lines (default True)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Message storage
    STORAGE_BACKEND: Literal["filesystem", "s3"] = "filesystem"
    MESSAGE_DIRECTORY: str = "./messages"

    # Object Storage (S3/MinIO)
    S3_ENDPOINT_URL: Optional[str] = None
    S3_ACCESS_KEY_ID: str = "minioadmin"
    S3_SECRET_ACCESS_KEY: str = "minioadmin"
    S3_BUCKET_NAME: str = "mailcatch-messages"
    S3_KEY_PREFIX: str = "messages/"
    S3_REGION: str = "us-east-1"

    # Listing
    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100

    # Email (SMTP ingest)
    SMTP_ENABLED: bool = False
    SMTP_HOST: str = "127.0.0.1"
    SMTP_PORT: int = 2525
    SMTP_MAX_SIZE: int = 26_214_400  # 25 MB

    # Application
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    ENVIRONMENT: str = "development"
    CORS_ORIGINS: str = "http://localhost:3000"

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache for singleton behavior.
    Call get_settings.cache_clear() to reload settings.
    """
    return Settings()

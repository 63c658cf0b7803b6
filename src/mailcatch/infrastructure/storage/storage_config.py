"""Storage configuration and blob store selection.

Builds the configured BlobStorePort adapter from application settings.
Supports a local directory (default) and S3-compatible storage (MinIO in
development, AWS S3 in production) behind the same interface.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ...config import Settings
from ...domain.messages.ports.blob_store_port import BlobStorePort
from .filesystem_blob_store import FilesystemBlobStore
from .s3_blob_store import S3BlobStore


@dataclass
class S3StorageConfig:
    """Configuration for S3-compatible object storage.

    Attributes:
        endpoint_url: S3 endpoint URL (e.g., 'http://localhost:9000' for MinIO,
                      None for AWS S3 which uses default regional endpoints)
        access_key: S3 access key ID
        secret_key: S3 secret access key
        bucket_name: Bucket holding the messages
        key_prefix: Prefix for message object keys
        region: AWS region (default: 'us-east-1')
    """
    endpoint_url: Optional[str]
    access_key: str
    secret_key: str
    bucket_name: str
    key_prefix: str = "messages/"
    region: str = "us-east-1"


def load_s3_config(settings: Settings) -> S3StorageConfig:
    return S3StorageConfig(
        endpoint_url=settings.S3_ENDPOINT_URL or None,
        access_key=settings.S3_ACCESS_KEY_ID,
        secret_key=settings.S3_SECRET_ACCESS_KEY,
        bucket_name=settings.S3_BUCKET_NAME,
        key_prefix=settings.S3_KEY_PREFIX,
        region=settings.S3_REGION,
    )


def validate_s3_config(config: S3StorageConfig) -> None:
    """Validate S3 storage configuration.

    Raises:
        ValueError: If configuration is invalid
    """
    if not config.access_key:
        raise ValueError("Storage access_key is required")

    if not config.secret_key:
        raise ValueError("Storage secret_key is required")

    if not config.bucket_name:
        raise ValueError("Storage bucket_name is required")

    if config.key_prefix and not config.key_prefix.endswith("/"):
        raise ValueError(
            f"Invalid key_prefix: {config.key_prefix!r}. Must end with '/'"
        )

    if config.endpoint_url:
        # MinIO configuration
        if not config.endpoint_url.startswith(("http://", "https://")):
            raise ValueError(
                f"Invalid endpoint_url: {config.endpoint_url}. "
                "Must start with http:// or https://"
            )
    elif not config.region:
        raise ValueError("AWS region is required when using S3 (S3_ENDPOINT_URL not set)")


def build_blob_store(settings: Settings) -> BlobStorePort:
    """Create the blob store selected by ``STORAGE_BACKEND``.

    Raises:
        ValueError: If the S3 configuration is invalid
        StorageError: If the store cannot be initialized
    """
    if settings.STORAGE_BACKEND == "s3":
        config = load_s3_config(settings)
        validate_s3_config(config)
        return S3BlobStore(
            endpoint_url=config.endpoint_url,
            access_key=config.access_key,
            secret_key=config.secret_key,
            bucket_name=config.bucket_name,
            key_prefix=config.key_prefix,
            region=config.region,
        )

    return FilesystemBlobStore(Path(settings.MESSAGE_DIRECTORY))

"""S3 Blob Store - Implementation of BlobStorePort using boto3.

Stores each raw message as one object under a key prefix in an
S3-compatible bucket (AWS S3, MinIO, etc.). Object keys are
``{prefix}{blob_id}``; the creation time is recovered from the identifier.

Architecture: Hexagonal - Adapter implementation in infrastructure layer
"""

import logging
import threading
from io import BytesIO
from typing import BinaryIO, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from ...domain.messages.errors import MessageNotFoundError, StorageError
from ...domain.messages.message_id import (
    MessageIdGenerator,
    created_at_from_id,
    is_valid_blob_name,
)
from ...domain.messages.models import StoredBlob
from ...domain.messages.ports.blob_store_port import BlobStorePort, MessageWriter

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_MAX_ID_ATTEMPTS = 5


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "Unknown")


class S3BlobStore(BlobStorePort):
    """S3-compatible message store using boto3.

    Example:
        config = load_storage_config(settings)
        store = S3BlobStore(
            endpoint_url=config.endpoint_url,
            access_key=config.access_key,
            secret_key=config.secret_key,
            bucket_name=config.bucket_name,
            key_prefix="messages/",
        )
    """

    def __init__(
        self,
        endpoint_url: Optional[str],
        access_key: str,
        secret_key: str,
        bucket_name: str,
        key_prefix: str = "messages/",
        region: str = "us-east-1",
        id_generator: Optional[MessageIdGenerator] = None,
    ):
        """Initialize S3 blob store.

        Args:
            endpoint_url: S3 endpoint URL (None for AWS S3, URL for MinIO)
            access_key: S3 access key ID
            secret_key: S3 secret access key
            bucket_name: S3 bucket name
            key_prefix: Prefix prepended to every message key
            region: AWS region (default: 'us-east-1')
            id_generator: Identifier source (default: wall-clock generator)

        Raises:
            StorageError: If S3 client initialization fails
        """
        try:
            self.s3_client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
            )
        except NoCredentialsError as e:
            raise StorageError(f"Invalid S3 credentials: {e}") from e
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}") from e

        self.bucket_name = bucket_name
        self.key_prefix = key_prefix
        self.region = region
        self._id_generator = id_generator or MessageIdGenerator()
        self._write_lock = threading.Lock()

        logger.info(
            f"Initialized S3 blob store: bucket={bucket_name}, prefix={key_prefix}, "
            f"endpoint={endpoint_url or 'AWS S3'}, region={region}"
        )

    def store_blob(self, writer: MessageWriter) -> StoredBlob:
        buffer = BytesIO()
        try:
            writer(buffer)
        except OSError as e:
            logger.error(f"Failed to read message for upload: error={e}")
            raise StorageError(f"Failed to store message: {e}") from e
        content = buffer.getvalue()

        with self._write_lock:
            blob_id, created_at = self._allocate_id()
            key = self._key_for(blob_id)
            try:
                self.s3_client.put_object(
                    Bucket=self.bucket_name,
                    Key=key,
                    Body=content,
                    ContentType="message/rfc822",
                )
            except ClientError as e:
                error_code = _error_code(e)
                logger.error(f"S3 upload failed: key={key}, error={error_code}, message={e}")
                raise StorageError(f"Failed to store message: {error_code}", message_id=blob_id) from e
            except BotoCoreError as e:
                logger.error(f"S3 upload failed: key={key}, error={e}")
                raise StorageError(f"Failed to store message: {e}", message_id=blob_id) from e

            self._id_generator.observe(created_at)

        logger.info(f"Stored message: blob_id={blob_id}, key={key}, size={len(content)}")
        return StoredBlob(blob_id=blob_id, created_at=created_at, size_bytes=len(content))

    def open_blob(self, blob_id: str) -> BinaryIO:
        key = self._checked_key(blob_id)
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            error_code = _error_code(e)
            if error_code in _NOT_FOUND_CODES:
                logger.warning(f"Message not found: key={key}")
                raise MessageNotFoundError(f"Message not found: {blob_id}", message_id=blob_id)
            logger.error(f"S3 retrieval failed: key={key}, error={error_code}")
            raise StorageError(f"Failed to open message: {error_code}", message_id=blob_id) from e
        except BotoCoreError as e:
            logger.error(f"S3 retrieval failed: key={key}, error={e}")
            raise StorageError(f"Failed to open message: {e}", message_id=blob_id) from e
        return response["Body"]

    def delete_blob(self, blob_id: str) -> bool:
        if not is_valid_blob_name(blob_id):
            return False
        if not self.blob_exists(blob_id):
            logger.info(f"Message not found for deletion: blob_id={blob_id}")
            return False

        key = self._key_for(blob_id)
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            error_code = _error_code(e)
            logger.error(f"S3 deletion failed: key={key}, error={error_code}")
            raise StorageError(f"Failed to delete message: {error_code}", message_id=blob_id) from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to delete message: {e}", message_id=blob_id) from e

        logger.info(f"Deleted message: blob_id={blob_id}")
        return True

    def blob_exists(self, blob_id: str) -> bool:
        if not is_valid_blob_name(blob_id):
            return False
        try:
            self._head(blob_id)
            return True
        except MessageNotFoundError:
            return False

    def get_blob(self, blob_id: str) -> StoredBlob:
        self._checked_key(blob_id)
        response = self._head(blob_id)
        return StoredBlob(
            blob_id=blob_id,
            created_at=created_at_from_id(blob_id, fallback=response["LastModified"]),
            size_bytes=response["ContentLength"],
        )

    def list_blobs(self) -> List[StoredBlob]:
        blobs = []
        try:
            paginator = self.s3_client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=self.key_prefix):
                for obj in page.get("Contents", []):
                    blob_id = obj["Key"][len(self.key_prefix):]
                    if not is_valid_blob_name(blob_id):
                        continue
                    blobs.append(StoredBlob(
                        blob_id=blob_id,
                        created_at=created_at_from_id(blob_id, fallback=obj["LastModified"]),
                        size_bytes=obj["Size"],
                    ))
        except ClientError as e:
            error_code = _error_code(e)
            logger.error(f"S3 listing failed: bucket={self.bucket_name}, error={error_code}")
            raise StorageError(f"Failed to list messages: {error_code}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to list messages: {e}") from e
        return blobs

    def check_health(self) -> None:
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            error_code = _error_code(e)
            if error_code in _NOT_FOUND_CODES:
                raise StorageError(
                    f"Bucket '{self.bucket_name}' does not exist. "
                    f"Create it first or update S3_BUCKET_NAME."
                ) from e
            raise StorageError(f"Failed to verify bucket: {error_code}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to verify bucket: {e}") from e

    def _head(self, blob_id: str) -> dict:
        key = self._key_for(blob_id)
        try:
            return self.s3_client.head_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            error_code = _error_code(e)
            if error_code in _NOT_FOUND_CODES:
                raise MessageNotFoundError(f"Message not found: {blob_id}", message_id=blob_id)
            logger.warning(f"Error checking message existence: key={key}, error={error_code}")
            raise StorageError(f"Failed to check message: {error_code}", message_id=blob_id) from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to check message: {e}", message_id=blob_id) from e

    def _allocate_id(self):
        for _ in range(_MAX_ID_ATTEMPTS):
            blob_id, created_at = self._id_generator.next_id()
            if not self.blob_exists(blob_id):
                return blob_id, created_at
        raise StorageError("Could not allocate a unique message identifier")

    def _key_for(self, blob_id: str) -> str:
        return f"{self.key_prefix}{blob_id}"

    def _checked_key(self, blob_id: str) -> str:
        if not is_valid_blob_name(blob_id):
            raise MessageNotFoundError(f"Message not found: {blob_id}", message_id=blob_id)
        return self._key_for(blob_id)

"""Filesystem Blob Store - Implementation of BlobStorePort on a local directory.

One file per message, named by its identifier. Writes go to a hidden
temporary file in the same directory, are fsynced, then atomically renamed
into place, so listings never see a partial message.

Architecture: Hexagonal - Adapter implementation in infrastructure layer
"""

import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, List, Optional

from ...domain.messages.errors import MessageNotFoundError, StorageError
from ...domain.messages.message_id import (
    MessageIdGenerator,
    created_at_from_id,
    is_valid_blob_name,
)
from ...domain.messages.models import StoredBlob
from ...domain.messages.ports.blob_store_port import BlobStorePort, MessageWriter

logger = logging.getLogger(__name__)

_TEMP_PREFIX = "."
_TEMP_SUFFIX = ".tmp"
_MAX_ID_ATTEMPTS = 5


class FilesystemBlobStore(BlobStorePort):
    """Message blobs stored as ``.eml`` files in a single directory.

    Example:
        store = FilesystemBlobStore(Path("./messages"))
        stored = store.store_blob(lambda sink: sink.write(raw_mime))
    """

    def __init__(
        self,
        directory: Path,
        id_generator: Optional[MessageIdGenerator] = None,
    ):
        """Initialize filesystem blob store.

        Args:
            directory: Directory holding the message files (created if missing)
            id_generator: Identifier source (default: wall-clock generator)

        Raises:
            StorageError: If the directory cannot be created
        """
        self.directory = Path(directory)
        self._id_generator = id_generator or MessageIdGenerator()
        self._write_lock = threading.Lock()

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create message directory {self.directory}: {e}") from e

        logger.info(f"Initialized filesystem blob store: directory={self.directory}")

    def store_blob(self, writer: MessageWriter) -> StoredBlob:
        with self._write_lock:
            blob_id, created_at = self._allocate_id()
            final_path = self.directory / blob_id
            temp_path = None

            try:
                with tempfile.NamedTemporaryFile(
                    dir=self.directory,
                    prefix=_TEMP_PREFIX,
                    suffix=_TEMP_SUFFIX,
                    delete=False,
                ) as sink:
                    temp_path = Path(sink.name)
                    writer(sink)
                    sink.flush()
                    os.fsync(sink.fileno())
                size_bytes = temp_path.stat().st_size
                os.replace(temp_path, final_path)
                self._sync_directory()
            except OSError as e:
                self._discard(temp_path)
                logger.error(f"Failed to store message: blob_id={blob_id}, error={e}")
                raise StorageError(f"Failed to store message: {e}", message_id=blob_id) from e
            except BaseException:
                self._discard(temp_path)
                raise

            # Keep later identifiers ordered after this one
            self._id_generator.observe(created_at)

        logger.info(f"Stored message: blob_id={blob_id}, size={size_bytes}")
        return StoredBlob(blob_id=blob_id, created_at=created_at, size_bytes=size_bytes)

    def open_blob(self, blob_id: str) -> BinaryIO:
        path = self._path_for(blob_id)
        try:
            return open(path, "rb")
        except FileNotFoundError:
            logger.warning(f"Message not found: blob_id={blob_id}")
            raise MessageNotFoundError(f"Message not found: {blob_id}", message_id=blob_id)
        except OSError as e:
            logger.error(f"Failed to open message: blob_id={blob_id}, error={e}")
            raise StorageError(f"Failed to open message: {e}", message_id=blob_id) from e

    def delete_blob(self, blob_id: str) -> bool:
        if not is_valid_blob_name(blob_id):
            return False
        try:
            (self.directory / blob_id).unlink()
        except FileNotFoundError:
            logger.info(f"Message not found for deletion: blob_id={blob_id}")
            return False
        except OSError as e:
            logger.error(f"Failed to delete message: blob_id={blob_id}, error={e}")
            raise StorageError(f"Failed to delete message: {e}", message_id=blob_id) from e

        logger.info(f"Deleted message: blob_id={blob_id}")
        return True

    def blob_exists(self, blob_id: str) -> bool:
        return is_valid_blob_name(blob_id) and (self.directory / blob_id).is_file()

    def get_blob(self, blob_id: str) -> StoredBlob:
        path = self._path_for(blob_id)
        try:
            stat = path.stat()
        except FileNotFoundError:
            raise MessageNotFoundError(f"Message not found: {blob_id}", message_id=blob_id)
        except OSError as e:
            raise StorageError(f"Failed to stat message: {e}", message_id=blob_id) from e
        return self._to_stored_blob(blob_id, stat)

    def list_blobs(self) -> List[StoredBlob]:
        blobs = []
        try:
            with os.scandir(self.directory) as it:
                for entry in it:
                    if not is_valid_blob_name(entry.name) or not entry.is_file():
                        continue
                    try:
                        stat = entry.stat()
                    except FileNotFoundError:
                        # Deleted between scandir and stat
                        continue
                    blobs.append(self._to_stored_blob(entry.name, stat))
        except OSError as e:
            logger.error(f"Failed to list messages: directory={self.directory}, error={e}")
            raise StorageError(f"Failed to list messages: {e}") from e
        return blobs

    def check_health(self) -> None:
        if not self.directory.is_dir():
            raise StorageError(f"Message directory does not exist: {self.directory}")
        if not os.access(self.directory, os.R_OK | os.W_OK):
            raise StorageError(f"Message directory is not readable and writable: {self.directory}")

    def _allocate_id(self):
        for _ in range(_MAX_ID_ATTEMPTS):
            blob_id, created_at = self._id_generator.next_id()
            if not (self.directory / blob_id).exists():
                return blob_id, created_at
        raise StorageError("Could not allocate a unique message identifier")

    def _path_for(self, blob_id: str) -> Path:
        if not is_valid_blob_name(blob_id):
            raise MessageNotFoundError(f"Message not found: {blob_id}", message_id=blob_id)
        return self.directory / blob_id

    def _to_stored_blob(self, blob_id: str, stat: os.stat_result) -> StoredBlob:
        modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        return StoredBlob(
            blob_id=blob_id,
            created_at=created_at_from_id(blob_id, fallback=modified),
            size_bytes=stat.st_size,
        )

    def _sync_directory(self) -> None:
        # Persist the rename itself; not supported on every platform
        if not hasattr(os, "O_DIRECTORY"):
            return
        fd = os.open(self.directory, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    @staticmethod
    def _discard(temp_path: Optional[Path]) -> None:
        if temp_path is None:
            return
        try:
            temp_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove partial message file {temp_path}: {e}")

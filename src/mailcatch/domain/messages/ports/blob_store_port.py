"""Blob Store Port - Domain interface for raw message storage.

This port defines the contract for persisting raw MIME messages as opaque
blobs. Adapters implement it for a local directory or S3-compatible storage.

Architecture: Hexagonal - Port interface in domain layer
"""

from abc import ABC, abstractmethod
from typing import BinaryIO, Callable, List

from ..models import StoredBlob

# Receives a writable binary sink and writes the raw message into it
MessageWriter = Callable[[BinaryIO], None]


class BlobStorePort(ABC):
    """Port interface for append-only message blob storage.

    Key Design Principles:
    - The store chooses identifiers (URL-safe, never reused)
    - Bytes are durably committed before store_blob returns
    - A failed write never leaves a visible blob behind
    - Blobs are immutable once stored

    Methods block on I/O. Async callers should run them in a worker thread.

    Example Usage:
        store = FilesystemBlobStore(Path("./messages"))

        stored = store.store_blob(lambda sink: sink.write(raw_mime))

        with store.open_blob(stored.blob_id) as stream:
            raw = stream.read()
    """

    @abstractmethod
    def store_blob(self, writer: MessageWriter) -> StoredBlob:
        """Persist the bytes produced by ``writer`` under a new identifier.

        Args:
            writer: Callback that writes the raw message into the given sink

        Returns:
            StoredBlob: Identifier, creation time and size of the new blob

        Raises:
            StorageError: If the bytes could not be committed

        Note:
            An OSError raised by ``writer`` is reported as StorageError,
            like any other I/O failure. Other writer exceptions propagate
            unchanged. Either way no blob is left behind.
        """
        pass

    @abstractmethod
    def open_blob(self, blob_id: str) -> BinaryIO:
        """Open a stored blob for reading.

        Args:
            blob_id: Identifier returned by store_blob()

        Returns:
            BinaryIO: Stream positioned at the start (caller must close)

        Raises:
            MessageNotFoundError: If no blob exists under ``blob_id``
            StorageError: If the medium fails
        """
        pass

    @abstractmethod
    def delete_blob(self, blob_id: str) -> bool:
        """Delete a blob.

        Returns:
            bool: True if the blob was deleted, False if it didn't exist

        Raises:
            StorageError: If deletion fails
        """
        pass

    @abstractmethod
    def blob_exists(self, blob_id: str) -> bool:
        pass

    @abstractmethod
    def get_blob(self, blob_id: str) -> StoredBlob:
        """Metadata for one blob without reading its content.

        Raises:
            MessageNotFoundError: If no blob exists under ``blob_id``
        """
        pass

    @abstractmethod
    def list_blobs(self) -> List[StoredBlob]:
        """Enumerate every stored blob without reading content.

        Raises:
            StorageError: If the listing fails
        """
        pass

    @abstractmethod
    def check_health(self) -> None:
        """Raise StorageError if the storage medium is unreachable."""
        pass

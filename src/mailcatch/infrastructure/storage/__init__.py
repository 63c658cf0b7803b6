from .filesystem_blob_store import FilesystemBlobStore
from .s3_blob_store import S3BlobStore
from .storage_config import build_blob_store

__all__ = ["FilesystemBlobStore", "S3BlobStore", "build_blob_store"]

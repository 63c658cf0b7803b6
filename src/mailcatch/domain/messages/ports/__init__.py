from .blob_store_port import BlobStorePort, MessageWriter

__all__ = ["BlobStorePort", "MessageWriter"]

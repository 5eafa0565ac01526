"""Blob storage backends."""

from signal_client.storage.blobs import (
    BlobStore,
    HttpBlobStore,
    MemoryBlobStore,
    Upload,
    build_blob_store,
)

__all__ = ["BlobStore", "HttpBlobStore", "MemoryBlobStore", "Upload", "build_blob_store"]

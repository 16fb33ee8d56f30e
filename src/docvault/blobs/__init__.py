"""Blob stores: byte storage behind the file service."""

from docvault.blobs.local_disk import LocalDiskBlobStore
from docvault.blobs.memory import MemoryBlobStore
from docvault.blobs.protocol import BlobStore

__all__ = [
    "BlobStore",
    "LocalDiskBlobStore",
    "MemoryBlobStore",
]

"""Blob storage module for file messages."""

from .service import BlobStorage, LocalBlobStorage

__all__ = [
    "BlobStorage",
    "LocalBlobStorage",
]

"""Blob backends and the content-addressed package store."""

from driverpack.storage.backend import BlobBackend, BlobNotFoundError, LocalDiskBackend
from driverpack.storage.store import (
    BlobMissingError,
    DeleteResult,
    PackageNotFoundError,
    PackageStore,
    SaveResult,
    blob_path,
)

__all__ = [
    "BlobBackend",
    "BlobMissingError",
    "BlobNotFoundError",
    "DeleteResult",
    "LocalDiskBackend",
    "PackageNotFoundError",
    "PackageStore",
    "SaveResult",
    "blob_path",
]

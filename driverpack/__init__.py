"""Driverpack - ingest printer driver bundles into a deduplicated package repository."""

__version__ = "0.1.0"

from driverpack.database import Database
from driverpack.package import PackageBuilder
from driverpack.storage import LocalDiskBackend, PackageStore
from driverpack.uploads import UploadSessionManager

__all__ = [
    "Database",
    "LocalDiskBackend",
    "PackageBuilder",
    "PackageStore",
    "UploadSessionManager",
]

"""Data models for the database."""

import sqlite3
from dataclasses import dataclass


@dataclass
class PackageRecord:
    """Represents a stored package row."""

    id: int
    package_id: str
    original_filename: str
    content_hash: str
    display_name: str | None
    version: str | None
    vendor: str | None
    uploaded_by: str
    created_at_unix: float
    created_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PackageRecord":
        return cls(
            id=row["id"],
            package_id=row["package_id"],
            original_filename=row["original_filename"],
            content_hash=row["content_hash"],
            display_name=row["display_name"],
            version=row["version"],
            vendor=row["vendor"],
            uploaded_by=row["uploaded_by"],
            created_at_unix=row["created_at_unix"],
            created_at=row["created_at"],
        )


@dataclass
class SupportedModel:
    """A (model, hardware ID) pair a package supports."""

    id: int | None
    package_ref: int
    model_name: str
    hardware_id: str

"""Content-addressed package storage with deduplication and reference-counted deletion."""

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass

from driverpack.config import StoreConfig
from driverpack.database import Database, PackageRecord, SupportedModel
from driverpack.package.hashing import hash_archive_payload
from driverpack.package.manifest import (
    InvalidPackageError,
    PackageManifest,
    open_archive,
    validate_archive,
)
from driverpack.storage.backend import BlobBackend, BlobNotFoundError

logger = logging.getLogger(__name__)

SHARD_LENGTH = 2


class PackageNotFoundError(LookupError):
    """Raised when no index row matches a package id."""


class BlobMissingError(Exception):
    """Raised when an indexed package has no blob behind it."""

    def __init__(self, content_hash: str, path: str):
        super().__init__(
            f"Package file {path} is missing from the repository; "
            "use force to remove the database entry only"
        )
        self.content_hash = content_hash
        self.path = path


@dataclass
class SaveResult:
    record: PackageRecord
    manifest: PackageManifest
    is_duplicate: bool
    is_duplicate_name: bool = False

    @property
    def id(self) -> str:
        return self.record.package_id


@dataclass
class DeleteResult:
    file_deleted: bool
    file_missing: bool


def blob_path(content_hash: str, extension: str = "pd") -> str:
    """Two-level sharded path for a content hash, e.g. ``4f/4f3a...e1.pd``."""
    return f"{content_hash[:SHARD_LENGTH]}/{content_hash}.{extension}"


def _is_shard_name(name: str) -> bool:
    return len(name) == SHARD_LENGTH and "/" not in name and "\\" not in name and name != ".."


def _support_rows(manifest: PackageManifest) -> list[tuple[str, str]]:
    """(model name, hardware id) pairs to index for a manifest.

    Each PnP id is paired with the model at the same position, falling back
    to the first model. Without PnP ids every model is indexed bare.
    """
    pnp_ids = manifest.hardware_support.pnp_ids
    models = manifest.hardware_support.compatible_models
    if not pnp_ids:
        return [(model, "") for model in models]

    rows = []
    for i, hardware_id in enumerate(pnp_ids):
        if i < len(models):
            model = models[i]
        elif models:
            model = models[0]
        else:
            model = manifest.driver_metadata.display_name
        rows.append((model, hardware_id))
    return rows


class PackageStore:
    """Persists built packages in a blob backend, indexed in sqlite."""

    def __init__(self, db: Database, backend: BlobBackend, config: StoreConfig | None = None):
        self.db = db
        self.backend = backend
        self.config = config or StoreConfig()
        self._lock = threading.RLock()

    def save(
        self,
        archive_bytes: bytes,
        original_name: str,
        uploaded_by: str,
        content_hash: str | None = None,
    ) -> SaveResult:
        """Validate and store an archive, or return the existing record for its payload.

        ``content_hash`` is checked against the digest recomputed from the
        archive payload; a mismatch is rejected before anything is written.
        """
        with open_archive(archive_bytes) as archive:
            manifest = validate_archive(archive)
            actual_hash = hash_archive_payload(archive)

        if content_hash is not None and content_hash != actual_hash:
            raise InvalidPackageError(
                InvalidPackageError.HASH_MISMATCH,
                f"Content hash {content_hash} does not match payload hash {actual_hash}",
            )

        existing = self._find_by_hash(actual_hash)
        if existing is not None:
            logger.info("Duplicate payload %s, reusing %s", actual_hash, existing.package_id)
            return SaveResult(existing, manifest, is_duplicate=True)

        display_name = manifest.driver_metadata.display_name or None
        is_duplicate_name = display_name is not None and self._display_name_taken(display_name)

        path = blob_path(actual_hash, self.config.archive_extension)
        self.backend.write(path, archive_bytes)

        with self._lock:
            try:
                record = self._insert(manifest, original_name, uploaded_by, actual_hash)
            except sqlite3.IntegrityError:
                # Lost a race against a concurrent save of the same payload
                self.db.conn.rollback()
                record = self._find_by_identity(actual_hash, manifest.package_info.id)
                if record is None:
                    raise
                inserted = False
            else:
                inserted = True

        if not inserted:
            logger.info("Concurrent save of %s resolved to %s", actual_hash, record.package_id)
            return SaveResult(record, manifest, is_duplicate=True)

        logger.info(
            "Stored package %s (%s) at %s", record.package_id, record.display_name, path
        )
        return SaveResult(record, manifest, is_duplicate=False, is_duplicate_name=is_duplicate_name)

    def delete(self, package_id: str | int, force_if_missing: bool = False) -> DeleteResult:
        """Remove a package from the index, and its blob once nothing else references it."""
        with self._lock:
            record = self.get_record(package_id)
            path = blob_path(record.content_hash, self.config.archive_extension)

            other_refs = self.db.conn.execute(
                "SELECT COUNT(*) FROM packages WHERE content_hash = ? AND id != ?",
                (record.content_hash, record.id),
            ).fetchone()[0]

            blob_present = False
            if other_refs == 0:
                blob_present = self.backend.exists(path)
                if not blob_present and not force_if_missing:
                    raise BlobMissingError(record.content_hash, path)

            self.db.conn.execute("DELETE FROM supported_models WHERE package_ref = ?", (record.id,))
            self.db.conn.execute("DELETE FROM packages WHERE id = ?", (record.id,))
            self.db.conn.commit()

        if other_refs:
            logger.info(
                "Deleted %s; blob %s kept for %d other record(s)",
                record.package_id,
                path,
                other_refs,
            )
            return DeleteResult(file_deleted=False, file_missing=False)

        if not blob_present:
            logger.warning("Deleted %s from index only; blob %s was missing", record.package_id, path)
            return DeleteResult(file_deleted=False, file_missing=True)

        try:
            self.backend.delete(path)
        except OSError as e:
            logger.warning("Failed to delete blob %s: %s", path, e)
            return DeleteResult(file_deleted=False, file_missing=False)

        if self.config.auto_cleanup_shards:
            self._prune_shard(path.split("/", 1)[0])
        logger.info("Deleted %s and blob %s", record.package_id, path)
        return DeleteResult(file_deleted=True, file_missing=False)

    def get_record(self, package_id: str | int) -> PackageRecord:
        if isinstance(package_id, int) or package_id.isdigit():
            row = self.db.conn.execute(
                "SELECT * FROM packages WHERE id = ?", (int(package_id),)
            ).fetchone()
        else:
            row = self.db.conn.execute(
                "SELECT * FROM packages WHERE package_id = ? ORDER BY id LIMIT 1",
                (package_id,),
            ).fetchone()
        if row is None:
            raise PackageNotFoundError(f"Package not found: {package_id}")
        return PackageRecord.from_row(row)

    def get_raw_package(self, package_id: str | int) -> tuple[PackageRecord, bytes]:
        record = self.get_record(package_id)
        path = blob_path(record.content_hash, self.config.archive_extension)
        try:
            return record, self.backend.read(path)
        except BlobNotFoundError as e:
            raise BlobMissingError(record.content_hash, path) from e

    def list_packages(self) -> list[PackageRecord]:
        rows = self.db.conn.execute(
            "SELECT * FROM packages ORDER BY created_at_unix DESC, id DESC"
        ).fetchall()
        return [PackageRecord.from_row(row) for row in rows]

    def list_models(self, package_id: str | int) -> list[SupportedModel]:
        record = self.get_record(package_id)
        rows = self.db.conn.execute(
            """
            SELECT id, package_ref, model_name, hardware_id
            FROM supported_models
            WHERE package_ref = ?
            ORDER BY id
            """,
            (record.id,),
        ).fetchall()
        return [
            SupportedModel(
                id=row["id"],
                package_ref=row["package_ref"],
                model_name=row["model_name"],
                hardware_id=row["hardware_id"],
            )
            for row in rows
        ]

    def find_by_hardware_id(self, hardware_id: str) -> list[PackageRecord]:
        """Packages declaring a PnP id, compared case-insensitively."""
        rows = self.db.conn.execute(
            """
            SELECT DISTINCT p.*
            FROM packages p
            JOIN supported_models m ON m.package_ref = p.id
            WHERE m.hardware_id = ? COLLATE NOCASE
            ORDER BY p.created_at_unix DESC, p.id DESC
            """,
            (hardware_id,),
        ).fetchall()
        return [PackageRecord.from_row(row) for row in rows]

    def update_package(
        self,
        package_id: str | int,
        display_name: str | None = None,
        version: str | None = None,
        vendor: str | None = None,
    ) -> PackageRecord:
        """Edit index metadata only; the stored archive is left untouched."""
        record = self.get_record(package_id)
        with self._lock:
            self.db.conn.execute(
                """
                UPDATE packages
                SET display_name = COALESCE(?, display_name),
                    version = COALESCE(?, version),
                    vendor = COALESCE(?, vendor)
                WHERE id = ?
                """,
                (display_name, version, vendor, record.id),
            )
            self.db.conn.commit()
        return self.get_record(record.id)

    def _find_by_hash(self, content_hash: str) -> PackageRecord | None:
        row = self.db.conn.execute(
            "SELECT * FROM packages WHERE content_hash = ? ORDER BY id LIMIT 1",
            (content_hash,),
        ).fetchone()
        return PackageRecord.from_row(row) if row else None

    def _find_by_identity(self, content_hash: str, package_id: str) -> PackageRecord | None:
        row = self.db.conn.execute(
            "SELECT * FROM packages WHERE content_hash = ? AND package_id = ?",
            (content_hash, package_id),
        ).fetchone()
        return PackageRecord.from_row(row) if row else None

    def _display_name_taken(self, display_name: str) -> bool:
        row = self.db.conn.execute(
            "SELECT 1 FROM packages WHERE display_name = ? LIMIT 1", (display_name,)
        ).fetchone()
        return row is not None

    def _insert(
        self,
        manifest: PackageManifest,
        original_name: str,
        uploaded_by: str,
        content_hash: str,
    ) -> PackageRecord:
        meta = manifest.driver_metadata
        now = time.time()
        with self._lock:
            cursor = self.db.conn.execute(
                """
                INSERT INTO packages (
                    package_id, original_filename, content_hash,
                    display_name, version, vendor, uploaded_by,
                    created_at_unix, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    manifest.package_info.id,
                    original_name,
                    content_hash,
                    meta.display_name or None,
                    meta.version or None,
                    meta.vendor or None,
                    uploaded_by,
                    now,
                    int(now),
                ),
            )
            assert cursor.lastrowid is not None
            record_id = cursor.lastrowid
            self.db.conn.executemany(
                """
                INSERT INTO supported_models (package_ref, model_name, hardware_id)
                VALUES (?, ?, ?)
                """,
                [(record_id, model, hardware_id) for model, hardware_id in _support_rows(manifest)],
            )
            self.db.conn.commit()
        return self.get_record(record_id)

    def _prune_shard(self, shard: str) -> None:
        if not _is_shard_name(shard):
            logger.warning("Refusing to prune unexpected shard folder %r", shard)
            return
        try:
            if not self.backend.list(shard):
                self.backend.delete_directory(shard)
                logger.debug("Pruned empty shard %s", shard)
        except OSError as e:
            logger.warning("Failed to prune shard folder %s: %s", shard, e)

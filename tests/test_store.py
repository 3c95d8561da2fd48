"""Tests for the package store."""

import io
import json
import sqlite3
import threading
import zipfile
from collections.abc import Callable, Iterator
from pathlib import Path
from types import SimpleNamespace

import pytest
from conftest import write_driver_tree

from driverpack.config import StoreConfig
from driverpack.database import Database
from driverpack.package.builder import BuildResult, PackageBuilder
from driverpack.package.manifest import InvalidPackageError
from driverpack.storage.backend import LocalDiskBackend
from driverpack.storage.store import (
    BlobMissingError,
    PackageNotFoundError,
    PackageStore,
    blob_path,
)


class SpyBackend(LocalDiskBackend):
    """Local backend that counts writes."""

    def __init__(self, root: Path):
        super().__init__(root)
        self.writes: list[str] = []

    def write(self, path: str, data: bytes) -> None:
        self.writes.append(path)
        super().write(path, data)


class WatchedConnection:
    """Connection proxy that reports whether a lock is held on rollback."""

    def __init__(self, conn: sqlite3.Connection, on_rollback: Callable[[], None]):
        self._conn = conn
        self._on_rollback = on_rollback

    def __getattr__(self, name: str):
        return getattr(self._conn, name)

    def rollback(self) -> None:
        self._on_rollback()
        self._conn.rollback()


class RollbackWatchingDatabase(Database):
    def __init__(self, db_path: Path):
        super().__init__(db_path)
        self.rollback_lock_states: list[bool] = []
        self._watched: threading.RLock | None = None

    def watch(self, lock: threading.RLock) -> None:
        self._watched = lock

    @property
    def conn(self) -> WatchedConnection:
        return WatchedConnection(self.connect(), self._record_rollback)

    def _record_rollback(self) -> None:
        assert self._watched is not None
        acquired: list[bool] = []

        def try_acquire() -> None:
            got = self._watched.acquire(blocking=False)
            acquired.append(got)
            if got:
                self._watched.release()

        worker = threading.Thread(target=try_acquire)
        worker.start()
        worker.join()
        self.rollback_lock_states.append(not acquired[0])


@pytest.fixture
def backend(tmp_path: Path) -> SpyBackend:
    return SpyBackend(tmp_path / "repo")


@pytest.fixture
def db(tmp_path: Path) -> Iterator[Database]:
    with Database(tmp_path / "index.db") as database:
        yield database


@pytest.fixture
def store(db: Database, backend: SpyBackend) -> PackageStore:
    return PackageStore(db, backend)


@pytest.fixture
def built(driver_tree: Path) -> BuildResult:
    return PackageBuilder().build(driver_tree, "alice")


def _rewrite_manifest(archive_bytes: bytes, **driver_metadata) -> bytes:
    """Copy an archive with driverMetadata fields replaced; payload untouched."""
    source = zipfile.ZipFile(io.BytesIO(archive_bytes))
    buffer = io.BytesIO()
    with source, zipfile.ZipFile(buffer, "w") as target:
        for info in source.infolist():
            data = source.read(info)
            if info.filename == "manifest.json":
                manifest = json.loads(data)
                manifest["driverMetadata"].update(driver_metadata)
                data = json.dumps(manifest).encode()
            target.writestr(info, data)
    return buffer.getvalue()


class TestSave:
    """Tests for PackageStore.save."""

    def test_stores_sharded_blob(self, store: PackageStore, backend: SpyBackend, built: BuildResult):
        result = store.save(built.archive_bytes, "hp.pd", "alice", built.content_hash)
        assert not result.is_duplicate
        assert result.id == built.manifest.package_info.id
        assert backend.writes == [f"{built.content_hash[:2]}/{built.content_hash}.pd"]
        assert backend.read(blob_path(built.content_hash)) == built.archive_bytes

    def test_index_row(self, store: PackageStore, built: BuildResult):
        result = store.save(built.archive_bytes, "hp.pd", "alice")
        record = store.get_record(result.id)
        assert record.content_hash == built.content_hash
        assert record.display_name == "HP LaserJet Pro"
        assert record.version == "61.2.5.12345"
        assert record.vendor == "HP"
        assert record.uploaded_by == "alice"
        assert record.original_filename == "hp.pd"

    def test_duplicate_hash_performs_no_write(
        self, store: PackageStore, backend: SpyBackend, built: BuildResult, driver_tree: Path
    ):
        first = store.save(built.archive_bytes, "hp.pd", "alice")
        rebuilt = PackageBuilder().build(driver_tree, "bob")
        second = store.save(rebuilt.archive_bytes, "again.pd", "bob", rebuilt.content_hash)

        assert second.is_duplicate
        assert second.record.id == first.record.id
        assert len(backend.writes) == 1
        assert len(store.list_packages()) == 1

    def test_duplicate_independent_of_display_name(
        self, store: PackageStore, backend: SpyBackend, built: BuildResult
    ):
        store.save(built.archive_bytes, "hp.pd", "alice")
        renamed = _rewrite_manifest(built.archive_bytes, displayName="Renamed")
        assert store.save(renamed, "renamed.pd", "bob").is_duplicate
        assert len(backend.writes) == 1

    def test_duplicate_display_name_flagged(self, store: PackageStore, tmp_path: Path):
        first_tree = write_driver_tree(tmp_path / "one")
        second_tree = write_driver_tree(tmp_path / "two")
        (second_tree / "extra.txt").write_text("different payload")
        builder = PackageBuilder()

        store.save(builder.build(first_tree, "alice").archive_bytes, "one.pd", "alice")
        result = store.save(builder.build(second_tree, "alice").archive_bytes, "two.pd", "alice")
        assert not result.is_duplicate
        assert result.is_duplicate_name

    def test_hash_mismatch_rejected(self, store: PackageStore, backend: SpyBackend, built: BuildResult):
        with pytest.raises(InvalidPackageError) as exc_info:
            store.save(built.archive_bytes, "hp.pd", "alice", "0" * 64)
        assert exc_info.value.reason == InvalidPackageError.HASH_MISMATCH
        assert backend.writes == []

    def test_invalid_archive_mutates_nothing(self, store: PackageStore, backend: SpyBackend):
        with pytest.raises(InvalidPackageError) as exc_info:
            store.save(b"not a zip", "bad.pd", "alice")
        assert exc_info.value.reason == InvalidPackageError.NOT_A_ZIP
        assert backend.writes == []
        assert store.list_packages() == []

    def test_supported_models_paired(self, store: PackageStore, built: BuildResult):
        result = store.save(built.archive_bytes, "hp.pd", "alice")
        rows = [(m.model_name, m.hardware_id) for m in store.list_models(result.id)]
        assert rows == [
            ("HP LaserJet Pro", "USBPRINT\\HPLaserJet_Pro1234"),
            ("HP Color LaserJet", "USBPRINT\\HPColor_LaserJet5678"),
        ]

    def test_extra_pnp_ids_use_first_model(self, store: PackageStore, built: BuildResult):
        with zipfile.ZipFile(io.BytesIO(built.archive_bytes)) as source:
            manifest = json.loads(source.read("manifest.json"))
        manifest["hardwareSupport"] = {"pnpIds": ["ID1", "ID2", "ID3"], "compatibleModels": ["M1"]}
        archive = _replace_manifest(built.archive_bytes, manifest)

        result = store.save(archive, "hp.pd", "alice")
        rows = [(m.model_name, m.hardware_id) for m in store.list_models(result.id)]
        assert rows == [("M1", "ID1"), ("M1", "ID2"), ("M1", "ID3")]

    def test_bare_models_without_pnp_ids(self, store: PackageStore, built: BuildResult):
        with zipfile.ZipFile(io.BytesIO(built.archive_bytes)) as source:
            manifest = json.loads(source.read("manifest.json"))
        manifest["hardwareSupport"] = {"pnpIds": [], "compatibleModels": ["M1", "M2"]}

        result = store.save(_replace_manifest(built.archive_bytes, manifest), "hp.pd", "alice")
        rows = [(m.model_name, m.hardware_id) for m in store.list_models(result.id)]
        assert rows == [("M1", ""), ("M2", "")]

    def test_insert_race_falls_back_to_lookup(
        self, store: PackageStore, backend: SpyBackend, built: BuildResult, monkeypatch
    ):
        winner = store.save(built.archive_bytes, "hp.pd", "alice")
        # Simulate both callers missing the first lookup
        monkeypatch.setattr(store, "_find_by_hash", lambda content_hash: None)

        loser = store.save(built.archive_bytes, "hp.pd", "bob")
        assert loser.is_duplicate
        assert loser.record.id == winner.record.id
        assert len(store.list_packages()) == 1

    def test_race_rollback_holds_store_lock(
        self, tmp_path: Path, backend: SpyBackend, built: BuildResult, monkeypatch
    ):
        db = RollbackWatchingDatabase(tmp_path / "watched.db")
        store = PackageStore(db, backend)
        db.watch(store._lock)

        winner = store.save(built.archive_bytes, "hp.pd", "alice")
        monkeypatch.setattr(store, "_find_by_hash", lambda content_hash: None)
        loser = store.save(built.archive_bytes, "hp.pd", "bob")
        db.close()

        assert loser.record.id == winner.record.id
        assert db.rollback_lock_states == [True]


class TestDelete:
    """Tests for PackageStore.delete."""

    def _shared_pair(self, store: PackageStore, built: BuildResult) -> tuple[int, int]:
        """Two index rows referencing one blob, as left behind by racing saves."""
        first = store.save(built.archive_bytes, "hp.pd", "alice")
        store.db.conn.execute(
            """
            INSERT INTO packages
            (package_id, original_filename, content_hash, uploaded_by, created_at_unix, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            ("other-id", "copy.pd", built.content_hash, "bob", 1.0, 1),
        )
        store.db.conn.commit()
        second = store.get_record("other-id")
        return first.record.id, second.id

    def test_last_reference_removes_blob(
        self, store: PackageStore, backend: SpyBackend, built: BuildResult
    ):
        result = store.save(built.archive_bytes, "hp.pd", "alice")
        outcome = store.delete(result.id)
        assert outcome.file_deleted
        assert not outcome.file_missing
        assert not backend.exists(blob_path(built.content_hash))
        assert store.list_packages() == []

    def test_prunes_empty_shard(self, store: PackageStore, backend: SpyBackend, built: BuildResult):
        result = store.save(built.archive_bytes, "hp.pd", "alice")
        store.delete(result.id)
        assert not backend.exists(built.content_hash[:2])

    def test_keeps_shard_when_disabled(self, db: Database, backend: SpyBackend, built: BuildResult):
        store = PackageStore(db, backend, StoreConfig(auto_cleanup_shards=False))
        result = store.save(built.archive_bytes, "hp.pd", "alice")
        store.delete(result.id)
        assert backend.exists(built.content_hash[:2])

    def test_shared_hash_keeps_blob(
        self, store: PackageStore, backend: SpyBackend, built: BuildResult
    ):
        first_id, second_id = self._shared_pair(store, built)
        outcome = store.delete(first_id)
        assert not outcome.file_deleted
        assert backend.exists(blob_path(built.content_hash))

        outcome = store.delete(second_id)
        assert outcome.file_deleted
        assert not backend.exists(blob_path(built.content_hash))

    def test_missing_blob_blocks_delete(
        self, store: PackageStore, backend: SpyBackend, built: BuildResult
    ):
        result = store.save(built.archive_bytes, "hp.pd", "alice")
        backend.delete(blob_path(built.content_hash))

        with pytest.raises(BlobMissingError):
            store.delete(result.id)
        assert store.get_record(result.id).content_hash == built.content_hash

    def test_forced_delete_of_missing_blob(
        self, store: PackageStore, backend: SpyBackend, built: BuildResult
    ):
        result = store.save(built.archive_bytes, "hp.pd", "alice")
        backend.delete(blob_path(built.content_hash))

        outcome = store.delete(result.id, force_if_missing=True)
        assert outcome.file_missing
        assert not outcome.file_deleted
        with pytest.raises(PackageNotFoundError):
            store.get_record(result.id)

    def test_removes_model_rows(self, store: PackageStore, built: BuildResult):
        result = store.save(built.archive_bytes, "hp.pd", "alice")
        store.delete(result.record.id)
        count = store.db.conn.execute("SELECT COUNT(*) FROM supported_models").fetchone()[0]
        assert count == 0

    def test_blob_delete_failure_is_logged(
        self, store: PackageStore, backend: SpyBackend, built: BuildResult, monkeypatch, caplog
    ):
        result = store.save(built.archive_bytes, "hp.pd", "alice")

        def fail(path: str) -> None:
            raise PermissionError("locked")

        monkeypatch.setattr(backend, "delete", fail)
        outcome = store.delete(result.id)
        assert not outcome.file_deleted
        assert "locked" in caplog.text
        with pytest.raises(PackageNotFoundError):
            store.get_record(result.id)

    def test_unknown_package(self, store: PackageStore):
        with pytest.raises(PackageNotFoundError):
            store.delete("does-not-exist")


class TestQueries:
    """Tests for lookups, download and metadata edits."""

    def test_get_raw_package(self, store: PackageStore, built: BuildResult):
        result = store.save(built.archive_bytes, "hp.pd", "alice")
        record, data = store.get_raw_package(result.id)
        assert record.id == result.record.id
        assert data == built.archive_bytes

    def test_get_raw_package_missing_blob(
        self, store: PackageStore, backend: SpyBackend, built: BuildResult
    ):
        result = store.save(built.archive_bytes, "hp.pd", "alice")
        backend.delete(blob_path(built.content_hash))
        with pytest.raises(BlobMissingError):
            store.get_raw_package(result.id)

    def test_list_newest_first(self, store: PackageStore, tmp_path: Path, monkeypatch):
        builder = PackageBuilder()
        ids = []
        for i, stamp in enumerate((100.0, 200.0)):
            tree = write_driver_tree(tmp_path / f"tree{i}")
            (tree / "marker.txt").write_text(str(i))
            clock = SimpleNamespace(time=lambda stamp=stamp: stamp)
            monkeypatch.setattr("driverpack.storage.store.time", clock)
            ids.append(store.save(builder.build(tree, "alice").archive_bytes, "x.pd", "alice").record.id)
        assert [r.id for r in store.list_packages()] == list(reversed(ids))

    def test_find_by_hardware_id(self, store: PackageStore, built: BuildResult):
        result = store.save(built.archive_bytes, "hp.pd", "alice")
        found = store.find_by_hardware_id("usbprint\\hplaserjet_pro1234")
        assert [r.id for r in found] == [result.record.id]
        assert store.find_by_hardware_id("USBPRINT\\Nope") == []

    def test_update_package(self, store: PackageStore, built: BuildResult):
        result = store.save(built.archive_bytes, "hp.pd", "alice")
        record = store.update_package(result.id, display_name="Office Printer")
        assert record.display_name == "Office Printer"
        assert record.version == "61.2.5.12345"

    def test_lookup_by_numeric_id(self, store: PackageStore, built: BuildResult):
        result = store.save(built.archive_bytes, "hp.pd", "alice")
        assert store.get_record(str(result.record.id)).package_id == result.id


def _replace_manifest(archive_bytes: bytes, manifest: dict) -> bytes:
    source = zipfile.ZipFile(io.BytesIO(archive_bytes))
    buffer = io.BytesIO()
    with source, zipfile.ZipFile(buffer, "w") as target:
        for info in source.infolist():
            data = json.dumps(manifest).encode() if info.filename == "manifest.json" else source.read(info)
            target.writestr(info, data)
    return buffer.getvalue()

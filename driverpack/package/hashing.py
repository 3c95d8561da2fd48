"""Content hashing over a payload tree.

The digest covers sorted (relative path, bytes) pairs only, so the manifest
and archive metadata never influence it.
"""

import hashlib
import zipfile
from collections.abc import Iterable, Iterator
from pathlib import Path

from driverpack.package.manifest import PAYLOAD_PREFIX

READ_CHUNK_SIZE = 1024 * 1024


def iter_payload_files(source_root: Path) -> Iterator[tuple[str, Path]]:
    """Yield (posix relative path, path) for every regular file, sorted by relative path."""
    files = [
        (path.relative_to(source_root).as_posix(), path)
        for path in source_root.rglob("*")
        if path.is_file() and not path.is_symlink()
    ]
    yield from sorted(files, key=lambda item: item[0])


def _digest_pairs(pairs: Iterable[tuple[str, int, Iterable[bytes]]]) -> str:
    digest = hashlib.sha256()
    for relative_path, size, chunks in pairs:
        digest.update(relative_path.encode("utf-8"))
        digest.update(b"\0")
        digest.update(str(size).encode("ascii"))
        digest.update(b"\0")
        for chunk in chunks:
            digest.update(chunk)
    return digest.hexdigest()


def _read_chunks(path: Path) -> Iterator[bytes]:
    with path.open("rb") as handle:
        yield from iter(lambda: handle.read(READ_CHUNK_SIZE), b"")


def hash_directory(source_root: Path) -> str:
    """SHA-256 over every file below ``source_root``."""
    return _digest_pairs(
        (relative, path.stat().st_size, _read_chunks(path))
        for relative, path in iter_payload_files(source_root)
    )


def hash_archive_payload(archive: zipfile.ZipFile) -> str:
    """SHA-256 over the ``payload/`` entries of an archive, paths taken relative to it.

    Produces the same digest as ``hash_directory`` on the tree the archive was built from.
    """
    infos = sorted(
        (
            info
            for info in archive.infolist()
            if info.filename.startswith(PAYLOAD_PREFIX) and not info.is_dir()
        ),
        key=lambda info: info.filename,
    )
    return _digest_pairs(
        (info.filename[len(PAYLOAD_PREFIX) :], info.file_size, [archive.read(info)])
        for info in infos
    )

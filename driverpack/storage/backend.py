"""Blob backends: named byte blobs addressed by forward-slash relative paths."""

import logging
import os
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class BlobNotFoundError(FileNotFoundError):
    """Raised when a blob path does not exist."""


class BlobBackend(Protocol):
    """Storage used by the package store."""

    def write(self, path: str, data: bytes) -> None:
        """Create or replace the blob at ``path``."""

    def read(self, path: str) -> bytes:
        """Return blob bytes; raise BlobNotFoundError if absent."""

    def exists(self, path: str) -> bool:
        """Return True if a blob or folder exists at ``path``."""

    def delete(self, path: str) -> None:
        """Remove the blob; absent blobs are ignored."""

    def list(self, prefix: str) -> list[str]:
        """Shallow listing of the folder ``prefix``, as relative paths."""

    def delete_directory(self, path: str) -> None:
        """Remove an empty folder."""


class LocalDiskBackend:
    """Blob backend rooted at a local directory."""

    def __init__(self, root: Path):
        self.root = root.resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _full_path(self, path: str) -> Path:
        full = (self.root / path.replace("\\", "/")).resolve()
        if full != self.root and self.root not in full.parents:
            raise PermissionError(f"Access denied: path escapes repository: {path}")
        return full

    def write(self, path: str, data: bytes) -> None:
        full = self._full_path(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        tmp = full.with_name(f".{full.name}.{os.getpid()}.tmp")
        tmp.write_bytes(data)
        os.replace(tmp, full)

    def read(self, path: str) -> bytes:
        full = self._full_path(path)
        try:
            return full.read_bytes()
        except FileNotFoundError as e:
            raise BlobNotFoundError(f"File not found: {path}") from e

    def exists(self, path: str) -> bool:
        return self._full_path(path).exists()

    def delete(self, path: str) -> None:
        self._full_path(path).unlink(missing_ok=True)

    def list(self, prefix: str) -> list[str]:
        full = self._full_path(prefix)
        if not full.is_dir():
            return []
        base = prefix.replace("\\", "/").strip("/")
        names = sorted(entry.name for entry in full.iterdir())
        return [f"{base}/{name}" if base else name for name in names]

    def delete_directory(self, path: str) -> None:
        full = self._full_path(path)
        if full == self.root:
            raise PermissionError("Refusing to remove the repository root")
        full.rmdir()
        logger.debug("Removed folder %s", full)

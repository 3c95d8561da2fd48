"""Chunked upload sessions."""

from driverpack.uploads.sessions import (
    FileChunkState,
    FileNotInSessionError,
    MissingChunkError,
    SessionNotFoundError,
    SessionState,
    UploadSession,
    UploadSessionManager,
    normalize_file_name,
)

__all__ = [
    "FileChunkState",
    "FileNotInSessionError",
    "MissingChunkError",
    "SessionNotFoundError",
    "SessionState",
    "UploadSession",
    "UploadSessionManager",
    "normalize_file_name",
]

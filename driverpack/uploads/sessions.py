"""Chunked, resumable upload sessions backed by private temp directories."""

import logging
import shutil
import tempfile
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Self

from driverpack.config import SessionConfig

logger = logging.getLogger(__name__)

CHUNKS_DIR = "_chunks"
ASSEMBLED_DIR = "_assembled"


class SessionNotFoundError(LookupError):
    """Raised for unknown, expired or already cleaned-up sessions."""


class FileNotInSessionError(LookupError):
    """Raised when assembling a file that never received a chunk."""


class MissingChunkError(Exception):
    """Raised when a file cannot be assembled because a chunk index is absent."""

    def __init__(self, file_name: str, index: int):
        super().__init__(f"Missing chunk {index} for {file_name}")
        self.file_name = file_name
        self.index = index


class SessionState(Enum):
    OPEN = "open"
    FINALIZING = "finalizing"
    CLOSED = "closed"
    EXPIRED = "expired"


@dataclass
class FileChunkState:
    total_chunks: int
    received: set[int] = field(default_factory=set)


@dataclass
class UploadSession:
    session_id: str
    temp_dir: Path
    created_at: float
    expires_at: float
    state: SessionState = SessionState.OPEN
    files: dict[str, FileChunkState] = field(default_factory=dict)

    @property
    def chunks_dir(self) -> Path:
        return self.temp_dir / CHUNKS_DIR

    @property
    def assembled_dir(self) -> Path:
        return self.temp_dir / ASSEMBLED_DIR

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


def normalize_file_name(file_name: str) -> str:
    """Return a safe relative posix path for an uploaded file name.

    Raises:
        ValueError: If the name is empty, absolute, or escapes the session.
    """
    path = PurePosixPath(file_name.replace("\\", "/"))
    parts = [part for part in path.parts if part not in ("", ".")]
    if not parts or path.is_absolute() or ".." in parts or ":" in parts[0]:
        raise ValueError(f"Invalid file name: {file_name!r}")
    return "/".join(parts)


class UploadSessionManager:
    """Tracks upload sessions in memory and removes abandoned ones on a timer.

    Construct one per process and pass it to whatever handles uploads.
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or SessionConfig()
        self._clock = clock
        self._sessions: dict[str, UploadSession] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    def create_session(self, temp_base_dir: Path | None = None) -> UploadSession:
        session_id = uuid.uuid4().hex
        base_dir = temp_base_dir or self.config.temp_base_dir or Path(tempfile.gettempdir())
        temp_dir = base_dir / self.config.directory_name / session_id
        temp_dir.mkdir(parents=True, exist_ok=True)

        now = self._clock()
        session = UploadSession(
            session_id=session_id,
            temp_dir=temp_dir,
            created_at=now,
            expires_at=now + self.config.timeout_seconds,
        )
        with self._lock:
            self._sessions[session_id] = session
        logger.info("Created upload session %s in %s", session_id, temp_dir)
        return session

    def get_session(self, session_id: str) -> UploadSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        if session.is_expired(self._clock()):
            self._expire(session)
            raise SessionNotFoundError(f"Session expired: {session_id}")
        return session

    def save_chunk(
        self,
        session_id: str,
        file_name: str,
        chunk_index: int,
        data: bytes,
        total_chunks: int,
    ) -> bool:
        """Persist one chunk of a file.

        Returns:
            True if the chunk was stored, False if that index was already received.
        """
        session = self.get_session(session_id)
        if session.state in (SessionState.CLOSED, SessionState.EXPIRED):
            raise SessionNotFoundError(f"Session was removed: {session_id}")
        if session.state is not SessionState.OPEN:
            raise ValueError(f"Session {session_id} is {session.state.value}, not accepting chunks")
        name = normalize_file_name(file_name)
        if total_chunks < 1:
            raise ValueError(f"total_chunks must be positive, got {total_chunks}")
        if not 0 <= chunk_index < total_chunks:
            raise ValueError(f"Chunk index {chunk_index} out of range for {total_chunks} chunks")

        state = session.files.setdefault(name, FileChunkState(total_chunks=total_chunks))
        if state.total_chunks != total_chunks:
            raise ValueError(
                f"{name} was started with {state.total_chunks} chunks, got {total_chunks}"
            )
        if chunk_index in state.received:
            logger.debug("Chunk %d for %s already received", chunk_index, name)
            return False

        chunk_dir = session.chunks_dir / name
        try:
            chunk_dir.mkdir(parents=True, exist_ok=True)
            (chunk_dir / f"chunk-{chunk_index}").write_bytes(data)
        except FileNotFoundError as e:
            self._raise_if_gone(session, e)
            raise
        # mkdir above recreates the directory if the session was removed meanwhile
        self._raise_if_gone(session)
        state.received.add(chunk_index)

        logger.debug(
            "Saved chunk %d for %s (%d/%d)",
            chunk_index,
            name,
            len(state.received),
            state.total_chunks,
        )
        return True

    def assemble_file(self, session_id: str, file_name: str) -> Path:
        """Concatenate a file's chunks in index order into ``_assembled/``.

        Nothing is left at the output path unless every chunk was present.
        """
        session = self.get_session(session_id)
        name = normalize_file_name(file_name)
        state = session.files.get(name)
        if state is None:
            raise FileNotInSessionError(f"File not found in session: {file_name}")

        chunk_dir = session.chunks_dir / name
        output_path = session.assembled_dir / name
        partial_path = output_path.with_name(output_path.name + ".partial")

        try:
            self._check_complete(session, name, state)

            output_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                with partial_path.open("wb") as out:
                    for index in range(state.total_chunks):
                        out.write((chunk_dir / f"chunk-{index}").read_bytes())
                partial_path.replace(output_path)
            except BaseException:
                partial_path.unlink(missing_ok=True)
                raise
        except FileNotFoundError as e:
            self._raise_if_gone(session, e)
            raise

        shutil.rmtree(chunk_dir, ignore_errors=True)
        logger.info("Assembled %s from %d chunks", name, state.total_chunks)
        return output_path

    def finalize_session(self, session_id: str) -> Path:
        """Assemble every file in the session and return the ``_assembled`` directory."""
        session = self.get_session(session_id)
        files = list(session.files.items())
        for name, state in files:
            self._check_complete(session, name, state)

        session.state = SessionState.FINALIZING
        try:
            for name, _ in files:
                self.assemble_file(session_id, name)
        except MissingChunkError:
            session.state = SessionState.OPEN
            raise
        session.assembled_dir.mkdir(parents=True, exist_ok=True)
        self._raise_if_gone(session)
        logger.info("Finalized session %s (%d files)", session_id, len(session.files))
        return session.assembled_dir

    def cleanup_session(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return
        if session.state is not SessionState.EXPIRED:
            session.state = SessionState.CLOSED
        self._remove_temp_dir(session)
        logger.info("Removed session %s", session_id)

    def sweep_expired(self, now: float | None = None) -> list[str]:
        """Remove every session past its expiry. Returns the removed ids."""
        now = self._clock() if now is None else now
        with self._lock:
            expired = [s for s in self._sessions.values() if s.is_expired(now)]
        for session in expired:
            logger.info("Auto-cleaning expired session %s", session.session_id)
            self._expire(session)
        if expired:
            logger.info("Cleaned up %d expired session(s)", len(expired))
        return [s.session_id for s in expired]

    def active_sessions(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def start(self) -> None:
        """Start the background expiry sweep."""
        if self._sweeper is not None:
            return
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, name="upload-session-sweeper", daemon=True
        )
        self._sweeper.start()

    def shutdown(self) -> None:
        """Stop the sweep and clean up all remaining sessions."""
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join()
            self._sweeper = None
        for session_id in self.active_sessions():
            self.cleanup_session(session_id)
        logger.info("Upload session manager shut down")

    def __enter__(self) -> Self:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.config.sweep_interval_seconds):
            try:
                self.sweep_expired()
            except OSError as e:
                logger.warning("Session sweep failed: %s", e)

    def _expire(self, session: UploadSession) -> None:
        session.state = SessionState.EXPIRED
        self.cleanup_session(session.session_id)

    def _check_complete(self, session: UploadSession, name: str, state: FileChunkState) -> None:
        chunk_dir = session.chunks_dir / name
        for index in range(state.total_chunks):
            if index not in state.received or not (chunk_dir / f"chunk-{index}").is_file():
                if not session.temp_dir.exists():
                    raise SessionNotFoundError(f"Session was removed: {session.session_id}")
                raise MissingChunkError(name, index)

    def _raise_if_gone(
        self, session: UploadSession, error: FileNotFoundError | None = None
    ) -> None:
        with self._lock:
            present = session.session_id in self._sessions
        if not present:
            # Directories recreated after the sweep removed the session
            shutil.rmtree(session.temp_dir, ignore_errors=True)
            raise SessionNotFoundError(f"Session was removed: {session.session_id}") from error

    def _remove_temp_dir(self, session: UploadSession) -> None:
        try:
            shutil.rmtree(session.temp_dir)
            logger.debug("Deleted temp directory %s", session.temp_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to delete temp directory %s: %s", session.temp_dir, e)

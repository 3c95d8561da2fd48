"""Configuration module for driverpack."""

import zipfile
from dataclasses import dataclass, field
from pathlib import Path


def _get_project_root() -> Path:
    return Path(__file__).parent.parent


DEFAULT_SUPPORTED_OS: tuple[str, ...] = (
    "Windows 10",
    "Windows 11",
    "Windows Server 2016",
    "Windows Server 2019",
    "Windows Server 2022",
)


@dataclass
class SessionConfig:
    timeout_seconds: float = 30 * 60
    sweep_interval_seconds: float = 5 * 60
    temp_base_dir: Path | None = None
    directory_name: str = "driverpack-uploads"


@dataclass
class StoreConfig:
    archive_extension: str = "pd"
    auto_cleanup_shards: bool = True


@dataclass
class BuilderConfig:
    schema_version: str = "1.0"
    supported_os: tuple[str, ...] = DEFAULT_SUPPORTED_OS
    archive_compression: int = zipfile.ZIP_DEFLATED


@dataclass
class Config:
    database_path: Path = field(default_factory=lambda: _get_project_root() / "data" / "index.db")
    repository_path: Path = field(
        default_factory=lambda: _get_project_root() / "data" / "repository"
    )
    sessions: SessionConfig = field(default_factory=SessionConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    builder: BuilderConfig = field(default_factory=BuilderConfig)

"""Data models for parsed INF descriptors and the results derived from them."""

from dataclasses import dataclass, field
from enum import Enum


class DriverClass(Enum):
    """Printer driver model generation."""

    V3 = "v3"
    V4 = "v4"
    UNIVERSAL = "universal"


class DriverIsolation(Enum):
    """Print spooler isolation level a driver supports."""

    HIGH = "High"
    MEDIUM = "Medium"
    NONE = "None"
    UNKNOWN = "Unknown"


@dataclass
class ParseNotice:
    """A non-fatal observation made while parsing or resolving a descriptor."""

    line_number: int
    message: str
    text: str = ""


@dataclass
class InfEntry:
    """One line of a section: ``key = value`` or a keyless value."""

    key: str
    value: str
    raw_value: str
    line_number: int
    raw_key: str = ""
    comment: str | None = None


@dataclass
class InfSection:
    """A ``[Name]`` block and the entries that follow it."""

    name: str
    start_line: int
    end_line: int
    entries: list[InfEntry] = field(default_factory=list)


@dataclass
class ParsedInf:
    """A fully parsed INF descriptor.

    Sections keep file order and are never merged, so a name that appears
    twice produces two sections.
    """

    sections: list[InfSection]
    raw_content: str
    file_name: str | None = None
    notices: list[ParseNotice] = field(default_factory=list)


@dataclass
class DriverMetadata:
    """Metadata extracted from a descriptor by the analyzer."""

    display_name: str
    version: str
    vendor: str
    architecture: list[str]
    hardware_ids: list[str]
    models: list[str]
    driver_class: DriverClass
    isolation: DriverIsolation


@dataclass
class FileDependency:
    """A file the driver needs, keyed case-insensitively by ``file_name``."""

    file_name: str
    source_section: str | None = None
    compressed_name: str | None = None
    destination_dir: str | None = None
    source_subdir: str | None = None
    required: bool = True


@dataclass
class ValidationResult:
    """Outcome of probing a dependency list against a source directory."""

    valid: bool
    missing_files: list[str]
    warnings: list[str]

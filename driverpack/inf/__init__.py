"""INF descriptor parsing, string resolution and driver analysis."""

from driverpack.inf.analyzer import extract_metadata
from driverpack.inf.dependencies import build_dependency_graph, validate_dependencies
from driverpack.inf.models import (
    DriverClass,
    DriverIsolation,
    DriverMetadata,
    FileDependency,
    InfEntry,
    InfSection,
    ParsedInf,
    ParseNotice,
    ValidationResult,
)
from driverpack.inf.parser import parse_inf, parse_inf_file
from driverpack.inf.resolver import resolve_strings

__all__ = [
    "DriverClass",
    "DriverIsolation",
    "DriverMetadata",
    "FileDependency",
    "InfEntry",
    "InfSection",
    "ParsedInf",
    "ParseNotice",
    "ValidationResult",
    "build_dependency_graph",
    "extract_metadata",
    "parse_inf",
    "parse_inf_file",
    "resolve_strings",
    "validate_dependencies",
]

"""Builds ``.pd`` packages from an unpacked driver source tree."""

import io
import logging
import re
import uuid
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from driverpack.config import BuilderConfig
from driverpack.inf.analyzer import extract_metadata
from driverpack.inf.dependencies import build_dependency_graph, validate_dependencies
from driverpack.inf.models import DriverMetadata, FileDependency, ParsedInf, ValidationResult
from driverpack.inf.parser import decode_inf_bytes, parse_inf_file
from driverpack.inf.resolver import resolve_strings
from driverpack.package.hashing import hash_directory, iter_payload_files
from driverpack.package.manifest import (
    MANIFEST_NAME,
    PAYLOAD_PREFIX,
    HardwareSupport,
    ManifestDriverMetadata,
    PackageInfo,
    PackageManifest,
)

logger = logging.getLogger(__name__)

PACKAGE_ID_NAMESPACE = uuid.UUID("6f1c2a4e-3b7d-5e90-a1c8-4d2f9e7b0c13")

# Fixed entry timestamp keeps payload entries byte-stable across builds
ARCHIVE_ENTRY_TIME = (1980, 1, 1, 0, 0, 0)

PRINTER_CLASS = re.compile(
    r"^\s*(Class\s*=\s*\"?Printer\"?\s*$|ClassGuid\s*=\s*\{4D36E979-E325-11CE-BFC1-08002BE10318\})",
    re.IGNORECASE | re.MULTILINE,
)
IMAGE_CLASS = re.compile(
    r"^\s*(Class\s*=\s*\"?Image\"?\s*$|SubClass\s*=\s*\"?StillImage)",
    re.IGNORECASE | re.MULTILINE,
)
PRINTER_HINTS = re.compile(r"PrinterDriverData|PrintProcessor", re.IGNORECASE)


class NoValidDescriptorError(Exception):
    """Raised when a source tree holds no usable printer driver descriptor."""


@dataclass
class DescriptorValidation:
    valid: bool
    inf_file: Path | None = None
    error: str | None = None


@dataclass
class DescriptorReport:
    """Everything learned from a single descriptor."""

    parsed: ParsedInf
    metadata: DriverMetadata
    dependencies: list[FileDependency]


@dataclass
class BuildResult:
    archive_bytes: bytes
    manifest: PackageManifest
    content_hash: str
    entry_point: str
    dependencies: list[FileDependency]
    validation: ValidationResult


def _strip_comments(content: str) -> str:
    return "\n".join(line.split(";", 1)[0] for line in content.splitlines())


def _find_inf_files(folder: Path) -> list[Path]:
    found = [
        path
        for path in folder.rglob("*")
        if path.is_file() and path.suffix.lower() == ".inf"
    ]
    return sorted(found, key=lambda p: (len(p.relative_to(folder).parts), p.as_posix().lower()))


def validate_inf_path(folder: Path) -> DescriptorValidation:
    """Select the driver descriptor to build from.

    Preference: printer class, then image/still-image class (multi-function
    devices), then any descriptor carrying printer hints.
    """
    if not folder.exists():
        return DescriptorValidation(False, error=f"Path does not exist: {folder}")
    if not folder.is_dir():
        return DescriptorValidation(False, error="Path is not a directory")

    inf_files = _find_inf_files(folder)
    if not inf_files:
        return DescriptorValidation(False, error="No INF files found in folder")

    image_inf: Path | None = None
    hinted_inf: Path | None = None

    for inf_path in inf_files:
        try:
            content = _strip_comments(decode_inf_bytes(inf_path.read_bytes()))
        except OSError as e:
            logger.warning("Cannot read %s: %s", inf_path, e)
            continue

        if PRINTER_CLASS.search(content):
            return DescriptorValidation(True, inf_file=inf_path)
        if image_inf is None and IMAGE_CLASS.search(content):
            image_inf = inf_path
        if hinted_inf is None and PRINTER_HINTS.search(content):
            hinted_inf = inf_path

    selected = image_inf or hinted_inf
    if selected is None:
        return DescriptorValidation(False, error="INF file is not a printer driver")
    return DescriptorValidation(True, inf_file=selected)


def package_id_for(display_name: str, version: str, vendor: str) -> str:
    """Stable package identity for a (display name, version, vendor) triple."""
    return str(uuid.uuid5(PACKAGE_ID_NAMESPACE, f"{display_name}-{version}-{vendor}"))


def inspect_descriptor(inf_path: Path) -> DescriptorReport:
    """Parse, resolve and analyze a single descriptor."""
    parsed = parse_inf_file(inf_path)
    resolve_strings(parsed)
    return DescriptorReport(
        parsed=parsed,
        metadata=extract_metadata(parsed),
        dependencies=build_dependency_graph(parsed),
    )


class PackageBuilder:
    """Produces a deterministic archive, manifest and content hash."""

    def __init__(self, config: BuilderConfig | None = None):
        self.config = config or BuilderConfig()

    def build(self, source_dir: Path, actor: str) -> BuildResult:
        source_dir = source_dir.resolve()
        selection = validate_inf_path(source_dir)
        if not selection.valid or selection.inf_file is None:
            raise NoValidDescriptorError(selection.error or "No valid INF descriptor found")

        inf_path = selection.inf_file
        report = inspect_descriptor(inf_path)
        metadata, dependencies = report.metadata, report.dependencies
        validation = validate_dependencies(dependencies, inf_path.parent)
        if not validation.valid:
            logger.warning(
                "%s references %d missing file(s): %s",
                inf_path.name,
                len(validation.missing_files),
                ", ".join(validation.missing_files),
            )

        entry_point = PAYLOAD_PREFIX + inf_path.relative_to(source_dir).as_posix()
        manifest = self._manifest(metadata, actor, entry_point)
        content_hash = hash_directory(source_dir)
        archive_bytes = self._archive(source_dir, manifest)

        logger.info(
            "Built package %s %s (%s) hash=%s",
            metadata.display_name,
            metadata.version,
            manifest.package_info.id,
            content_hash,
        )
        return BuildResult(
            archive_bytes=archive_bytes,
            manifest=manifest,
            content_hash=content_hash,
            entry_point=entry_point,
            dependencies=dependencies,
            validation=validation,
        )

    def _manifest(self, metadata: DriverMetadata, actor: str, entry_point: str) -> PackageManifest:
        return PackageManifest(
            schema_version=self.config.schema_version,
            package_info=PackageInfo(
                id=package_id_for(metadata.display_name, metadata.version, metadata.vendor),
                created_at=datetime.now(timezone.utc).isoformat(),
                created_by=actor,
            ),
            driver_metadata=ManifestDriverMetadata(
                display_name=metadata.display_name,
                version=metadata.version,
                vendor=metadata.vendor,
                entry_point=entry_point,
                architecture=list(metadata.architecture),
                supported_os=list(self.config.supported_os),
                driver_class=metadata.driver_class.value,
                driver_isolation=metadata.isolation.value,
            ),
            hardware_support=HardwareSupport(
                pnp_ids=list(metadata.hardware_ids),
                compatible_models=list(metadata.models),
            ),
        )

    def _archive(self, source_dir: Path, manifest: PackageManifest) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=self.config.archive_compression) as archive:
            self._write_entry(archive, MANIFEST_NAME, manifest.to_json().encode("utf-8"))
            for relative_path, path in iter_payload_files(source_dir):
                self._write_entry(archive, PAYLOAD_PREFIX + relative_path, path.read_bytes())
        return buffer.getvalue()

    def _write_entry(self, archive: zipfile.ZipFile, name: str, data: bytes) -> None:
        info = zipfile.ZipInfo(name, date_time=ARCHIVE_ENTRY_TIME)
        info.compress_type = self.config.archive_compression
        info.external_attr = 0o644 << 16
        archive.writestr(info, data)

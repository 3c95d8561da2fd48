"""File dependency graph for a driver descriptor."""

import logging
from pathlib import Path

from driverpack.inf import compression
from driverpack.inf.models import FileDependency, ParsedInf, ValidationResult
from driverpack.inf.parser import get_entry, get_section, get_sections_matching
from driverpack.inf.resolver import expand_file_list_directive

logger = logging.getLogger(__name__)

DEFAULT_DEST_DIR_KEY = "defaultdestdir"


def build_dependency_graph(parsed: ParsedInf) -> list[FileDependency]:
    """Collect the files a driver needs, merged by case-insensitive name.

    ``SourceDisksFiles*`` entries are read first, then every ``CopyFiles``
    directive. A later sighting only fills fields that are still empty.
    """
    dependencies: dict[str, FileDependency] = {}

    for dep in parse_source_disks_files(parsed) + parse_copy_files(parsed):
        key = dep.file_name.lower()
        existing = dependencies.get(key)
        if existing is None:
            dependencies[key] = dep
        else:
            _merge_into(existing, dep)

    return list(dependencies.values())


def _merge_into(existing: FileDependency, other: FileDependency) -> None:
    existing.compressed_name = existing.compressed_name or other.compressed_name
    existing.destination_dir = existing.destination_dir or other.destination_dir
    existing.source_subdir = existing.source_subdir or other.source_subdir
    existing.source_section = existing.source_section or other.source_section
    existing.required = existing.required or other.required


def _dependency(file_name: str, section: str, **fields) -> FileDependency:
    dep = FileDependency(file_name=file_name, source_section=section, **fields)
    if compression.is_compressed(file_name):
        dep.compressed_name = file_name
        dep.file_name = compression.expand(file_name)
    return dep


def parse_source_disks_files(parsed: ParsedInf) -> list[FileDependency]:
    """Entries of ``[SourceDisksFiles]`` and its architecture variants.

    Entry format is ``file = diskid[,subdir][,size]``.
    """
    dependencies: list[FileDependency] = []
    for section in get_sections_matching(parsed, r"^SourceDisksFiles"):
        for entry in section.entries:
            file_name = entry.key or entry.value.split(",")[0].strip()
            if not file_name:
                continue
            fields = [part.strip() for part in entry.value.split(",")] if entry.key else []
            subdir = fields[1] if len(fields) >= 2 and fields[1] else None
            dependencies.append(_dependency(file_name, section.name, source_subdir=subdir))
    return dependencies


def parse_destination_dirs(parsed: ParsedInf) -> dict[str, str]:
    """Lower-cased section name -> ``dirid[,subdir]`` from ``[DestinationDirs]``."""
    section = get_section(parsed, "DestinationDirs")
    if not section:
        return {}
    return {entry.key.lower(): entry.value for entry in section.entries if entry.key}


def parse_copy_files(parsed: ParsedInf) -> list[FileDependency]:
    dependencies: list[FileDependency] = []
    destinations = parse_destination_dirs(parsed)
    default_dest = destinations.get(DEFAULT_DEST_DIR_KEY)

    for section in parsed.sections:
        directive = get_entry(section, "CopyFiles")
        if not directive:
            continue

        owner_dest = destinations.get(section.name.lower())
        for part in (p.strip() for p in directive.value.split(",")):
            if not part:
                continue
            list_dest = None if part.startswith("@") else destinations.get(part.lower())
            dest = list_dest or owner_dest or default_dest
            for file_name in expand_file_list_directive(parsed, part):
                dependencies.append(_dependency(file_name, section.name, destination_dir=dest))

    return dependencies


def validate_dependencies(dependencies: list[FileDependency], source_dir: Path) -> ValidationResult:
    """Probe each dependency in ``source_dir`` in any of its name variants."""
    missing: list[str] = []
    warnings: list[str] = []

    for dep in dependencies:
        found = _probe(dep, source_dir)
        if found is None:
            missing.append(dep.file_name)
        elif compression.is_compressed(found) and not compression.is_compressed(dep.file_name):
            message = f"File '{dep.file_name}' found only as compressed '{found}'"
            logger.warning("Dependency %s found only as compressed %s", dep.file_name, found)
            warnings.append(message)

    return ValidationResult(valid=not missing, missing_files=missing, warnings=warnings)


def _probe(dep: FileDependency, source_dir: Path) -> str | None:
    directories = [source_dir]
    if dep.source_subdir:
        directories.insert(0, source_dir / dep.source_subdir.replace("\\", "/").strip("/"))

    names = [dep.file_name]
    if dep.compressed_name and dep.compressed_name != dep.file_name:
        names.append(dep.compressed_name)

    for directory in directories:
        for name in names:
            found = compression.find_variant(name, directory)
            if found:
                return found
    return None


def unique_files(dependencies: list[FileDependency]) -> list[str]:
    """Every expanded and compressed name referenced, without repeats."""
    files: list[str] = []
    for dep in dependencies:
        for name in (dep.file_name, dep.compressed_name):
            if name and name not in files:
                files.append(name)
    return files


def filter_for_model(parsed: ParsedInf, model_name: str) -> list[FileDependency]:
    """Dependencies for one model.

    Model-specific trimming is not implemented; the full graph is returned.
    """
    logger.debug("Returning full dependency graph for model %s", model_name)
    return build_dependency_graph(parsed)

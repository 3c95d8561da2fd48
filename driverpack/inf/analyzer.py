"""Driver metadata extraction from a parsed, string-resolved descriptor."""

import re
from pathlib import PurePath

from driverpack.inf.matching import find_model_sections
from driverpack.inf.models import DriverClass, DriverIsolation, DriverMetadata, ParsedInf
from driverpack.inf.parser import get_entry, get_section, get_sections_matching

DEFAULT_VERSION = "1.0.0"
UNKNOWN_VENDOR = "Unknown"
UNKNOWN_MODEL = "Unknown Model"
UNKNOWN_HARDWARE_ID = "UNKNOWN"
UNKNOWN_DRIVER = "Unknown Driver"

DRIVER_VERSION = re.compile(r",\s*([0-9]+(?:\.[0-9]+)*)")

# Install directives that show up in sections the model heuristic selects
INSTALL_DIRECTIVES: frozenset[str] = frozenset(
    {
        "copyfiles",
        "addreg",
        "delreg",
        "delfiles",
        "renfiles",
        "include",
        "needs",
        "datafile",
        "driverfile",
        "configfile",
        "helpfile",
        "datasection",
        "languagemonitor",
        "defaultdatatype",
        "printprocessor",
        "vendorsetup",
        "driverisolation",
        "coinstallers",
        "addservice",
        "featurescore",
        "installpackage",
    }
)

ISOLATION_AWARE_MODULES: tuple[str, ...] = (
    "unidrvui.dll",
    "pscript5ui.dll",
    "prntvpt.dll",
)

ISOLATION_LEVELS: dict[str, DriverIsolation] = {
    "2": DriverIsolation.HIGH,
    "1": DriverIsolation.MEDIUM,
    "0": DriverIsolation.NONE,
}


def extract_metadata(parsed: ParsedInf) -> DriverMetadata:
    """Extract every metadata field; callers should resolve strings first."""
    vendor = extract_manufacturer(parsed)
    models, hardware_ids = extract_models_and_hardware_ids(parsed, vendor)
    driver_class = detect_driver_class(parsed)
    return DriverMetadata(
        display_name=_display_name(parsed, models),
        version=extract_version(parsed),
        vendor=vendor,
        architecture=extract_architecture(parsed),
        hardware_ids=hardware_ids,
        models=models,
        driver_class=driver_class,
        isolation=extract_isolation(parsed, driver_class),
    )


def extract_version(parsed: ParsedInf) -> str:
    """Version part of ``DriverVer = date,version`` in ``[Version]``."""
    version_section = get_section(parsed, "Version")
    if not version_section:
        return DEFAULT_VERSION

    entry = get_entry(version_section, "DriverVer")
    if entry:
        match = DRIVER_VERSION.search(entry.value)
        if match:
            return match.group(1)
    return DEFAULT_VERSION


def extract_manufacturer(parsed: ParsedInf) -> str:
    version_section = get_section(parsed, "Version")
    if version_section:
        provider = get_entry(version_section, "Provider")
        if provider:
            name = provider.value.replace('"', "").strip()
            if name:
                return name

    manufacturer_section = get_section(parsed, "Manufacturer")
    if manufacturer_section and manufacturer_section.entries:
        first = manufacturer_section.entries[0]
        name = (first.key or first.value).replace('"', "").strip()
        if name:
            return name

    return UNKNOWN_VENDOR


def extract_architecture(parsed: ParsedInf) -> list[str]:
    """Platform tags implied by section name decorations, in discovery order."""
    found: list[str] = []

    def add(tag: str) -> None:
        if tag not in found:
            found.append(tag)

    for section in parsed.sections:
        name = section.name.lower()
        if "ntamd64" in name or "amd64" in name:
            add("amd64")
        if "ntx86" in name or "x86" in name:
            add("x86")
        if "ntarm64" in name or "arm64" in name:
            add("arm64")
        if ".nt" in name and not any(tag in name for tag in ("ntamd64", "ntx86", "ntarm64")):
            # Undecorated NT sections are assumed to target x64
            add("x64")

    return found or ["x64"]


def extract_models_and_hardware_ids(
    parsed: ParsedInf, manufacturer: str | None = None
) -> tuple[list[str], list[str]]:
    """Model names and hardware IDs from the manufacturer model sections.

    Neither list is ever empty; placeholders stand in when nothing is found.
    """
    vendor = manufacturer if manufacturer is not None else extract_manufacturer(parsed)
    models: list[str] = []
    hardware_ids: list[str] = []

    for section in find_model_sections(parsed, vendor):
        for entry in section.entries:
            if entry.key.lower() in INSTALL_DIRECTIVES:
                continue

            fields = [part.strip() for part in entry.value.split(",")]
            model = entry.key or fields[0]
            model = model.strip().strip("\"'")
            if model and not model.startswith("[") and model not in models:
                models.append(model)

            hardware_id = fields[1] if len(fields) >= 2 else ""
            if hardware_id and hardware_id not in hardware_ids:
                hardware_ids.append(hardware_id)

    return models or [UNKNOWN_MODEL], hardware_ids or [UNKNOWN_HARDWARE_ID]


def extract_models(parsed: ParsedInf) -> list[str]:
    return extract_models_and_hardware_ids(parsed)[0]


def extract_hardware_ids(parsed: ParsedInf) -> list[str]:
    return extract_models_and_hardware_ids(parsed)[1]


def extract_display_name(parsed: ParsedInf) -> str:
    return _display_name(parsed, extract_models(parsed))


def _display_name(parsed: ParsedInf, models: list[str]) -> str:
    if models and models[0] != UNKNOWN_MODEL:
        return models[0]
    if parsed.file_name:
        stem = PurePath(parsed.file_name).name
        if stem.lower().endswith(".inf"):
            stem = stem[:-4]
        if stem:
            return stem
    return UNKNOWN_DRIVER


def detect_driver_class(parsed: ParsedInf) -> DriverClass:
    """Classify as v3, v4 or universal.

    Descriptors that are not printer class are reported as v3.
    """
    version_section = get_section(parsed, "Version")
    if not version_section:
        return DriverClass.V3

    class_entry = get_entry(version_section, "Class")
    if not class_entry or class_entry.value.strip().lower() != "printer":
        return DriverClass.V3

    package_type = get_entry(version_section, "DriverPackageType")
    if package_type:
        value = package_type.value.lower()
        if "plugandplay" in value:
            return DriverClass.V4
        if "universal" in value:
            return DriverClass.UNIVERSAL

    if get_sections_matching(parsed, "DriverAttributes"):
        return DriverClass.V4

    return DriverClass.V3


def extract_isolation(
    parsed: ParsedInf, driver_class: DriverClass | None = None
) -> DriverIsolation:
    driver_class = driver_class or detect_driver_class(parsed)
    if driver_class in (DriverClass.V4, DriverClass.UNIVERSAL):
        return DriverIsolation.HIGH

    for section in parsed.sections:
        entry = get_entry(section, "DriverIsolation")
        if entry:
            level = ISOLATION_LEVELS.get(entry.value.strip())
            if level:
                return level

    content = parsed.raw_content.lower()
    if any(module in content for module in ISOLATION_AWARE_MODULES):
        return DriverIsolation.MEDIUM

    return DriverIsolation.UNKNOWN

"""The ``.pd`` manifest schema and archive structure validation."""

import io
import json
import zipfile
from dataclasses import dataclass, field
from typing import Any

MANIFEST_NAME = "manifest.json"
PAYLOAD_PREFIX = "payload/"


class InvalidPackageError(ValueError):
    """Raised when a package archive fails structural validation."""

    NOT_A_ZIP = "not_a_zip"
    MANIFEST_MISSING = "manifest_missing"
    MANIFEST_NOT_JSON = "manifest_not_json"
    SCHEMA_VERSION_MISSING = "schema_version_missing"
    PACKAGE_ID_MISSING = "package_id_missing"
    ENTRY_POINT_MISSING = "entry_point_missing"
    PAYLOAD_MISSING = "payload_missing"
    ENTRY_POINT_NOT_FOUND = "entry_point_not_found"
    HASH_MISMATCH = "hash_mismatch"

    def __init__(self, reason: str, detail: str):
        super().__init__(f"{detail} ({reason})")
        self.reason = reason
        self.detail = detail


@dataclass
class PackageInfo:
    id: str
    created_at: str
    created_by: str


@dataclass
class ManifestDriverMetadata:
    display_name: str
    version: str
    vendor: str
    entry_point: str
    architecture: list[str] = field(default_factory=list)
    supported_os: list[str] = field(default_factory=list)
    driver_class: str = "v3"
    driver_isolation: str = "Unknown"


@dataclass
class HardwareSupport:
    pnp_ids: list[str] = field(default_factory=list)
    compatible_models: list[str] = field(default_factory=list)


@dataclass
class PackageManifest:
    schema_version: str
    package_info: PackageInfo
    driver_metadata: ManifestDriverMetadata
    hardware_support: HardwareSupport

    def to_dict(self) -> dict[str, Any]:
        meta = self.driver_metadata
        return {
            "schemaVersion": self.schema_version,
            "packageInfo": {
                "id": self.package_info.id,
                "createdAt": self.package_info.created_at,
                "createdBy": self.package_info.created_by,
            },
            "driverMetadata": {
                "displayName": meta.display_name,
                "version": meta.version,
                "vendor": meta.vendor,
                "architecture": list(meta.architecture),
                "supportedOS": list(meta.supported_os),
                "driverClass": meta.driver_class,
                "driverIsolation": meta.driver_isolation,
                "entryPoint": meta.entry_point,
            },
            "hardwareSupport": {
                "pnpIds": list(self.hardware_support.pnp_ids),
                "compatibleModels": list(self.hardware_support.compatible_models),
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PackageManifest":
        info = data.get("packageInfo") or {}
        meta = data.get("driverMetadata") or {}
        support = data.get("hardwareSupport") or {}
        return cls(
            schema_version=str(data.get("schemaVersion", "")),
            package_info=PackageInfo(
                id=str(info.get("id", "")),
                created_at=str(info.get("createdAt", "")),
                created_by=str(info.get("createdBy", "")),
            ),
            driver_metadata=ManifestDriverMetadata(
                display_name=str(meta.get("displayName", "")),
                version=str(meta.get("version", "")),
                vendor=str(meta.get("vendor", "")),
                entry_point=str(meta.get("entryPoint", "")),
                architecture=list(meta.get("architecture") or []),
                supported_os=list(meta.get("supportedOS") or []),
                driver_class=str(meta.get("driverClass", "v3")),
                driver_isolation=str(meta.get("driverIsolation", "Unknown")),
            ),
            hardware_support=HardwareSupport(
                pnp_ids=list(support.get("pnpIds") or []),
                compatible_models=list(support.get("compatibleModels") or []),
            ),
        )


def open_archive(archive_bytes: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(io.BytesIO(archive_bytes))
    except zipfile.BadZipFile as e:
        raise InvalidPackageError(
            InvalidPackageError.NOT_A_ZIP, "Invalid archive: unable to open package"
        ) from e


def validate_archive(archive: zipfile.ZipFile) -> PackageManifest:
    """Check archive structure and return its manifest.

    Raises InvalidPackageError naming the first violation found.
    """
    names = set(archive.namelist())

    if MANIFEST_NAME not in names:
        raise InvalidPackageError(
            InvalidPackageError.MANIFEST_MISSING,
            f"Invalid package: {MANIFEST_NAME} not found at root",
        )

    try:
        data = json.loads(archive.read(MANIFEST_NAME).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidPackageError(
            InvalidPackageError.MANIFEST_NOT_JSON, f"Invalid {MANIFEST_NAME}: {e}"
        ) from e
    if not isinstance(data, dict):
        raise InvalidPackageError(
            InvalidPackageError.MANIFEST_NOT_JSON, f"Invalid {MANIFEST_NAME}: not an object"
        )

    manifest = PackageManifest.from_dict(data)

    if not data.get("schemaVersion"):
        raise InvalidPackageError(
            InvalidPackageError.SCHEMA_VERSION_MISSING, "Invalid manifest: schemaVersion is required"
        )
    if not manifest.package_info.id:
        raise InvalidPackageError(
            InvalidPackageError.PACKAGE_ID_MISSING, "Invalid manifest: packageInfo.id is required"
        )
    if not manifest.driver_metadata.entry_point:
        raise InvalidPackageError(
            InvalidPackageError.ENTRY_POINT_MISSING,
            "Invalid manifest: driverMetadata.entryPoint is required",
        )
    if not any(name.startswith(PAYLOAD_PREFIX) for name in names):
        raise InvalidPackageError(
            InvalidPackageError.PAYLOAD_MISSING, "Invalid package: payload/ folder not found"
        )
    if manifest.driver_metadata.entry_point not in names:
        raise InvalidPackageError(
            InvalidPackageError.ENTRY_POINT_NOT_FOUND,
            f'Invalid manifest: entryPoint "{manifest.driver_metadata.entry_point}" '
            "not found in package",
        )

    return manifest


def read_manifest(archive_bytes: bytes) -> PackageManifest:
    with open_archive(archive_bytes) as archive:
        return validate_archive(archive)

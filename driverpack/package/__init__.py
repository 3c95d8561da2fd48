"""Package building and the ``.pd`` manifest format."""

from driverpack.package.builder import (
    BuildResult,
    NoValidDescriptorError,
    PackageBuilder,
    inspect_descriptor,
    package_id_for,
    validate_inf_path,
)
from driverpack.package.hashing import hash_archive_payload, hash_directory
from driverpack.package.manifest import InvalidPackageError, PackageManifest, read_manifest

__all__ = [
    "BuildResult",
    "InvalidPackageError",
    "NoValidDescriptorError",
    "PackageBuilder",
    "PackageManifest",
    "hash_archive_payload",
    "hash_directory",
    "inspect_descriptor",
    "package_id_for",
    "read_manifest",
    "validate_inf_path",
]

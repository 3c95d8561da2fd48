"""CLI interface for driverpack."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import click

from driverpack.config import Config
from driverpack.database import Database, PackageRecord
from driverpack.package import (
    InvalidPackageError,
    NoValidDescriptorError,
    PackageBuilder,
    inspect_descriptor,
    validate_inf_path,
)
from driverpack.storage import (
    BlobMissingError,
    LocalDiskBackend,
    PackageNotFoundError,
    PackageStore,
)
from driverpack.uploads import (
    FileNotInSessionError,
    MissingChunkError,
    SessionNotFoundError,
    UploadSessionManager,
)

DEFAULT_CHUNK_SIZE = 1024 * 1024

KNOWN_ERRORS = (
    InvalidPackageError,
    NoValidDescriptorError,
    PackageNotFoundError,
    BlobMissingError,
    SessionNotFoundError,
    FileNotInSessionError,
    MissingChunkError,
)

database_option = click.option(
    "--database", type=click.Path(path_type=Path), help="Path to database file"
)
repository_option = click.option(
    "--repository", type=click.Path(path_type=Path), help="Path to package repository folder"
)
actor_option = click.option("--actor", default="cli", show_default=True, help="Recorded uploader")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    ctx.ensure_object(dict)
    ctx.obj["config"] = Config()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@contextmanager
def _fail_on_known_errors() -> Iterator[None]:
    try:
        yield
    except KNOWN_ERRORS as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)


@contextmanager
def _open_store(
    config: Config, database: Path | None, repository: Path | None
) -> Iterator[PackageStore]:
    with Database(database or config.database_path) as db:
        backend = LocalDiskBackend(repository or config.repository_path)
        yield PackageStore(db, backend, config.store)


@cli.command()
@click.argument("source_path", type=click.Path(exists=True, file_okay=False, path_type=Path))
def validate(source_path: Path) -> None:
    """Select the driver descriptor a build would use."""
    result = validate_inf_path(source_path)
    if not result.valid:
        click.echo(f"Error: {result.error}", err=True)
        sys.exit(1)
    click.echo(f"Descriptor: {result.inf_file}")


@cli.command()
@click.argument("inf_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def inspect(inf_path: Path) -> None:
    """Show metadata and file dependencies of a single INF file."""
    report = inspect_descriptor(inf_path)
    meta = report.metadata

    click.echo(f"Display name:  {meta.display_name}")
    click.echo(f"Version:       {meta.version}")
    click.echo(f"Vendor:        {meta.vendor}")
    click.echo(f"Architecture:  {', '.join(meta.architecture)}")
    click.echo(f"Driver class:  {meta.driver_class.value}")
    click.echo(f"Isolation:     {meta.isolation.value}")
    click.echo(f"Models:        {len(meta.models)}")
    for model in meta.models:
        click.echo(f"  {model}")
    click.echo(f"Hardware IDs:  {len(meta.hardware_ids)}")
    for hardware_id in meta.hardware_ids:
        click.echo(f"  {hardware_id}")

    click.echo(f"Dependencies:  {len(report.dependencies)}")
    for dep in report.dependencies:
        source = dep.compressed_name or ""
        dest = dep.destination_dir or "-"
        click.echo(f"  {dep.file_name:<32} {dest:<12} {source}".rstrip())

    for notice in report.parsed.notices:
        click.echo(f"Notice: line {notice.line_number}: {notice.message}", err=True)


@cli.command()
@click.argument("source_path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option(
    "-o", "--output", type=click.Path(dir_okay=False, path_type=Path), help="Archive file to write"
)
@actor_option
@click.pass_context
def build(ctx: click.Context, source_path: Path, output: Path | None, actor: str) -> None:
    """Build a .pd package from an unpacked driver folder."""
    config: Config = ctx.obj["config"]
    with _fail_on_known_errors():
        result = PackageBuilder(config.builder).build(source_path, actor)

    output = output or Path(f"{source_path.resolve().name}.{config.store.archive_extension}")
    output.write_bytes(result.archive_bytes)

    meta = result.manifest.driver_metadata
    click.echo(f"Built {meta.display_name} {meta.version} ({result.manifest.package_info.id})")
    click.echo(f"Entry point:  {result.entry_point}")
    click.echo(f"Content hash: {result.content_hash}")
    if not result.validation.valid:
        click.echo(f"Missing files: {', '.join(result.validation.missing_files)}", err=True)
    click.echo(f"Wrote {output}")


@cli.command()
@click.argument("archive_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--hash", "content_hash", help="Expected payload content hash")
@actor_option
@database_option
@repository_option
@click.pass_context
def save(
    ctx: click.Context,
    archive_path: Path,
    content_hash: str | None,
    actor: str,
    database: Path | None,
    repository: Path | None,
) -> None:
    """Store a built .pd archive in the repository."""
    config: Config = ctx.obj["config"]
    with _fail_on_known_errors(), _open_store(config, database, repository) as store:
        result = store.save(archive_path.read_bytes(), archive_path.name, actor, content_hash)
    _echo_save_result(result.id, result.is_duplicate, result.is_duplicate_name)


@cli.command()
@click.argument("source_path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option(
    "--chunk-size", type=click.IntRange(min=1), default=DEFAULT_CHUNK_SIZE, show_default=True
)
@actor_option
@database_option
@repository_option
@click.pass_context
def ingest(
    ctx: click.Context,
    source_path: Path,
    chunk_size: int,
    actor: str,
    database: Path | None,
    repository: Path | None,
) -> None:
    """Upload a driver folder in chunks, then build and store it."""
    config: Config = ctx.obj["config"]
    source_path = source_path.resolve()

    with _fail_on_known_errors(), UploadSessionManager(config.sessions) as sessions:
        session = sessions.create_session()
        try:
            files = _upload_tree(sessions, session.session_id, source_path, chunk_size)
            assembled = sessions.finalize_session(session.session_id)
            click.echo(f"Uploaded {files} file(s) in session {session.session_id}")

            result = PackageBuilder(config.builder).build(assembled, actor)
            with _open_store(config, database, repository) as store:
                saved = store.save(
                    result.archive_bytes,
                    f"{source_path.name}.{config.store.archive_extension}",
                    actor,
                    result.content_hash,
                )
        finally:
            sessions.cleanup_session(session.session_id)

    _echo_save_result(saved.id, saved.is_duplicate, saved.is_duplicate_name)


def _upload_tree(
    sessions: UploadSessionManager, session_id: str, source_root: Path, chunk_size: int
) -> int:
    count = 0
    for path in sorted(p for p in source_root.rglob("*") if p.is_file()):
        name = path.relative_to(source_root).as_posix()
        data = path.read_bytes()
        total = max(1, -(-len(data) // chunk_size))
        for index in range(total):
            chunk = data[index * chunk_size : (index + 1) * chunk_size]
            sessions.save_chunk(session_id, name, index, chunk, total)
        count += 1
    return count


def _echo_save_result(package_id: str, is_duplicate: bool, is_duplicate_name: bool) -> None:
    if is_duplicate:
        click.echo(f"Duplicate payload, existing package {package_id}")
        return
    click.echo(f"Saved package {package_id}")
    if is_duplicate_name:
        click.echo("Warning: another package already uses this display name", err=True)


@cli.command(name="list")
@click.option("--hardware-id", help="Only packages supporting this PnP id")
@database_option
@repository_option
@click.pass_context
def list_cmd(
    ctx: click.Context,
    hardware_id: str | None,
    database: Path | None,
    repository: Path | None,
) -> None:
    """List stored packages, newest first."""
    config: Config = ctx.obj["config"]
    with _open_store(config, database, repository) as store:
        records = store.find_by_hardware_id(hardware_id) if hardware_id else store.list_packages()

    if not records:
        click.echo("No packages found.")
        return

    click.echo("-" * 100)
    click.echo(
        "Package ID".ljust(38) + "Name".ljust(32) + "Version".ljust(14) + "Vendor".ljust(16)
    )
    click.echo("-" * 100)
    for record in records:
        click.echo(
            f"{record.package_id:<38}"
            f"{_truncate(record.display_name or '', 31):<32}"
            f"{_truncate(record.version or '', 13):<14}"
            f"{_truncate(record.vendor or '', 15):<16}"
        )


@cli.command()
@click.argument("package_id")
@database_option
@repository_option
@click.pass_context
def models(
    ctx: click.Context, package_id: str, database: Path | None, repository: Path | None
) -> None:
    """List the models and hardware IDs a package supports."""
    config: Config = ctx.obj["config"]
    with _fail_on_known_errors(), _open_store(config, database, repository) as store:
        rows = store.list_models(package_id)

    if not rows:
        click.echo("No supported models recorded.")
        return
    for row in rows:
        click.echo(f"{row.model_name:<48} {row.hardware_id}".rstrip())


@cli.command()
@click.argument("package_id")
@database_option
@repository_option
@click.pass_context
def show(
    ctx: click.Context, package_id: str, database: Path | None, repository: Path | None
) -> None:
    """Show the index record of a package."""
    config: Config = ctx.obj["config"]
    with _fail_on_known_errors(), _open_store(config, database, repository) as store:
        record = store.get_record(package_id)
    _echo_record(record)


def _echo_record(record: PackageRecord) -> None:
    click.echo(f"Package ID:    {record.package_id}")
    click.echo(f"Display name:  {record.display_name or ''}")
    click.echo(f"Version:       {record.version or ''}")
    click.echo(f"Vendor:        {record.vendor or ''}")
    click.echo(f"File name:     {record.original_filename}")
    click.echo(f"Content hash:  {record.content_hash}")
    click.echo(f"Uploaded by:   {record.uploaded_by}")
    uploaded = datetime.fromtimestamp(record.created_at).strftime("%Y-%m-%d %H:%M:%S")
    click.echo(f"Uploaded at:   {uploaded}")


@cli.command()
@click.argument("package_id")
@click.option(
    "-o", "--output", type=click.Path(dir_okay=False, path_type=Path), help="File to write"
)
@database_option
@repository_option
@click.pass_context
def download(
    ctx: click.Context,
    package_id: str,
    output: Path | None,
    database: Path | None,
    repository: Path | None,
) -> None:
    """Write a stored package archive to disk."""
    config: Config = ctx.obj["config"]
    with _fail_on_known_errors(), _open_store(config, database, repository) as store:
        record, data = store.get_raw_package(package_id)

    output = output or Path(record.original_filename)
    output.write_bytes(data)
    click.echo(f"Wrote {output} ({len(data):,} bytes)")


@cli.command()
@click.argument("package_id")
@click.option("--display-name", help="New display name")
@click.option("--version", "version_", help="New version")
@click.option("--vendor", help="New vendor")
@database_option
@repository_option
@click.pass_context
def update(
    ctx: click.Context,
    package_id: str,
    display_name: str | None,
    version_: str | None,
    vendor: str | None,
    database: Path | None,
    repository: Path | None,
) -> None:
    """Edit the indexed metadata of a package."""
    if display_name is None and version_ is None and vendor is None:
        click.echo("Error: nothing to update.", err=True)
        sys.exit(1)

    config: Config = ctx.obj["config"]
    with _fail_on_known_errors(), _open_store(config, database, repository) as store:
        record = store.update_package(package_id, display_name, version_, vendor)
    _echo_record(record)


@cli.command()
@click.argument("package_id")
@click.option("--force", is_flag=True, help="Remove the index entry even if the file is missing")
@database_option
@repository_option
@click.pass_context
def delete(
    ctx: click.Context,
    package_id: str,
    force: bool,
    database: Path | None,
    repository: Path | None,
) -> None:
    """Delete a package; the file is kept while other records share it."""
    config: Config = ctx.obj["config"]
    with _fail_on_known_errors(), _open_store(config, database, repository) as store:
        result = store.delete(package_id, force_if_missing=force)

    if result.file_deleted:
        click.echo(f"Deleted {package_id} and its package file.")
    elif result.file_missing:
        click.echo(f"Deleted {package_id} from the index; package file was already missing.")
    else:
        click.echo(f"Deleted {package_id}; package file kept for other records.")


def _truncate(s: str, max_len: int) -> str:
    if len(s) <= max_len:
        return s
    return s[: max_len - 3] + "..."


def main() -> None:
    """Entry point for the CLI."""
    cli(standalone_mode=True)  # pylint: disable=no-value-for-parameter


if __name__ == "__main__":
    main()

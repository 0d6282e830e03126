"""
Command-line interface for guideviewer.

Provides CLI commands for listing guides, exporting and importing them in
the JSON and ZIP interchange formats, and backing up or restoring the guide
database.

Usage:
    # Show help
    guideviewer --help

    # Export and import
    guideviewer export <guide-id> -o network-setup.json
    guideviewer export-zip <guide-id> -o network-setup.zip
    guideviewer import network-setup.zip --duplicates rename

    # Backups
    guideviewer backup create
    guideviewer backup list
    guideviewer backup restore guideviewer_backup_20240120_103000.zip
"""

import sys
from pathlib import Path
from typing import Any, Optional

import click

from guideviewer import __version__
from guideviewer.backup.manager import BackupManager
from guideviewer.cli.formatters import (
    show_backup_info,
    show_backups,
    show_guides,
    show_import_result,
)
from guideviewer.config.loader import DEFAULT_CONFIG_FILE, ConfigError, ConfigLoader
from guideviewer.interchange.exporter import GuideExporter
from guideviewer.interchange.importer import GuideImporter
from guideviewer.interchange.results import VALID_DUPLICATE_HANDLING, DuplicateHandling
from guideviewer.interchange.schema import InterchangeError
from guideviewer.storage.db import GuideDatabase, StorageError
from guideviewer.storage.images import MAX_IMAGE_SIZE, ImageStore
from guideviewer.utils import resolve_config_dir, resolve_path
from guideviewer.utils.logging import configure_from_config, get_logger
from guideviewer.utils.paths import DEFAULT_BACKUP_DIR_NAME, DEFAULT_DATABASE_NAME


def get_config_dir(config_dir: Optional[str]) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def get_config_file(config_file: Optional[str], config_dir: Path) -> Path:
    """Get the configuration file path."""
    if config_file:
        return Path(config_file).expanduser()
    return config_dir / DEFAULT_CONFIG_FILE


def open_stores(ctx: click.Context) -> tuple[GuideDatabase, ImageStore]:
    """Open the guide database and image store named by the context."""
    config = ctx.obj["config"]
    db = GuideDatabase(ctx.obj["database_path"])
    db.initialize()
    images = ImageStore(db, max_size=config.get("max_image_size", MAX_IMAGE_SIZE))
    images.initialize()
    return db, images


def get_backup_manager(ctx: click.Context) -> BackupManager:
    """Create a BackupManager for the context's database and backup directory."""
    db, _ = open_stores(ctx)
    return BackupManager(
        db,
        ctx.obj["backup_dir"],
        retention_count=ctx.obj["config"].get("backup_retention_count", 10),
    )


def fail(message: str) -> None:
    """Print an error and exit with status 1."""
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="guideviewer")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="GUIDEVIEWER_CONFIG_DIR",
    help="Configuration directory path (default: ~/.guideviewer).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="GUIDEVIEWER_CONFIG_FILE",
    help="Configuration file path (default: <config-dir>/config.yaml).",
)
@click.option(
    "--database",
    "-d",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="GUIDEVIEWER_DATABASE",
    help="Guide database path (default: <config-dir>/data.db).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: Optional[str],
    config_file: Optional[str],
    database: Optional[str],
) -> None:
    """
    Guide Viewer data management.

    Exports and imports step-by-step guides with their images, and backs up
    and restores the guide database.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = get_config_dir(config_dir)
    resolved_config_file = get_config_file(config_file, resolved_config_dir)

    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_file

    config: dict[str, Any] = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load_from_file(resolved_config_file)
        if config:
            loader.validate(config)
    except ConfigError as e:
        # Keep going with defaults; a broken config file shouldn't lock users out
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    ctx.obj["config"] = config

    # CLI arguments take precedence over the config file
    ctx.obj["database_path"] = (
        Path(database).expanduser()
        if database
        else resolve_path(
            config.get("database_path"), resolved_config_dir, DEFAULT_DATABASE_NAME
        )
    )
    ctx.obj["backup_dir"] = resolve_path(
        config.get("backup_dir"), resolved_config_dir, DEFAULT_BACKUP_DIR_NAME
    )

    ctx.obj["verbose"] = verbose or config.get("verbose", False)
    configure_from_config(config, resolved_config_dir, verbose=verbose)


# =============================================================================
# List Command
# =============================================================================


@cli.command("list")
@click.option("--category", help="Only list guides in this category.")
@click.pass_context
def list_command(ctx: click.Context, category: Optional[str]) -> None:
    """
    List guides in the database.

    Examples:

        guideviewer list

        guideviewer list --category Networking
    """
    logger = get_logger(__name__)

    try:
        db, _ = open_stores(ctx)
        guides = db.get_guides_by_category(category) if category else db.get_all_guides()
    except StorageError as e:
        logger.exception(f"Failed to list guides: {e}")
        fail(str(e))
        return

    show_guides(guides)


# =============================================================================
# Export Commands
# =============================================================================


def _include_images(ctx: click.Context, images: Optional[bool]) -> bool:
    if images is not None:
        return images
    include: bool = ctx.obj["config"].get("include_images", True)
    return include


@cli.command("export")
@click.argument("guide_id")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, writable=True),
    help="Write JSON to this file instead of standard output.",
)
@click.option(
    "--images/--no-images",
    default=None,
    help="Inline step images as base64 (default: include_images from config).",
)
@click.pass_context
def export_command(
    ctx: click.Context, guide_id: str, output: Optional[str], images: Optional[bool]
) -> None:
    """
    Export a single guide as JSON.

    Examples:

        guideviewer export 3f2a... -o network-setup.json

        guideviewer export 3f2a... --no-images > network-setup.json
    """
    logger = get_logger(__name__)
    include_images = _include_images(ctx, images)

    try:
        db, image_store = open_stores(ctx)
        exporter = GuideExporter(db, image_store)

        if output is None:
            click.echo(exporter.export_guide(guide_id, include_images))
            return

        if not exporter.export_guide_to_file(guide_id, output, include_images):
            fail(f"Failed to export guide {guide_id} to {output}")
    except (StorageError, InterchangeError, ValueError) as e:
        logger.error(f"Export failed: {e}")
        fail(str(e))
        return

    click.echo(click.style(f"Guide exported to {output}", fg="green"))


@cli.command("export-all")
@click.option(
    "--output",
    "-o",
    required=True,
    type=click.Path(dir_okay=False, writable=True),
    help="JSON file to write.",
)
@click.option(
    "--images/--no-images",
    default=None,
    help="Inline step images as base64 (default: include_images from config).",
)
@click.pass_context
def export_all_command(
    ctx: click.Context, output: str, images: Optional[bool]
) -> None:
    """
    Export every guide into one JSON file.

    Example:

        guideviewer export-all -o all-guides.json
    """
    logger = get_logger(__name__)

    try:
        db, image_store = open_stores(ctx)
        exporter = GuideExporter(db, image_store)
        ok = exporter.export_all_guides_to_file(output, _include_images(ctx, images))
    except StorageError as e:
        logger.error(f"Export failed: {e}")
        fail(str(e))
        return

    if not ok:
        fail(f"Failed to export guides to {output}")
    click.echo(click.style(f"Exported {db.count_guides()} guide(s) to {output}", fg="green"))


@cli.command("export-zip")
@click.argument("guide_id")
@click.option(
    "--output",
    "-o",
    required=True,
    type=click.Path(dir_okay=False, writable=True),
    help="ZIP file to write.",
)
@click.pass_context
def export_zip_command(ctx: click.Context, guide_id: str, output: str) -> None:
    """
    Export a guide and its images as a ZIP package.

    Example:

        guideviewer export-zip 3f2a... -o network-setup.zip
    """
    logger = get_logger(__name__)

    try:
        db, image_store = open_stores(ctx)
        ok = GuideExporter(db, image_store).export_guide_with_images_to_file(
            guide_id, output
        )
    except (StorageError, ValueError) as e:
        logger.error(f"Export failed: {e}")
        fail(str(e))
        return

    if not ok:
        fail(f"Failed to export guide {guide_id} to {output}")
    click.echo(click.style(f"Guide package exported to {output}", fg="green"))


# =============================================================================
# Import Commands
# =============================================================================


@cli.command("import")
@click.argument("file", type=click.Path(dir_okay=False))
@click.option(
    "--duplicates",
    type=click.Choice(VALID_DUPLICATE_HANDLING, case_sensitive=False),
    default=None,
    help="What to do with guides whose title already exists "
    "(default: duplicate_handling from config, else skip).",
)
@click.pass_context
def import_command(ctx: click.Context, file: str, duplicates: Optional[str]) -> None:
    """
    Import guides from a .json or .zip file.

    Examples:

        guideviewer import all-guides.json

        guideviewer import network-setup.zip --duplicates rename
    """
    logger = get_logger(__name__)
    handling = DuplicateHandling(
        (duplicates or ctx.obj["config"].get("duplicate_handling", "skip")).lower()
    )

    try:
        db, image_store = open_stores(ctx)
        result = GuideImporter(db, image_store).import_guides_from_file(file, handling)
    except StorageError as e:
        logger.exception(f"Import failed: {e}")
        fail(str(e))
        return

    show_import_result(result)
    if result.has_errors and not result.success:
        sys.exit(1)


@cli.command("validate")
@click.argument("file", type=click.Path(dir_okay=False))
@click.pass_context
def validate_command(ctx: click.Context, file: str) -> None:
    """
    Check that a .json or .zip file can be imported, without importing it.

    Example:

        guideviewer validate network-setup.zip
    """
    try:
        db, image_store = open_stores(ctx)
        valid = GuideImporter(db, image_store).validate_import_file(file)
    except StorageError as e:
        fail(str(e))
        return

    if not valid:
        fail(f"{file} is not a valid guide import file")
    click.echo(click.style(f"{file} is a valid guide import file", fg="green"))


# =============================================================================
# Backup Commands
# =============================================================================


@cli.group("backup")
@click.pass_context
def backup_group(ctx: click.Context) -> None:
    """
    Back up and restore the guide database.

    Examples:

        # Create a timestamped backup in the backup directory
        guideviewer backup create

        # List backups, newest first
        guideviewer backup list

        # Restore from a backup
        guideviewer backup restore guideviewer_backup_20240120_103000.zip
    """
    pass


@backup_group.command("create")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False),
    help="Backup file to write (default: timestamped file in the backup directory).",
)
@click.pass_context
def backup_create_command(ctx: click.Context, output: Optional[str]) -> None:
    """Create a backup of the guide database."""
    logger = get_logger(__name__)

    try:
        bm = get_backup_manager(ctx)
    except (StorageError, OSError) as e:
        logger.exception(f"Backup failed: {e}")
        fail(str(e))
        return

    backup_path = bm.create_backup(output)
    if backup_path is None:
        fail("Failed to create backup")
        return

    click.echo(click.style(f"Backup created: {backup_path}", fg="green"))
    info = bm.get_backup_info(backup_path)
    if info is not None:
        click.echo(info.get_summary())


@backup_group.command("list")
@click.option(
    "--dir",
    "directory",
    type=click.Path(file_okay=False),
    help="Directory to scan (default: the backup directory).",
)
@click.pass_context
def backup_list_command(ctx: click.Context, directory: Optional[str]) -> None:
    """List valid backups, newest first."""
    try:
        bm = get_backup_manager(ctx)
    except (StorageError, OSError) as e:
        fail(str(e))
        return

    scan_dir = Path(directory) if directory else bm.backup_dir
    backups = bm.get_available_backups(scan_dir)
    if not backups:
        click.echo("No backups found.")
        click.echo(f"Backup directory: {scan_dir}")
        return

    click.echo(f"Available backups in {scan_dir}:\n")
    show_backups(bm, backups)
    click.echo("\nTo restore, use: guideviewer backup restore <path>")


@backup_group.command("info")
@click.argument("backup_file", type=click.Path(dir_okay=False))
@click.pass_context
def backup_info_command(ctx: click.Context, backup_file: str) -> None:
    """Show the manifest of a backup."""
    try:
        bm = get_backup_manager(ctx)
    except (StorageError, OSError) as e:
        fail(str(e))
        return

    info = bm.get_backup_info(backup_file)
    if info is None:
        fail(f"Failed to read backup file: {backup_file}")
        return
    show_backup_info(info)


@backup_group.command("validate")
@click.argument("backup_file", type=click.Path(dir_okay=False))
@click.pass_context
def backup_validate_command(ctx: click.Context, backup_file: str) -> None:
    """Check that a file is a valid backup."""
    try:
        bm = get_backup_manager(ctx)
    except (StorageError, OSError) as e:
        fail(str(e))
        return

    if not bm.validate_backup(backup_file):
        fail(f"{backup_file} is not a valid backup")
    click.echo(click.style(f"{backup_file} is a valid backup", fg="green"))


@backup_group.command("restore")
@click.argument("backup_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def backup_restore_command(ctx: click.Context, backup_file: str, yes: bool) -> None:
    """
    Replace the guide database with a backup.

    The current database is kept next to it as <db>.backup_<timestamp>.
    """
    logger = get_logger(__name__)

    try:
        bm = get_backup_manager(ctx)
    except (StorageError, OSError) as e:
        fail(str(e))
        return

    info = bm.get_backup_info(backup_file)
    if info is None or not info.is_valid:
        fail(f"{backup_file} is not a valid backup")
        return

    click.echo(info.get_summary())
    if not yes:
        click.confirm(
            f"This will replace the guide database at {bm.database.db_path}.\n"
            "Continue?",
            abort=True,
        )

    if not bm.restore_backup(backup_file):
        fail(f"Failed to restore backup {backup_file}")

    logger.info(f"Restored database from {backup_file}")
    click.echo(click.style("Database restored successfully.", fg="green"))

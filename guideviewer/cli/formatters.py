"""CLI output formatting functions.

This module contains functions for displaying guide lists, import results
and backup details on the command line.
"""

from pathlib import Path
from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from guideviewer.backup.manager import BackupInfo, BackupManager
    from guideviewer.guides.models import Guide
    from guideviewer.interchange.results import ImportResult

# Longest title shown in tables before truncation
MAX_TITLE_WIDTH = 40


def _truncate(text: str, width: int) -> str:
    return text if len(text) <= width else text[: width - 3] + "..."


def show_guides(guides: list["Guide"]) -> None:
    """
    Display guides as a table.

    Args:
        guides: Guides to list, already in display order
    """
    if not guides:
        click.echo("No guides found.")
        return

    click.echo(f"{'Title':<{MAX_TITLE_WIDTH}} {'Category':<20} {'Steps':>5}  {'ID'}")
    click.echo("-" * (MAX_TITLE_WIDTH + 62))
    for guide in guides:
        title = _truncate(guide.title, MAX_TITLE_WIDTH)
        category = _truncate(guide.category or "-", 20)
        click.echo(
            f"{title:<{MAX_TITLE_WIDTH}} {category:<20} {guide.step_count:>5}  {guide.id}"
        )

    click.echo(f"\nTotal: {len(guides)} guide(s)")


def show_import_result(result: "ImportResult") -> None:
    """
    Display the outcome of an import.

    Warnings are shown in yellow and errors in red, after the summary line.
    """
    color = "green" if result.success else ("yellow" if not result.errors else "red")
    click.echo(click.style(result.summary_message(), fg=color))

    for guide_id in result.imported_guide_ids:
        click.echo(f"  + {guide_id}")

    for warning in result.warnings:
        click.echo(click.style(f"Warning: {warning}", fg="yellow"), err=True)

    for error in result.errors:
        click.echo(click.style(f"Error: {error}", fg="red"), err=True)


def show_backup_info(info: "BackupInfo") -> None:
    """Display the manifest of a backup."""
    status = (
        click.style("valid", fg="green")
        if info.is_valid
        else click.style("invalid", fg="red")
    )
    click.echo(f"Backup date:     {info.backup_date:%Y-%m-%d %H:%M:%S}")
    click.echo(f"App version:     {info.app_version or 'Unknown'}")
    click.echo(f"Guides:          {info.guide_count}")
    click.echo(f"Users:           {info.user_count}")
    click.echo(f"Progress:        {info.progress_count}")
    click.echo(f"Categories:      {info.category_count}")
    click.echo(f"Database size:   {info.database_size / 1024:.1f} KB")
    click.echo(f"Status:          {status}")


def show_backups(manager: "BackupManager", backups: list[Path]) -> None:
    """
    Display available backups as a table.

    Args:
        manager: BackupManager used to read each backup's manifest
        backups: Backup paths, newest first
    """
    click.echo(f"{'Filename':<40} {'Date':<20} {'Guides':>6} {'Size':>11}")
    click.echo("-" * 80)

    for backup_path in backups:
        size_kb = backup_path.stat().st_size / 1024
        info = manager.get_backup_info(backup_path)
        if info is not None:
            date = f"{info.backup_date:%Y-%m-%d %H:%M:%S}"
            guides = str(info.guide_count)
        else:
            date, guides = "Unknown", "-"

        click.echo(f"{backup_path.name:<40} {date:<20} {guides:>6} {size_kb:>8.1f} KB")

    click.echo(f"\nTotal: {len(backups)} backup(s)")

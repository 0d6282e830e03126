"""CLI package for guideviewer."""

from guideviewer.cli.formatters import (
    show_backup_info,
    show_backups,
    show_guides,
    show_import_result,
)
from guideviewer.cli.main import cli, get_config_dir, get_config_file
from guideviewer.utils import DEFAULT_CONFIG_DIR

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "cli",
    "get_config_dir",
    "get_config_file",
    "show_backup_info",
    "show_backups",
    "show_guides",
    "show_import_result",
]

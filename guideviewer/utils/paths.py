"""
Path utilities for configuration and data directory resolution.

Provides consistent resolution of the guideviewer configuration directory
and the default locations derived from it (database, backups, logs).
"""

from __future__ import annotations

import os
from pathlib import Path

DEFAULT_CONFIG_DIR = Path.home() / ".guideviewer"
CONFIG_DIR_ENV_VAR = "GUIDEVIEWER_CONFIG_DIR"

DEFAULT_DATABASE_NAME = "data.db"
DEFAULT_BACKUP_DIR_NAME = "backups"
DEFAULT_LOG_DIR_NAME = "logs"


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Resolve the configuration directory.

    An explicit config_dir wins, then $GUIDEVIEWER_CONFIG_DIR, then
    ~/.guideviewer. The result is always absolute.
    """
    chosen = config_dir if config_dir is not None else os.environ.get(CONFIG_DIR_ENV_VAR)
    return Path(chosen or DEFAULT_CONFIG_DIR).expanduser().resolve()


def resolve_path(value: Path | str | None, config_dir: Path, default_name: str) -> Path:
    """
    Resolve a configured path against the configuration directory.

    Relative values are taken relative to config_dir; a missing value falls
    back to config_dir / default_name.
    """
    if not value:
        return config_dir / default_name

    path = Path(value).expanduser()
    if not path.is_absolute():
        path = config_dir / path
    return path


def default_database_path(config_dir: Path | str | None = None) -> Path:
    """Get the default guide database path (<config dir>/data.db)."""
    return resolve_config_dir(config_dir) / DEFAULT_DATABASE_NAME


def default_backup_dir(config_dir: Path | str | None = None) -> Path:
    """Get the default backup directory (<config dir>/backups)."""
    return resolve_config_dir(config_dir) / DEFAULT_BACKUP_DIR_NAME


def default_log_dir(config_dir: Path | str | None = None) -> Path:
    """Get the default log directory (<config dir>/logs)."""
    return resolve_config_dir(config_dir) / DEFAULT_LOG_DIR_NAME

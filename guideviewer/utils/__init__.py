"""
guideviewer.utils - Utility module

Common utilities including logging configuration and path resolution.
"""

from guideviewer.utils.paths import (
    DEFAULT_CONFIG_DIR,
    default_backup_dir,
    default_database_path,
    default_log_dir,
    resolve_config_dir,
    resolve_path,
)

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "default_backup_dir",
    "default_database_path",
    "default_log_dir",
    "resolve_config_dir",
    "resolve_path",
]

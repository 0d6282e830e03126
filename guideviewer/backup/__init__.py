"""
Backup and restore functionality for the guide database.

This module packages store-level copies of the database into ZIP archives
with a manifest, and restores the database from them.
"""

from guideviewer.backup.manager import BackupInfo, BackupManager

__all__ = ["BackupInfo", "BackupManager"]

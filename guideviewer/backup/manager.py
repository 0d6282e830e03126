"""
Backup manager for the guide database.

Provides functionality to:
- Create ZIP backups holding a store-level copy of the database and a manifest
- Validate backup archives
- Restore the database from a backup, keeping a safety copy of the old file
- Read backup manifests
- List available backups sorted newest first
- Apply retention policy to limit backup count

A backup archive holds exactly two root entries:

    data.db         SQLite online-backup copy of the live database
    metadata.json   BackupInfo manifest (camelCase JSON)
"""

from __future__ import annotations

import contextlib
import json
import logging
import shutil
import tempfile
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from guideviewer import __version__
from guideviewer.interchange.schema import format_datetime, parse_datetime
from guideviewer.storage.db import GuideDatabase, StorageError

logger = logging.getLogger(__name__)

# Archive layout
DATABASE_ENTRY = "data.db"
METADATA_ENTRY = "metadata.json"
BACKUP_ENTRIES = frozenset({DATABASE_ENTRY, METADATA_ENTRY})


def _creation_time(path: Path) -> float:
    """Get a file's creation time: birth time where reported, else ctime."""
    stat = path.stat()
    return getattr(stat, "st_birthtime", None) or stat.st_ctime


@dataclass
class BackupInfo:
    """
    Manifest describing a backup.

    Counts are taken from the live database when the backup is made; they may
    disagree slightly with the copy if writes happen concurrently.

    Attributes:
        backup_date: When the backup was created
        app_version: Version of the application that created it
        guide_count: Number of guides
        user_count: Number of users
        progress_count: Number of progress records
        category_count: Number of categories
        database_size: Size of the database copy in bytes
        is_valid: Whether the archive passed validation when last inspected
    """

    backup_date: datetime = field(default_factory=datetime.now)
    app_version: str = __version__
    guide_count: int = 0
    user_count: int = 0
    progress_count: int = 0
    category_count: int = 0
    database_size: int = 0
    is_valid: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "backupDate": format_datetime(self.backup_date),
            "appVersion": self.app_version,
            "guideCount": self.guide_count,
            "userCount": self.user_count,
            "progressCount": self.progress_count,
            "categoryCount": self.category_count,
            "databaseSize": self.database_size,
            "isValid": self.is_valid,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupInfo:
        """
        Build a BackupInfo from a decoded manifest.

        Raises:
            ValueError: If data is not a JSON object
        """
        if not isinstance(data, dict):
            raise ValueError("Backup manifest must be a JSON object")
        return cls(
            backup_date=parse_datetime(data.get("backupDate")) or datetime.min,
            app_version=str(data.get("appVersion", "")),
            guide_count=int(data.get("guideCount", 0)),
            user_count=int(data.get("userCount", 0)),
            progress_count=int(data.get("progressCount", 0)),
            category_count=int(data.get("categoryCount", 0)),
            database_size=int(data.get("databaseSize", 0)),
            is_valid=bool(data.get("isValid", False)),
        )

    def get_summary(self) -> str:
        """Get a one-line description for display to the user."""
        return (
            f"Backup from {self.backup_date:%Y-%m-%d %H:%M} - "
            f"{self.guide_count} guides, {self.user_count} users, "
            f"{self.progress_count} progress records - "
            f"{self.database_size / 1024:,.0f} KB"
        )


class BackupManager:
    """
    Manager for creating, inspecting and restoring database backups.

    Attributes:
        database: GuideDatabase being backed up and restored
        backup_dir: Directory where timestamped backups are stored
        retention_count: Maximum number of backups to retain (0 = unlimited)
        app_version: Version recorded in backup manifests

    Usage:
        from pathlib import Path

        bm = BackupManager(db, Path("~/.guideviewer/backups"), retention_count=10)

        # Timestamped backup in backup_dir, retention applied
        backup_file = bm.create_backup()

        # Backup to an explicit path
        bm.create_backup(Path("before-upgrade.zip"))

        # List and inspect
        for backup in bm.get_available_backups():
            print(bm.get_backup_info(backup).get_summary())

        # Restore; reopen the database afterwards
        bm.restore_backup(backup_file)
    """

    BACKUP_PREFIX = "guideviewer_backup_"
    BACKUP_SUFFIX = ".zip"

    def __init__(
        self,
        database: GuideDatabase,
        backup_dir: Path,
        retention_count: int = 10,
        app_version: str = __version__,
    ):
        """
        Initialize the backup manager.

        Args:
            database: Database to back up and restore
            backup_dir: Directory path where backups will be stored
            retention_count: Maximum number of backups to keep (0 = keep all)
            app_version: Version recorded in manifests
        """
        self.database = database
        self.backup_dir = Path(backup_dir).expanduser()
        self.retention_count = retention_count
        self.app_version = app_version

        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def create_backup(self, backup_path: Path | str | None = None) -> Path | None:
        """
        Create a backup archive of the database.

        When backup_path is None, the archive is written to the backup
        directory as guideviewer_backup_YYYYMMDD_HHMMSS.zip and the retention
        policy is applied afterwards. An existing file at the target path is
        overwritten.

        Args:
            backup_path: Explicit archive path, or None for a timestamped one

        Returns:
            Path to created backup file, or None if backup failed
        """
        timestamp = datetime.now()
        if backup_path is None:
            ts_str = timestamp.strftime("%Y%m%d_%H%M%S")
            target = self.backup_dir / f"{self.BACKUP_PREFIX}{ts_str}{self.BACKUP_SUFFIX}"
        else:
            target = Path(backup_path).expanduser()

        logger.info(f"Creating backup: {target}")

        try:
            with tempfile.TemporaryDirectory(prefix="guideviewer_backup_") as temp:
                temp_db = Path(temp) / DATABASE_ENTRY
                self.database.backup_to(temp_db)

                counts = self.database.get_record_counts()
                info = BackupInfo(
                    backup_date=timestamp,
                    app_version=self.app_version,
                    guide_count=counts["guides"],
                    user_count=counts["users"],
                    progress_count=counts["progress"],
                    category_count=counts["categories"],
                    database_size=temp_db.stat().st_size,
                    is_valid=True,
                )

                # target is replaced only once the archive is complete
                temp_zip = Path(temp) / "backup.zip"
                with zipfile.ZipFile(
                    temp_zip, "w", compression=zipfile.ZIP_DEFLATED
                ) as archive:
                    archive.write(temp_db, DATABASE_ENTRY)
                    archive.writestr(
                        METADATA_ENTRY, json.dumps(info.to_dict(), indent=2)
                    )

                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(temp_zip), str(target))

        except (OSError, StorageError, zipfile.BadZipFile) as e:
            logger.error(f"Failed to create backup {target}: {e}")
            return None

        logger.info(f"Backup created: {target} ({info.get_summary()})")

        if backup_path is None:
            self.apply_retention()

        return target

    def validate_backup(self, backup_path: Path | str) -> bool:
        """
        Check that a file is a well-formed backup archive.

        The archive must open as a ZIP and hold exactly data.db and
        metadata.json at its root.
        """
        path = Path(backup_path)
        if not path.is_file():
            logger.debug(f"Backup file not found: {path}")
            return False

        try:
            with zipfile.ZipFile(path) as archive:
                names = archive.namelist()
        except (OSError, zipfile.BadZipFile) as e:
            logger.debug(f"Backup {path} is not a valid ZIP archive: {e}")
            return False

        if len(names) != len(BACKUP_ENTRIES) or set(names) != BACKUP_ENTRIES:
            logger.debug(f"Backup {path} has unexpected entries: {names}")
            return False
        return True

    def restore_backup(self, backup_path: Path | str) -> bool:
        """
        Replace the live database with the copy held in a backup.

        The current database file is first copied aside as
        <db>.backup_YYYYmmddHHMMSS. The database object is closed; callers
        must reopen it before further use. A failure part way through is not
        rolled back; the safety copy is there for manual recovery.

        Args:
            backup_path: Backup archive to restore

        Returns:
            True if the database file was replaced, False otherwise
        """
        path = Path(backup_path)
        if self.database.is_memory:
            logger.error("Cannot restore into an in-memory database")
            return False

        if not self.validate_backup(path):
            logger.error(f"Invalid backup file: {path}")
            return False

        logger.info(f"Restoring database from backup: {path}")
        live_db = Path(self.database.db_path)

        try:
            with tempfile.TemporaryDirectory(prefix="guideviewer_restore_") as temp:
                restored_db = Path(temp) / DATABASE_ENTRY
                with zipfile.ZipFile(path) as archive:
                    with archive.open(DATABASE_ENTRY) as src, open(
                        restored_db, "wb"
                    ) as dst:
                        shutil.copyfileobj(src, dst)

                self.database.close()

                if live_db.exists():
                    ts_str = datetime.now().strftime("%Y%m%d%H%M%S")
                    safety_copy = live_db.with_name(f"{live_db.name}.backup_{ts_str}")
                    shutil.copy2(live_db, safety_copy)
                    logger.info(f"Current database saved as: {safety_copy}")

                live_db.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(restored_db, live_db)

        except (OSError, KeyError, zipfile.BadZipFile) as e:
            logger.error(f"Failed to restore backup {path}: {e}")
            return False

        logger.info(f"Database restored from backup: {path}")
        return True

    def get_backup_info(self, backup_path: Path | str) -> BackupInfo | None:
        """
        Read the manifest of a backup.

        is_valid is recomputed from the archive rather than trusted from the
        manifest.

        Returns:
            BackupInfo, or None if the file or its manifest cannot be read
        """
        path = Path(backup_path)
        if not path.is_file():
            logger.warning(f"Backup file not found: {path}")
            return None

        try:
            with zipfile.ZipFile(path) as archive:
                data = json.loads(archive.read(METADATA_ENTRY).decode("utf-8"))
            info = BackupInfo.from_dict(data)
        except (
            OSError,
            KeyError,
            ValueError,
            TypeError,
            zipfile.BadZipFile,
        ) as e:
            logger.warning(f"Failed to read backup metadata from {path}: {e}")
            return None

        info.is_valid = self.validate_backup(path)
        return info

    def get_available_backups(self, directory: Path | str | None = None) -> list[Path]:
        """
        List valid backup archives, newest first.

        Args:
            directory: Directory to scan; defaults to the backup directory

        Returns:
            Paths of *.zip files that pass validate_backup, sorted by
            creation time (newest first)
        """
        scan_dir = Path(directory) if directory is not None else self.backup_dir
        if not scan_dir.is_dir():
            return []

        backups = [p for p in scan_dir.glob("*.zip") if self.validate_backup(p)]
        backups.sort(key=_creation_time, reverse=True)
        return backups

    def apply_retention(self) -> int:
        """
        Apply retention policy by deleting old backups.

        Keeps only the most recent N timestamped backups
        (guideviewer_backup_*.zip) in the backup directory, where
        N = retention_count. Archives saved under other names are never
        pruned. If retention_count is 0, all backups are kept.

        Returns:
            Number of backups deleted
        """
        if self.retention_count == 0:
            return 0

        timestamped = [
            p
            for p in self.get_available_backups()
            if p.name.startswith(self.BACKUP_PREFIX)
            and p.name.endswith(self.BACKUP_SUFFIX)
        ]
        backups_to_delete = timestamped[self.retention_count :]

        deleted = 0
        for backup in backups_to_delete:
            with contextlib.suppress(OSError):
                backup.unlink()
                deleted += 1
                logger.debug(f"Deleted old backup: {backup}")

        if deleted:
            logger.info(f"Retention policy removed {deleted} old backup(s)")
        return deleted

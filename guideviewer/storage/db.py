"""
SQLite database module for guides, categories, users and progress.

Provides persistent storage for the guide aggregate (guides with their
embedded steps) and the records that live next to it. The same database file
also hosts the image store table (see guideviewer.storage.images), which is
why a store-level backup of this file captures everything.
"""

import json
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from guideviewer.guides.models import Category, Guide, Progress, Step, User, utc_now

# SQL Schema for the guide aggregate and its neighbours
SCHEMA = """
CREATE TABLE IF NOT EXISTS guides (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    category TEXT NOT NULL DEFAULT '',
    estimated_minutes INTEGER NOT NULL DEFAULT 0,
    created_by TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_guides_title ON guides(title);
CREATE INDEX IF NOT EXISTS idx_guides_category ON guides(category);

CREATE TABLE IF NOT EXISTS steps (
    id TEXT PRIMARY KEY,
    guide_id TEXT NOT NULL,
    step_order INTEGER NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    content TEXT NOT NULL DEFAULT '',
    image_ids TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(guide_id, step_order)
);

CREATE INDEX IF NOT EXISTS idx_steps_guide ON steps(guide_id);

CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL COLLATE NOCASE,
    description TEXT NOT NULL DEFAULT '',
    icon_glyph TEXT NOT NULL DEFAULT '',
    color TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(name)
);

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    product_key TEXT NOT NULL DEFAULT '',
    role TEXT NOT NULL,
    activated_at TEXT NOT NULL,
    last_login TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_users_role ON users(role);

CREATE TABLE IF NOT EXISTS progress (
    id TEXT PRIMARY KEY,
    guide_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    current_step_order INTEGER NOT NULL DEFAULT 1,
    completed_step_orders TEXT NOT NULL DEFAULT '[]',
    notes TEXT NOT NULL DEFAULT '',
    total_active_time_seconds INTEGER NOT NULL DEFAULT 0,
    started_at TEXT NOT NULL,
    last_accessed_at TEXT NOT NULL,
    completed_at TEXT,
    UNIQUE(user_id, guide_id)
);

CREATE INDEX IF NOT EXISTS idx_progress_guide ON progress(guide_id);
"""


class StorageError(Exception):
    """Raised when a database operation fails."""

    pass


class DuplicateKeyError(StorageError):
    """Raised when an insert or update violates a uniqueness constraint."""

    pass


def _to_text(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_text(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


class GuideDatabase:
    """
    SQLite database manager for guides and related records.

    Provides methods for:
    - Guide CRUD with embedded steps, plus title and category queries
    - Category, user and progress records
    - Record counts used by backup manifests
    - Store-level snapshots of the database file

    Title and name lookups are case-insensitive (Unicode casefold).
    Uniqueness violations raise DuplicateKeyError rather than being ignored.

    Usage:
        db = GuideDatabase('/path/to/data.db')
        db.initialize()

        # Or use in-memory for testing:
        db = GuideDatabase(':memory:')
        db.initialize()
    """

    def __init__(self, db_path: str | Path):
        """
        Args:
            db_path: Guide database file, or ":memory:" for a throwaway store
        """
        self.db_path = str(db_path)
        self._shared_connection: Optional[sqlite3.Connection] = None

    @property
    def is_memory(self) -> bool:
        """True when the database lives in memory rather than in a file."""
        return self.db_path == ":memory:"

    def _get_connection(self) -> sqlite3.Connection:
        """One shared connection for :memory:, a fresh one per call for files."""
        if self.is_memory:
            if self._shared_connection is None:
                self._shared_connection = self._open(":memory:")
            return self._shared_connection
        return self._open(self.db_path)

    @staticmethod
    def _open(target: str) -> sqlite3.Connection:
        conn = sqlite3.connect(target)
        conn.row_factory = sqlite3.Row
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Commits on success and rolls back on error. Unique constraint
        violations are re-raised as DuplicateKeyError.

        Yields:
            sqlite3.Connection: Database connection

        Usage:
            with db.connection() as conn:
                cursor = conn.execute("SELECT * FROM guides")
        """
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}") from e

        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            if "UNIQUE" in str(e):
                raise DuplicateKeyError(str(e)) from e
            raise StorageError(str(e)) from e
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            if not self.is_memory:
                conn.close()

    def initialize(self) -> None:
        """
        Initialize the database schema.

        Creates all tables and indexes if they don't exist.
        """
        if not self.is_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    def close(self) -> None:
        """
        Release the shared connection, if one is open.

        File databases open a connection per operation, so after close()
        no handle on the database file is held by this object.
        """
        if self._shared_connection is not None:
            self._shared_connection.close()
            self._shared_connection = None

    def backup_to(self, destination: str | Path) -> None:
        """
        Copy the live database into a new file using SQLite's backup API.

        This is a store-level copy, not a logical export: every table,
        including the image store, ends up in the destination file.

        Args:
            destination: Path of the file to create or overwrite
        """
        with self.connection() as conn:
            target = sqlite3.connect(str(destination))
            try:
                conn.backup(target)
            finally:
                target.close()

    # =========================================================================
    # Guide Operations
    # =========================================================================

    def insert_guide(self, guide: Guide) -> str:
        """
        Insert a guide and its steps.

        Args:
            guide: Guide to insert

        Returns:
            The id of the inserted guide

        Raises:
            DuplicateKeyError: If the guide id, a step id or a step order
                is already taken
        """
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO guides (
                    id, title, description, category, estimated_minutes,
                    created_by, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    guide.id,
                    guide.title,
                    guide.description,
                    guide.category,
                    guide.estimated_minutes,
                    guide.created_by,
                    _to_text(guide.created_at),
                    _to_text(guide.updated_at),
                ),
            )
            self._insert_steps(conn, guide.id, guide.steps)
        return guide.id

    def update_guide(self, guide: Guide) -> bool:
        """
        Update a guide, replacing its steps, and bump updated_at.

        Args:
            guide: Guide with modified fields

        Returns:
            True if the guide existed and was updated
        """
        guide.updated_at = utc_now()
        with self.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE guides SET
                    title = ?, description = ?, category = ?,
                    estimated_minutes = ?, created_by = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    guide.title,
                    guide.description,
                    guide.category,
                    guide.estimated_minutes,
                    guide.created_by,
                    _to_text(guide.updated_at),
                    guide.id,
                ),
            )
            if cursor.rowcount == 0:
                return False
            conn.execute("DELETE FROM steps WHERE guide_id = ?", (guide.id,))
            self._insert_steps(conn, guide.id, guide.steps)
            return True

    def delete_guide(self, guide_id: str) -> bool:
        """
        Delete a guide document and its embedded steps.

        Images referenced by the steps are not touched; they belong to the
        image store and must be deleted there by the caller if wanted.

        Args:
            guide_id: Id of the guide to delete

        Returns:
            True if a guide was deleted, False if not found
        """
        with self.connection() as conn:
            conn.execute("DELETE FROM steps WHERE guide_id = ?", (guide_id,))
            cursor = conn.execute("DELETE FROM guides WHERE id = ?", (guide_id,))
            return cursor.rowcount > 0

    def get_guide(self, guide_id: str) -> Optional[Guide]:
        """
        Get a guide with its steps by id.

        Returns:
            The guide, or None if not found
        """
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM guides WHERE id = ?", (guide_id,)
            ).fetchone()
            if row is None:
                return None
            return self._load_guide(conn, row)

    def get_all_guides(self) -> list[Guide]:
        """Get all guides ordered by title."""
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM guides ORDER BY casefold(title), id"
            ).fetchall()
            return [self._load_guide(conn, row) for row in rows]

    def find_guides_by_title(self, title: str) -> list[Guide]:
        """
        Find guides whose title matches exactly, ignoring case.

        Args:
            title: Title to look for

        Returns:
            Matching guides (normally zero or one)
        """
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM guides WHERE casefold(title) = casefold(?) ORDER BY id",
                (title,),
            ).fetchall()
            return [self._load_guide(conn, row) for row in rows]

    def guide_title_exists(self, title: str) -> bool:
        """Check whether any guide already uses the title (case-insensitive)."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM guides WHERE casefold(title) = casefold(?) LIMIT 1",
                (title,),
            ).fetchone()
            return row is not None

    def get_guides_by_category(self, category: str) -> list[Guide]:
        """Get the guides in a category (case-insensitive), ordered by title."""
        if not category or not category.strip():
            return []
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM guides
                WHERE casefold(category) = casefold(?)
                ORDER BY casefold(title), id
                """,
                (category,),
            ).fetchall()
            return [self._load_guide(conn, row) for row in rows]

    def count_guides(self) -> int:
        """
        Get the total number of guides.

        Returns:
            Count of guides
        """
        return self._count("guides")

    def _insert_steps(
        self, conn: sqlite3.Connection, guide_id: str, steps: list[Step]
    ) -> None:
        conn.executemany(
            """
            INSERT INTO steps (
                id, guide_id, step_order, title, content, image_ids,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    step.id,
                    guide_id,
                    step.order,
                    step.title,
                    step.content,
                    json.dumps(step.image_ids),
                    _to_text(step.created_at),
                    _to_text(step.updated_at),
                )
                for step in steps
            ],
        )

    def _load_guide(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Guide:
        step_rows = conn.execute(
            "SELECT * FROM steps WHERE guide_id = ? ORDER BY step_order",
            (row["id"],),
        ).fetchall()
        steps = [
            Step(
                id=step_row["id"],
                order=step_row["step_order"],
                title=step_row["title"],
                content=step_row["content"],
                image_ids=json.loads(step_row["image_ids"]),
                created_at=_from_text(step_row["created_at"]),
                updated_at=_from_text(step_row["updated_at"]),
            )
            for step_row in step_rows
        ]
        return Guide(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            category=row["category"],
            estimated_minutes=row["estimated_minutes"],
            created_by=row["created_by"],
            created_at=_from_text(row["created_at"]),
            updated_at=_from_text(row["updated_at"]),
            steps=steps,
        )

    # =========================================================================
    # Category Operations
    # =========================================================================

    def insert_category(self, category: Category) -> str:
        """
        Insert a category.

        Raises:
            DuplicateKeyError: If a category with the same name exists
        """
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO categories (
                    id, name, description, icon_glyph, color, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    category.id,
                    category.name,
                    category.description,
                    category.icon_glyph,
                    category.color,
                    _to_text(category.created_at),
                    _to_text(category.updated_at),
                ),
            )
        return category.id

    def get_category_by_name(self, name: str) -> Optional[Category]:
        """Get a category by name (case-insensitive), or None."""
        if not name or not name.strip():
            return None
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM categories WHERE casefold(name) = casefold(?)",
                (name,),
            ).fetchone()
            return self._row_to_category(row) if row else None

    def get_all_categories(self) -> list[Category]:
        """Get all categories ordered by name."""
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM categories ORDER BY casefold(name)"
            ).fetchall()
            return [self._row_to_category(row) for row in rows]

    def delete_category(self, category_id: str) -> bool:
        """Delete a category. Guides keep their category name."""
        with self.connection() as conn:
            cursor = conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
            return cursor.rowcount > 0

    def count_categories(self) -> int:
        """Get the total number of categories."""
        return self._count("categories")

    @staticmethod
    def _row_to_category(row: sqlite3.Row) -> Category:
        return Category(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            icon_glyph=row["icon_glyph"],
            color=row["color"],
            created_at=_from_text(row["created_at"]),
            updated_at=_from_text(row["updated_at"]),
        )

    # =========================================================================
    # User and Progress Operations
    # =========================================================================

    def insert_user(self, user: User) -> str:
        """Insert a user record."""
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO users (id, product_key, role, activated_at, last_login)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    user.id,
                    user.product_key,
                    user.role,
                    _to_text(user.activated_at),
                    _to_text(user.last_login),
                ),
            )
        return user.id

    def get_user(self, user_id: str) -> Optional[User]:
        """Get a user by id, or None."""
        with self.connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            if row is None:
                return None
            return User(
                id=row["id"],
                product_key=row["product_key"],
                role=row["role"],
                activated_at=_from_text(row["activated_at"]),
                last_login=_from_text(row["last_login"]),
            )

    def count_users(self) -> int:
        """Get the total number of users."""
        return self._count("users")

    def insert_progress(self, progress: Progress) -> str:
        """
        Insert a progress record.

        Raises:
            DuplicateKeyError: If the user already has progress for the guide
        """
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO progress (
                    id, guide_id, user_id, current_step_order,
                    completed_step_orders, notes, total_active_time_seconds,
                    started_at, last_accessed_at, completed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    progress.id,
                    progress.guide_id,
                    progress.user_id,
                    progress.current_step_order,
                    json.dumps(progress.completed_step_orders),
                    progress.notes,
                    progress.total_active_time_seconds,
                    _to_text(progress.started_at),
                    _to_text(progress.last_accessed_at),
                    _to_text(progress.completed_at),
                ),
            )
        return progress.id

    def get_progress(self, user_id: str, guide_id: str) -> Optional[Progress]:
        """Get the progress record of a user for a guide, or None."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM progress WHERE user_id = ? AND guide_id = ?",
                (user_id, guide_id),
            ).fetchone()
            if row is None:
                return None
            return Progress(
                id=row["id"],
                guide_id=row["guide_id"],
                user_id=row["user_id"],
                current_step_order=row["current_step_order"],
                completed_step_orders=json.loads(row["completed_step_orders"]),
                notes=row["notes"],
                total_active_time_seconds=row["total_active_time_seconds"],
                started_at=_from_text(row["started_at"]),
                last_accessed_at=_from_text(row["last_accessed_at"]),
                completed_at=_from_text(row["completed_at"]),
            )

    def count_progress(self) -> int:
        """Get the total number of progress records."""
        return self._count("progress")

    # =========================================================================
    # Utility Operations
    # =========================================================================

    def _count(self, table: str) -> int:
        with self.connection() as conn:
            cursor = conn.execute(f"SELECT COUNT(*) FROM {table}")  # nosec B608
            result: int = cursor.fetchone()[0]
            return result

    def get_record_counts(self) -> dict[str, Any]:
        """
        Get record counts for every aggregate type.

        Returns:
            Dictionary with guides, users, progress and categories counts
        """
        return {
            "guides": self.count_guides(),
            "users": self.count_users(),
            "progress": self.count_progress(),
            "categories": self.count_categories(),
        }

    def vacuum(self) -> None:
        """Rebuild the database file to reclaim space from deleted guides."""
        with self.connection() as conn:
            conn.execute("VACUUM")

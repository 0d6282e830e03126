"""
Data models for guides and the records that surround them.

A Guide is the top-level aggregate: metadata plus an ordered list of Steps.
Steps are embedded in their guide and reference images held in the image
store by opaque id. Categories, users and progress records live next to
guides in the same database.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

# Defaults applied to categories that are created implicitly
DEFAULT_CATEGORY_ICON = "\ue8f1"  # Segoe Fluent "Document" glyph
DEFAULT_CATEGORY_COLOR = "#0078D4"


def new_id() -> str:
    """Generate a new opaque record identifier."""
    return uuid.uuid4().hex


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass
class Step:
    """
    One ordered unit of instructions within a guide.

    Attributes:
        order: 1-based position of the step within its guide
        title: Short name of the step
        content: Rich text (RTF) or plain text body
        image_ids: Ids of images in the image store, in display order
        id: Stable step identifier (string, embedded in the guide)
        created_at: When the step was created
        updated_at: When the step was last modified
    """

    order: int
    title: str = ""
    content: str = ""
    image_ids: list[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class Guide:
    """
    A reference guide with its ordered steps.

    Attributes:
        title: Display title (unique per store, case-insensitive, at import)
        description: Summary shown in guide lists
        category: Name of the category the guide belongs to
        estimated_minutes: Estimated completion time
        steps: Ordered steps; orders form a contiguous 1..N sequence
        created_by: Role or user that authored the guide
        id: Record identifier
        created_at: When the guide was created
        updated_at: When the guide was last modified

    Usage:
        guide = Guide(title="Network Setup", category="Networking")
        guide.steps.append(Step(order=1, title="Plug in the router"))
        db.insert_guide(guide)
    """

    title: str
    description: str = ""
    category: str = ""
    estimated_minutes: int = 0
    steps: list[Step] = field(default_factory=list)
    created_by: str = ""
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def step_count(self) -> int:
        """Number of steps in the guide."""
        return len(self.steps)

    def image_ids(self) -> list[str]:
        """All image ids referenced by the guide's steps, in step order."""
        return [image_id for step in self.steps for image_id in step.image_ids]


@dataclass
class Category:
    """A named grouping of guides with a badge icon and color."""

    name: str
    description: str = ""
    icon_glyph: str = DEFAULT_CATEGORY_ICON
    color: str = DEFAULT_CATEGORY_COLOR
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class User:
    """An activated user of the application."""

    role: str
    product_key: str = ""
    id: str = field(default_factory=new_id)
    activated_at: datetime = field(default_factory=utc_now)
    last_login: datetime = field(default_factory=utc_now)


@dataclass
class Progress:
    """
    A user's progress through one guide.

    Only one progress record may exist per (user, guide) pair.
    """

    guide_id: str
    user_id: str
    current_step_order: int = 1
    completed_step_orders: list[int] = field(default_factory=list)
    notes: str = ""
    total_active_time_seconds: int = 0
    id: str = field(default_factory=new_id)
    started_at: datetime = field(default_factory=utc_now)
    last_accessed_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        """True once the guide has been finished."""
        return self.completed_at is not None

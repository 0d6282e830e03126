"""
Guide interchange document format.

Defines the serializable shapes used by exports and accepted by imports:

    Single guide:     {"version", "exportDate", "guide": {...}}
    Multiple guides:  {"version", "exportDate", "guideCount", "guides": [...]}
    Raw guide data:   {"title", "description", "category", "steps": [...], ...}

Field names are camelCase on the wire. When reading, names are matched
case-insensitively so hand-edited files still load.

The three shapes carry no discriminator field, so an incoming document is
identified by trying each decoder in FORMAT_DECODERS order and taking the
first one that succeeds (see detect_format).
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

# Current export format version
EXPORT_FORMAT_VERSION = "1.0"

# ZIP bundle layout
BUNDLE_GUIDE_ENTRY = "guide.json"
BUNDLE_IMAGES_PREFIX = "images/"


class InterchangeError(Exception):
    """Base class for export and import errors."""

    pass


class GuideNotFoundError(InterchangeError):
    """Raised when a guide requested for export does not exist."""

    pass


class SchemaValidationError(InterchangeError):
    """Raised when a document does not match an interchange shape."""

    pass


def _field(data: dict[str, Any], name: str) -> Any:
    """Look up a field by name, falling back to a case-insensitive match."""
    if name in data:
        return data[name]
    folded = name.casefold()
    for key, value in data.items():
        if isinstance(key, str) and key.casefold() == folded:
            return value
    return None


def _require_object(data: Any, what: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise SchemaValidationError(
            f"{what} must be a JSON object, got {type(data).__name__}"
        )
    return data


def _optional_str(data: dict[str, Any], name: str) -> str:
    value = _field(data, name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise SchemaValidationError(
            f"'{name}' must be a string, got {type(value).__name__}"
        )
    return value


def _optional_int(data: dict[str, Any], name: str) -> int:
    value = _field(data, name)
    if value is None:
        return 0
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise SchemaValidationError(
            f"'{name}' must be an integer, got {type(value).__name__}"
        )
    return value


def _optional_str_map(data: dict[str, Any], name: str) -> dict[str, str] | None:
    value = _field(data, name)
    if value is None:
        return None
    if not isinstance(value, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    ):
        raise SchemaValidationError(f"'{name}' must map strings to strings")
    return dict(value)


def parse_datetime(value: Any) -> datetime | None:
    """
    Parse an ISO 8601 timestamp leniently.

    Timestamps in exports are informational only (imports assign fresh
    ones), so unparseable values become None instead of failing the import.
    """
    if not isinstance(value, str) or not value:
        return None
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def format_datetime(value: datetime | None) -> str | None:
    """Format a timestamp for export."""
    return value.isoformat() if value is not None else None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StepExportData:
    """
    Serializable form of a step.

    Attributes:
        order: 1-based position of the step
        title: Step title
        content: Rich text or plain text body
        id: Original step id (reference only; imports assign new ids)
        images_base64: Inline images, original image id -> base64 bytes
        image_file_names: Bundle images, original image id -> file name in the ZIP
        created_at: Original creation time
        updated_at: Original modification time
        resolved_image_ids: Import-side only, original image id -> newly
            uploaded image id. Never serialized.

    images_base64 and image_file_names are mutually exclusive: JSON exports
    with images fill the first, ZIP bundles fill the second. ZIP imports
    ignore images_base64.
    """

    order: int
    title: str = ""
    content: str = ""
    id: str | None = None
    images_base64: dict[str, str] | None = None
    image_file_names: dict[str, str] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    resolved_image_ids: dict[str, str] | None = field(default=None, compare=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "order": self.order,
            "title": self.title,
            "content": self.content,
        }
        if self.images_base64 is not None:
            data["imagesBase64"] = self.images_base64
        if self.image_file_names is not None:
            data["imageFileNames"] = self.image_file_names
        data["createdAt"] = format_datetime(self.created_at)
        data["updatedAt"] = format_datetime(self.updated_at)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> StepExportData:
        """
        Build step data from a decoded JSON object.

        Raises:
            SchemaValidationError: If a field has the wrong type
        """
        data = _require_object(data, "Step")
        step_id = _field(data, "id")
        return cls(
            id=str(step_id) if step_id is not None else None,
            order=_optional_int(data, "order"),
            title=_optional_str(data, "title"),
            content=_optional_str(data, "content"),
            images_base64=_optional_str_map(data, "imagesBase64"),
            image_file_names=_optional_str_map(data, "imageFileNames"),
            created_at=parse_datetime(_field(data, "createdAt")),
            updated_at=parse_datetime(_field(data, "updatedAt")),
        )


@dataclass
class GuideExportData:
    """
    Serializable form of a guide, independent of any store.

    The id is kept for reference only; imports always create a new guide.
    """

    title: str
    description: str = ""
    category: str = ""
    estimated_minutes: int = 0
    steps: list[StepExportData] = field(default_factory=list)
    id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "estimatedMinutes": self.estimated_minutes,
            "steps": [step.to_dict() for step in self.steps],
            "createdAt": format_datetime(self.created_at),
            "updatedAt": format_datetime(self.updated_at),
            "createdBy": self.created_by,
        }

    @classmethod
    def from_dict(cls, data: Any) -> GuideExportData:
        """
        Build guide data from a decoded JSON object.

        Raises:
            SchemaValidationError: If a field has the wrong type
        """
        data = _require_object(data, "Guide")
        steps = _field(data, "steps")
        if steps is None:
            steps = []
        if not isinstance(steps, list):
            raise SchemaValidationError("'steps' must be a list")

        guide_id = _field(data, "id")
        return cls(
            id=str(guide_id) if guide_id is not None else None,
            title=_optional_str(data, "title"),
            description=_optional_str(data, "description"),
            category=_optional_str(data, "category"),
            estimated_minutes=_optional_int(data, "estimatedMinutes"),
            steps=[StepExportData.from_dict(step) for step in steps],
            created_at=parse_datetime(_field(data, "createdAt")),
            updated_at=parse_datetime(_field(data, "updatedAt")),
            created_by=_optional_str(data, "createdBy"),
        )


@dataclass
class GuideExport:
    """Envelope for a single exported guide."""

    guide: GuideExportData
    version: str = EXPORT_FORMAT_VERSION
    export_date: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "exportDate": format_datetime(self.export_date),
            "guide": self.guide.to_dict(),
        }


@dataclass
class GuidesExport:
    """Envelope for several exported guides."""

    guides: list[GuideExportData] = field(default_factory=list)
    version: str = EXPORT_FORMAT_VERSION
    export_date: datetime = field(default_factory=_utc_now)

    @property
    def guide_count(self) -> int:
        return len(self.guides)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "exportDate": format_datetime(self.export_date),
            "guideCount": self.guide_count,
            "guides": [guide.to_dict() for guide in self.guides],
        }


InterchangeDocument = Union[GuideExport, GuidesExport, GuideExportData]


def to_json(document: InterchangeDocument) -> str:
    """Serialize an interchange document as pretty-printed JSON."""
    return json.dumps(document.to_dict(), indent=2, ensure_ascii=False)


def _envelope_version(data: dict[str, Any]) -> str:
    version = _field(data, "version")
    return version if isinstance(version, str) and version else EXPORT_FORMAT_VERSION


def decode_guide_export(data: Any) -> GuideExport:
    """
    Decode a single-guide envelope.

    Raises:
        SchemaValidationError: If data has no 'guide' object or it is malformed
    """
    data = _require_object(data, "Document")
    guide = _field(data, "guide")
    if guide is None:
        raise SchemaValidationError("Missing 'guide' field")
    return GuideExport(
        guide=GuideExportData.from_dict(guide),
        version=_envelope_version(data),
        export_date=parse_datetime(_field(data, "exportDate")) or _utc_now(),
    )


def decode_guides_export(data: Any) -> GuidesExport:
    """
    Decode a multiple-guides envelope.

    guideCount is informational; the list itself is authoritative.

    Raises:
        SchemaValidationError: If data has no 'guides' list or an entry is malformed
    """
    data = _require_object(data, "Document")
    guides = _field(data, "guides")
    if guides is None:
        raise SchemaValidationError("Missing 'guides' field")
    if not isinstance(guides, list):
        raise SchemaValidationError("'guides' must be a list")
    return GuidesExport(
        guides=[GuideExportData.from_dict(guide) for guide in guides],
        version=_envelope_version(data),
        export_date=parse_datetime(_field(data, "exportDate")) or _utc_now(),
    )


def decode_guide_data(data: Any) -> GuideExportData:
    """
    Decode bare guide data (no envelope).

    Raises:
        SchemaValidationError: If data has no 'title' field or is malformed
    """
    data = _require_object(data, "Document")
    if _field(data, "title") is None:
        raise SchemaValidationError("Missing 'title' field")
    return GuideExportData.from_dict(data)


# Tried in this order; the first decoder that succeeds determines the format
FORMAT_DECODERS: tuple[tuple[str, Callable[[Any], InterchangeDocument]], ...] = (
    ("single guide export", decode_guide_export),
    ("multiple guides export", decode_guides_export),
    ("raw guide data", decode_guide_data),
)


def detect_format(text: str) -> tuple[str, InterchangeDocument]:
    """
    Parse JSON text and identify which interchange shape it has.

    Args:
        text: JSON document

    Returns:
        Tuple of (format name, decoded document)

    Raises:
        SchemaValidationError: If the text is not JSON or matches no shape
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise SchemaValidationError(f"Invalid JSON: {e}") from e

    reasons = []
    for name, decoder in FORMAT_DECODERS:
        try:
            return name, decoder(data)
        except SchemaValidationError as e:
            reasons.append(f"{name}: {e}")

    raise SchemaValidationError(
        "Invalid JSON format. Expected GuideExport, GuidesExport, or GuideExportData "
        f"({'; '.join(reasons)})"
    )

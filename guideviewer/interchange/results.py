"""
Import outcome types.

ImportResult is an immutable summary of one import call. Batch imports build
one result per guide and fold them together with ImportResult.combine().
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import Enum


class DuplicateHandling(str, Enum):
    """What to do when an imported guide's title already exists."""

    SKIP = "skip"  # Leave the existing guide alone, import nothing
    OVERWRITE = "overwrite"  # Replace the existing guide
    RENAME = "rename"  # Import under "Title (n)"


# Valid duplicate handling values for validation
VALID_DUPLICATE_HANDLING = tuple(mode.value for mode in DuplicateHandling)


@dataclass(frozen=True)
class ImportResult:
    """
    Summary of an import operation.

    Attributes:
        success: True if at least one guide was written to the store
        imported_guide_ids: Ids of the guides that were created
        images_imported: Number of images uploaded and attached
        duplicates_skipped: Guides not imported because of the Skip policy
        errors: Error messages (failed guides, unreadable input)
        warnings: Non-fatal issues (skipped images, renumbered steps, ...)

    Usage:
        result = importer.import_guide_from_json(text, DuplicateHandling.RENAME)
        if result.success:
            print(result.summary_message())
        for message in result.errors:
            print(f"Error: {message}")
    """

    success: bool
    imported_guide_ids: tuple[str, ...] = ()
    images_imported: int = 0
    duplicates_skipped: int = 0
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def guides_imported(self) -> int:
        return len(self.imported_guide_ids)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    @classmethod
    def succeeded(
        cls,
        guide_ids: Iterable[str],
        images_imported: int = 0,
        warnings: Iterable[str] = (),
    ) -> ImportResult:
        return cls(
            success=True,
            imported_guide_ids=tuple(guide_ids),
            images_imported=images_imported,
            warnings=tuple(warnings),
        )

    @classmethod
    def failed(cls, message: str, warnings: Iterable[str] = ()) -> ImportResult:
        return cls(success=False, errors=(message,), warnings=tuple(warnings))

    @classmethod
    def skipped_duplicate(cls, title: str) -> ImportResult:
        return cls(
            success=False,
            duplicates_skipped=1,
            warnings=(f"Skipped duplicate guide: {title}",),
        )

    @classmethod
    def combine(cls, results: Iterable[ImportResult]) -> ImportResult:
        """
        Fold per-guide results into one batch result.

        The batch succeeds when any guide was imported; errors from the
        others are kept so partial success is visible to the caller.
        """
        results = list(results)
        guide_ids = tuple(gid for r in results for gid in r.imported_guide_ids)
        return cls(
            success=bool(guide_ids),
            imported_guide_ids=guide_ids,
            images_imported=sum(r.images_imported for r in results),
            duplicates_skipped=sum(r.duplicates_skipped for r in results),
            errors=tuple(e for r in results for e in r.errors),
            warnings=tuple(w for r in results for w in r.warnings),
        )

    def with_warnings(self, warnings: Iterable[str]) -> ImportResult:
        """Return a copy with extra warnings appended."""
        return replace(self, warnings=self.warnings + tuple(warnings))

    def summary_message(self) -> str:
        """Get a one-line summary for display to the user."""
        if not self.success and not self.imported_guide_ids and self.errors:
            return f"Import failed: {', '.join(self.errors)}"

        parts = []
        if self.guides_imported:
            parts.append(f"{self.guides_imported} guide(s) imported successfully")
        if self.images_imported:
            parts.append(f"{self.images_imported} image(s) imported")
        if self.duplicates_skipped:
            parts.append(f"{self.duplicates_skipped} duplicate(s) skipped")
        if self.warnings:
            parts.append(f"{len(self.warnings)} warning(s)")
        if self.errors:
            parts.append(f"{len(self.errors)} error(s)")

        return ", ".join(parts) if parts else "Nothing imported"

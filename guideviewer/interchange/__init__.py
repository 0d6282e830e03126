"""Guide export and import in the JSON and ZIP interchange formats."""

from guideviewer.interchange.exporter import (
    GuideExporter,
    bundle_image_name,
    extension_for_mime_type,
)
from guideviewer.interchange.importer import GuideImporter
from guideviewer.interchange.results import (
    VALID_DUPLICATE_HANDLING,
    DuplicateHandling,
    ImportResult,
)
from guideviewer.interchange.schema import (
    EXPORT_FORMAT_VERSION,
    GuideExport,
    GuideExportData,
    GuideNotFoundError,
    GuidesExport,
    InterchangeError,
    SchemaValidationError,
    StepExportData,
    detect_format,
    to_json,
)

__all__ = [
    "EXPORT_FORMAT_VERSION",
    "VALID_DUPLICATE_HANDLING",
    "DuplicateHandling",
    "GuideExport",
    "GuideExportData",
    "GuideExporter",
    "GuideImporter",
    "GuideNotFoundError",
    "GuidesExport",
    "ImportResult",
    "InterchangeError",
    "SchemaValidationError",
    "StepExportData",
    "bundle_image_name",
    "detect_format",
    "extension_for_mime_type",
    "to_json",
]

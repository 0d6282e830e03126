"""
Guide import from JSON documents and ZIP bundles.

Provides functionality to:
- Detect which interchange shape a JSON document has
- Resolve title conflicts with the store (skip, overwrite, rename)
- Create missing categories on the fly
- Upload inline base64 images or bundled image files and remap their ids
- Import from files, dispatching on the .json or .zip extension
- Check an import file without writing anything

Imported guides always get fresh ids and timestamps; the ids carried in the
document are kept for reference only. Images are uploaded before the guide
document is written, so a crash in between can leave unreferenced images
behind but never a guide pointing at missing ones.
"""

from __future__ import annotations

import base64
import binascii
import io
import json
import logging
import zipfile
from pathlib import Path, PurePosixPath

from guideviewer.guides.models import Category, Guide, Step
from guideviewer.interchange.results import DuplicateHandling, ImportResult
from guideviewer.interchange.schema import (
    BUNDLE_GUIDE_ENTRY,
    BUNDLE_IMAGES_PREFIX,
    EXPORT_FORMAT_VERSION,
    GuideExport,
    GuideExportData,
    GuidesExport,
    InterchangeError,
    SchemaValidationError,
    StepExportData,
    decode_guide_export,
    detect_format,
)
from guideviewer.storage.db import GuideDatabase, StorageError
from guideviewer.storage.images import ImageError, ImageStore

logger = logging.getLogger(__name__)

# Author recorded on every imported guide
IMPORTED_BY = "Imported"

# Inline images carry no file name; they are uploaded under this extension
INLINE_IMAGE_EXTENSION = ".png"

SUPPORTED_FILE_TYPES = (".json", ".zip")


class GuideImporter:
    """
    Reads interchange documents and writes guides into the store.

    Attributes:
        database: GuideDatabase receiving guides and categories
        images: ImageStore receiving uploaded images

    Usage:
        importer = GuideImporter(db, image_store)

        result = importer.import_guides_from_file(
            "network-setup.zip", DuplicateHandling.RENAME
        )
        print(result.summary_message())
    """

    def __init__(self, database: GuideDatabase, images: ImageStore):
        if database is None or images is None:
            raise ValueError("GuideImporter requires a database and an image store")
        self.database = database
        self.images = images

    # =========================================================================
    # Entry points
    # =========================================================================

    def import_guide_from_json(
        self,
        json_text: str,
        handling: DuplicateHandling = DuplicateHandling.SKIP,
    ) -> ImportResult:
        """
        Import one or more guides from a JSON document.

        Accepts a single-guide envelope, a multiple-guides envelope or bare
        guide data.

        Args:
            json_text: JSON document
            handling: What to do when a title already exists

        Returns:
            ImportResult describing what was imported
        """
        if not json_text or not json_text.strip():
            return ImportResult.failed("Import data is empty")

        try:
            format_name, document = detect_format(json_text)
        except SchemaValidationError as e:
            logger.error(f"Failed to parse import JSON: {e}")
            return ImportResult.failed(str(e))

        logger.info(f"Importing guides from JSON ({format_name})")

        if isinstance(document, GuidesExport):
            result = self._import_many(document.guides, handling)
            return result.with_warnings(_version_warnings(document.version))

        if isinstance(document, GuideExport):
            result = self._import_guarded(document.guide, handling)
            return result.with_warnings(_version_warnings(document.version))

        return self._import_guarded(document, handling)

    def import_guide_from_zip(
        self,
        zip_data: bytes,
        handling: DuplicateHandling = DuplicateHandling.SKIP,
    ) -> ImportResult:
        """
        Import a guide from a ZIP bundle.

        The bundle must hold guide.json (single-guide envelope) at its root;
        image files under images/ are uploaded and reattached to their steps
        through each step's imageFileNames.

        Args:
            zip_data: ZIP archive bytes
            handling: What to do when the title already exists

        Returns:
            ImportResult describing what was imported
        """
        if not zip_data:
            return ImportResult.failed("ZIP data is empty")

        try:
            archive = zipfile.ZipFile(io.BytesIO(zip_data))
        except zipfile.BadZipFile as e:
            logger.error(f"Invalid ZIP package: {e}")
            return ImportResult.failed(f"Invalid ZIP file: {e}")

        with archive:
            try:
                export = _read_bundle_guide(archive)
            except SchemaValidationError as e:
                logger.error(f"Invalid guide.json in ZIP package: {e}")
                return ImportResult.failed(str(e))

            logger.info(f"Importing guide '{export.guide.title}' from ZIP package")
            result = self._import_guarded(export.guide, handling, archive)

        return result.with_warnings(_version_warnings(export.version))

    def import_guides_from_file(
        self,
        file_path: str | Path,
        handling: DuplicateHandling = DuplicateHandling.SKIP,
    ) -> ImportResult:
        """
        Import guides from a .json or .zip file.

        Returns:
            ImportResult describing what was imported; unreadable or
            unsupported files give a failed result
        """
        path = Path(file_path)
        if not path.is_file():
            return ImportResult.failed(f"File not found: {path}")

        extension = path.suffix.lower()
        if extension not in SUPPORTED_FILE_TYPES:
            return ImportResult.failed(
                f"Unsupported file type: {extension or '(none)'}. "
                f"Supported types: {', '.join(SUPPORTED_FILE_TYPES)}"
            )

        logger.info(f"Importing guides from file: {path}")
        try:
            if extension == ".zip":
                return self.import_guide_from_zip(path.read_bytes(), handling)
            return self.import_guide_from_json(path.read_text(encoding="utf-8"), handling)
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Failed to read import file {path}: {e}")
            return ImportResult.failed(f"Failed to read file: {e}")

    def validate_import_file(self, file_path: str | Path) -> bool:
        """
        Check that a file could be imported, without writing anything.

        JSON files must match one of the interchange shapes; ZIP files must
        hold a parseable single-guide guide.json.
        """
        path = Path(file_path)
        if not path.is_file():
            logger.warning(f"Import file not found: {path}")
            return False

        extension = path.suffix.lower()
        try:
            if extension == ".json":
                format_name, _ = detect_format(path.read_text(encoding="utf-8"))
                logger.debug(f"Import file {path} is a {format_name}")
                return True
            if extension == ".zip":
                with zipfile.ZipFile(path) as archive:
                    _read_bundle_guide(archive)
                return True
        except (OSError, UnicodeDecodeError, zipfile.BadZipFile, InterchangeError) as e:
            logger.warning(f"Import file {path} failed validation: {e}")
            return False

        logger.warning(f"Unsupported import file type: {path}")
        return False

    # =========================================================================
    # Guide import
    # =========================================================================

    def _import_many(
        self, guides: list[GuideExportData], handling: DuplicateHandling
    ) -> ImportResult:
        logger.info(f"Importing {len(guides)} guides")
        results = [self._import_guarded(data, handling) for data in guides]

        result = ImportResult.combine(results)
        logger.info(
            f"Imported {result.guides_imported} of {len(guides)} guides "
            f"({result.duplicates_skipped} duplicates skipped)"
        )
        return result

    def _import_guarded(
        self,
        data: GuideExportData,
        handling: DuplicateHandling,
        archive: zipfile.ZipFile | None = None,
    ) -> ImportResult:
        """Import a single guide, turning store failures into a failed result."""
        try:
            return self._import_one(data, handling, archive)
        except (StorageError, ImageError, InterchangeError) as e:
            logger.error(f"Failed to import guide '{data.title}': {e}")
            return ImportResult.failed(f"Failed to import guide '{data.title}': {e}")

    def _import_one(
        self,
        data: GuideExportData,
        handling: DuplicateHandling,
        archive: zipfile.ZipFile | None = None,
    ) -> ImportResult:
        """
        Import a single guide.

        Order matters: the duplicate policy is settled first so a skipped
        guide uploads nothing, then images are uploaded and remapped, and
        only then is the guide document written.
        """
        if not data.title.strip():
            return ImportResult.failed("Guide title is required")
        title = data.title

        handling = DuplicateHandling(handling)
        replaced = self.database.find_guides_by_title(title)
        if replaced:
            if handling == DuplicateHandling.SKIP:
                logger.info(f"Skipping duplicate guide: {title}")
                return ImportResult.skipped_duplicate(title)
            if handling == DuplicateHandling.RENAME:
                title = self._unique_title(title)
                logger.info(f"Renaming duplicate guide '{data.title}' to '{title}'")
                replaced = []
            else:
                logger.info(f"Overwriting existing guide: {title}")

        warnings: list[str] = []
        steps = _renumbered(data.steps, warnings)

        if archive is not None:
            uploaded = self._upload_bundle_images(archive, warnings)
            _resolve_bundle_images(steps, uploaded, warnings)
            images_imported = sum(len(s.resolved_image_ids or {}) for s in steps)
            _ignore_inline_images(steps, warnings)
        else:
            images_imported = self._upload_inline_images(steps, warnings)

        self._ensure_category(data.category)

        guide = Guide(
            title=title,
            description=data.description,
            category=data.category,
            estimated_minutes=data.estimated_minutes,
            created_by=IMPORTED_BY,
            steps=[
                Step(
                    order=step.order,
                    title=step.title,
                    content=step.content,
                    image_ids=list((step.resolved_image_ids or {}).values()),
                )
                for step in steps
            ],
        )

        for existing in replaced:
            self.database.delete_guide(existing.id)
        guide_id = self.database.insert_guide(guide)

        for existing in replaced:
            self._delete_images(existing, warnings)

        logger.info(
            f"Imported guide '{title}' as {guide_id} "
            f"({guide.step_count} steps, {images_imported} images)"
        )
        return ImportResult.succeeded([guide_id], images_imported, warnings)

    def _unique_title(self, title: str) -> str:
        counter = 1
        while self.database.guide_title_exists(f"{title} ({counter})"):
            counter += 1
        return f"{title} ({counter})"

    def _ensure_category(self, name: str) -> None:
        name = name.strip()
        if not name or self.database.get_category_by_name(name) is not None:
            return
        self.database.insert_category(Category(name=name))
        logger.info(f"Created category: {name}")

    def _delete_images(self, guide: Guide, warnings: list[str]) -> None:
        """Delete the images of a replaced guide, warning on failures."""
        for image_id in guide.image_ids():
            try:
                self.images.delete(image_id)
            except StorageError as e:
                logger.warning(f"Failed to delete image {image_id}: {e}")
                warnings.append(f"Failed to delete replaced image {image_id}: {e}")

    # =========================================================================
    # Images
    # =========================================================================

    def _upload_inline_images(
        self, steps: list[StepExportData], warnings: list[str]
    ) -> int:
        """Upload base64 images and fill each step's resolved_image_ids."""
        uploaded = 0
        for step in steps:
            if not step.images_base64:
                continue
            resolved = {}
            for original_id, encoded in step.images_base64.items():
                try:
                    image_data = base64.b64decode(encoded, validate=True)
                except (binascii.Error, ValueError) as e:
                    logger.warning(f"Invalid base64 for image {original_id}: {e}")
                    warnings.append(
                        f"Failed to import image {original_id} for step "
                        f"{step.order}: invalid base64 data"
                    )
                    continue

                new_id = self._upload(
                    image_data,
                    f"imported_image_{original_id}{INLINE_IMAGE_EXTENSION}",
                    f"image {original_id} for step {step.order}",
                    warnings,
                )
                if new_id is not None:
                    resolved[original_id] = new_id
                    uploaded += 1
            step.resolved_image_ids = resolved
        return uploaded

    def _upload_bundle_images(
        self, archive: zipfile.ZipFile, warnings: list[str]
    ) -> dict[str, str]:
        """
        Upload every file under images/ in the bundle.

        Returns:
            Dict mapping bundle file base name to new image id
        """
        uploaded = {}
        for info in archive.infolist():
            in_images_folder = info.filename.lower().startswith(BUNDLE_IMAGES_PREFIX)
            if info.is_dir() or not in_images_folder:
                continue

            name = PurePosixPath(info.filename).name
            if info.file_size > self.images.max_size:
                warnings.append(f"Skipped image {name}: file is too large")
                continue

            new_id = self._upload(
                archive.read(info), name, f"image {name}", warnings
            )
            if new_id is not None:
                uploaded[name] = new_id

        logger.debug(f"Uploaded {len(uploaded)} images from ZIP package")
        return uploaded

    def _upload(
        self, data: bytes, file_name: str, label: str, warnings: list[str]
    ) -> str | None:
        stream = io.BytesIO(data)
        validation = self.images.validate(stream, file_name)
        if not validation.is_valid:
            logger.warning(f"Skipping invalid {label}: {validation.error_message}")
            warnings.append(
                f"Failed to import {label}: {validation.error_message}"
            )
            return None

        try:
            return self.images.upload(stream, file_name)
        except ImageError as e:
            logger.warning(f"Failed to upload {label}: {e}")
            warnings.append(f"Failed to import {label}: {e}")
            return None


def _read_bundle_guide(archive: zipfile.ZipFile) -> GuideExport:
    """
    Read and decode guide.json from a bundle.

    Raises:
        SchemaValidationError: If guide.json is missing or malformed
    """
    try:
        raw = archive.read(BUNDLE_GUIDE_ENTRY)
    except KeyError as e:
        raise SchemaValidationError(
            f"Invalid ZIP package: {BUNDLE_GUIDE_ENTRY} not found"
        ) from e

    try:
        data = json.loads(raw.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SchemaValidationError(f"Invalid {BUNDLE_GUIDE_ENTRY}: {e}") from e
    return decode_guide_export(data)


def _resolve_bundle_images(
    steps: list[StepExportData], uploaded: dict[str, str], warnings: list[str]
) -> None:
    """Map each step's bundle file names to the newly uploaded image ids."""
    for step in steps:
        if not step.image_file_names:
            continue
        resolved = {}
        for original_id, file_name in step.image_file_names.items():
            new_id = uploaded.get(PurePosixPath(file_name).name)
            if new_id is None:
                warnings.append(
                    f"Image file {file_name} for step {step.order} "
                    "not found in ZIP package"
                )
                continue
            resolved[original_id] = new_id
        step.resolved_image_ids = resolved


def _ignore_inline_images(steps: list[StepExportData], warnings: list[str]) -> None:
    """Drop base64 images from steps of a ZIP package; only images/ entries count."""
    for step in steps:
        if step.images_base64:
            logger.warning(
                f"Ignoring {len(step.images_base64)} inline images for step "
                f"{step.order} in ZIP package"
            )
            warnings.append(
                f"Ignored inline images for step {step.order}: ZIP packages "
                "carry images as files"
            )
            step.images_base64 = None


def _renumbered(
    steps: list[StepExportData], warnings: list[str]
) -> list[StepExportData]:
    """Sort steps by order and renumber them 1..N."""
    ordered = sorted(steps, key=lambda step: step.order)
    changed = False
    for position, step in enumerate(ordered, start=1):
        if step.order != position:
            step.order = position
            changed = True
    if changed:
        warnings.append("Step order was not contiguous; steps were renumbered")
    return ordered


def _version_warnings(version: str) -> list[str]:
    if version == EXPORT_FORMAT_VERSION:
        return []
    logger.warning(f"Import file has format version {version}")
    return [
        f"Import file has format version {version}; "
        f"expected {EXPORT_FORMAT_VERSION}"
    ]

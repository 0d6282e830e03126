"""
Guide export to JSON documents and ZIP bundles.

Provides functionality to:
- Export one guide or all guides as versioned JSON
- Inline step images as base64, or leave them out
- Package a guide and its image files into a ZIP bundle
- Write exports to files, reporting success as a boolean

Bundle image files are named images/step_{order}_image_{n}{ext}, where n
counts every image reference across the whole guide. The importer relies on
these names to reattach images to their steps.
"""

from __future__ import annotations

import base64
import io
import logging
import zipfile
from pathlib import Path

from guideviewer.guides.models import Guide, Step
from guideviewer.interchange.schema import (
    BUNDLE_GUIDE_ENTRY,
    BUNDLE_IMAGES_PREFIX,
    GuideExport,
    GuideExportData,
    GuideNotFoundError,
    GuidesExport,
    InterchangeError,
    StepExportData,
    to_json,
)
from guideviewer.storage.db import GuideDatabase
from guideviewer.storage.images import ImageStore

logger = logging.getLogger(__name__)

# File extension per stored MIME type; anything else is written as .png
MIME_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/bmp": ".bmp",
    "image/gif": ".gif",
}
DEFAULT_IMAGE_EXTENSION = ".png"


def extension_for_mime_type(mime_type: str | None) -> str:
    """Get the bundle file extension for a MIME type."""
    if not mime_type:
        return DEFAULT_IMAGE_EXTENSION
    return MIME_EXTENSIONS.get(mime_type.lower(), DEFAULT_IMAGE_EXTENSION)


def bundle_image_name(step_order: int, image_number: int, extension: str) -> str:
    """
    Get the ZIP entry name of a bundled image.

    Args:
        step_order: Order of the step the image belongs to
        image_number: Running image counter across the guide (1-based)
        extension: File extension including the dot

    Returns:
        Entry name such as "images/step_2_image_3.jpg"
    """
    return f"{BUNDLE_IMAGES_PREFIX}step_{step_order}_image_{image_number}{extension}"


class GuideExporter:
    """
    Serializes guides from the database into interchange documents.

    Export data is built fresh on every call; nothing is cached.

    Usage:
        exporter = GuideExporter(db, image_store)

        # JSON with inline images
        text = exporter.export_guide(guide_id)

        # ZIP bundle with image files
        data = exporter.export_guide_with_images(guide_id)

        # Everything, to a file
        ok = exporter.export_all_guides_to_file("guides.json")
    """

    def __init__(self, database: GuideDatabase, images: ImageStore):
        if database is None or images is None:
            raise ValueError("GuideExporter requires a database and an image store")
        self.database = database
        self.images = images

    def export_guide(self, guide_id: str, include_images: bool = True) -> str:
        """
        Export a single guide as JSON.

        Args:
            guide_id: Id of the guide to export
            include_images: Inline step images as base64; if False the image
                maps are omitted

        Returns:
            Pretty-printed JSON of a single-guide envelope

        Raises:
            ValueError: If guide_id is empty
            GuideNotFoundError: If no guide has this id
        """
        logger.info(
            f"Exporting guide {guide_id} to JSON (include_images={include_images})"
        )
        guide = self._get_guide(guide_id)

        export = GuideExport(guide=self._to_export_data(guide, include_images))
        text = to_json(export)

        logger.info(
            f"Successfully exported guide '{guide.title}' to JSON "
            f"({len(text)} characters)"
        )
        return text

    def export_all_guides(self, include_images: bool = True) -> str:
        """
        Export every guide in the database as JSON.

        Returns:
            Pretty-printed JSON of a multiple-guides envelope whose guideCount
            equals the number of guides listed
        """
        logger.info(f"Exporting all guides to JSON (include_images={include_images})")

        guides = self.database.get_all_guides()
        logger.info(f"Found {len(guides)} guides to export")

        export = GuidesExport(
            guides=[self._to_export_data(guide, include_images) for guide in guides]
        )
        text = to_json(export)

        logger.info(
            f"Successfully exported {export.guide_count} guides to JSON "
            f"({len(text)} characters)"
        )
        return text

    def export_guide_to_file(
        self, guide_id: str, file_path: str | Path, include_images: bool = True
    ) -> bool:
        """
        Export a single guide to a JSON file.

        Returns:
            True if the file was written, False on any export or I/O failure
        """
        try:
            logger.info(f"Exporting guide {guide_id} to file: {file_path}")
            text = self.export_guide(guide_id, include_images)
            Path(file_path).write_text(text, encoding="utf-8")
            logger.info(f"Successfully exported guide to file: {file_path}")
            return True
        except (OSError, InterchangeError) as e:
            logger.error(f"Failed to export guide {guide_id} to file {file_path}: {e}")
            return False

    def export_all_guides_to_file(
        self, file_path: str | Path, include_images: bool = True
    ) -> bool:
        """
        Export every guide to a JSON file.

        Returns:
            True if the file was written, False on any export or I/O failure
        """
        try:
            logger.info(f"Exporting all guides to file: {file_path}")
            text = self.export_all_guides(include_images)
            Path(file_path).write_text(text, encoding="utf-8")
            logger.info(f"Successfully exported all guides to file: {file_path}")
            return True
        except (OSError, InterchangeError) as e:
            logger.error(f"Failed to export all guides to file {file_path}: {e}")
            return False

    def export_guide_with_images(self, guide_id: str) -> bytes:
        """
        Export a guide as a ZIP bundle.

        The bundle holds guide.json at its root (steps carry imageFileNames
        instead of base64 data) plus one entry per image under images/.

        Args:
            guide_id: Id of the guide to export

        Returns:
            ZIP archive bytes

        Raises:
            ValueError: If guide_id is empty
            GuideNotFoundError: If no guide has this id
        """
        logger.info(f"Exporting guide {guide_id} to ZIP package with images")
        guide = self._get_guide(guide_id)

        export_data, image_entries = self._to_bundle_data(guide)
        export = GuideExport(guide=export_data)

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(BUNDLE_GUIDE_ENTRY, to_json(export))
            for entry_name, data in image_entries:
                archive.writestr(entry_name, data)
                logger.debug(f"Added image {entry_name} to ZIP")

        zip_bytes = buffer.getvalue()
        logger.info(
            f"Successfully exported guide '{guide.title}' to ZIP package "
            f"({len(zip_bytes)} bytes, {len(image_entries)} images)"
        )
        return zip_bytes

    def export_guide_with_images_to_file(
        self, guide_id: str, file_path: str | Path
    ) -> bool:
        """
        Export a guide as a ZIP bundle file.

        Returns:
            True if the file was written, False on any export or I/O failure
        """
        try:
            Path(file_path).write_bytes(self.export_guide_with_images(guide_id))
            logger.info(f"Successfully exported guide bundle to file: {file_path}")
            return True
        except (OSError, InterchangeError) as e:
            logger.error(
                f"Failed to export guide bundle {guide_id} to file {file_path}: {e}"
            )
            return False

    def _get_guide(self, guide_id: str) -> Guide:
        if not guide_id or not str(guide_id).strip():
            raise ValueError("Guide id cannot be empty")

        guide = self.database.get_guide(guide_id)
        if guide is None:
            logger.error(f"Guide {guide_id} not found for export")
            raise GuideNotFoundError(f"Guide with ID {guide_id} not found.")
        return guide

    def _to_export_data(self, guide: Guide, include_images: bool) -> GuideExportData:
        steps = []
        for step in guide.steps:
            step_data = _step_export_data(step)
            if include_images and step.image_ids:
                step_data.images_base64 = self._inline_images(step)
            steps.append(step_data)
        return _guide_export_data(guide, steps)

    def _inline_images(self, step: Step) -> dict[str, str]:
        images_base64 = {}
        for image_id in step.image_ids:
            stream = self.images.get(image_id)
            if stream is None:
                logger.warning(f"Image {image_id} not found in step '{step.title}'")
                continue
            images_base64[image_id] = base64.b64encode(stream.read()).decode("ascii")
        return images_base64

    def _to_bundle_data(
        self, guide: Guide
    ) -> tuple[GuideExportData, list[tuple[str, bytes]]]:
        """
        Build bundle export data and the image entries that go with it.

        Every image reference consumes one counter value, even when the image
        is missing from the store, so names stay a pure function of position.
        """
        image_entries: list[tuple[str, bytes]] = []
        image_number = 0
        steps = []

        for step in guide.steps:
            step_data = _step_export_data(step)
            if step.image_ids:
                file_names = {}
                for image_id in step.image_ids:
                    image_number += 1
                    stream = self.images.get(image_id)
                    if stream is None:
                        logger.warning(
                            f"Image {image_id} not found for step {step.order}"
                        )
                        continue
                    meta = self.images.metadata(image_id)
                    extension = extension_for_mime_type(meta.mime_type if meta else None)
                    entry_name = bundle_image_name(step.order, image_number, extension)
                    file_names[image_id] = entry_name
                    image_entries.append((entry_name, stream.read()))
                step_data.image_file_names = file_names
            steps.append(step_data)

        return _guide_export_data(guide, steps), image_entries


def _step_export_data(step: Step) -> StepExportData:
    return StepExportData(
        id=step.id,
        order=step.order,
        title=step.title,
        content=step.content,
        created_at=step.created_at,
        updated_at=step.updated_at,
    )


def _guide_export_data(guide: Guide, steps: list[StepExportData]) -> GuideExportData:
    return GuideExportData(
        id=guide.id,
        title=guide.title,
        description=guide.description,
        category=guide.category,
        estimated_minutes=guide.estimated_minutes,
        created_at=guide.created_at,
        updated_at=guide.updated_at,
        created_by=guide.created_by,
        steps=steps,
    )

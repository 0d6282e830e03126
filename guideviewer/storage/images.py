"""
Image storage for guide steps.

Provides utilities for:
- Uploading step images under opaque ids (img_<hex>)
- Image format and size validation with Pillow
- Retrieving image bytes and metadata
- Deleting images

Images live in their own table inside the guide database file. Writes to the
image store and to guide documents are independent; nothing here takes part
in a guide's transaction.
"""

import io
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Optional

from PIL import Image

from guideviewer.storage.db import GuideDatabase

# Image validation configuration
MAX_IMAGE_SIZE = 10 * 1024 * 1024  # 10MB
ALLOWED_EXTENSIONS = (".png", ".jpg", ".jpeg", ".bmp", ".gif")
ALLOWED_FORMATS = ("PNG", "JPEG", "BMP", "GIF")

IMAGE_ID_PREFIX = "img_"

IMAGES_SCHEMA = """
CREATE TABLE IF NOT EXISTS images (
    id TEXT PRIMARY KEY,
    file_name TEXT NOT NULL,
    mime_type TEXT NOT NULL,
    size INTEGER NOT NULL,
    data BLOB NOT NULL,
    uploaded_at TEXT NOT NULL
);
"""

logger = logging.getLogger(__name__)


class ImageError(Exception):
    """Raised when an image operation fails."""

    pass


class ImageValidationError(ImageError):
    """Raised when image data fails format or size validation."""

    pass


@dataclass(frozen=True)
class ImageMetadata:
    """Descriptive information about a stored image."""

    file_id: str
    file_name: str
    size: int
    mime_type: str
    uploaded_at: datetime


@dataclass(frozen=True)
class ImageValidationResult:
    """Outcome of validating image data: ok, or a reason why not."""

    is_valid: bool
    error_message: str = ""

    @classmethod
    def ok(cls) -> "ImageValidationResult":
        return cls(is_valid=True)

    @classmethod
    def fail(cls, reason: str) -> "ImageValidationResult":
        return cls(is_valid=False, error_message=reason)


class ImageStore:
    """
    Content store for step images, addressed by opaque id.

    Attributes:
        database: GuideDatabase whose file hosts the images table
        max_size: Maximum accepted image size in bytes

    Usage:
        store = ImageStore(db)
        store.initialize()

        with open("router.png", "rb") as f:
            image_id = store.upload(f, "router.png")

        data = store.get(image_id)
        meta = store.metadata(image_id)
        store.delete(image_id)
    """

    def __init__(self, database: GuideDatabase, max_size: int = MAX_IMAGE_SIZE):
        self.database = database
        self.max_size = max_size

    def initialize(self) -> None:
        """Create the images table if it doesn't exist."""
        with self.database.connection() as conn:
            conn.executescript(IMAGES_SCHEMA)

    def upload(self, stream: BinaryIO, file_name: str) -> str:
        """
        Validate and store an image.

        Args:
            stream: Readable binary stream with the image bytes
            file_name: Original file name; its extension must be allowed

        Returns:
            The new image id

        Raises:
            ValueError: If stream is None or file_name is empty
            ImageValidationError: If the image fails validation
        """
        if stream is None:
            raise ValueError("Image stream cannot be None")
        if not file_name or not file_name.strip():
            raise ValueError("File name cannot be empty")

        data = _read_all(stream)
        result = self._validate_bytes(data, file_name)
        if not result.is_valid:
            raise ImageValidationError(result.error_message)

        file_id = f"{IMAGE_ID_PREFIX}{uuid.uuid4().hex}"
        mime_type = _detect_mime_type(data)

        with self.database.connection() as conn:
            conn.execute(
                """
                INSERT INTO images (id, file_name, mime_type, size, data, uploaded_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    file_id,
                    file_name,
                    mime_type,
                    len(data),
                    data,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )

        logger.info(f"Image uploaded: {file_id}, Size: {len(data)} bytes")
        return file_id

    def get(self, file_id: str) -> Optional[io.BytesIO]:
        """
        Get the bytes of an image.

        Returns:
            A BytesIO positioned at 0, or None if the image doesn't exist
        """
        _require_id(file_id)
        with self.database.connection() as conn:
            row = conn.execute(
                "SELECT data FROM images WHERE id = ?", (file_id,)
            ).fetchone()

        if row is None:
            logger.warning(f"Image not found: {file_id}")
            return None
        return io.BytesIO(row["data"])

    def delete(self, file_id: str) -> bool:
        """
        Delete an image.

        Returns:
            True if an image was deleted, False if not found
        """
        _require_id(file_id)
        with self.database.connection() as conn:
            cursor = conn.execute("DELETE FROM images WHERE id = ?", (file_id,))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Image deleted: {file_id}")
        else:
            logger.warning(f"Image not found for deletion: {file_id}")
        return deleted

    def metadata(self, file_id: str) -> Optional[ImageMetadata]:
        """Get the metadata of an image, or None if it doesn't exist."""
        _require_id(file_id)
        with self.database.connection() as conn:
            row = conn.execute(
                "SELECT id, file_name, size, mime_type, uploaded_at FROM images "
                "WHERE id = ?",
                (file_id,),
            ).fetchone()

        if row is None:
            return None
        return ImageMetadata(
            file_id=row["id"],
            file_name=row["file_name"],
            size=row["size"],
            mime_type=row["mime_type"],
            uploaded_at=datetime.fromisoformat(row["uploaded_at"]),
        )

    def validate(self, stream: BinaryIO, file_name: str) -> ImageValidationResult:
        """
        Check image data against the store's format and size rules.

        The stream position is restored afterwards when the stream is seekable.

        Args:
            stream: Readable binary stream with the image bytes
            file_name: File name whose extension is checked

        Returns:
            ImageValidationResult describing the outcome
        """
        if stream is None:
            return ImageValidationResult.fail("Image stream is null.")
        if not file_name or not file_name.strip():
            return ImageValidationResult.fail("File name is empty.")

        position = stream.tell() if stream.seekable() else None
        data = _read_all(stream)
        if position is not None:
            stream.seek(position)
        return self._validate_bytes(data, file_name)

    def count(self) -> int:
        """Get the total number of stored images."""
        with self.database.connection() as conn:
            result: int = conn.execute("SELECT COUNT(*) FROM images").fetchone()[0]
            return result

    def _validate_bytes(self, data: bytes, file_name: str) -> ImageValidationResult:
        extension = Path(file_name).suffix.lower()
        if extension not in ALLOWED_EXTENSIONS:
            return ImageValidationResult.fail(
                f"Invalid file format. Allowed formats: {', '.join(ALLOWED_EXTENSIONS)}"
            )

        if not data:
            return ImageValidationResult.fail("Image data is empty.")

        if len(data) > self.max_size:
            max_size_mb = self.max_size // (1024 * 1024)
            return ImageValidationResult.fail(
                f"Image size exceeds maximum allowed size of {max_size_mb}MB."
            )

        try:
            with Image.open(io.BytesIO(data)) as image:
                image_format = image.format
                # verify() checks integrity without decoding all pixels
                image.verify()
        except Exception as e:
            logger.debug(f"Image {file_name} failed verification: {e}")
            return ImageValidationResult.fail("Invalid or unsupported image data.")

        if image_format not in ALLOWED_FORMATS:
            return ImageValidationResult.fail(
                f"Unsupported image type {image_format}. "
                f"Allowed types: {', '.join(ALLOWED_FORMATS)}"
            )

        return ImageValidationResult.ok()


def _read_all(stream: BinaryIO) -> bytes:
    if stream.seekable():
        stream.seek(0)
    return stream.read()


def _detect_mime_type(data: bytes) -> str:
    with Image.open(io.BytesIO(data)) as image:
        return Image.MIME.get(image.format or "", "application/octet-stream")


def _require_id(file_id: str) -> None:
    if not file_id or not file_id.strip():
        raise ValueError("File ID cannot be empty")

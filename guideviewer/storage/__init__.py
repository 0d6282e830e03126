"""
guideviewer.storage - Document and image stores.

The guide database holds guides, categories, users and progress records;
the image store keeps step images addressed by opaque id.
"""

from guideviewer.storage.db import DuplicateKeyError, GuideDatabase, StorageError
from guideviewer.storage.images import (
    ImageError,
    ImageMetadata,
    ImageStore,
    ImageValidationError,
    ImageValidationResult,
)

__all__ = [
    "GuideDatabase",
    "StorageError",
    "DuplicateKeyError",
    "ImageStore",
    "ImageMetadata",
    "ImageValidationResult",
    "ImageError",
    "ImageValidationError",
]

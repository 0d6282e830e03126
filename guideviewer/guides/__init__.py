"""
guideviewer.guides - Guide aggregate and related record models.
"""

from guideviewer.guides.models import (
    DEFAULT_CATEGORY_COLOR,
    DEFAULT_CATEGORY_ICON,
    Category,
    Guide,
    Progress,
    Step,
    User,
)

__all__ = [
    "Guide",
    "Step",
    "Category",
    "User",
    "Progress",
    "DEFAULT_CATEGORY_ICON",
    "DEFAULT_CATEGORY_COLOR",
]

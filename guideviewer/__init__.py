"""
guideviewer - Guide data interchange for the GuideViewer reference-guide app.

Exports guides to versioned JSON documents or ZIP bundles, imports them back
with duplicate handling and image remapping, and snapshots the whole database
into validated backup archives.
"""

__version__ = "1.0.0"

__all__ = ["__version__"]

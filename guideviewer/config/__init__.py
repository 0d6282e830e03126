"""
guideviewer.config - Configuration management module

Contains configuration loading and validation.
"""

from guideviewer.config.loader import (
    DEFAULT_CONFIG_FILE,
    ConfigError,
    ConfigLoader,
)

__all__ = ["ConfigLoader", "ConfigError", "DEFAULT_CONFIG_FILE"]

"""
Configuration loader module for guideviewer.

The configuration file is optional YAML living in the configuration
directory (~/.guideviewer/config.yaml by default). Every key is optional;
anything not listed in VALID_KEYS is left alone so newer config files keep
working with older releases.

Example config.yaml:

    database_path: data.db
    backup_dir: backups
    backup_retention_count: 10
    duplicate_handling: rename
    include_images: true
    log_retention_count: 10
"""

import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from guideviewer.interchange.results import VALID_DUPLICATE_HANDLING
from guideviewer.utils.paths import resolve_config_dir

DEFAULT_CONFIG_FILE = "config.yaml"

# key -> expected Python type of its YAML value
VALID_KEYS: dict[str, type] = {
    "database_path": str,
    "max_image_size": int,
    "backup_dir": str,
    "backup_retention_count": int,
    "log_dir": str,
    "log_retention_count": int,
    "verbose": bool,
    "duplicate_handling": str,
    "include_images": bool,
}

# Lower bounds for integer keys; a retention count of 0 keeps everything
MINIMUM_VALUES = {
    "backup_retention_count": 0,
    "log_retention_count": 0,
    "max_image_size": 1,
}

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""


def _check_type(key: str, value: Any) -> None:
    expected = VALID_KEYS[key]
    # YAML true/false load as bool, which isinstance() accepts as int
    ok = isinstance(value, expected) and not (
        expected is int and isinstance(value, bool)
    )
    if not ok:
        raise ConfigError(
            f"Invalid type for '{key}': expected {expected.__name__}, "
            f"got {type(value).__name__}"
        )


def _check_minimum(key: str, value: int) -> None:
    minimum = MINIMUM_VALUES[key]
    if value < minimum:
        raise ConfigError(f"{key} must be >= {minimum}, got {value}")


class ConfigLoader:
    """
    Loads and validates the YAML configuration file.

    Usage:
        loader = ConfigLoader()
        config = loader.load_and_validate()

        loader = ConfigLoader(config_dir=Path("/srv/guides"))
        config = loader.load_from_file("/etc/guideviewer.yaml")
    """

    def __init__(
        self, config_dir: Optional[Path] = None, config_file: str = DEFAULT_CONFIG_FILE
    ):
        """
        Args:
            config_dir: Configuration directory; defaults to
                        $GUIDEVIEWER_CONFIG_DIR or ~/.guideviewer
            config_file: File name inside config_dir
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    def _get_config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """Load the configuration file from the configuration directory."""
        return self.load_from_file(self._get_config_path())

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load configuration from a specific file.

        A missing or empty file gives an empty dict, so the CLI runs on its
        defaults.

        Raises:
            ConfigError: If the file can't be read, isn't valid YAML, or
                         doesn't hold a mapping at the top level
        """
        path = Path(path)
        if not path.exists():
            logger.debug(f"No configuration file at {path}")
            return {}

        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file {path}: {e}") from e

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML in {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"{path} must contain a YAML dictionary, got {type(data).__name__}"
            )

        logger.debug(f"Loaded {len(data)} configuration keys from {path}")
        return data

    def validate(self, config: dict[str, Any]) -> None:
        """
        Check the known keys of a loaded configuration.

        Raises:
            ConfigError: On the first wrong type, unknown duplicate policy,
                         or out-of-range count
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        known = {key: value for key, value in config.items() if key in VALID_KEYS}
        for key, value in known.items():
            _check_type(key, value)
            if key in MINIMUM_VALUES:
                _check_minimum(key, value)

        policy = known.get("duplicate_handling")
        if policy is not None and policy not in VALID_DUPLICATE_HANDLING:
            raise ConfigError(
                f"Invalid duplicate_handling '{policy}', "
                f"expected one of: {', '.join(VALID_DUPLICATE_HANDLING)}"
            )

    def load_and_validate(self) -> dict[str, Any]:
        """Load the configuration file and validate it."""
        config = self.load()
        if config:
            self.validate(config)
        return config

"""
Logging configuration module for guideviewer.

All package loggers hang off the "guideviewer" logger. setup_logging()
installs two handlers on it:

    console   stderr, CONSOLE_FORMAT (VERBOSE_FORMAT with --verbose),
              ANSI colors when stderr is a color terminal
    file      <log dir>/guideviewer_YYYYMMDD.log, always at DEBUG

The level comes from the caller, else from GUIDEVIEWER_DEBUG /
GUIDEVIEWER_LOG_LEVEL. GUIDEVIEWER_LOG_FILE names an explicit log file, or
turns file logging off with "none".
"""

import contextlib
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from guideviewer.utils.paths import (
    DEFAULT_LOG_DIR_NAME,
    default_log_dir,
    resolve_path,
)

ROOT_LOGGER_NAME = "guideviewer"

CONSOLE_FORMAT = "%(levelname)s: %(message)s"
VERBOSE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_FILE_PREFIX = "guideviewer_"
LOG_FILE_SUFFIX = ".log"

# Number of daily log files kept when config doesn't say
DEFAULT_LOG_RETENTION = 10

ENV_LOG_LEVEL = "GUIDEVIEWER_LOG_LEVEL"
ENV_DEBUG = "GUIDEVIEWER_DEBUG"
ENV_LOG_FILE = "GUIDEVIEWER_LOG_FILE"

# Accepted GUIDEVIEWER_LOG_LEVEL values
LEVEL_NAMES = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_FILE_LOGGING_OFF = ("none", "disabled", "")

_configured_log_dir: Optional[Path] = None


class ColoredFormatter(logging.Formatter):
    """
    Formatter that wraps the level name and message in ANSI colors.

    Colors are dropped automatically when stderr is not a terminal, when
    NO_COLOR is set, or when TERM is "dumb".
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        use_colors: bool = True,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and self._supports_color()

    @staticmethod
    def _supports_color() -> bool:
        isatty = getattr(sys.stderr, "isatty", None)
        if isatty is None or not isatty():
            return False
        if os.environ.get("NO_COLOR"):  # https://no-color.org/
            return False
        return os.environ.get("TERM", "") != "dumb"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname) if self.use_colors else None
        if color is None:
            return super().format(record)

        # Other handlers format the same record; color a copy
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        colored.msg = f"{color}{record.msg}{self.RESET}"
        return super().format(colored)


def get_log_level_from_env() -> int:
    """
    Get the logging level from environment variables.

    GUIDEVIEWER_DEBUG (1/true/yes) wins over GUIDEVIEWER_LOG_LEVEL; unknown
    level names fall back to INFO.
    """
    if os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes"):
        return logging.DEBUG
    return LEVEL_NAMES.get(os.environ.get(ENV_LOG_LEVEL, "INFO").upper(), logging.INFO)


def log_file_name(day: Optional[datetime] = None) -> str:
    """Get the daily log file name, e.g. guideviewer_20240120.log."""
    return f"{LOG_FILE_PREFIX}{(day or datetime.now()):%Y%m%d}{LOG_FILE_SUFFIX}"


def get_log_file_path(log_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Get the path of today's log file.

    Args:
        log_dir: Directory for the daily log file; defaults to the logs
                 directory under the configuration directory

    Returns:
        GUIDEVIEWER_LOG_FILE when set, None when it switches file logging
        off, else the daily file in log_dir
    """
    override = os.environ.get(ENV_LOG_FILE)
    if override is not None:
        return None if override.lower() in _FILE_LOGGING_OFF else Path(override)
    return (log_dir or default_log_dir()) / log_file_name()


def _console_handler(level: int, verbose: bool, use_colors: bool) -> logging.Handler:
    fmt = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        ColoredFormatter(fmt, DATE_FORMAT)
        if use_colors
        else logging.Formatter(fmt, DATE_FORMAT)
    )
    return handler


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(VERBOSE_FORMAT, DATE_FORMAT))
    return handler


def setup_logging(
    level: Optional[int] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    log_file: Optional[Path] = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure the guideviewer package logger.

    Calling it again replaces the handlers from the previous call.

    Args:
        level: Console level; None reads the environment
        verbose: Force DEBUG and use the verbose console format
        log_dir: Directory for the daily log file
        log_file: Explicit log file; wins over log_dir
        enable_file_logging: False disables the file handler
        use_colors: Color console output where the terminal supports it

    Returns:
        The "guideviewer" logger

    Example:
        setup_logging(verbose=True, log_dir=Path("~/.guideviewer/logs"))
    """
    global _configured_log_dir

    if verbose:
        level = logging.DEBUG
    elif level is None:
        level = get_log_level_from_env()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False
    logger.addHandler(_console_handler(level, verbose, use_colors))

    file_path = (log_file or get_log_file_path(log_dir)) if enable_file_logging else None
    if file_path is not None:
        try:
            logger.addHandler(_file_handler(file_path))
            logger.debug(f"Log file: {file_path}")
        except OSError as e:
            logger.warning(f"Could not create log file {file_path}: {e}")

    _configured_log_dir = log_dir or (log_file.parent if log_file else None)
    return logger


def configure_from_config(
    config: dict[str, Any], config_dir: Path, verbose: bool = False
) -> logging.Logger:
    """
    Set up logging from a loaded configuration and prune old log files.

    Uses the log_dir (relative to config_dir), verbose and
    log_retention_count keys.
    """
    log_dir = resolve_path(config.get("log_dir"), config_dir, DEFAULT_LOG_DIR_NAME)
    logger = setup_logging(
        verbose=verbose or config.get("verbose", False), log_dir=log_dir
    )
    cleanup_old_logs(
        log_dir, keep_count=config.get("log_retention_count", DEFAULT_LOG_RETENTION)
    )
    return logger


def cleanup_old_logs(
    log_dir: Optional[Path] = None, keep_count: int = DEFAULT_LOG_RETENTION
) -> int:
    """
    Delete all but the newest keep_count daily log files.

    Args:
        log_dir: Directory to prune; defaults to the one from the last
                 setup_logging() call, then the default log directory
        keep_count: Files to keep; 0 disables cleanup

    Returns:
        Number of files deleted
    """
    if keep_count <= 0:
        return 0

    logs_dir = log_dir or _configured_log_dir or default_log_dir()
    if not logs_dir.is_dir():
        return 0

    logs = sorted(
        logs_dir.glob(f"{LOG_FILE_PREFIX}*{LOG_FILE_SUFFIX}"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )

    deleted = 0
    for old_log in logs[keep_count:]:
        with contextlib.suppress(OSError):
            old_log.unlink()
            deleted += 1
    return deleted


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the guideviewer hierarchy.

    Example:
        logger = get_logger(__name__)
    """
    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def set_log_level(level: int) -> None:
    """Change the console level at runtime; the file handler stays at DEBUG."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    for handler in logger.handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(level)


def disable_logging() -> None:
    """Silence all guideviewer logging."""
    logging.getLogger(ROOT_LOGGER_NAME).disabled = True


def enable_logging() -> None:
    """Undo disable_logging()."""
    logging.getLogger(ROOT_LOGGER_NAME).disabled = False


__all__ = [
    "setup_logging",
    "configure_from_config",
    "get_logger",
    "set_log_level",
    "disable_logging",
    "enable_logging",
    "cleanup_old_logs",
    "ColoredFormatter",
    "get_log_level_from_env",
    "get_log_file_path",
    "log_file_name",
    "CONSOLE_FORMAT",
    "VERBOSE_FORMAT",
    "DATE_FORMAT",
]

"""
Logging and error handling utilities for the repository walker.

Provides:
- Structured logging with rotation
- Custom exception classes
- Performance timing context managers
"""

from __future__ import annotations

import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from loguru import logger


# =============================================================================
# Logging Setup
# =============================================================================

# Custom format for pretty console output
CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{module}</magenta>:<cyan>{function}</cyan> | "
    "<level>{message}</level>"
)

# Detailed format for file logs
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
    "{level: <8} | "
    "{name}:{function}:{line} | "
    "{message}"
)

# Simple format for verbose mode
VERBOSE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<level>{message}</level>"
)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = "./logs/repowalk.log",
    max_size_mb: int = 10,
    backup_count: int = 3,
    log_format: Optional[str] = None,
    verbose: bool = False,
) -> None:
    """
    Configure logging for the repository walker.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Path to log file. None disables the file sink.
        max_size_mb: Maximum log file size before rotation.
        backup_count: Number of backup log files to keep.
        log_format: Custom log format string.
        verbose: If True, use simplified verbose format.
    """
    logger.remove()

    if log_format is None:
        log_format = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT

    logger.add(
        sys.stderr,
        format=log_format,
        level=level,
        colorize=True,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            str(log_path),
            format=FILE_FORMAT,
            level="DEBUG",  # Always log everything to file
            rotation=f"{max_size_mb} MB",
            retention=backup_count,
            compression="zip",
            enqueue=True,  # Thread-safe
        )

    logger.info(f"Logging configured: level={level}, file={log_file}")


def setup_detailed_logging(
    level: str = "DEBUG",
    log_file: Optional[str] = "./logs/repowalk.log",
    show_module: bool = True,
    show_colors: bool = True,
) -> None:
    """
    Configure detailed logging with module names and enhanced formatting.

    Args:
        level: Logging level.
        log_file: Path to log file. None disables the file sink.
        show_module: If True, show module:function in logs.
        show_colors: If True, enable colored output.
    """
    logger.remove()

    if show_module:
        console_fmt = (
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<blue>{module}</blue>:<cyan>{function}</cyan> | "
            "<level>{message}</level>"
        )
    else:
        console_fmt = VERBOSE_FORMAT

    logger.add(
        sys.stderr,
        format=console_fmt,
        level=level,
        colorize=show_colors,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            str(log_path),
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="10 MB",
            retention=3,
            compression="zip",
            enqueue=True,
        )

    logger.info("Detailed logging initialized")


# =============================================================================
# Custom Exceptions
# =============================================================================

class RepoWalkError(Exception):
    """Base exception for repository walking errors."""
    pass


class ConfigurationError(RepoWalkError):
    """A required user, repository or branch is missing after defaulting."""
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(RepoWalkError):
    """Repository, ref or branch does not exist on the remote."""
    def __init__(
        self,
        message: str,
        ref: Optional[str] = None,
        branch: Optional[str] = None,
    ):
        super().__init__(message)
        self.ref = ref
        self.branch = branch


class TransportError(RepoWalkError):
    """Network failure talking to the remote."""
    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class ApiError(RepoWalkError):
    """The API answered with an error document instead of the expected shape."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UnknownEntryTypeError(RepoWalkError):
    """Tree snapshot carried an entry type other than blob or tree."""
    def __init__(self, entry_type: str, path: str):
        super().__init__(f"Unknown git-type received: {entry_type} ({path})")
        self.entry_type = entry_type
        self.path = path


class LocalIOError(RepoWalkError):
    """Creating a directory or writing a file failed during a hook."""
    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


# =============================================================================
# Performance Timing
# =============================================================================

@contextmanager
def timed_operation(operation_name: str, log_level: str = "info"):
    """
    Context manager for timing operations.

    Args:
        operation_name: Name of the operation for logging.
        log_level: Log level for the timing message.

    Example:
        with timed_operation("Fetching tree"):
            client.fetch_tree_snapshot(ref, branch)
    """
    start_time = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start_time

        log_func = getattr(logger, log_level)
        log_func(f"{operation_name} completed in {elapsed:.3f}s")

"""Logging configuration for sysgit.

Provides configurable logging with:
- Console output on stderr (WARNING by default, so hooks and pipes stay quiet)
- Optional file-based logging with rotation
- Performance timing decorator for driver and git invocations

Settings (see sysgit.config.settings):
    log_level: DEBUG, INFO, WARNING, ERROR (env SYSGIT_LOG_LEVEL)
    log_file: Path to log file, disabled when unset (env SYSGIT_LOG_FILE)

Usage:
    from sysgit.utils.logging_config import setup_logging, timed

    setup_logging(parse_log_level(settings.log_level), settings.log_file)

    @timed("driver")
    def run(self, context):
        ...
"""
import functools
import logging
import sys
import time
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Callable, Any

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("sysgit.perf")

MAIN_FORMAT = "%(asctime)s.%(msecs)03d | %(name)-25s | %(levelname)-7s | %(message)s"
CONSOLE_FORMAT = "sysgit: %(levelname)s: %(message)s"


def parse_log_level(level_str: Optional[str], default: int = logging.WARNING) -> int:
    """Translate a level name into a logging level."""
    if not level_str:
        return default
    return getattr(logging, level_str.upper(), default)


def setup_logging(
    level: int = logging.WARNING,
    log_file: Optional[Path] = None,
    max_size_mb: int = 10,
    backup_count: int = 5,
) -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler on stderr at the requested level
    - File handler with rotation (DEBUG level - captures everything) when
      a log file is configured
    - Performance logger for timing metrics (file only)
    """
    root_logger = logging.getLogger("sysgit")
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()
    perf_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root_logger.addHandler(console_handler)

    # sysgit.perf propagates to sysgit; keep timings off the console unless debugging
    perf_logger.setLevel(logging.DEBUG)

    if log_file is None:
        return

    log_file = Path(log_file)
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8"
        )
    except OSError as e:
        root_logger.warning(f"Cannot open log file {log_file}: {e}")
        return

    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(MAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    )
    root_logger.addHandler(file_handler)

    root_logger.debug(
        f"Logging initialized: level={logging.getLevelName(level)}, file={log_file}"
    )


def _log_timing(operation: str, subject: Optional[str], start: float, outcome: str, extra: str = "") -> None:
    elapsed = (time.perf_counter() - start) * 1000
    msg = f"{operation:20s} | {subject or 'N/A':30s} | {elapsed:8.2f}ms | {outcome}"
    if extra:
        msg += f" | {extra}"
    perf_logger.debug(msg)


def timed(operation: str, subject_attr: Optional[str] = None):
    """Decorator to log execution time of a function on the perf logger.

    Args:
        operation: Name of the operation (e.g., "driver", "update-ref")
        subject_attr: Attribute of the first positional argument after self
            used as the subject column (e.g. "branch" of a DriverContext)

    Usage:
        @timed("driver", subject_attr="branch")
        def run(self, context):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            subject = None
            if subject_attr and len(args) > 1:
                subject = getattr(args[1], subject_attr, None)

            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _log_timing(operation, subject, start, f"FAIL: {e}")
                raise
            _log_timing(operation, subject, start, "OK")
            return result

        return wrapper

    return decorator


@contextmanager
def timed_section(operation: str, subject: Optional[str] = None, **extra):
    """Time a block of code, e.g. a whole commit batch.

    Usage:
        with timed_section("commit-batch", branches=3):
            ...
    """
    extra_str = " | ".join(f"{k}={v}" for k, v in extra.items())
    start = time.perf_counter()
    try:
        yield
    except Exception as e:
        _log_timing(operation, subject, start, f"FAIL: {e}", extra_str)
        raise
    _log_timing(operation, subject, start, "OK", extra_str)

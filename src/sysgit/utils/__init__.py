"""Utility modules for logging, auditing and retries."""
from .audit_log import ChangeRecord, log_change, read_changes, setup_audit_logging
from .logging_config import (
    parse_log_level,
    setup_logging,
    timed,
    timed_section,
    perf_logger,
)
from .retry import with_retry

__all__ = [
    "ChangeRecord",
    "log_change",
    "read_changes",
    "setup_audit_logging",
    "parse_log_level",
    "setup_logging",
    "timed",
    "timed_section",
    "perf_logger",
    "with_retry",
]

"""Audit trail of state branch changes.

Every branch commit and reset handled by the orchestrator produces one
ChangeRecord, written as a JSON line on the "sysgit.audit" logger. Records
only reach a file once setup_audit_logging() was given a log directory
(settings ``log.dir`` / SYSGIT_LOG_DIR); otherwise they are dropped.
"""
import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterator, Optional

AUDIT_FILE_NAME = "audit.log"
MAX_MESSAGE_LENGTH = 1000

audit_logger = logging.getLogger("sysgit.audit")
audit_logger.addHandler(logging.NullHandler())


def setup_audit_logging(log_dir: Path, max_size_mb: int = 10, backup_count: int = 10) -> Path:
    """Send audit records to ``<log_dir>/audit.log``, rotated by size.

    Returns:
        Path of the audit log file
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    audit_file = log_dir / AUDIT_FILE_NAME

    handler = RotatingFileHandler(
        audit_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    for old in list(audit_logger.handlers):
        audit_logger.removeHandler(old)
        old.close()
    audit_logger.addHandler(handler)
    audit_logger.setLevel(logging.INFO)
    # Records are JSON lines; keep them off the console
    audit_logger.propagate = False
    return audit_file


@dataclass
class ChangeRecord:
    """One commit or reset of one branch."""
    timestamp: str
    branch: str
    operation: str  # commit, reset
    success: bool
    driver: str = ""
    old_commit: Optional[str] = None
    new_commit: Optional[str] = None
    mode: Optional[str] = None
    message: str = ""
    error: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, line: str) -> "ChangeRecord":
        return cls(**json.loads(line))


def log_change(
    branch: str,
    operation: str,
    success: bool,
    driver: str = "",
    old_commit: Optional[str] = None,
    new_commit: Optional[str] = None,
    mode: Optional[str] = None,
    message: str = "",
    error: Optional[str] = None,
) -> ChangeRecord:
    """Append a change of ``branch`` to the audit trail.

    Args:
        branch: Full branch name
        operation: "commit" or "reset"
        success: Whether the branch reached its new commit
        driver: Driver that handled the branch
        old_commit: Branch tip before the change
        new_commit: Commit the branch was moved (or meant to move) to
        mode: Reset mode, for resets
        message: Commit message, truncated
        error: Failure description

    Returns:
        The ChangeRecord that was logged
    """
    record = ChangeRecord(
        timestamp=datetime.now(timezone.utc).isoformat(),
        branch=branch,
        operation=operation,
        success=success,
        driver=driver,
        old_commit=old_commit,
        new_commit=new_commit,
        mode=mode,
        message=(message or "")[:MAX_MESSAGE_LENGTH],
        error=error,
    )
    audit_logger.info(record.to_json())
    return record


def iter_changes(log_file: Path) -> Iterator[ChangeRecord]:
    """Yield the records of an audit log, oldest first, skipping bad lines."""
    with open(log_file, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                yield ChangeRecord.from_json(line)
            except (json.JSONDecodeError, TypeError):
                continue


def read_changes(log_file: Path, branch: Optional[str] = None) -> list[ChangeRecord]:
    """Records of an audit log, optionally only those of ``branch``."""
    if not Path(log_file).exists():
        return []
    return [r for r in iter_changes(log_file) if branch is None or r.branch == branch]

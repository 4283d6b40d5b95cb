"""Driver protocol and invocation."""
from .base import (
    Action,
    Report,
    ResetMode,
    StatusCode,
    STATUS_SIGNS,
    VIOLATION_SIGN,
    DriverContext,
    DriverResult,
    status_code,
)
from .runner import DriverRunner

__all__ = [
    "Action",
    "Report",
    "ResetMode",
    "StatusCode",
    "STATUS_SIGNS",
    "VIOLATION_SIGN",
    "DriverContext",
    "DriverResult",
    "status_code",
    "DriverRunner",
]

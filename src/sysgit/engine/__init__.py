"""Orchestration engine - pattern expansion and branch operations.

Usage:
    from sysgit.engine import Orchestrator

    orchestrator = Orchestrator.from_settings(settings)
    report = orchestrator.status(["etc/**"])
"""

from .orchestrator import Orchestrator
from .resolver import BranchResolver
from .schema import (
    EXIT_OK,
    EXIT_FAILURE,
    EXIT_SOFT,
    BranchStatus,
    StatusReport,
    CommitReport,
    ResetReport,
)

__all__ = [
    "Orchestrator",
    "BranchResolver",
    "EXIT_OK",
    "EXIT_FAILURE",
    "EXIT_SOFT",
    "BranchStatus",
    "StatusReport",
    "CommitReport",
    "ResetReport",
]

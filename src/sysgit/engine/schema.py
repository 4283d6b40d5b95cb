"""Result records returned by the orchestrator."""
from dataclasses import dataclass, field
from typing import Optional

from ..drivers.base import VIOLATION_SIGN, status_code

# Exit codes shared by every command
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_SOFT = 2


@dataclass
class BranchStatus:
    """Status of one branch as reported by its driver."""
    branch: str
    exit_code: int
    commit: str
    output: str = ""
    error: Optional[str] = None

    @property
    def violation(self) -> bool:
        """True when the driver exit code is outside the status enumeration."""
        return self.error is None and status_code(self.exit_code) is None

    @property
    def failed(self) -> bool:
        return self.error is not None or self.violation

    @property
    def sign(self) -> str:
        code = status_code(self.exit_code)
        if self.error is not None or code is None:
            return VIOLATION_SIGN
        return code.sign


@dataclass
class StatusReport:
    """Aggregated status over several branches."""
    branches: list[BranchStatus] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    exit_code: int = EXIT_OK

    def add(self, entry: BranchStatus) -> None:
        """
        Fold one branch into the aggregate exit code.

        The first non-clean code wins; any different non-clean code, contract
        violation or failure afterwards collapses it to the generic 1.
        """
        self.branches.append(entry)
        if entry.failed:
            self.exit_code = EXIT_FAILURE
        elif entry.exit_code == 0:
            return
        elif self.exit_code == EXIT_OK:
            self.exit_code = entry.exit_code
        elif self.exit_code != entry.exit_code:
            self.exit_code = EXIT_FAILURE

    @property
    def failed(self) -> list[str]:
        return [entry.branch for entry in self.branches if entry.failed]


@dataclass
class CommitReport:
    """Outcome of a multi-branch commit."""
    txid: str
    committed: dict[str, str] = field(default_factory=dict)
    unchanged: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    exit_code: int = EXIT_OK


@dataclass
class ResetReport:
    """Outcome of a multi-branch reset."""
    mode: str
    target: Optional[str] = None
    updated: dict[str, str] = field(default_factory=dict)
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    exit_code: int = EXIT_OK

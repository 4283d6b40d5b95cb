"""Driver protocol types.

A driver is an external executable invoked without arguments. Everything it
needs comes from its environment, built from a DriverContext; results come
back as stdout (data) and exit code (status).

Actions and exit codes:
    list     0 names on stdout, one per line; 2 flat driver (no nesting)
    status   0 clean, 1 dirty, 5 modified, 6 added, 7 deleted
    commit   0 new commit hash on stdout; 2 nothing to commit
    reset    0 live state now matches RESET_COMMIT
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

from ..config.tree import Binding
from ..patterns import env_key
from ..store.refs import NULL_HASH

logger = logging.getLogger(__name__)

CONF_ENV_PREFIX = "STATE_CONF_"

# list and commit both use 2 as their "nothing to report" signal
EXIT_FLAT = 2
EXIT_NOTHING_TO_COMMIT = 2

# Names set per invocation from the context; ambient copies never reach a driver
RESERVED_ENV_PREFIXES = ("STATE_", "COMMIT_", "RESET_")
RESERVED_ENV_NAMES = ("GIT_DIR",)


def is_reserved_env(name: str) -> bool:
    return name.startswith(RESERVED_ENV_PREFIXES) or name in RESERVED_ENV_NAMES


def strip_reserved_env(environ: Mapping[str, str]) -> dict[str, str]:
    """Copy of ``environ`` without any protocol variable."""
    return {k: v for k, v in environ.items() if not is_reserved_env(k)}


class Action(str, Enum):
    """Driver action selected through STATE_DRIVER_ACTION."""
    LIST = "list"
    STATUS = "status"
    COMMIT = "commit"
    RESET = "reset"


class Report(str, Enum):
    """Verbosity requested from the status action."""
    QUIET = "quiet"
    BRANCHES = "branches"
    LIST = "list"
    DIFF = "diff"


class ResetMode(str, Enum):
    """How a reset reconciles live state with the target commit."""
    SOFT = "soft"    # Move the ref only, never touch live state
    HARD = "hard"    # Overwrite live state, discarding local changes
    KEEP = "keep"    # Fail unless live state matches the recorded commit
    MERGE = "merge"  # Reconcile local changes, driver-specific rules


class StatusCode(int, Enum):
    """Closed set of status action exit codes."""
    CLEAN = 0
    DIRTY = 1
    MODIFIED = 5
    ADDED = 6
    DELETED = 7

    @property
    def sign(self) -> str:
        return STATUS_SIGNS[self]


STATUS_SIGNS = {
    StatusCode.CLEAN: " ",
    StatusCode.DIRTY: "!",
    StatusCode.MODIFIED: "M",
    StatusCode.ADDED: "A",
    StatusCode.DELETED: "D",
}

# Shown for exit codes outside the enumeration
VIOLATION_SIGN = "?"


def status_code(exit_code: int) -> Optional[StatusCode]:
    """Map a status exit code; None means the driver broke the contract."""
    try:
        return StatusCode(exit_code)
    except ValueError:
        return None


def bool_env(value: bool) -> str:
    return "true" if value else "false"


@dataclass(frozen=True)
class DriverContext:
    """
    Everything one driver invocation needs.

    The context is a value: building a new one for each branch keeps
    invocations isolated from each other.
    """
    action: Action
    driver: str
    branch: str
    root: str
    sub_branch: str
    commit: str = NULL_HASH
    options: dict[str, str] = field(default_factory=dict)
    git_dir: str = ""
    report: Report = Report.BRANCHES
    message: str = ""
    author: str = ""
    allow_empty: bool = False
    reset_mode: Optional[ResetMode] = None
    reset_commit: Optional[str] = None

    @classmethod
    def for_binding(cls, binding: Binding, action: Action, git_dir: str = "", **kwargs) -> "DriverContext":
        """Build the context of ``action`` on a resolved binding."""
        return cls(
            action=action,
            driver=binding.driver,
            branch=binding.branch,
            root=binding.root,
            sub_branch=binding.sub_branch,
            commit=kwargs.pop("commit", binding.commit),
            options=binding.driver_options,
            git_dir=git_dir,
            **kwargs,
        )

    def to_env(self) -> dict[str, str]:
        """Serialize into driver environment variables."""
        env = {
            "STATE_DRIVER_ACTION": self.action.value,
            "STATE_DRIVER": self.driver,
            "STATE_STATUS_REPORT": self.report.value,
            "STATE_COMMIT": self.commit,
            "STATE_BRANCH": self.sub_branch,
            "STATE_BRANCH_UC": env_key(self.sub_branch),
            "STATE_ROOT_BRANCH": self.root,
            "STATE_FULL_BRANCH": self.branch,
        }
        if self.git_dir:
            env["GIT_DIR"] = self.git_dir

        if self.action == Action.COMMIT:
            env["COMMIT_MESSAGE"] = self.message
            env["COMMIT_AUTHOR"] = self.author
            env["COMMIT_ALLOW_EMPTY"] = bool_env(self.allow_empty)

        if self.action == Action.RESET:
            env["RESET_MODE"] = self.reset_mode.value if self.reset_mode else ""
            env["RESET_COMMIT"] = self.reset_commit or self.commit

        for key, value in self.options.items():
            env[CONF_ENV_PREFIX + env_key(key)] = value

        return env


@dataclass
class DriverResult:
    """Outcome of one driver invocation."""
    exit_code: int
    stdout: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def lines(self) -> list[str]:
        return [line for line in self.stdout.splitlines() if line.strip()]

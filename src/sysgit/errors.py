"""Error taxonomy for sysgit.

Every fatal condition raised by the core derives from SysgitError and carries
the process exit code the CLI should use. Disabled branches are not errors;
they are reported through sysgit.config.tree.Disabled.
"""
from typing import Optional


class SysgitError(Exception):
    """Base class for errors reported to the user."""
    exit_code = 1


class UsageError(SysgitError):
    """Bad pattern syntax, missing argument or conflicting flags."""
    pass


class RefResolutionError(UsageError):
    """A commit reference does not resolve in the backing store."""
    pass


class ConfigError(SysgitError):
    """Branch not configured, or a config file is unreadable."""
    pass


class DriverError(SysgitError):
    """Base class for driver invocation problems."""

    def __init__(self, message: str, branch: str = "", exit_code: Optional[int] = None):
        super().__init__(message)
        self.branch = branch
        self.driver_exit = exit_code


class DriverFailure(DriverError):
    """A driver exited with an unexpected status."""
    pass


class DriverContractViolation(DriverError):
    """A driver broke the action protocol (e.g. commit success without a hash)."""
    pass

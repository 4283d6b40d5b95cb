"""Driver lookup and invocation."""
import logging
import os
import subprocess
from pathlib import Path
from typing import Mapping, Optional

from ..errors import ConfigError, DriverFailure
from ..utils.logging_config import timed
from .base import DriverContext, DriverResult, strip_reserved_env

logger = logging.getLogger(__name__)


class DriverRunner:
    """
    Run driver executables.

    The child environment is ``base_env`` plus the serialized context; the
    runner never consults the ambient process environment. Protocol
    variables (STATE_*, COMMIT_*, RESET_*, GIT_DIR) are dropped from
    ``base_env`` so only the current context defines them.
    """

    def __init__(
        self,
        search_path: list[Path],
        base_env: Optional[Mapping[str, str]] = None,
    ):
        """
        Args:
            search_path: Directories searched, in order, for driver executables
            base_env: Environment every driver inherits (PATH, HOME, ...)
        """
        self.search_path = [Path(p) for p in search_path]
        self.base_env = strip_reserved_env(base_env or {})

    def locate(self, driver: str) -> Path:
        """
        Find the executable implementing ``driver``.

        A name containing "/" is taken as a path.

        Raises:
            ConfigError: If no executable is found
        """
        if "/" in driver:
            candidates = [Path(driver)]
        else:
            candidates = [directory / driver for directory in self.search_path]

        for candidate in candidates:
            if candidate.is_file() and os.access(candidate, os.X_OK):
                return candidate

        searched = ", ".join(str(c.parent) for c in candidates)
        raise ConfigError(f"driver not found: {driver} (searched {searched})")

    @timed("driver", subject_attr="branch")
    def run(self, context: DriverContext) -> DriverResult:
        """
        Invoke the driver for ``context`` and wait for it.

        stdout is captured, stderr goes straight to the user.
        """
        executable = self.locate(context.driver)
        env = {**self.base_env, **context.to_env()}
        logger.debug(
            f"Running driver {context.driver} action={context.action.value} "
            f"branch={context.branch}"
        )

        try:
            result = subprocess.run(
                [str(executable)],
                env=env,
                stdout=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                check=False,
            )
        except OSError as e:
            raise DriverFailure(
                f"cannot execute driver {executable}: {e}", branch=context.branch
            ) from e

        logger.debug(f"Driver {context.driver} exited with {result.returncode}")
        return DriverResult(exit_code=result.returncode, stdout=result.stdout)

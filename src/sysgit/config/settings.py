"""Global sysgit settings.

Precedence, lowest first: built-in defaults, the YAML settings file,
SYSGIT_* environment variables, command-line flags.

Environment variables:
    SYSGIT_SETTINGS      Settings file (default: /etc/sysgit/sysgit.yaml)
    SYSGIT_REPO          Bare repository backing the state branches
    SYSGIT_CONFIG_DIR    Directory holding per-branch *.config files
    SYSGIT_DRIVER_PATH   Colon separated extra driver directories
    SYSGIT_LOG_LEVEL     DEBUG, INFO, WARNING, ERROR (default: WARNING)
    SYSGIT_LOG_FILE      Rotating debug log file (default: none)
    SYSGIT_LOG_DIR       Directory for audit.log (default: none)

Example settings file:

```yaml
repo: /var/lib/sysgit/repo.git
config_dir: /etc/sysgit
driver_path:
  - /usr/lib/sysgit/drivers
log:
  level: INFO
  file: /var/log/sysgit/sysgit.log
  dir: /var/log/sysgit
```
"""
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional

import yaml

from ..errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = Path("/etc/sysgit/sysgit.yaml")
DEFAULT_REPO_PATH = Path("/var/lib/sysgit/repo.git")
DEFAULT_CONFIG_DIR = Path("/etc/sysgit")
DEFAULT_DRIVER_PATH = [Path("/usr/lib/sysgit/drivers")]

# Real state branches; staged commit tips live in their own namespace
REF_PREFIX = "refs/heads/"
STAGING_PREFIX = "refs/sysgit/staging/"


@dataclass
class Settings:
    """Runtime settings shared by every sysgit command."""
    repo_path: Path = DEFAULT_REPO_PATH
    config_dir: Path = DEFAULT_CONFIG_DIR
    driver_path: list[Path] = field(default_factory=lambda: list(DEFAULT_DRIVER_PATH))
    ref_prefix: str = REF_PREFIX
    staging_prefix: str = STAGING_PREFIX
    log_level: str = "WARNING"
    log_file: Optional[Path] = None
    log_dir: Optional[Path] = None
    # Environment handed to drivers and git; captured once at startup
    base_env: dict[str, str] = field(default_factory=dict)

    @property
    def drivers_dir(self) -> Path:
        """Driver directory shipped alongside the branch configuration."""
        return self.config_dir / "drivers"

    @property
    def driver_search_path(self) -> list[Path]:
        return [self.drivers_dir, *self.driver_path]

    @classmethod
    def from_file(cls, path: Path, base: Optional["Settings"] = None) -> "Settings":
        """Overlay a YAML settings file on top of ``base``."""
        settings = base or cls()
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigError(f"Cannot read settings file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid settings file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Settings file {path} must contain a mapping")

        log = data.get("log", {}) or {}
        changes = {}
        if "repo" in data:
            changes["repo_path"] = Path(data["repo"])
        if "config_dir" in data:
            changes["config_dir"] = Path(data["config_dir"])
        if "driver_path" in data:
            entries = data["driver_path"]
            if isinstance(entries, str):
                entries = entries.split(":")
            changes["driver_path"] = [Path(p) for p in entries if p]
        if "level" in log:
            changes["log_level"] = str(log["level"])
        if log.get("file"):
            changes["log_file"] = Path(log["file"])
        if log.get("dir"):
            changes["log_dir"] = Path(log["dir"])

        logger.debug(f"Loaded settings from {path}")
        return replace(settings, **changes)

    @classmethod
    def from_env(cls, environ: Mapping[str, str], base: Optional["Settings"] = None) -> "Settings":
        """Overlay SYSGIT_* variables from ``environ`` on top of ``base``."""
        settings = base or cls()
        changes = {}
        if environ.get("SYSGIT_REPO"):
            changes["repo_path"] = Path(environ["SYSGIT_REPO"])
        if environ.get("SYSGIT_CONFIG_DIR"):
            changes["config_dir"] = Path(environ["SYSGIT_CONFIG_DIR"])
        if environ.get("SYSGIT_DRIVER_PATH"):
            changes["driver_path"] = [
                Path(p) for p in environ["SYSGIT_DRIVER_PATH"].split(":") if p
            ]
        if environ.get("SYSGIT_LOG_LEVEL"):
            changes["log_level"] = environ["SYSGIT_LOG_LEVEL"]
        if environ.get("SYSGIT_LOG_FILE"):
            changes["log_file"] = Path(environ["SYSGIT_LOG_FILE"])
        if environ.get("SYSGIT_LOG_DIR"):
            changes["log_dir"] = Path(environ["SYSGIT_LOG_DIR"])
        return replace(settings, **changes)

    @classmethod
    def load(
        cls,
        environ: Mapping[str, str],
        path: Optional[Path] = None,
    ) -> "Settings":
        """Build settings from defaults, settings file and environment.

        Args:
            environ: Process environment, captured once by the caller
            path: Explicit settings file; a missing explicit file is an error,
                a missing default file is not
        """
        settings = cls(base_env=dict(environ))

        if path is None and environ.get("SYSGIT_SETTINGS"):
            path = Path(environ["SYSGIT_SETTINGS"])
        if path is not None:
            settings = cls.from_file(path, settings)
        elif DEFAULT_SETTINGS_FILE.exists():
            settings = cls.from_file(DEFAULT_SETTINGS_FILE, settings)

        return cls.from_env(environ, settings)

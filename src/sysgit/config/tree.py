"""Hierarchical branch configuration.

Each branch path prefix may own one file under the configuration directory:
prefix ``etc/nginx`` is configured by ``<config_dir>/etc/nginx.config``.

```ini
driver = sysconf
root = /etc/nginx

[tracking]
exclude = *.pem
```

Lines before any section header belong to the implicit ``state`` section.
Keys of the ``state`` section keep their plain name (``driver``), keys of
other sections are named ``section.key`` (``tracking.exclude``).

Resolving a branch walks its prefixes root to leaf. Every existing file is a
layer; later layers override earlier ones. The last file defining ``driver``
is the driver root; the remaining segments form the sub-branch handed to the
driver.
"""
import configparser
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from ..errors import ConfigError
from ..patterns import split_branch
from ..store.refs import NULL_HASH, RefStore

logger = logging.getLogger(__name__)

CONFIG_SUFFIX = ".config"
STATE_SECTION = "state"
RESERVED_KEYS = ("driver", "enabled")

TRUE_VALUES = ("true", "yes", "on", "1")
FALSE_VALUES = ("false", "no", "off", "0")


@dataclass(frozen=True)
class ConfigLayer:
    """Key/value pairs read from one config file."""
    prefix: str
    source: Path
    values: dict[str, str]

    @property
    def defines_driver(self) -> bool:
        return bool(self.values.get("driver"))


@dataclass(frozen=True)
class Binding:
    """A branch resolved to the driver responsible for it."""
    branch: str
    root: str
    sub_branch: str
    driver: str
    config: dict[str, str] = field(default_factory=dict)
    commit: str = NULL_HASH

    @property
    def driver_options(self) -> dict[str, str]:
        """Driver-specific keys (everything except the reserved ones)."""
        return {k: v for k, v in self.config.items() if k not in RESERVED_KEYS}


@dataclass(frozen=True)
class Disabled:
    """The branch is configured with ``enabled = false``; skip it."""
    branch: str


@dataclass(frozen=True)
class NotConfigured:
    """No driver is bound anywhere along the branch path."""
    branch: str


LoadResult = Union[Binding, Disabled, NotConfigured]


def parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def merge_layers(layers: list[ConfigLayer]) -> dict[str, str]:
    """Merge layers root to leaf; later layers win."""
    merged: dict[str, str] = {}
    for layer in layers:
        merged.update(layer.values)
    return merged


def read_config_file(path: Path) -> dict[str, str]:
    """
    Parse one branch config file.

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    parser = configparser.ConfigParser(
        interpolation=None,
        strict=False,
        default_section="__defaults__",
        inline_comment_prefixes=("#", ";"),
    )
    parser.optionxform = str  # keep key case
    try:
        text = path.read_text()
        parser.read_string(f"[{STATE_SECTION}]\n{text}", source=str(path))
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    except configparser.Error as e:
        raise ConfigError(f"invalid config file {path}: {e}") from e

    values: dict[str, str] = {}
    for section in parser.sections():
        for key, value in parser.items(section):
            name = key if section == STATE_SECTION else f"{section}.{key}"
            values[name] = value
    return values


class ConfigTree:
    """
    Branch configuration rooted at a directory.

    Bindings are rebuilt on every call; nothing is cached.
    """

    def __init__(self, config_dir: Path, store: Optional[RefStore] = None):
        """
        Args:
            config_dir: Directory holding the ``*.config`` files
            store: Ref store used to look up each binding's current commit
        """
        self.config_dir = Path(config_dir)
        self.store = store

    def config_path(self, prefix: str) -> Path:
        return self.config_dir / f"{prefix}{CONFIG_SUFFIX}"

    def has_config(self, prefix: str) -> bool:
        path = self.config_path(prefix)
        return path.is_file()

    def resolve_driver_root(self, path: str) -> Optional[str]:
        """
        Longest prefix of ``path`` owning a config file.

        Returns:
            That prefix (always an ancestor-or-equal of ``path``), or None
        """
        segments = split_branch(path.rstrip("/"))
        for end in range(len(segments), 0, -1):
            prefix = "/".join(segments[:end])
            if self.has_config(prefix):
                return prefix
        return None

    def resolve_binding_root(self, path: str) -> Optional[str]:
        """
        Longest prefix of ``path`` whose config file binds a driver.

        Option-only files along the way are passed over. Unreadable files are
        skipped with a warning, like in driver_domains().
        """
        segments = split_branch(path.rstrip("/"))
        for end in range(len(segments), 0, -1):
            prefix = "/".join(segments[:end])
            if not self.has_config(prefix):
                continue
            try:
                values = read_config_file(self.config_path(prefix))
            except ConfigError as e:
                logger.warning(f"Skipping {prefix}: {e}")
                continue
            if values.get("driver"):
                return prefix
        return None

    def layers(self, branch: str) -> list[ConfigLayer]:
        """Config files along ``branch``, root to leaf."""
        segments = split_branch(branch)
        found = []
        for end in range(1, len(segments) + 1):
            prefix = "/".join(segments[:end])
            path = self.config_path(prefix)
            if path.is_file():
                found.append(ConfigLayer(prefix, path, read_config_file(path)))
        return found

    def load(self, branch: str) -> LoadResult:
        """
        Resolve the driver binding of ``branch``.

        Returns:
            Binding, or Disabled when ``enabled`` is false, or NotConfigured
            when no driver is bound along the path

        Raises:
            ConfigError: If a config file is unreadable or ``enabled`` is not
                a boolean
        """
        segments = split_branch(branch)
        layers = self.layers(branch)
        config = merge_layers(layers)

        root: Optional[str] = None
        owners = {layer.prefix: layer for layer in layers if layer.defines_driver}
        sub: list[str] = []
        for end in range(1, len(segments) + 1):
            prefix = "/".join(segments[:end])
            if prefix in owners:
                root = prefix
                sub = []
            else:
                sub.append(segments[end - 1])

        if "enabled" in config:
            try:
                enabled = parse_bool(config["enabled"])
            except ValueError as e:
                raise ConfigError(f"branch {branch}: {e}") from e
            if not enabled:
                logger.debug(f"Branch {branch} is disabled")
                return Disabled(branch)

        if root is None:
            return NotConfigured(branch)

        # The owner layer names the driver; deeper layers only add options
        driver = owners[root].values["driver"]
        config["driver"] = driver
        commit = self.store.branch_commit(branch) if self.store else NULL_HASH
        return Binding(
            branch=branch,
            root=root,
            sub_branch="/".join(sub),
            driver=driver,
            config=config,
            commit=commit,
        )

    def driver_domains(self, base: str = "") -> list[str]:
        """
        Every configured prefix that binds a driver and starts with ``base``.

        Files that cannot be read are skipped with a warning so one broken
        domain does not hide its siblings.
        """
        if not self.config_dir.is_dir():
            return []

        domains = []
        for path in sorted(self.config_dir.rglob(f"*{CONFIG_SUFFIX}")):
            if not path.is_file():
                continue
            prefix = path.relative_to(self.config_dir).as_posix()[: -len(CONFIG_SUFFIX)]
            if not prefix.startswith(base):
                continue
            try:
                values = read_config_file(path)
            except ConfigError as e:
                logger.warning(f"Skipping {prefix}: {e}")
                continue
            if values.get("driver"):
                domains.append(prefix)
        return domains

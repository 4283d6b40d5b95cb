"""Settings and branch configuration."""
from .settings import Settings, REF_PREFIX, STAGING_PREFIX
from .tree import (
    ConfigTree,
    ConfigLayer,
    Binding,
    Disabled,
    NotConfigured,
    LoadResult,
    merge_layers,
    read_config_file,
)

__all__ = [
    "Settings",
    "REF_PREFIX",
    "STAGING_PREFIX",
    "ConfigTree",
    "ConfigLayer",
    "Binding",
    "Disabled",
    "NotConfigured",
    "LoadResult",
    "merge_layers",
    "read_config_file",
]

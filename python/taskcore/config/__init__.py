"""taskcore configuration."""

from taskcore.config.loader import (
    CONFIG_FILE_NAMES,
    find_config_file,
    load_config,
    validate_config_file,
    write_config,
)
from taskcore.config.settings import TaskCoreSettings, get_settings

__all__ = [
    "CONFIG_FILE_NAMES",
    "TaskCoreSettings",
    "find_config_file",
    "get_settings",
    "load_config",
    "validate_config_file",
    "write_config",
]

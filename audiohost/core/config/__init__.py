"""Configuration — loading and validating audiohost.yml."""

from audiohost.core.config.loader import (
    CONFIG_ENV,
    CONFIG_FILE,
    SYSTEM_CONFIG,
    ConfigError,
    find_config_file,
    load_config,
)

__all__ = [
    "CONFIG_ENV", "CONFIG_FILE", "SYSTEM_CONFIG", "ConfigError", "find_config_file", "load_config",
]

"""
Configuration loader — reads audiohost.yml into the host model.

Every HostConfig field has a default, so an empty file, or no file at
all, describes the stock JACK + REAPER + Guitarix host.

Search order when no path is given:
    AUDIOHOST_CONFIG  >  audiohost.yml in cwd and its parents  >
    /etc/audiohost/audiohost.yml  >  built-in defaults
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from audiohost.core.models.host import HostConfig

logger = logging.getLogger(__name__)

CONFIG_FILE = "audiohost.yml"
CONFIG_ENV = "AUDIOHOST_CONFIG"

# Where the boot unit and the X session find the config; both start in /
SYSTEM_CONFIG = Path("/etc/audiohost") / CONFIG_FILE


class ConfigError(Exception):
    """Raised when the host configuration is invalid or missing."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Locate the host configuration.

    A path named by AUDIOHOST_CONFIG wins and is returned even when the
    file is missing, so that loading it reports the mistake.

    Args:
        start_dir: Directory where the upward search begins (default: cwd).

    Returns:
        Path to the configuration, or None when there is none.
    """
    named = os.environ.get(CONFIG_ENV)
    if named:
        return Path(named).expanduser()

    start = (start_dir or Path.cwd()).resolve()
    for directory in (start, *start.parents):
        candidate = directory / CONFIG_FILE
        if candidate.is_file():
            return candidate

    if SYSTEM_CONFIG.is_file():
        return SYSTEM_CONFIG
    return None


def load_config(path: Path | None = None) -> HostConfig:
    """Load and validate the host configuration.

    Args:
        path: Explicit configuration file.  None searches as described
            in the module docstring.

    Returns:
        Validated HostConfig.

    Raises:
        ConfigError: The file is missing, unreadable, not YAML, or
            does not describe a valid host.
    """
    if path is None:
        path = find_config_file()
        if path is None:
            logger.info("No %s found; using built-in defaults", CONFIG_FILE)
            return HostConfig()

    data = _read_mapping(path)
    try:
        config = HostConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid host configuration in {path}: {e}") from e

    logger.info("Loaded host config for user '%s' from %s", config.user, path)
    return config


def _read_mapping(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Reading host config %s", path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    return data

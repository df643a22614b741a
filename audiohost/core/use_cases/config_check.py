"""
Config check use case — validate audiohost.yml and report issues.
"""

from __future__ import annotations

import pwd
from dataclasses import dataclass, field
from pathlib import Path

from audiohost.core.config.loader import CONFIG_FILE, ConfigError, find_config_file, load_config
from audiohost.core.models.host import HostConfig
from audiohost.core.services.supervisor import detect_init_system

# Sample rates JACK's ALSA backend commonly accepts
_COMMON_RATES = (44100, 48000, 88200, 96000, 176400, 192000)


@dataclass
class ConfigCheckResult:
    """Result of configuration validation."""

    valid: bool = False
    config: HostConfig | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "user": self.config.user if self.config else None,
            "autostart": self.config.autostart.enabled if self.config else None,
            "session": self.config.session.enabled if self.config else None,
        }


def check_config(config_path: Path | None = None) -> ConfigCheckResult:
    """Validate the host configuration and report issues.

    Args:
        config_path: Optional explicit path to audiohost.yml.

    Returns:
        ConfigCheckResult with validation status and any issues.
    """
    result = ConfigCheckResult()

    if config_path is None:
        config_path = find_config_file()
        if config_path is None:
            result.warnings.append(f"No {CONFIG_FILE} found; built-in defaults apply.")
    result.config_path = config_path

    # Load and validate
    try:
        config = load_config(config_path)
        result.config = config
    except ConfigError as e:
        result.errors.append(str(e))
        return result

    # Semantic checks
    try:
        pwd.getpwnam(config.user)
    except KeyError:
        result.errors.append(f"User '{config.user}' does not exist on this host.")

    if config.user == "root":
        result.warnings.append("Running the audio server as root; set 'user' to a login user.")

    limits_groups = {line.split()[0] for line in config.permissions.limits if line.split()}
    if f"@{config.permissions.group}" not in limits_groups:
        result.warnings.append(
            f"No limits line targets @{config.permissions.group}; "
            "JACK will not get real-time priority."
        )

    srv = config.audio_server
    if not srv.device_pattern:
        result.warnings.append("audio_server.device_pattern is empty; card 0 is always used.")
    if srv.sample_rate not in _COMMON_RATES:
        result.warnings.append(f"Unusual sample rate {srv.sample_rate} Hz.")
    if srv.period <= 0 or srv.period & (srv.period - 1):
        result.errors.append(f"audio_server.period must be a power of two, got {srv.period}.")
    if srv.nperiods < 2:
        result.errors.append(f"audio_server.nperiods must be at least 2, got {srv.nperiods}.")

    needs_supervisor = config.autostart.enabled or config.session.enabled
    if needs_supervisor and config.autostart.supervisor == "auto":
        if detect_init_system() == "unknown":
            result.warnings.append(
                "No systemd or runit detected; the supervisor stages will fail here."
            )

    # Result
    result.valid = len(result.errors) == 0
    return result

"""
Launch use case — start the audio server and the DAW.

The run-time counterpart of provisioning, and the command the
supervisor runs at boot.  Same orchestrator, same exit codes.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from audiohost.adapters.shell.command import format_argv
from audiohost.core.config.loader import ConfigError
from audiohost.core.context import HostServices, build_services
from audiohost.core.engine.orchestrator import ProvisioningOrchestrator, TransitionObserver
from audiohost.core.models.step import RunReport
from audiohost.core.persistence.audit import RunLedger, RunRecord
from audiohost.core.services.launch import Sleeper, build_launch_stages
from audiohost.core.use_cases.provision import exit_code_for, load_host

logger = logging.getLogger(__name__)


@dataclass
class LaunchResult:
    """Result of a launch run."""

    report: RunReport | None = None
    config_path: Path | None = None
    planned: list[str] = field(default_factory=list)  # dry-run commands
    error: str | None = None

    @property
    def exit_code(self) -> int:
        if self.error:
            return 1
        return exit_code_for(self.report)

    @property
    def device(self) -> str | None:
        """ALSA device JACK was started on, if it got that far."""
        if self.report is None:
            return None
        outcome = self.report.outcome_for("resolve-card")
        return outcome.detail.get("device") if outcome else None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "config_path": str(self.config_path) if self.config_path else None,
            "device": self.device,
            "exit_code": self.exit_code,
            "planned": self.planned,
            "report": self.report.to_dict() if self.report else None,
        }


def run_launch(
    config_path: Path | None = None,
    dry_run: bool = False,
    mock_mode: bool = False,
    services: HostServices | None = None,
    ledger: RunLedger | None = None,
    observers: list[TransitionObserver] | None = None,
    sleep: Sleeper = time.sleep,
) -> LaunchResult:
    """Resolve the card, restart JACK detached, then start the DAW detached."""
    result = LaunchResult()

    try:
        config, config_path = load_host(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result
    result.config_path = config_path

    if services is None:
        services = build_services(config, dry_run=dry_run, mock_mode=mock_mode)

    orchestrator = ProvisioningOrchestrator(
        build_launch_stages(config, services, sleep=sleep),
        dry_run=dry_run,
        observers=observers,
    )
    result.report = orchestrator.run()
    result.planned = [format_argv(cmd) for cmd in services.runner.planned]

    if ledger is not None:
        ledger.write(RunRecord.from_report(result.report, "launch", mock=mock_mode))

    return result

"""
Provision use case — bring the host to the configured state.

The full vertical slice from user intent to recorded run: load config,
build services and stages, pick the starting stage, run the
orchestrator, and hand the finished report to the run ledger.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from audiohost.adapters.shell.command import format_argv
from audiohost.core.config.loader import ConfigError, find_config_file, load_config
from audiohost.core.context import HostServices, build_services
from audiohost.core.engine.orchestrator import ProvisioningOrchestrator, TransitionObserver
from audiohost.core.models.host import HostConfig
from audiohost.core.models.step import RunReport, RunStatus, Stage
from audiohost.core.persistence.audit import RunLedger, RunRecord
from audiohost.core.services.packages import reset_update_state
from audiohost.core.services.stages import build_provisioning_stages

logger = logging.getLogger(__name__)

# Exit code of a run aborted at stage i is ABORT_EXIT_BASE + i.
ABORT_EXIT_BASE = 10

NEEDS_ROOT = (
    "Provisioning changes system files and must run as root "
    "(try: sudo audiohost provision, or --dry-run to preview)"
)


def exit_code_for(report: RunReport | None) -> int:
    """Process exit code for a finished run (1 when nothing ran)."""
    if report is None:
        return 1
    state = report.state
    if state.status == RunStatus.ABORTED and state.stage_index is not None:
        return ABORT_EXIT_BASE + state.stage_index
    if state.status == RunStatus.COMPLETED:
        return 0
    return 1


def resolve_stage(selector: str | None, stages: list[Stage]) -> int:
    """Translate a stage selector into a 0-based index.

    ``selector`` is ``all`` (or None), a 1-based stage number, or a
    stage name.

    Raises:
        ValueError: The selector names no stage.
    """
    if selector is None or selector == "all":
        return 0
    if selector.isdigit():
        number = int(selector)
        if not 1 <= number <= len(stages):
            raise ValueError(f"Stage number must be 1..{len(stages)}, got {number}")
        return number - 1
    for i, stage in enumerate(stages):
        if stage.name == selector:
            return i
    names = ", ".join(s.name for s in stages)
    raise ValueError(f"Unknown stage '{selector}' (expected all, 1..{len(stages)}, or one of: {names})")


@dataclass
class ProvisionResult:
    """Result of a provisioning run."""

    report: RunReport | None = None
    config: HostConfig | None = None
    config_path: Path | None = None
    stages: list[str] = field(default_factory=list)
    start_at: int = 0
    planned: list[str] = field(default_factory=list)  # dry-run commands
    error: str | None = None

    @property
    def exit_code(self) -> int:
        if self.error:
            return 1
        return exit_code_for(self.report)

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["config_path"] = str(self.config_path) if self.config_path else None
        result["stages"] = self.stages
        result["start_at"] = self.start_at
        result["exit_code"] = self.exit_code
        if self.planned:
            result["planned"] = self.planned
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def load_host(config_path: Path | None) -> tuple[HostConfig, Path | None]:
    """Load the config, also returning the file it came from (if any).

    Raises:
        ConfigError: See ``load_config``.
    """
    if config_path is None:
        config_path = find_config_file()
    return load_config(config_path), config_path


def run_provisioning(
    stage: str | None = "all",
    config_path: Path | None = None,
    dry_run: bool = False,
    mock_mode: bool = False,
    services: HostServices | None = None,
    ledger: RunLedger | None = None,
    observers: list[TransitionObserver] | None = None,
) -> ProvisionResult:
    """Run the provisioning stages from ``stage`` to the end.

    A real run (neither dry-run nor mock) must be started as root; the
    configured ``user`` still owns the session and the launcher.

    Args:
        stage: ``all``, a 1-based stage number, or a stage name.
        config_path: Optional explicit path to audiohost.yml.
        dry_run: Log every command and write instead of performing it.
        mock_mode: Route every command through the mock runner.
        services: Optional pre-built services (tests).
        ledger: Where to record the finished run; None records nothing.
        observers: Callbacks invoked after every step transition.

    Returns:
        ProvisionResult with the run report.
    """
    result = ProvisionResult()

    # ── Load host config ─────────────────────────────────────────
    try:
        config, config_path = load_host(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.config = config
    result.config_path = config_path

    if services is None and not (dry_run or mock_mode) and os.geteuid() != 0:
        result.error = NEEDS_ROOT
        return result

    # ── Build the run ────────────────────────────────────────────
    if services is None:
        services = build_services(config, dry_run=dry_run, mock_mode=mock_mode)
    stages = build_provisioning_stages(config, services, config_path)
    result.stages = [s.name for s in stages]

    try:
        result.start_at = resolve_stage(stage, stages)
    except ValueError as e:
        result.error = str(e)
        return result

    # apt-get update runs at most once per run
    reset_update_state()

    # ── Execute ──────────────────────────────────────────────────
    orchestrator = ProvisioningOrchestrator(stages, dry_run=dry_run, observers=observers)
    report = orchestrator.run(start_at=result.start_at)
    result.report = report
    result.planned = [format_argv(cmd) for cmd in services.runner.planned]

    # ── Record ───────────────────────────────────────────────────
    if ledger is not None:
        ledger.write(RunRecord.from_report(
            report,
            "provision",
            start_stage=result.stages[result.start_at] if result.start_at < len(stages) else None,
            mock=mock_mode,
            config=str(config_path) if config_path else None,
        ))

    return result

"""
Step builders — the reusable shapes of provisioning work.

Each ``*_step`` function returns an immutable Step whose action goes
through the shared services.  Idempotency checks only read the host;
actions raise taxonomy errors, which the orchestrator records as
failures of that step.
"""

from __future__ import annotations

import logging
from pathlib import Path

from audiohost.adapters.shell.command import CommandRunner, format_argv
from audiohost.adapters.shell.filesystem import FileEdit, FilePatcher, PatchResult
from audiohost.core.errors import CommandFailed, InstallFailure
from audiohost.core.models.step import Step, StepCheck, StepOutcome
from audiohost.core.services.packages import PackageInstaller

logger = logging.getLogger(__name__)


def run_required(
    runner: CommandRunner,
    argv: list[str],
    **kwargs,
):
    """Run a command whose failure fails the step.

    Raises:
        CommandFailed: Non-zero exit, carrying the raw output.
    """
    r = runner.run(argv, **kwargs)
    if not r.ok:
        raise CommandFailed(r.argv, r.exit_code, r.error_text)
    return r


def command_step(
    step_id: str,
    description: str,
    runner: CommandRunner,
    argv: list[str],
    *,
    check: StepCheck | None = None,
    cwd: str | Path | None = None,
    timeout: float | None = None,
    needs_root: bool = False,
) -> Step:
    """A step that runs one external command."""

    def action(ctx) -> StepOutcome:
        r = run_required(runner, argv, cwd=cwd, timeout=timeout, needs_root=needs_root)
        return StepOutcome.success(command=format_argv(r.argv), duration_ms=r.duration_ms)

    return Step(id=step_id, description=description, action=action, check=check)


def packages_step(
    step_id: str,
    description: str,
    installer: PackageInstaller,
    packages: list[str],
) -> Step:
    """A step that installs packages.

    Whether failed packages fail the step is decided by the owning
    stage's ``package_failures_fatal``; either way the install report
    is attached to the outcome.
    """

    def check(ctx) -> bool:
        return all(installer.is_installed(p) for p in packages)

    def action(ctx) -> StepOutcome:
        report = installer.install(packages)
        if report.failed and ctx.stage.package_failures_fatal:
            err = InstallFailure(report.failed)
            return StepOutcome.failure(str(err), kind=err.kind, **report.to_dict())
        if report.failed:
            logger.warning(
                "Continuing without: %s", ", ".join(sorted(report.failed)),
            )
        return StepOutcome.success(**report.to_dict())

    if not packages:
        return Step(
            id=step_id,
            description=description,
            action=lambda ctx: StepOutcome.skip("no packages configured"),
        )
    return Step(id=step_id, description=description, action=action, check=check)


def lines_step(
    step_id: str,
    description: str,
    patcher: FilePatcher,
    path: str | Path,
    lines: list[str],
    *,
    after_change: list[str] | None = None,
    runner: CommandRunner | None = None,
) -> Step:
    """A step that makes sure every line in ``lines`` exists in ``path``.

    ``after_change`` is an optional command (e.g. ``chown``) run as root
    only when the file was modified.
    """

    def check(ctx) -> bool:
        existing = patcher.read_text(path).splitlines()
        return all(line in existing for line in lines)

    def action(ctx) -> StepOutcome:
        applied = [
            line for line in lines
            if patcher.apply(FileEdit(str(path), line)) == PatchResult.APPLIED
        ]
        if applied and after_change and runner is not None:
            run_required(runner, after_change, needs_root=True)
        return StepOutcome.success(path=str(path), applied=applied)

    return Step(id=step_id, description=description, action=action, check=check)


def file_step(
    step_id: str,
    description: str,
    patcher: FilePatcher,
    path: str | Path,
    content: str,
    *,
    mode: int | None = None,
    after_change: list[str] | None = None,
    runner: CommandRunner | None = None,
) -> Step:
    """A step that makes sure ``path`` has exactly ``content``."""

    def action(ctx) -> StepOutcome:
        result = patcher.ensure_content(path, content, mode=mode)
        if result == PatchResult.ALREADY_PRESENT:
            return StepOutcome.skip("already satisfied", path=str(path))
        if after_change and runner is not None:
            run_required(runner, after_change, needs_root=True)
        return StepOutcome.success(path=str(path))

    return Step(id=step_id, description=description, action=action)


def skipped_step(step_id: str, description: str, reason: str) -> Step:
    """A placeholder step that always records ``Skipped(reason)``."""
    return Step(
        id=step_id,
        description=description,
        action=lambda ctx: StepOutcome.skip(reason),
    )

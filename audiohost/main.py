"""
audiohost — CLI entrypoint.

Usage:
    audiohost --help
    audiohost provision --dry-run
    audiohost provision 4
    audiohost launch
    audiohost config check
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from audiohost import __version__
from audiohost.core.observability.logging_config import setup_logging

_STATUS_COLORS = {"succeeded": "green", "skipped": "yellow", "failed": "red"}
_MARKERS = {"succeeded": "✓", "skipped": "⊘", "failed": "✗"}


@click.group()
@click.version_option(version=__version__, prog_name="audiohost")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to audiohost.yml (default: auto-detect).",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Also write log lines to this file.",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
    log_file: str | None,
) -> None:
    """audiohost — provision and launch a headless audio workstation."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    level = None
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"

    setup_logging(level=level, log_file=log_file)


# ── Shared rendering ────────────────────────────────────────────────


def _echo_transition(stage, step, outcome) -> None:
    """Observer: one line per step transition."""
    click.secho(f"   {_MARKERS[outcome.status]} ", fg=_STATUS_COLORS[outcome.status], nl=False)
    click.echo(f"{stage.name}/{step.id} → {outcome.describe()}")


def _echo_summary(report, planned: list[str], verbose: bool) -> None:
    if planned and verbose:
        click.echo()
        click.secho("   Planned commands:", fg="white", bold=True)
        for cmd in planned:
            click.echo(f"     $ {cmd}")

    click.echo()
    status_color = {"ok": "green", "partial": "yellow", "aborted": "red"}.get(
        report.status, "white"
    )
    click.secho(
        f"   Result: {report.succeeded} succeeded, {report.skipped} skipped, "
        f"{report.failed} failed",
        fg=status_color,
        bold=True,
    )
    if report.state.status.value == "aborted":
        click.secho(
            f"   Aborted at stage {report.state.stage_index + 1}: {report.state.stage_name}",
            fg="red",
        )
    click.echo()


def _ledger(no_audit: bool):
    if no_audit:
        return None
    from audiohost.core.persistence.audit import RunLedger

    return RunLedger()


# ── Commands ────────────────────────────────────────────────────────


@cli.command()
@click.argument("stage", required=False, default="all")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--dry-run", is_flag=True, help="Log every command and file change, perform none.")
@click.option("--mock", is_flag=True, help="Use the mock runner (every command succeeds).")
@click.option("--no-audit", is_flag=True, help="Don't record the run in the ledger.")
@click.pass_context
def provision(
    ctx: click.Context,
    stage: str,
    as_json: bool,
    dry_run: bool,
    mock: bool,
    no_audit: bool,
) -> None:
    """Provision the host, starting at STAGE (default: all).

    STAGE is 'all', a stage number (see 'audiohost stages') or a stage
    name.  Exits 0 when every stage ran, 10 + the 0-based stage index
    when a stage aborted the run, 1 on configuration errors.

    Examples:

        audiohost provision --dry-run

        audiohost provision daw
    """
    from audiohost.core.use_cases.provision import run_provisioning

    quiet = ctx.obj.get("quiet", False)
    observers = [] if (as_json or quiet) else [_echo_transition]

    if not as_json and not quiet:
        mode_label = "[dry-run] " if dry_run else "[mock] " if mock else ""
        click.secho(f"\n🎛  {mode_label}provision ({stage})", fg="cyan", bold=True)
        click.echo()

    result = run_provisioning(
        stage=stage,
        config_path=ctx.obj.get("config_path"),
        dry_run=dry_run,
        mock_mode=mock,
        ledger=_ledger(no_audit or dry_run),
        observers=observers,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(result.exit_code)

    assert result.report is not None
    if not quiet:
        _echo_summary(result.report, result.planned, dry_run or ctx.obj.get("verbose", False))
    sys.exit(result.exit_code)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def stages(ctx: click.Context, as_json: bool) -> None:
    """List provisioning stages with their numbers and policies."""
    from audiohost.core.config.loader import ConfigError, load_config
    from audiohost.core.context import build_services
    from audiohost.core.services.stages import build_provisioning_stages

    try:
        config = load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    # Dry-run services: listing must not touch the host
    services = build_services(config, dry_run=True)
    catalogue = build_provisioning_stages(config, services)

    if as_json:
        click.echo(json.dumps([
            {
                "number": i + 1,
                "name": s.name,
                "policy": s.policy.value,
                "description": s.description,
                "steps": [step.id for step in s.steps],
            }
            for i, s in enumerate(catalogue)
        ], indent=2))
        return

    click.echo()
    for i, s in enumerate(catalogue, start=1):
        click.secho(f"   {i}. {s.name}", fg="cyan", bold=True, nl=False)
        click.echo(f"  [{s.policy.value}]")
        if s.description:
            click.echo(f"      {s.description}")
        if ctx.obj.get("verbose"):
            for step in s.steps:
                click.echo(f"        • {step.id}: {step.description}")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--dry-run", is_flag=True, help="Log the launch commands, start nothing.")
@click.option("--mock", is_flag=True, help="Use the mock runner (every command succeeds).")
@click.option("--no-audit", is_flag=True, help="Don't record the run in the ledger.")
@click.pass_context
def launch(ctx: click.Context, as_json: bool, dry_run: bool, mock: bool, no_audit: bool) -> None:
    """Start the JACK server on the preferred card, then the DAW.

    This is the command registered with the service supervisor.
    """
    from audiohost.core.use_cases.launch import run_launch

    quiet = ctx.obj.get("quiet", False)
    observers = [] if (as_json or quiet) else [_echo_transition]

    result = run_launch(
        config_path=ctx.obj.get("config_path"),
        dry_run=dry_run,
        mock_mode=mock,
        ledger=_ledger(no_audit or dry_run),
        observers=observers,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(result.exit_code)

    assert result.report is not None
    if not quiet:
        _echo_summary(result.report, result.planned, dry_run or ctx.obj.get("verbose", False))
    sys.exit(result.exit_code)


@cli.command("detect-card")
@click.option(
    "--from-file",
    type=click.File("r"),
    default=None,
    help="Read 'aplay -l' output from a file ('-' for stdin) instead of running it.",
)
@click.option("--pattern", default=None, help="Device name to look for (default: from config).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def detect_card(ctx: click.Context, from_file, pattern: str | None, as_json: bool) -> None:
    """Show which ALSA card the audio server would use."""
    from audiohost.adapters.shell.command import CommandRunner
    from audiohost.core.config.loader import ConfigError, load_config
    from audiohost.core.services.devices import enumerate_playback_devices, resolve_audio_card

    if pattern is None:
        try:
            pattern = load_config(ctx.obj.get("config_path")).audio_server.device_pattern
        except ConfigError as e:
            click.secho(f"❌ {e}", fg="red")
            sys.exit(1)

    text = from_file.read() if from_file else enumerate_playback_devices(CommandRunner())
    device = resolve_audio_card(pattern, text)

    if as_json:
        click.echo(json.dumps(
            {"pattern": pattern, **device.model_dump(), "alsa_device": device.alsa_device},
            indent=2,
        ))
        return

    if device.matched:
        click.secho(f"✓ '{pattern}' is card {device.identifier} ({device.alsa_device})", fg="green")
    else:
        click.secho(
            f"⊘ No card matches '{pattern}'; falling back to {device.alsa_device}",
            fg="yellow",
        )


@cli.command()
@click.option("-n", "count", default=10, show_default=True, help="Number of runs to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def history(count: int, as_json: bool) -> None:
    """Show recent provisioning and launch runs."""
    from audiohost.core.persistence.audit import RunLedger

    ledger = RunLedger()
    records = ledger.read_recent(count)

    if as_json:
        click.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return

    if not records:
        click.echo(f"No runs recorded yet ({ledger.path}).")
        return

    click.echo()
    status_colors = {"ok": "green", "partial": "yellow", "aborted": "red"}
    for r in reversed(records):
        click.secho(f"   {r.timestamp[:19]} ", fg="white", nl=False)
        click.echo(f"{r.operation:<9} ", nl=False)
        click.secho(f"{r.status:<8}", fg=status_colors.get(r.status, "white"), nl=False)
        label = f" stopped at {r.stopped_at}" if r.stopped_at else ""
        click.echo(
            f" {r.steps_succeeded}✓ {r.steps_skipped}⊘ {r.steps_failed}✗{label}  ({r.run_id})"
        )
        for err in r.errors[:3]:
            click.echo(f"       │ {err}")
    click.echo()


@cli.group()
def config() -> None:
    """Host configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate audiohost.yml configuration."""
    from audiohost.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        assert result.config is not None  # guaranteed when valid
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        click.echo(f"   Source: {result.config_path or 'built-in defaults'}")
        click.echo(f"   User: {result.config.user}")
        click.echo(f"   Audio device: {result.config.audio_server.device_pattern}")
        click.echo(f"   Autostart: {'on' if result.config.autostart.enabled else 'off'}")
        click.echo(f"   Headless session: {'on' if result.config.session.enabled else 'off'}")
    else:
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(1)

    click.echo()


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()

"""
Launch stages — bring up the audio server and the DAW.

This is what the supervisor runs at boot (``audiohost launch``):

    audio-server   abort   warn on group, stop jackd, resolve card,
                           start jackd detached, settle
    workstation    abort   start the DAW detached

Detached processes are handed off and never tracked again.  The card
chosen by ``resolve-card`` reaches ``start-server`` only through the
run report.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from audiohost.core.context import HostServices, expand_user_path
from audiohost.core.errors import ExecutionError
from audiohost.core.models.device import FALLBACK_CARD
from audiohost.core.models.host import HostConfig
from audiohost.core.models.step import Stage, Step, StepOutcome
from audiohost.core.services.devices import enumerate_playback_devices, resolve_audio_card
from audiohost.core.services.stages import in_group
from audiohost.core.services.steps import run_required

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], None]

# Grace period after killing a running server.
STOP_GRACE_SECONDS = 1.0


def jack_argv(config: HostConfig, card: str) -> list[str]:
    """Command line for the JACK server on ALSA card ``card``."""
    srv = config.audio_server
    return [
        srv.executable,
        "-d", srv.driver,
        "-d", f"hw:{card}",
        "-r", str(srv.sample_rate),
        "-p", str(srv.period),
        "-n", str(srv.nperiods),
    ]


def build_launch_stages(
    config: HostConfig,
    services: HostServices,
    sleep: Sleeper = time.sleep,
) -> list[Stage]:
    """Build the launch run for ``config``.

    ``sleep`` is injectable so tests do not wait for JACK to settle.
    """
    srv = config.audio_server
    runner = services.runner
    user = config.user
    group = config.permissions.group

    def check_group(ctx) -> StepOutcome:
        if in_group(services, user, group):
            return StepOutcome.success(group=group)
        logger.warning(
            "%s is not in the '%s' group; JACK may not get real-time priority",
            user, group,
        )
        return StepOutcome.success(group=group, warning="not a member")

    def server_present(ctx) -> StepOutcome:
        path = runner.which(srv.executable)
        if path is None:
            raise ExecutionError(f"{srv.executable} not found on PATH")
        return StepOutcome.success(path=path)

    def stop_server(ctx) -> StepOutcome:
        r = runner.run(["pidof", srv.executable], timeout=10, read_only=True)
        if not r.ok:
            return StepOutcome.skip("not running")
        run_required(runner, ["killall", srv.executable], timeout=10)
        if not services.dry_run:
            sleep(STOP_GRACE_SECONDS)
        return StepOutcome.success(stopped=r.stdout.split())

    def resolve_card(ctx) -> StepOutcome:
        device = resolve_audio_card(srv.device_pattern, enumerate_playback_devices(runner))
        if not device.matched:
            logger.warning(
                "No card matches '%s'; falling back to card %s",
                srv.device_pattern, device.identifier,
            )
        return StepOutcome.success(
            card=device.identifier, matched=device.matched, device=device.alsa_device,
        )

    def start_server(ctx) -> StepOutcome:
        resolved = ctx.report.outcome_for("resolve-card")
        card = resolved.detail.get("card", FALLBACK_CARD) if resolved else FALLBACK_CARD
        log_path = expand_user_path(srv.log_file, user)
        r = runner.run(jack_argv(config, card), detach=True, log_path=log_path)
        if not services.dry_run:
            sleep(srv.settle_seconds)
        return StepOutcome.success(pid=r.pid, device=f"hw:{card}", log=str(log_path))

    def launch_daw(ctx) -> StepOutcome:
        exe = config.daw.executable
        if runner.which(exe) is None:
            raise ExecutionError(f"{exe} not found on PATH")
        r = runner.run([exe], detach=True)
        return StepOutcome.success(pid=r.pid)

    return [
        Stage(
            name="audio-server",
            description="JACK audio server on the preferred card",
            steps=(
                Step("audio-group", f"Check {user} is in the {group} group", check_group),
                Step("server-present", f"Locate {srv.executable}", server_present),
                Step("stop-server", f"Stop a running {srv.executable}", stop_server),
                Step("resolve-card", f"Find the card matching '{srv.device_pattern}'", resolve_card),
                Step("start-server", f"Start {srv.executable} detached", start_server),
            ),
        ),
        Stage(
            name="workstation",
            description="Digital audio workstation",
            steps=(
                Step("launch-daw", f"Start {config.daw.executable} detached", launch_daw),
            ),
        ),
    ]

"""
Stage catalogue — the provisioning run, in order.

    1. dependencies           abort      JACK + build packages
    2. realtime-kernel        continue   RT kernel image (best effort)
    3. realtime-permissions   abort      audio group, limits.conf
    4. daw                    abort      download, extract, vendor installer
    5. amp-simulator          abort      clone, submodules, waf build
    6. headless-session       continue   auto-login + startx (opt-in)
    7. autostart              abort      register the launcher at boot
                                         (the X session launches it instead
                                         when the headless session is on)

All seven stages are always present so stage numbers stay stable; a
stage turned off in configuration holds one step that records
``Skipped("disabled in configuration")``.
"""

from __future__ import annotations

import logging
import platform
import shlex
from pathlib import Path
from posixpath import basename
from urllib.parse import urlparse

from audiohost.adapters.shell.filesystem import PatchResult
from audiohost.core.context import HostServices, expand_user_path, user_home
from audiohost.core.errors import ExecutionError, IoError
from audiohost.core.models.host import HostConfig
from audiohost.core.models.step import Stage, StagePolicy, Step, StepOutcome
from audiohost.core.services.steps import (
    command_step,
    file_step,
    lines_step,
    packages_step,
    run_required,
    skipped_step,
)
from audiohost.core.services.supervisor import (
    RegisterResult,
    RestartPolicy,
    ServiceOptions,
)

logger = logging.getLogger(__name__)

DISABLED = "disabled in configuration"
SESSION_LAUNCH = "launched by the headless session"

STAGE_NAMES = (
    "dependencies",
    "realtime-kernel",
    "realtime-permissions",
    "daw",
    "amp-simulator",
    "headless-session",
    "autostart",
)


def build_provisioning_stages(
    config: HostConfig,
    services: HostServices,
    config_path: str | Path | None = None,
) -> list[Stage]:
    """Build the full provisioning run for ``config``.

    Args:
        config: Host configuration.
        services: Runner, patcher, installer and supervisor for the run.
        config_path: Passed to the registered launcher so the boot-time
            launch reads the same configuration.
    """
    return [
        _dependencies(config, services),
        _realtime_kernel(config, services),
        _realtime_permissions(config, services),
        _daw(config, services),
        _amp_simulator(config, services),
        _headless_session(config, services, config_path),
        _autostart(config, services, config_path),
    ]


def launcher_args(config_path: str | Path | None) -> tuple[str, ...]:
    """Arguments that make the launcher run ``launch`` with our config."""
    if config_path is None:
        return ("launch",)
    return ("--config", str(Path(config_path).resolve()), "launch")


# ── 1. Dependencies ─────────────────────────────────────────────────


def _dependencies(config: HostConfig, services: HostServices) -> Stage:
    core = list(config.packages.core)
    if config.packages.kernel_headers:
        core.append(f"linux-headers-{platform.release()}")
    return Stage(
        name="dependencies",
        description="JACK audio server and build dependencies",
        steps=(
            packages_step(
                "jack-packages", "Install the JACK audio server",
                services.installer, config.packages.jack,
            ),
            packages_step(
                "core-packages", "Install build tools and libraries",
                services.installer, core,
            ),
        ),
    )


# ── 2. Real-time kernel ─────────────────────────────────────────────


def _realtime_kernel(config: HostConfig, services: HostServices) -> Stage:
    return Stage(
        name="realtime-kernel",
        description="Real-time kernel image (optional)",
        policy=StagePolicy.CONTINUE_ON_FAILURE,
        package_failures_fatal=False,
        steps=(
            packages_step(
                "rt-kernel", "Install the real-time kernel",
                services.installer, config.packages.realtime_kernel,
            ),
        ),
    )


# ── 3. Real-time permissions ────────────────────────────────────────


def in_group(services: HostServices, user: str, group: str) -> bool:
    """Whether ``user`` is a member of ``group`` (``id -nG``)."""
    r = services.runner.run(["id", "-nG", user], timeout=10, read_only=True)
    return r.ok and group in r.stdout.split()


def _realtime_permissions(config: HostConfig, services: HostServices) -> Stage:
    user = config.user
    group = config.permissions.group

    return Stage(
        name="realtime-permissions",
        description="Real-time scheduling and memory locking for the audio group",
        steps=(
            command_step(
                "audio-group", f"Add {user} to the {group} group",
                services.runner, ["usermod", "-aG", group, user],
                check=lambda ctx: in_group(services, user, group),
                needs_root=True,
            ),
            lines_step(
                "rt-limits", f"Raise rtprio/memlock limits in {config.permissions.limits_file}",
                services.patcher, config.permissions.limits_file, config.permissions.limits,
            ),
        ),
    )


# ── 4. DAW ──────────────────────────────────────────────────────────


def _ensure_dir(services: HostServices, path: Path) -> None:
    if services.dry_run:
        return
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise IoError(f"Cannot create {path}: {e}") from e


def _daw(config: HostConfig, services: HostServices) -> Stage:
    daw = config.daw
    build_dir = expand_user_path(config.build_dir, config.user)
    tarball = build_dir / basename(urlparse(daw.url).path)
    extracted = build_dir / daw.extract_dir

    def installed(ctx) -> bool:
        return services.runner.which(daw.executable) is not None

    def download(ctx) -> StepOutcome:
        if tarball.exists():
            return StepOutcome.skip("already downloaded", path=str(tarball))
        _ensure_dir(services, build_dir)
        run_required(services.runner, ["wget", "-nc", daw.url], cwd=build_dir)
        return StepOutcome.success(path=str(tarball))

    def extract(ctx) -> StepOutcome:
        if extracted.is_dir():
            return StepOutcome.skip("already extracted", path=str(extracted))
        run_required(services.runner, ["tar", "-xf", tarball.name], cwd=build_dir)
        return StepOutcome.success(path=str(extracted))

    return Stage(
        name="daw",
        description="Digital audio workstation",
        steps=(
            Step("download", "Download the DAW tarball", download, check=installed),
            Step("extract", "Extract the DAW tarball", extract, check=installed),
            command_step(
                "vendor-install", f"Run {daw.installer} into {daw.install_dir}",
                services.runner,
                [f"./{daw.installer}", "--install", daw.install_dir, *daw.installer_args],
                check=installed,
                cwd=extracted,
                needs_root=True,
            ),
        ),
    )


# ── 5. Amp simulator ────────────────────────────────────────────────


def _amp_simulator(config: HostConfig, services: HostServices) -> Stage:
    amp = config.amp_sim
    runner = services.runner
    build_dir = expand_user_path(config.build_dir, config.user)
    checkout = build_dir / amp.checkout_dir
    source = checkout / amp.source_subdir

    def installed(ctx) -> bool:
        return not amp.rebuild and runner.which(amp.executable) is not None

    def build_tools(ctx) -> StepOutcome:
        missing = [t for t in amp.required_tools if runner.which(t) is None]
        if missing:
            raise ExecutionError(f"Missing build tools: {', '.join(missing)}")
        return StepOutcome.success(tools=list(amp.required_tools))

    def fetch(ctx) -> StepOutcome:
        if (checkout / ".git").is_dir():
            run_required(runner, ["git", "pull", "--recurse-submodules"], cwd=checkout)
            return StepOutcome.success(action="pull", path=str(checkout))
        _ensure_dir(services, build_dir)
        run_required(runner, ["git", "clone", amp.repo, amp.checkout_dir], cwd=build_dir)
        return StepOutcome.success(action="clone", path=str(checkout))

    return Stage(
        name="amp-simulator",
        description="Guitar amp simulator built from source",
        steps=(
            Step("build-tools", "Check build tools", build_tools, check=installed),
            Step("fetch-source", "Clone or update the source tree", fetch, check=installed),
            command_step(
                "submodules", "Update git submodules", runner,
                ["git", "submodule", "update", "--init", "--recursive"],
                check=installed, cwd=checkout,
            ),
            command_step(
                "configure", "Configure the build", runner,
                ["./waf", "configure", *amp.configure_args],
                check=installed, cwd=source,
            ),
            command_step(
                "build", "Compile", runner, ["./waf", "build"],
                check=installed, cwd=source, timeout=amp.build_timeout,
            ),
            command_step(
                "install", "Install", runner, ["./waf", "install"],
                check=installed, cwd=source, needs_root=True,
            ),
        ),
    )


# ── 6. Headless session ─────────────────────────────────────────────


def render_xinitrc(config: HostConfig, config_path: str | Path | None = None) -> str:
    """Render ``.xinitrc``: launch the audio host, then exec the WM.

    The DAW is a GUI program, so with a headless session it starts here,
    inside X, rather than from a boot-time service.
    """
    cmd = shlex.join([config.autostart.launcher, *launcher_args(config_path)])
    lines = ["#!/bin/sh", f"{cmd} &", f"exec {config.session.window_manager}"]
    return "\n".join(lines) + "\n"


def _headless_session(
    config: HostConfig,
    services: HostServices,
    config_path: str | Path | None,
) -> Stage:
    session = config.session
    name = "headless-session"
    policy = StagePolicy.CONTINUE_ON_FAILURE

    if not session.enabled:
        return Stage(
            name=name, policy=policy,
            steps=(skipped_step("session", "Headless auto-login session", DISABLED),),
        )

    user = config.user
    profile = expand_user_path(session.profile_file, user)
    xinitrc = expand_user_path(session.xinitrc_file, user)

    def disable_dm(ctx) -> StepOutcome:
        if services.supervisor().disable(session.display_manager):
            return StepOutcome.success(service=session.display_manager)
        return StepOutcome.skip("not enabled", service=session.display_manager)

    def autologin(ctx) -> StepOutcome:
        result = services.supervisor().ensure_autologin(user, session.tty)
        if result == PatchResult.ALREADY_PRESENT:
            return StepOutcome.skip("already satisfied", tty=session.tty)
        return StepOutcome.success(tty=session.tty, user=user)

    return Stage(
        name=name,
        description="Auto-login on the console and start X without a display manager",
        policy=policy,
        steps=(
            Step("display-manager", f"Disable {session.display_manager}", disable_dm),
            Step("autologin", f"Auto-login {user} on {session.tty}", autologin),
            lines_step(
                "startx-profile", f"Start X from {profile.name}",
                services.patcher, profile, [session.profile_line],
                after_change=["chown", f"{user}:", str(profile)],
                runner=services.runner,
            ),
            file_step(
                "xinitrc", f"Write {xinitrc.name}",
                services.patcher, xinitrc, render_xinitrc(config, config_path),
                mode=0o755,
                after_change=["chown", f"{user}:", str(xinitrc)],
                runner=services.runner,
            ),
        ),
    )


# ── 7. Autostart ────────────────────────────────────────────────────


def _autostart(
    config: HostConfig,
    services: HostServices,
    config_path: str | Path | None,
) -> Stage:
    auto = config.autostart
    name = "autostart"

    if not auto.enabled:
        return Stage(
            name=name,
            steps=(skipped_step("register-launcher", "Register the launcher at boot", DISABLED),),
        )

    if config.session.enabled:
        # .xinitrc starts the launcher; no boot unit may start it a second time.
        def hand_over(ctx) -> StepOutcome:
            detail = {"service": auto.service_name, "launched_by": "headless-session"}
            if services.supervisor().disable(auto.service_name):
                return StepOutcome.success(disabled=True, **detail)
            return StepOutcome.skip(SESSION_LAUNCH, **detail)

        return Stage(
            name=name,
            description="Start the audio server and DAW with the X session",
            steps=(Step("register-launcher", "Leave the launch to the X session", hand_over),),
        )

    def register(ctx) -> StepOutcome:
        executable = services.runner.which(auto.launcher) or auto.launcher
        options = ServiceOptions(
            restart_policy=RestartPolicy(auto.restart_policy),
            user=config.user,
            working_dir=str(user_home(config.user)),
            args=launcher_args(config_path),
            description="Audio host: JACK server and DAW",
        )
        supervisor = services.supervisor()
        result = supervisor.register_and_start(auto.service_name, executable, options)
        detail = {"service": auto.service_name, "supervisor": supervisor.name}
        if result == RegisterResult.ALREADY_REGISTERED:
            return StepOutcome.skip("already registered", **detail)
        return StepOutcome.success(**detail)

    return Stage(
        name=name,
        description="Start the audio server and DAW at boot",
        steps=(Step("register-launcher", "Register the launcher at boot", register),),
    )

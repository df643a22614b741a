"""
Service supervisor bridge — register long-running processes for boot.

Supports systemd and runit (antiX's init).  Detects the init system and
dispatches to the matching backend, the same way regardless of backend:

    render definition → compare with disk → write atomically →
    reload / link → enable → start or restart

Registration is idempotent: an identical definition only confirms the
service is running; a changed one is rewritten and restarted.
"""

from __future__ import annotations

import enum
import logging
import os
import shlex
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from audiohost.adapters.shell.command import CommandResult, CommandRunner
from audiohost.adapters.shell.filesystem import FilePatcher, PatchResult
from audiohost.core.errors import CommandTimeout, ExecutionError, IoError, SupervisorError

logger = logging.getLogger(__name__)


class RestartPolicy(str, enum.Enum):
    ALWAYS = "always"
    NEVER = "never"


class RegisterResult(str, enum.Enum):
    REGISTERED = "registered"
    ALREADY_REGISTERED = "already_registered"


@dataclass(frozen=True)
class ServiceOptions:
    """How the supervisor should run the process."""

    restart_policy: RestartPolicy = RestartPolicy.NEVER
    user: str | None = None
    working_dir: str | None = None
    args: tuple[str, ...] = ()
    environment: dict[str, str] = field(default_factory=dict)
    description: str = ""


def detect_init_system() -> str:
    """Detect the init system (systemd, runit, or unknown)."""
    if Path("/run/systemd/system").exists():
        return "systemd"
    if Path("/run/runit").exists() or Path("/etc/runit/runsvdir").exists():
        return "runit"
    return "unknown"


class ServiceSupervisor(ABC):
    """Common registration flow; backends supply the host specifics."""

    name = "supervisor"

    def __init__(self, runner: CommandRunner, patcher: FilePatcher):
        self._runner = runner
        self._patcher = patcher

    # ── Backend contract ────────────────────────────────────────

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the supervisor's control tool is present."""

    @abstractmethod
    def definition_path(self, service_name: str) -> Path:
        """Where the service definition lives."""

    @abstractmethod
    def render_definition(
        self, service_name: str, executable_path: str, options: ServiceOptions,
    ) -> str:
        """Render the service definition text."""

    @abstractmethod
    def is_running(self, service_name: str) -> bool: ...

    @abstractmethod
    def _activate(self, service_name: str, replaced: bool) -> None:
        """Load, enable and (re)start a freshly written definition."""

    @abstractmethod
    def _start(self, service_name: str) -> None: ...

    @abstractmethod
    def disable(self, service_name: str) -> bool:
        """Stop a service and keep it from starting at boot.

        Returns False when it was not enabled in the first place.
        """

    @abstractmethod
    def ensure_autologin(self, user: str, tty: str = "tty1") -> PatchResult:
        """Configure getty auto-login for ``user`` on ``tty``."""

    definition_mode: int = 0o644

    # ── Registration ────────────────────────────────────────────

    def register_and_start(
        self,
        service_name: str,
        executable_path: str,
        options: ServiceOptions | None = None,
    ) -> RegisterResult:
        """Register ``executable_path`` as ``service_name`` and make sure it runs.

        Raises:
            SupervisorError: Supervisor unreachable or a command rejected.
            IoError: The definition cannot be written.
        """
        options = options or ServiceOptions()
        if not self.is_available():
            raise SupervisorError(f"{self.name} is not available on this host")

        content = self.render_definition(service_name, executable_path, options)
        path = self.definition_path(service_name)
        existed = path.exists()

        if existed and self._patcher.read_text(path) == content:
            if not self.is_running(service_name):
                logger.info("Service %s registered but not running; starting", service_name)
                self._start(service_name)
            return RegisterResult.ALREADY_REGISTERED

        self._patcher.ensure_content(path, content, mode=self.definition_mode)
        self._activate(service_name, replaced=existed)
        logger.info(
            "Service %s %s under %s",
            service_name, "updated" if existed else "registered", self.name,
        )
        return RegisterResult.REGISTERED

    # ── Helpers ─────────────────────────────────────────────────

    def _ctl(
        self, argv: list[str], *, check: bool = True, read_only: bool = False,
    ) -> CommandResult:
        """Run a supervisor control command; state changes run as root."""
        try:
            r = self._runner.run(argv, timeout=60, needs_root=not read_only, read_only=read_only)
        except (ExecutionError, CommandTimeout) as e:
            raise SupervisorError(f"{self.name} unreachable: {e}") from e
        if check and not r.ok:
            raise SupervisorError(f"{shlex.join(argv)} failed: {r.error_text}")
        return r

    @staticmethod
    def _command_line(executable_path: str, options: ServiceOptions) -> str:
        return shlex.join([executable_path, *options.args])


class SystemdSupervisor(ServiceSupervisor):
    """systemd unit files under /etc/systemd/system."""

    name = "systemd"

    def __init__(
        self,
        runner: CommandRunner,
        patcher: FilePatcher,
        unit_dir: str | Path = "/etc/systemd/system",
    ):
        super().__init__(runner, patcher)
        self.unit_dir = Path(unit_dir)

    def is_available(self) -> bool:
        return self._runner.which("systemctl") is not None

    def definition_path(self, service_name: str) -> Path:
        return self.unit_dir / f"{service_name}.service"

    def render_definition(
        self, service_name: str, executable_path: str, options: ServiceOptions,
    ) -> str:
        lines = [
            "[Unit]",
            f"Description={options.description or service_name}",
            "After=sound.target network.target",
            "",
            "[Service]",
        ]
        if options.restart_policy == RestartPolicy.ALWAYS:
            lines += ["Type=simple", "Restart=always", "RestartSec=2"]
        else:
            # Detached children must survive the main process exiting.
            lines += ["Type=oneshot", "RemainAfterExit=yes"]
        if options.user:
            lines.append(f"User={options.user}")
        if options.working_dir:
            lines.append(f"WorkingDirectory={options.working_dir}")
        for key, value in sorted(options.environment.items()):
            lines.append(f'Environment="{key}={value}"')
        lines += [
            f"ExecStart={self._command_line(executable_path, options)}",
            "",
            "[Install]",
            "WantedBy=multi-user.target",
            "",
        ]
        return "\n".join(lines)

    def is_running(self, service_name: str) -> bool:
        r = self._ctl(
            ["systemctl", "is-active", "--quiet", service_name], check=False, read_only=True,
        )
        return r.ok

    def _activate(self, service_name: str, replaced: bool) -> None:
        self._ctl(["systemctl", "daemon-reload"])
        self._ctl(["systemctl", "enable", service_name])
        if replaced:
            self._ctl(["systemctl", "restart", service_name])
        else:
            self._ctl(["systemctl", "start", service_name])

    def _start(self, service_name: str) -> None:
        self._ctl(["systemctl", "start", service_name])

    def disable(self, service_name: str) -> bool:
        if not self.is_available():
            raise SupervisorError("systemd is not available on this host")
        enabled = self._ctl(
            ["systemctl", "is-enabled", "--quiet", service_name], check=False, read_only=True,
        )
        if not enabled.ok:
            return False
        self._ctl(["systemctl", "disable", "--now", service_name])
        return True

    def ensure_autologin(self, user: str, tty: str = "tty1") -> PatchResult:
        drop_in = self.unit_dir / f"getty@{tty}.service.d" / "autologin.conf"
        content = (
            "[Service]\n"
            "ExecStart=\n"
            f"ExecStart=-/sbin/agetty --autologin {user} --noclear %I $TERM\n"
        )
        result = self._patcher.ensure_content(drop_in, content)
        if result == PatchResult.APPLIED:
            self._ctl(["systemctl", "daemon-reload"])
        return result


class RunitSupervisor(ServiceSupervisor):
    """runit service directories, linked into the default runsvdir.

    Link changes follow the patcher's dry-run flag, which mock mode sets too.
    """

    name = "runit"
    definition_mode = 0o755

    def __init__(
        self,
        runner: CommandRunner,
        patcher: FilePatcher,
        sv_dir: str | Path = "/etc/sv",
        runsvdir: str | Path = "/etc/runit/runsvdir/default",
        supervise_timeout: float = 10.0,
    ):
        super().__init__(runner, patcher)
        self.sv_dir = Path(sv_dir)
        self.runsvdir = Path(runsvdir)
        self.supervise_timeout = supervise_timeout

    def is_available(self) -> bool:
        return self._runner.which("sv") is not None

    def definition_path(self, service_name: str) -> Path:
        return self.sv_dir / service_name / "run"

    def render_definition(
        self, service_name: str, executable_path: str, options: ServiceOptions,
    ) -> str:
        command = self._command_line(executable_path, options)
        if options.user:
            command = f"chpst -u {shlex.quote(options.user)} {command}"
        lines = ["#!/bin/sh", f"# {options.description or service_name}", "exec 2>&1"]
        if options.working_dir:
            lines.append(f"cd {shlex.quote(options.working_dir)} || exit 1")
        for key, value in sorted(options.environment.items()):
            lines.append(f"export {key}={shlex.quote(value)}")
        if options.restart_policy == RestartPolicy.ALWAYS:
            lines.append(f"exec {command}")
        else:
            # runsv re-runs ./run whenever it exits; park instead of exiting.
            lines += [command, "exec sleep infinity"]
        return "\n".join(lines) + "\n"

    def is_running(self, service_name: str) -> bool:
        r = self._ctl(["sv", "status", service_name], check=False, read_only=True)
        return r.ok and r.stdout.startswith("run:")

    def _activate(self, service_name: str, replaced: bool) -> None:
        self._link(service_name)
        if replaced:
            self._ctl(["sv", "restart", service_name])
            return
        self._wait_supervised(service_name)
        self._ctl(["sv", "up", service_name])

    def _start(self, service_name: str) -> None:
        self._link(service_name)
        self._wait_supervised(service_name)
        self._ctl(["sv", "up", service_name])

    def disable(self, service_name: str) -> bool:
        if not self.is_available():
            raise SupervisorError("runit is not available on this host")
        link = self.runsvdir / service_name
        if not (link.is_symlink() or link.exists()):
            return False
        self._ctl(["sv", "down", service_name])
        if self._patcher.dry_run:
            logger.info("[dry-run] would remove %s", link)
            return True
        try:
            link.unlink()
        except OSError as e:
            raise IoError(f"Cannot remove {link}: {e}") from e
        return True

    def ensure_autologin(self, user: str, tty: str = "tty1") -> PatchResult:
        service = f"agetty-{tty}"
        content = (
            "#!/bin/sh\n"
            f"exec /sbin/agetty --autologin {user} --noclear {tty} linux\n"
        )
        result = self._patcher.ensure_content(self.definition_path(service), content, mode=0o755)
        self._link(service)
        return result

    def _link(self, service_name: str) -> None:
        link = self.runsvdir / service_name
        target = self.sv_dir / service_name
        if link.is_symlink() and Path(os.readlink(link)) == target:
            return
        if self._patcher.dry_run:
            logger.info("[dry-run] would link %s → %s", link, target)
            return
        try:
            self.runsvdir.mkdir(parents=True, exist_ok=True)
            if link.is_symlink():
                link.unlink()
            link.symlink_to(target)
        except OSError as e:
            raise IoError(f"Cannot link {link} → {target}: {e}") from e
        logger.info("Linked %s → %s", link, target)

    def _wait_supervised(self, service_name: str) -> None:
        """runsvdir scans for new links every few seconds; wait for runsv."""
        if self._patcher.dry_run:
            return
        ok = self.sv_dir / service_name / "supervise" / "ok"
        deadline = time.monotonic() + self.supervise_timeout
        while not ok.exists():
            if time.monotonic() >= deadline:
                raise SupervisorError(
                    f"runsvdir did not pick up {service_name} within {self.supervise_timeout}s"
                )
            time.sleep(0.5)


def get_supervisor(
    kind: str,
    runner: CommandRunner,
    patcher: FilePatcher,
) -> ServiceSupervisor:
    """Build the supervisor backend for ``kind`` (``auto`` detects it)."""
    if kind == "auto":
        kind = detect_init_system()
    if kind == "systemd":
        return SystemdSupervisor(runner, patcher)
    if kind == "runit":
        return RunitSupervisor(runner, patcher)
    raise SupervisorError(f"No supported service supervisor detected (got '{kind}')")

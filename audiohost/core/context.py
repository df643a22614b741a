"""
Host services — the collaborators every step is built from.

One bundle per run: a command runner, a file patcher and a package
installer sharing the same dry-run mode, plus the service supervisor,
which is detected lazily because only some stages need it.

Entry points build it once:

    - CLI:    main.py → use case → build_services(config, dry_run=...)
    - Tests:  HostServices(runner=MockCommandRunner(), ...)
"""

from __future__ import annotations

import pwd
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from audiohost.adapters.mock import MockCommandRunner
from audiohost.adapters.shell.command import CommandRunner
from audiohost.adapters.shell.filesystem import FilePatcher
from audiohost.core.models.host import HostConfig
from audiohost.core.services.packages import PackageInstaller
from audiohost.core.services.supervisor import ServiceSupervisor, get_supervisor


@dataclass
class HostServices:
    """Collaborators shared by the steps of one run."""

    runner: CommandRunner
    patcher: FilePatcher
    installer: PackageInstaller
    supervisor_factory: Callable[[], ServiceSupervisor] | None = None
    _supervisor: Optional[ServiceSupervisor] = field(default=None, repr=False)

    @property
    def dry_run(self) -> bool:
        """True when nothing on the host may change (dry-run or mock mode)."""
        return self.runner.dry_run or self.patcher.dry_run

    def supervisor(self) -> ServiceSupervisor:
        """The host's service supervisor (detected on first use)."""
        if self._supervisor is None:
            if self.supervisor_factory is None:
                self._supervisor = get_supervisor("auto", self.runner, self.patcher)
            else:
                self._supervisor = self.supervisor_factory()
        return self._supervisor


def build_services(
    config: HostConfig,
    dry_run: bool = False,
    mock_mode: bool = False,
) -> HostServices:
    """Build the services for one run from the host configuration."""
    runner: CommandRunner
    if mock_mode:
        runner = MockCommandRunner()
    else:
        runner = CommandRunner(dry_run=dry_run, default_timeout=config.command_timeout)

    # Mock mode must never write host files either.
    patcher = FilePatcher(dry_run=dry_run or mock_mode)
    installer = PackageInstaller(runner, timeout=config.command_timeout)

    kind = config.autostart.supervisor
    if mock_mode and kind == "auto":
        kind = "systemd"

    def _supervisor() -> ServiceSupervisor:
        return get_supervisor(kind, runner, patcher)

    return HostServices(
        runner=runner,
        patcher=patcher,
        installer=installer,
        supervisor_factory=_supervisor,
    )


def user_home(user: str) -> Path:
    """Home directory of ``user`` (not of whoever runs us under sudo)."""
    try:
        return Path(pwd.getpwnam(user).pw_dir)
    except KeyError:
        return Path.home()


def expand_user_path(path: str, user: str) -> Path:
    """Expand a leading ``~`` against ``user``'s home directory."""
    if path == "~" or path.startswith("~/"):
        return user_home(user) / path[2:]
    return Path(path)

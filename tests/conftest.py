"""
Shared test fixtures and configuration.
"""

import getpass
import subprocess
from pathlib import Path

import pytest

from audiohost.adapters.mock import MockCommandRunner
from audiohost.adapters.shell.filesystem import FilePatcher
from audiohost.core.config import loader
from audiohost.core.context import HostServices
from audiohost.core.models.host import HostConfig
from audiohost.core.services.packages import PackageInstaller, reset_update_state
from audiohost.core.services.supervisor import SystemdSupervisor

APLAY_OUTPUT = """\
**** List of PLAYBACK Hardware Devices ****
card 0: PCH [HDA Intel PCH], device 0: ALC3246 Analog [ALC3246 Analog]
  Subdevices: 1/1
  Subdevice #0: subdevice #0
card 2: Device [USB Composite Device], device 0: USB Audio [USB Audio]
  Subdevices: 1/1
  Subdevice #0: subdevice #0
"""


@pytest.fixture(autouse=True)
def _isolated_state(tmp_path: Path, monkeypatch):
    """Keep the run ledger, config search and apt-get update flag per test."""
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "xdg-state"))
    for var in (
        "AUDIOHOST_LOG_LEVEL", "AUDIOHOST_LOG_FILE", "AUDIOHOST_LOG_FILE_LEVEL", "AUDIOHOST_CONFIG",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(loader, "SYSTEM_CONFIG", tmp_path / "etc" / "audiohost.yml")
    reset_update_state()
    yield
    reset_update_state()


@pytest.fixture
def aplay_output() -> str:
    return APLAY_OUTPUT


@pytest.fixture
def mock_runner() -> MockCommandRunner:
    return MockCommandRunner()


@pytest.fixture
def unit_dir(tmp_path: Path) -> Path:
    return tmp_path / "systemd"


@pytest.fixture
def services(tmp_path: Path, mock_runner: MockCommandRunner, unit_dir: Path) -> HostServices:
    """Services that write only below tmp_path and spawn nothing."""
    patcher = FilePatcher()
    return HostServices(
        runner=mock_runner,
        patcher=patcher,
        installer=PackageInstaller(mock_runner),
        supervisor_factory=lambda: SystemdSupervisor(mock_runner, patcher, unit_dir=unit_dir),
    )


@pytest.fixture
def host_config(tmp_path: Path) -> HostConfig:
    """A config whose every host path points below tmp_path."""
    return HostConfig.model_validate({
        "user": getpass.getuser(),
        "build_dir": str(tmp_path / "build"),
        "permissions": {"limits_file": str(tmp_path / "limits.conf")},
        "packages": {"kernel_headers": False},
        "audio_server": {
            "log_file": str(tmp_path / "jack.log"),
            "settle_seconds": 0,
        },
        "session": {
            "profile_file": str(tmp_path / "home" / ".bash_profile"),
            "xinitrc_file": str(tmp_path / "home" / ".xinitrc"),
        },
    })


@pytest.fixture
def config_file(tmp_path: Path, host_config: HostConfig) -> Path:
    """host_config written out as audiohost.yml."""
    import yaml

    path = tmp_path / "audiohost.yml"
    path.write_text(yaml.safe_dump(host_config.model_dump(mode="json")))
    return path


class QueryOnlyHost:
    """Stands in for the host during dry-runs: answers queries, forbids changes.

    Only commands that inspect the host may reach ``subprocess.run``.
    Anything else, and every ``Popen``, is recorded as a violation and
    fails the test at teardown, even when a step absorbed the error.
    """

    QUERIES = (
        ("dpkg-query",), ("id",), ("pidof",), ("aplay",),
        ("systemctl", "is-active"), ("systemctl", "is-enabled"), ("sv", "status"),
    )

    def __init__(self):
        self.answers: dict[tuple[str, ...], tuple[int, str]] = {}
        self.spawned: list[list[str]] = []
        self.violations: list[list[str]] = []

    def answer(self, prefix: list[str], returncode: int = 0, stdout: str = "") -> None:
        self.answers[tuple(prefix)] = (returncode, stdout)

    def ran(self, program: str) -> bool:
        return any(cmd[0] == program for cmd in self.spawned)

    def run(self, cmd, **kwargs):
        cmd = list(cmd)
        if not any(tuple(cmd[: len(q)]) == q for q in self.QUERIES):
            self.violations.append(cmd)
            raise AssertionError(f"dry-run changed the host: {cmd}")
        self.spawned.append(cmd)
        code, out = 1, ""
        for prefix in sorted(self.answers, key=len, reverse=True):
            if tuple(cmd[: len(prefix)]) == prefix:
                code, out = self.answers[prefix]
                break
        return subprocess.CompletedProcess(cmd, code, stdout=out, stderr="")

    def popen(self, cmd, *args, **kwargs):
        self.violations.append(list(cmd))
        raise AssertionError(f"dry-run spawned a process: {cmd}")


@pytest.fixture
def query_only_host(monkeypatch):
    host = QueryOnlyHost()
    monkeypatch.setattr(subprocess, "run", host.run)
    monkeypatch.setattr(subprocess, "Popen", host.popen)
    yield host
    assert host.violations == []

"""
Tests for the service supervisor bridge — systemd and runit backends.
"""

import stat
from pathlib import Path

import pytest

from audiohost.adapters.mock import MockCommandRunner
from audiohost.adapters.shell.filesystem import FilePatcher, PatchResult
from audiohost.core.context import build_services
from audiohost.core.errors import ExecutionError, SupervisorError
from audiohost.core.services.supervisor import (
    RegisterResult,
    RestartPolicy,
    RunitSupervisor,
    ServiceOptions,
    SystemdSupervisor,
    get_supervisor,
)

NAME = "audiohost-launch"
EXE = "/usr/local/bin/audiohost"
OPTIONS = ServiceOptions(user="alice", working_dir="/home/alice", args=("launch",))

# ── systemd ──────────────────────────────────────────────────────────


def _systemd(runner: MockCommandRunner, tmp_path: Path) -> SystemdSupervisor:
    return SystemdSupervisor(runner, FilePatcher(), unit_dir=tmp_path / "units")


class TestSystemdRender:
    def test_never_is_oneshot(self, mock_runner, tmp_path):
        text = _systemd(mock_runner, tmp_path).render_definition(NAME, EXE, OPTIONS)
        assert "Type=oneshot" in text
        assert "RemainAfterExit=yes" in text
        assert "Restart=always" not in text
        assert f"ExecStart={EXE} launch" in text
        assert "User=alice" in text
        assert "WorkingDirectory=/home/alice" in text
        assert "WantedBy=multi-user.target" in text

    def test_always_restarts(self, mock_runner, tmp_path):
        opts = ServiceOptions(restart_policy=RestartPolicy.ALWAYS)
        text = _systemd(mock_runner, tmp_path).render_definition(NAME, EXE, opts)
        assert "Restart=always" in text
        assert "Type=simple" in text

    def test_environment_and_quoting(self, mock_runner, tmp_path):
        opts = ServiceOptions(args=("--config", "/etc/my audio.yml"), environment={"A": "1"})
        text = _systemd(mock_runner, tmp_path).render_definition(NAME, EXE, opts)
        assert 'Environment="A=1"' in text
        assert "'/etc/my audio.yml'" in text


class TestSystemdRegister:
    def test_absent_is_written_enabled_started(self, mock_runner, tmp_path):
        sup = _systemd(mock_runner, tmp_path)
        assert sup.register_and_start(NAME, EXE, OPTIONS) == RegisterResult.REGISTERED
        assert sup.definition_path(NAME).is_file()
        assert mock_runner.called("systemctl", "daemon-reload")
        assert mock_runner.called("systemctl", "enable", NAME)
        assert mock_runner.called("systemctl", "start", NAME)
        assert not mock_runner.called("systemctl", "restart")

    def test_identical_is_already_registered(self, mock_runner, tmp_path):
        sup = _systemd(mock_runner, tmp_path)
        sup.register_and_start(NAME, EXE, OPTIONS)
        path = sup.definition_path(NAME)
        before = path.stat().st_mtime_ns
        mock_runner.reset()

        assert sup.register_and_start(NAME, EXE, OPTIONS) == RegisterResult.ALREADY_REGISTERED
        assert path.stat().st_mtime_ns == before
        assert not mock_runner.called("systemctl", "daemon-reload")
        assert not mock_runner.called("systemctl", "start")

    def test_identical_but_stopped_is_started(self, mock_runner, tmp_path):
        sup = _systemd(mock_runner, tmp_path)
        sup.register_and_start(NAME, EXE, OPTIONS)
        mock_runner.reset()
        mock_runner.set_failure(["systemctl", "is-active"], stderr="", exit_code=3)

        assert sup.register_and_start(NAME, EXE, OPTIONS) == RegisterResult.ALREADY_REGISTERED
        assert mock_runner.called("systemctl", "start", NAME)

    def test_changed_is_rewritten_and_restarted(self, mock_runner, tmp_path):
        sup = _systemd(mock_runner, tmp_path)
        sup.register_and_start(NAME, EXE, OPTIONS)
        mock_runner.reset()

        changed = ServiceOptions(user="bob", args=("launch",))
        assert sup.register_and_start(NAME, EXE, changed) == RegisterResult.REGISTERED
        assert "User=bob" in sup.definition_path(NAME).read_text()
        assert mock_runner.called("systemctl", "daemon-reload")
        assert mock_runner.called("systemctl", "restart", NAME)

    def test_unavailable(self, tmp_path):
        sup = _systemd(MockCommandRunner(all_executables=False), tmp_path)
        with pytest.raises(SupervisorError, match="not available"):
            sup.register_and_start(NAME, EXE, OPTIONS)

    def test_rejected_command(self, mock_runner, tmp_path):
        mock_runner.set_failure(["systemctl", "enable"], stderr="Failed to enable unit")
        with pytest.raises(SupervisorError, match="Failed to enable unit"):
            _systemd(mock_runner, tmp_path).register_and_start(NAME, EXE, OPTIONS)

    def test_unreachable(self, mock_runner, tmp_path):
        mock_runner.set_exception(["systemctl"], ExecutionError("Executable not found: systemctl"))
        with pytest.raises(SupervisorError, match="unreachable"):
            _systemd(mock_runner, tmp_path).register_and_start(NAME, EXE, OPTIONS)

    def test_control_commands_need_root(self, mock_runner, tmp_path):
        _systemd(mock_runner, tmp_path).register_and_start(NAME, EXE, OPTIONS)
        assert all(c["needs_root"] for c in mock_runner.call_log)


class TestSystemdExtras:
    def test_disable_not_enabled(self, mock_runner, tmp_path):
        mock_runner.set_failure(["systemctl", "is-enabled"])
        assert _systemd(mock_runner, tmp_path).disable("slim") is False
        assert not mock_runner.called("systemctl", "disable")

    def test_disable(self, mock_runner, tmp_path):
        assert _systemd(mock_runner, tmp_path).disable("slim") is True
        assert mock_runner.called("systemctl", "disable", "--now", "slim")

    def test_autologin_drop_in(self, mock_runner, tmp_path):
        sup = _systemd(mock_runner, tmp_path)
        assert sup.ensure_autologin("alice", "tty1") == PatchResult.APPLIED
        drop_in = tmp_path / "units" / "getty@tty1.service.d" / "autologin.conf"
        assert "--autologin alice" in drop_in.read_text()
        assert sup.ensure_autologin("alice", "tty1") == PatchResult.ALREADY_PRESENT
        assert mock_runner.count("systemctl", "daemon-reload") == 1


# ── runit ────────────────────────────────────────────────────────────


def _runit(
    runner: MockCommandRunner,
    tmp_path: Path,
    timeout: float = 1.0,
    patcher: FilePatcher | None = None,
) -> RunitSupervisor:
    return RunitSupervisor(
        runner,
        patcher or FilePatcher(),
        sv_dir=tmp_path / "sv",
        runsvdir=tmp_path / "runsvdir",
        supervise_timeout=timeout,
    )


def _supervised(tmp_path: Path, name: str = NAME) -> None:
    ok = tmp_path / "sv" / name / "supervise" / "ok"
    ok.parent.mkdir(parents=True)
    ok.touch()


class TestRunit:
    def test_run_script(self, mock_runner, tmp_path):
        text = _runit(mock_runner, tmp_path).render_definition(NAME, EXE, OPTIONS)
        assert text.startswith("#!/bin/sh\n")
        assert "chpst -u alice" in text
        assert "exec sleep infinity" in text

    def test_always_execs(self, mock_runner, tmp_path):
        opts = ServiceOptions(restart_policy=RestartPolicy.ALWAYS, args=("launch",))
        text = _runit(mock_runner, tmp_path).render_definition(NAME, EXE, opts)
        assert f"exec {EXE} launch" in text
        assert "sleep infinity" not in text

    def test_register(self, mock_runner, tmp_path):
        _supervised(tmp_path)
        sup = _runit(mock_runner, tmp_path)
        assert sup.register_and_start(NAME, EXE, OPTIONS) == RegisterResult.REGISTERED

        run = tmp_path / "sv" / NAME / "run"
        assert stat.S_IMODE(run.stat().st_mode) == 0o755
        link = tmp_path / "runsvdir" / NAME
        assert link.is_symlink()
        assert link.resolve() == (tmp_path / "sv" / NAME).resolve()
        assert mock_runner.called("sv", "up", NAME)

    def test_already_registered_and_running(self, mock_runner, tmp_path):
        _supervised(tmp_path)
        sup = _runit(mock_runner, tmp_path)
        sup.register_and_start(NAME, EXE, OPTIONS)
        mock_runner.reset()
        mock_runner.set_response(["sv", "status", NAME], stdout=f"run: {NAME}: (pid 42) 5s")

        assert sup.register_and_start(NAME, EXE, OPTIONS) == RegisterResult.ALREADY_REGISTERED
        assert not mock_runner.called("sv", "up")

    def test_changed_restarts(self, mock_runner, tmp_path):
        _supervised(tmp_path)
        sup = _runit(mock_runner, tmp_path)
        sup.register_and_start(NAME, EXE, OPTIONS)
        sup.register_and_start(NAME, EXE, ServiceOptions(args=("launch", "--mock")))
        assert mock_runner.called("sv", "restart", NAME)

    def test_not_picked_up_by_runsvdir(self, mock_runner, tmp_path):
        sup = _runit(mock_runner, tmp_path, timeout=0.2)
        with pytest.raises(SupervisorError, match="did not pick up"):
            sup.register_and_start(NAME, EXE, OPTIONS)

    def test_disable_removes_link(self, mock_runner, tmp_path):
        (tmp_path / "runsvdir").mkdir()
        (tmp_path / "runsvdir" / "slim").symlink_to(tmp_path / "sv" / "slim")
        sup = _runit(mock_runner, tmp_path)
        assert sup.disable("slim") is True
        assert mock_runner.called("sv", "down", "slim")
        assert not (tmp_path / "runsvdir" / "slim").is_symlink()
        assert sup.disable("slim") is False

    def test_autologin(self, mock_runner, tmp_path):
        sup = _runit(mock_runner, tmp_path)
        assert sup.ensure_autologin("alice") == PatchResult.APPLIED
        run = tmp_path / "sv" / "agetty-tty1" / "run"
        assert "--autologin alice" in run.read_text()
        assert (tmp_path / "runsvdir" / "agetty-tty1").is_symlink()

    def test_mock_mode_leaves_host_alone(self, mock_runner, tmp_path):
        sup = _runit(mock_runner, tmp_path, timeout=0.2, patcher=FilePatcher(dry_run=True))
        assert sup.register_and_start(NAME, EXE, OPTIONS) == RegisterResult.REGISTERED
        assert mock_runner.called("sv", "up", NAME)
        assert not (tmp_path / "sv").exists()
        assert not (tmp_path / "runsvdir").exists()

    def test_mock_mode_keeps_existing_link(self, mock_runner, tmp_path):
        (tmp_path / "runsvdir").mkdir()
        (tmp_path / "runsvdir" / "slim").symlink_to(tmp_path / "sv" / "slim")
        sup = _runit(mock_runner, tmp_path, patcher=FilePatcher(dry_run=True))
        assert sup.disable("slim") is True
        assert (tmp_path / "runsvdir" / "slim").is_symlink()

    def test_status_is_read_only(self, mock_runner, tmp_path):
        _runit(mock_runner, tmp_path).is_running(NAME)
        status = mock_runner.call_log[-1]
        assert status["read_only"] is True
        assert status["needs_root"] is False


class TestGetSupervisor:
    def test_explicit(self, mock_runner):
        assert isinstance(get_supervisor("systemd", mock_runner, FilePatcher()), SystemdSupervisor)
        assert isinstance(get_supervisor("runit", mock_runner, FilePatcher()), RunitSupervisor)

    def test_unsupported(self, mock_runner):
        with pytest.raises(SupervisorError, match="No supported service supervisor"):
            get_supervisor("upstart", mock_runner, FilePatcher())

    def test_mock_mode_services(self, host_config):
        config = host_config.model_copy(
            update={"autostart": host_config.autostart.model_copy(update={"supervisor": "runit"})},
        )
        services = build_services(config, mock_mode=True)
        assert services.dry_run
        assert services.patcher.dry_run
        assert isinstance(services.supervisor(), RunitSupervisor)

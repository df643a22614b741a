"""
Tests for the launch stages — JACK restart on the resolved card, DAW launch.
"""

import logging

from audiohost.adapters.mock import MockCommandRunner
from audiohost.adapters.shell.command import CommandRunner
from audiohost.adapters.shell.filesystem import FilePatcher
from audiohost.core.context import HostServices
from audiohost.core.engine.orchestrator import ProvisioningOrchestrator
from audiohost.core.models.host import HostConfig
from audiohost.core.models.step import RunStatus
from audiohost.core.services.launch import STOP_GRACE_SECONDS, build_launch_stages, jack_argv
from audiohost.core.services.packages import PackageInstaller


class Sleeps:
    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _launch(config: HostConfig, services: HostServices, sleep: Sleeps | None = None):
    stages = build_launch_stages(config, services, sleep=sleep or Sleeps())
    return ProvisioningOrchestrator(stages, dry_run=services.dry_run).run()


def _jack_call(runner: MockCommandRunner) -> dict:
    return next(c for c in runner.call_log if c["argv"][0] == "jackd")


class TestJackArgv:
    def test_defaults(self):
        assert jack_argv(HostConfig(), "2") == [
            "jackd", "-d", "alsa", "-d", "hw:2", "-r", "48000", "-p", "256", "-n", "2",
        ]


class TestAudioServer:
    def test_matched_card(self, host_config, services, mock_runner, aplay_output, tmp_path):
        mock_runner.set_response(["aplay", "-l"], stdout=aplay_output)
        report = _launch(host_config, services)

        assert report.state.status == RunStatus.COMPLETED
        call = _jack_call(mock_runner)
        assert "hw:2" in call["argv"]
        assert call["detach"] is True
        assert call["log_path"] == str(tmp_path / "jack.log")
        assert report.outcome_for("resolve-card").detail == {
            "card": "2", "matched": True, "device": "hw:2",
        }

    def test_fallback_card(self, host_config, services, mock_runner, caplog):
        caplog.set_level(logging.WARNING)
        mock_runner.set_response(["aplay", "-l"], stdout="card 0: PCH [HDA Intel PCH], device 0: x")
        report = _launch(host_config, services)

        assert "hw:0" in _jack_call(mock_runner)["argv"]
        assert report.outcome_for("resolve-card").detail["matched"] is False
        assert "falling back to card 0" in caplog.text
        assert report.completed

    def test_aplay_missing_still_launches(self, host_config, services, mock_runner):
        mock_runner.set_failure(["aplay"], stderr="aplay: command not found", exit_code=127)
        report = _launch(host_config, services)
        assert "hw:0" in _jack_call(mock_runner)["argv"]
        assert report.completed

    def test_running_server_is_stopped_first(self, host_config, services, mock_runner):
        mock_runner.set_response(["pidof", "jackd"], stdout="1234")
        sleeps = Sleeps()
        report = _launch(host_config, services, sleeps)

        calls = mock_runner.calls
        assert calls.index(["killall", "jackd"]) < calls.index(_jack_call(mock_runner)["argv"])
        assert sleeps.calls[0] == STOP_GRACE_SECONDS
        assert report.outcome_for("stop-server").detail["stopped"] == ["1234"]

    def test_no_running_server(self, host_config, services, mock_runner):
        mock_runner.set_failure(["pidof"], stderr="", exit_code=1)
        report = _launch(host_config, services)
        assert report.outcome_for("stop-server").reason == "not running"
        assert not mock_runner.called("killall")

    def test_settle_wait(self, host_config, services, mock_runner):
        mock_runner.set_failure(["pidof"], stderr="", exit_code=1)
        config = HostConfig.model_validate({
            **host_config.model_dump(),
            "audio_server": {**host_config.audio_server.model_dump(), "settle_seconds": 2.0},
        })
        sleeps = Sleeps()
        _launch(config, services, sleeps)
        assert sleeps.calls == [2.0]

    def test_missing_jackd_aborts(self, host_config, tmp_path):
        runner = MockCommandRunner(all_executables=False, executables={"reaper"})
        patcher = FilePatcher()
        services = HostServices(runner=runner, patcher=patcher, installer=PackageInstaller(runner))
        report = _launch(host_config, services)

        assert report.state.status == RunStatus.ABORTED
        assert report.state.stage_index == 0
        assert report.outcome_for("server-present").error_kind == "ExecutionError"
        assert not runner.called("reaper")

    def test_group_warning_does_not_fail(self, host_config, services, mock_runner, caplog):
        caplog.set_level(logging.WARNING)
        mock_runner.set_response(["id", "-nG"], stdout="users")
        report = _launch(host_config, services)
        assert report.outcome_for("audio-group").detail["warning"] == "not a member"
        assert "is not in the 'audio' group" in caplog.text
        assert report.completed


class TestWorkstation:
    def test_daw_launched_detached(self, host_config, services, mock_runner):
        _launch(host_config, services)
        call = next(c for c in mock_runner.call_log if c["argv"] == ["reaper"])
        assert call["detach"] is True

    def test_daw_after_jack(self, host_config, services, mock_runner):
        _launch(host_config, services)
        argv0 = [c[0] for c in mock_runner.calls]
        assert argv0.index("jackd") < argv0.index("reaper")

    def test_missing_daw(self, host_config, tmp_path):
        runner = MockCommandRunner(all_executables=False, executables={"jackd"})
        services = HostServices(runner=runner, patcher=FilePatcher(), installer=PackageInstaller(runner))
        report = _launch(host_config, services)
        assert report.state.stage_name == "workstation"
        assert report.state.stage_index == 1
        assert runner.called("jackd")


class TestDryRun:
    @staticmethod
    def _dry_run(host_config):
        # Executables that exist everywhere, so the PATH checks pass.
        config = HostConfig.model_validate({
            **host_config.model_dump(),
            "audio_server": {**host_config.audio_server.model_dump(), "executable": "sh"},
            "daw": {**host_config.daw.model_dump(), "executable": "sh"},
        })
        runner = CommandRunner(dry_run=True)
        services = HostServices(
            runner=runner, patcher=FilePatcher(dry_run=True), installer=PackageInstaller(runner),
        )
        sleeps = Sleeps()
        return runner, _launch(config, services, sleeps), sleeps

    def test_spawns_nothing(self, host_config, tmp_path, query_only_host):
        runner, report, sleeps = self._dry_run(host_config)

        assert {cmd[0] for cmd in query_only_host.spawned} == {"id", "pidof", "aplay"}
        assert not any("killall" in cmd for cmd in runner.planned)
        assert report.completed
        assert sleeps.calls == []
        assert ["sh", "-d", "alsa", "-d", "hw:0", "-r", "48000", "-p", "256", "-n", "2"] in runner.planned
        assert not (tmp_path / "jack.log").exists()

    def test_plan_follows_running_server(self, host_config, query_only_host, aplay_output):
        query_only_host.answer(["pidof"], stdout="4242\n")
        query_only_host.answer(["aplay"], stdout=aplay_output)
        runner, report, _ = self._dry_run(host_config)

        assert report.outcome_for("stop-server").detail["stopped"] == ["4242"]
        assert any(cmd[-2:] == ["killall", "sh"] for cmd in runner.planned)
        assert ["sh", "-d", "alsa", "-d", "hw:2", "-r", "48000", "-p", "256", "-n", "2"] in runner.planned

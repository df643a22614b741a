"""
Mock command runner — universal test double for external processes.

Used in mock mode (``--mock``) and in tests to simulate the package
manager, supervisor and audio tools without touching the host.
Configurable per command prefix to return success, failure, custom
output, or to raise.
"""

from __future__ import annotations

from pathlib import Path

from audiohost.adapters.shell.command import CommandResult, CommandRunner


class MockCommandRunner(CommandRunner):
    """Command runner that never spawns anything.

    By default every command succeeds with ``default_output``.
    Responses are matched on the longest registered argv prefix.
    ``needs_root`` is recorded but never adds a sudo prefix.  Registering several
    responses for one prefix plays them back in order, repeating the
    last one.
    """

    name = "mock"

    def __init__(
        self,
        default_output: str = "",
        executables: set[str] | None = None,
        all_executables: bool = True,
    ):
        super().__init__(dry_run=False)
        self._default_output = default_output
        self._executables = set(executables or ())
        self._all_executables = all_executables
        self._responses: dict[tuple[str, ...], list[CommandResult | Exception]] = {}
        self._call_log: list[dict] = []

    @property
    def call_log(self) -> list[dict]:
        """Every ``run`` call: argv plus the keyword options it received."""
        return self._call_log

    @property
    def calls(self) -> list[list[str]]:
        """Just the argv of every call."""
        return [c["argv"] for c in self._call_log]

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def called(self, *prefix: str) -> bool:
        """Whether any call started with ``prefix``."""
        return any(tuple(argv[: len(prefix)]) == prefix for argv in self.calls)

    def count(self, *prefix: str) -> int:
        return sum(1 for argv in self.calls if tuple(argv[: len(prefix)]) == prefix)

    # ── Configuration ───────────────────────────────────────────

    def set_response(
        self,
        prefix: list[str] | tuple[str, ...],
        exit_code: int = 0,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Queue a response for commands starting with ``prefix``."""
        self._responses.setdefault(tuple(prefix), []).append(
            CommandResult(exit_code=exit_code, stdout=stdout, stderr=stderr)
        )

    def set_failure(
        self,
        prefix: list[str] | tuple[str, ...],
        stderr: str = "Mock failure",
        exit_code: int = 1,
    ) -> None:
        """Configure commands starting with ``prefix`` to exit non-zero."""
        self.set_response(prefix, exit_code=exit_code, stderr=stderr)

    def set_exception(self, prefix: list[str] | tuple[str, ...], error: Exception) -> None:
        """Configure commands starting with ``prefix`` to raise."""
        self._responses.setdefault(tuple(prefix), []).append(error)

    def set_executable(self, name: str, available: bool = True) -> None:
        if available:
            self._executables.add(name)
        else:
            self._executables.discard(name)
            self._all_executables = False

    # ── Runner protocol ─────────────────────────────────────────

    def which(self, executable: str) -> str | None:
        if executable in self._executables or self._all_executables:
            return f"/usr/bin/{executable}"
        return None

    def run(
        self,
        argv: list[str],
        *,
        timeout: float | None = None,
        capture_output: bool = True,
        detach: bool = False,
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
        log_path: str | Path | None = None,
        needs_root: bool = False,
        read_only: bool = False,
    ) -> CommandResult:
        cmd = list(argv)
        self._call_log.append({
            "argv": cmd,
            "timeout": timeout,
            "detach": detach,
            "cwd": str(cwd) if cwd is not None else None,
            "env": env,
            "log_path": str(log_path) if log_path is not None else None,
            "needs_root": needs_root,
            "read_only": read_only,
        })

        response = self._match(cmd)
        if isinstance(response, Exception):
            raise response
        if response is None:
            return CommandResult(argv=cmd, stdout=self._default_output, detached=detach)
        return CommandResult(
            argv=cmd,
            exit_code=response.exit_code,
            stdout=response.stdout,
            stderr=response.stderr,
            detached=detach,
        )

    def _match(self, argv: list[str]) -> CommandResult | Exception | None:
        best: tuple[str, ...] | None = None
        for prefix in self._responses:
            if tuple(argv[: len(prefix)]) == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return None
        queue = self._responses[best]
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def reset(self) -> None:
        """Clear call log and custom responses."""
        self._call_log.clear()
        self._responses.clear()

"""
Shell command adapter — execute external processes.

This is the most fundamental adapter: every package-manager call,
installer run, supervisor command and audio launch goes through it.
It is the SINGLE PLACE where ``subprocess`` is used.

Contract:
    - A non-zero exit code is returned, never raised.
    - A missing or unspawnable executable raises ``ExecutionError``.
    - An expired timeout kills the child and raises ``CommandTimeout``.
    - In dry-run mode nothing that changes the host is spawned; the
      intended command is logged.  Read-only queries (``read_only=True``)
      still run, so the plan reflects what is already in place.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path

from audiohost.core.errors import CommandTimeout, ExecutionError

logger = logging.getLogger(__name__)

# Output kept on results (tail), enough for error reports.
_MAX_OUTPUT = 4000


@dataclass
class CommandResult:
    """Outcome of one external command."""

    argv: list[str] = field(default_factory=list)
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    dry_run: bool = False
    detached: bool = False
    pid: int | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def error_text(self) -> str:
        """Raw stderr, or a generic message when the command printed nothing."""
        text = self.stderr.strip() or self.stdout.strip()
        return text or f"Command exited with code {self.exit_code}"

    def to_dict(self) -> dict:
        return {
            "argv": self.argv,
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
            "dry_run": self.dry_run,
            "detached": self.detached,
        }


def format_argv(argv: list[str]) -> str:
    """Render an argv list as a copy-pasteable shell line."""
    return shlex.join(argv)


class CommandRunner:
    """Run external commands and capture their output.

    Args:
        dry_run: Log intended invocations instead of executing them.
        default_timeout: Timeout in seconds applied when a call passes none.
    """

    name = "shell"

    def __init__(self, dry_run: bool = False, default_timeout: float | None = None):
        self.dry_run = dry_run
        self.default_timeout = default_timeout
        self._planned: list[list[str]] = []

    @property
    def planned(self) -> list[list[str]]:
        """Commands that were logged but not executed (dry-run only)."""
        return self._planned

    def which(self, executable: str) -> str | None:
        """Resolve an executable on PATH (read-only, allowed in dry-run)."""
        return shutil.which(executable)

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
        """Run one command.

        Args:
            argv: Command and arguments (never passed through a shell).
            timeout: Seconds before the child is killed.
            capture_output: Capture stdout/stderr (ignored when detached).
            detach: Spawn in a new session and return immediately.
            cwd: Working directory.
            env: Extra environment variables merged over ``os.environ``.
            log_path: Where a detached process writes stdout/stderr.
            needs_root: Prefix ``sudo -n`` when not already root.
            read_only: The command only inspects the host; it runs even in
                dry-run mode.

        Returns:
            CommandResult. Non-zero exit codes are reported, not raised.

        Raises:
            ExecutionError: The executable is missing or cannot be spawned.
            CommandTimeout: The command exceeded ``timeout``.
        """
        if not argv:
            raise ExecutionError("Empty command")

        cmd = list(argv)
        if needs_root and os.geteuid() != 0:
            cmd = ["sudo", "-n"] + cmd

        if self.dry_run and not read_only:
            self._planned.append(cmd)
            suffix = " (detached)" if detach else ""
            logger.info("[dry-run] would run: %s%s", format_argv(cmd), suffix)
            return CommandResult(argv=cmd, dry_run=True, detached=detach)

        full_env = None
        if env:
            full_env = os.environ.copy()
            full_env.update(env)

        if detach:
            return self._spawn_detached(cmd, cwd=cwd, env=full_env, log_path=log_path)

        effective_timeout = timeout if timeout is not None else self.default_timeout
        logger.debug("Executing: %s (cwd=%s)", format_argv(cmd), cwd)
        start = time.monotonic()

        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                env=full_env,
                capture_output=capture_output,
                text=True,
                timeout=effective_timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandTimeout(cmd, effective_timeout or 0) from e
        except FileNotFoundError as e:
            raise ExecutionError(f"Executable not found: {cmd[0]}") from e
        except OSError as e:
            raise ExecutionError(f"Cannot spawn {cmd[0]}: {e}") from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        stdout = (result.stdout or "")[-_MAX_OUTPUT:]
        stderr = (result.stderr or "")[-_MAX_OUTPUT:]

        if result.returncode != 0:
            logger.debug("Command exited %d: %s", result.returncode, format_argv(cmd))

        return CommandResult(
            argv=cmd,
            exit_code=result.returncode,
            stdout=stdout,
            stderr=stderr,
            duration_ms=elapsed_ms,
        )

    def _spawn_detached(
        self,
        cmd: list[str],
        *,
        cwd: str | Path | None,
        env: dict[str, str] | None,
        log_path: str | Path | None,
    ) -> CommandResult:
        """Start a process in its own session and forget about it."""
        sink = None
        try:
            if log_path:
                target = Path(log_path).expanduser()
                target.parent.mkdir(parents=True, exist_ok=True)
                sink = target.open("ab")
            proc = subprocess.Popen(
                cmd,
                cwd=cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=sink if sink is not None else subprocess.DEVNULL,
                stderr=subprocess.STDOUT if sink is not None else subprocess.DEVNULL,
                start_new_session=True,
                close_fds=True,
            )
        except FileNotFoundError as e:
            raise ExecutionError(f"Executable not found: {cmd[0]}") from e
        except OSError as e:
            raise ExecutionError(f"Cannot spawn {cmd[0]}: {e}") from e
        finally:
            if sink is not None:
                sink.close()

        logger.info("Detached %s (pid %d)", cmd[0], proc.pid)
        return CommandResult(argv=cmd, detached=True, pid=proc.pid)

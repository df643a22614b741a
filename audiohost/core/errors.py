"""
Error taxonomy — everything a provisioning step can fail with.

Adapters and services raise these.  The orchestrator catches them at
the step boundary and turns them into ``Failed`` outcomes, keeping the
raw message and recording the class name as the error kind
(``Timeout`` for CommandTimeout).

A missing audio device is deliberately absent from this list: device
resolution falls back to card 0 instead of failing.
"""

from __future__ import annotations


class ProvisioningError(Exception):
    """Base class for all expected provisioning failures."""

    @property
    def kind(self) -> str:
        return self.__class__.__name__


class ExecutionError(ProvisioningError):
    """An external process could not be located or spawned."""


class CommandTimeout(ProvisioningError):
    """An external command exceeded its timeout and was killed.

    Reported under the ``Timeout`` kind.
    """

    def __init__(self, argv: list[str], timeout: float):
        self.argv = list(argv)
        self.timeout = timeout
        super().__init__(f"Command timed out after {timeout}s: {' '.join(argv)}")

    @property
    def kind(self) -> str:
        return "Timeout"


class IoError(ProvisioningError):
    """A file could not be read or written (permissions, directory, disk full)."""


class InstallFailure(ProvisioningError):
    """The package manager reported failure for one or more packages."""

    def __init__(self, failed: dict[str, str]):
        self.failed = dict(failed)
        reasons = "; ".join(
            f"{pkg}: {_last_line(reason)}" for pkg, reason in failed.items()
        )
        super().__init__(f"Package installation failed: {reasons}")


def _last_line(text: str) -> str:
    lines = text.strip().splitlines()
    return lines[-1] if lines else "unknown error"


class SupervisorError(ProvisioningError):
    """The service supervisor is unreachable or rejected a definition."""


class CommandFailed(ProvisioningError):
    """A required external command ran but exited non-zero."""

    def __init__(self, argv: list[str], exit_code: int, output: str):
        self.argv = list(argv)
        self.exit_code = exit_code
        self.output = output
        super().__init__(output)

"""Adapters — bindings for external processes and host files.

Public re-exports for convenient access.
"""

from audiohost.adapters.mock import MockCommandRunner
from audiohost.adapters.shell.command import CommandResult, CommandRunner
from audiohost.adapters.shell.filesystem import FilePatcher, PatchResult

__all__ = [
    "CommandResult",
    "CommandRunner",
    "FilePatcher",
    "MockCommandRunner",
    "PatchResult",
]

"""
Filesystem adapter — idempotent edits of host files.

Applies FileEdits: make sure a line is present, or make sure a whole
file has given content.  Writes are atomic (write to a temp file in
the same directory, then rename) so a crash never leaves a truncated
``limits.conf`` or unit file behind.
"""

from __future__ import annotations

import enum
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from audiohost.core.errors import IoError

logger = logging.getLogger(__name__)

# mkstemp creates 0600 files; new files get the usual umask-style mode.
_DEFAULT_MODE = 0o644


class PatchResult(str, enum.Enum):
    APPLIED = "applied"
    ALREADY_PRESENT = "already_present"


@dataclass(frozen=True)
class FileEdit:
    """A line that must exist in a file."""

    path: str
    marker_line: str


class FilePatcher:
    """Idempotent, atomic file edits.

    Args:
        dry_run: Log intended edits without writing anything.
    """

    name = "filesystem"

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def apply(self, edit: FileEdit) -> PatchResult:
        return self.ensure_line_appended(edit.path, edit.marker_line)

    def ensure_line_appended(self, path: str | Path, marker_line: str) -> PatchResult:
        """Append ``marker_line`` unless a line equal to it already exists.

        A missing file is treated as empty.  Comparison is exact, whole
        line (trailing newline excluded).

        Raises:
            IoError: The file cannot be read or written.
        """
        if "\n" in marker_line:
            raise ValueError("marker_line must be a single line")

        target = Path(path).expanduser()
        existing = self._read(target)

        if marker_line in existing.splitlines():
            logger.debug("Line already present in %s: %s", target, marker_line)
            return PatchResult.ALREADY_PRESENT

        if self.dry_run:
            logger.info("[dry-run] would append to %s: %s", target, marker_line)
            return PatchResult.APPLIED

        prefix = existing if not existing or existing.endswith("\n") else existing + "\n"
        self._write_atomic(target, prefix + marker_line + "\n")
        logger.info("Appended to %s: %s", target, marker_line)
        return PatchResult.APPLIED

    def ensure_content(
        self,
        path: str | Path,
        content: str,
        mode: int | None = None,
    ) -> PatchResult:
        """Make the file contain exactly ``content``.

        Used for rendered definitions (unit files, run scripts, xinitrc).
        ``mode`` is applied whenever the file is written, and also when
        the content already matches but the permissions differ.

        Raises:
            IoError: The file cannot be read or written.
        """
        target = Path(path).expanduser()
        exists = target.exists()
        existing = self._read(target)

        if exists and existing == content:
            if mode is not None and not self.dry_run and self._mode(target) != mode:
                self._chmod(target, mode)
                return PatchResult.APPLIED
            return PatchResult.ALREADY_PRESENT

        if self.dry_run:
            logger.info("[dry-run] would write %s (%d bytes)", target, len(content))
            return PatchResult.APPLIED

        self._write_atomic(target, content, mode=mode)
        logger.info("Wrote %s (%d bytes)", target, len(content))
        return PatchResult.APPLIED

    def read_text(self, path: str | Path) -> str:
        """Read a file, treating a missing one as empty."""
        return self._read(Path(path).expanduser())

    # ── Internals ───────────────────────────────────────────────

    def _read(self, target: Path) -> str:
        if target.is_dir():
            raise IoError(f"Path is a directory: {target}")
        try:
            return target.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""
        except (OSError, UnicodeDecodeError) as e:
            raise IoError(f"Cannot read {target}: {e}") from e

    def _write_atomic(self, target: Path, content: str, mode: int | None = None) -> None:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if mode is None:
                mode = self._mode(target) if target.exists() else _DEFAULT_MODE
            fd, tmp_path = tempfile.mkstemp(
                dir=target.parent,
                prefix=f".{target.name}_",
                suffix=".tmp",
            )
        except OSError as e:
            raise IoError(f"Cannot write {target}: {e}") from e

        tmp = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            if mode is not None:
                os.chmod(tmp, mode)
            os.replace(tmp, target)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise IoError(f"Cannot write {target}: {e}") from e

    @staticmethod
    def _mode(target: Path) -> int:
        return target.stat().st_mode & 0o7777

    @staticmethod
    def _chmod(target: Path, mode: int) -> None:
        try:
            os.chmod(target, mode)
        except OSError as e:
            raise IoError(f"Cannot chmod {target}: {e}") from e

"""
Logging setup for the audiohost CLI.

main.py calls ``setup_logging`` once at startup.  Modules log through
``logging.getLogger(__name__)`` and inherit the handlers installed here.

The console stays terse at WARNING, gains timestamps at INFO and shows
file:line at DEBUG.  The optional log file always gets full detail and
tags each line with the id of the run in progress, so the lines of a
boot-time launch can be told apart from those of a provisioning run
sharing the same file.

Levels resolve as: CLI flag > AUDIOHOST_LOG_LEVEL > WARNING.  The file
comes from --log-file or AUDIOHOST_LOG_FILE, its level from
AUDIOHOST_LOG_FILE_LEVEL (default: the console level).
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

ENV_LEVEL = "AUDIOHOST_LOG_LEVEL"
ENV_FILE = "AUDIOHOST_LOG_FILE"
ENV_FILE_LEVEL = "AUDIOHOST_LOG_FILE_LEVEL"

# Console formats by the most verbose level they serve
_CONSOLE_FORMATS = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d: %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
}

_FILE_FORMAT = "%(asctime)s %(levelname)-5s [%(run_id)s] %(name)s:%(lineno)d: %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

_NO_RUN = "-"


class RunIdFilter(logging.Filter):
    """Stamp each record with the id of the run in progress."""

    def __init__(self) -> None:
        super().__init__()
        self.run_id = _NO_RUN

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = self.run_id
        return True


_run_filter = RunIdFilter()


def bind_run_id(run_id: str | None) -> None:
    """Tag file log lines with ``run_id``; ``None`` clears the tag."""
    _run_filter.run_id = run_id or _NO_RUN


def setup_logging(
    level: str | None = None,
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Install the console handler and, optionally, the run log file.

    Args:
        level: Console level name.  None defers to AUDIOHOST_LOG_LEVEL.
        log_file: Path of the log file; parent directories are created.
            None defers to AUDIOHOST_LOG_FILE.
        log_file_level: Level for the file.  None defers to
            AUDIOHOST_LOG_FILE_LEVEL, then to the console level.
    """
    console_level = parse_level(level or os.environ.get(ENV_LEVEL))
    handlers: list[logging.Handler] = [_console_handler(console_level)]

    log_file = log_file or os.environ.get(ENV_FILE)
    if log_file:
        file_level_name = log_file_level or os.environ.get(ENV_FILE_LEVEL)
        file_level = parse_level(file_level_name) if file_level_name else console_level
        handlers.append(_file_handler(Path(log_file).expanduser(), file_level))

    root = logging.getLogger()
    root.handlers[:] = handlers
    root.setLevel(min(h.level for h in handlers))

    # A broken log file must not take a provisioning run down with it
    logging.raiseExceptions = False


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    for threshold in (logging.DEBUG, logging.INFO):
        if level <= threshold:
            fmt, datefmt = _CONSOLE_FORMATS[threshold]
            handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
            break
    else:
        handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def _file_handler(path: Path, level: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
    handler.addFilter(_run_filter)
    return handler


def parse_level(level: str | None) -> int:
    """Numeric level for a level name; unknown or empty names mean WARNING."""
    if not level:
        return logging.WARNING
    numeric = logging.getLevelName(level.upper())
    return numeric if isinstance(numeric, int) else logging.WARNING

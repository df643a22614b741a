"""
Run ledger — append-only history of provisioning and launch runs.

The core never persists a RunReport; the CLI hands each finished report
to this ledger, which appends one NDJSON (newline-delimited JSON) line
per run.  ``audiohost history`` reads it back.

The ledger is append-only: entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from audiohost.core.models.step import RunReport

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_FILE = "runs.ndjson"


def default_ledger_path() -> Path:
    """``$XDG_STATE_HOME/audiohost/runs.ndjson`` (``~/.local/state`` by default)."""
    state_home = os.environ.get("XDG_STATE_HOME") or str(Path.home() / ".local" / "state")
    return Path(state_home) / "audiohost" / DEFAULT_LEDGER_FILE


class RunRecord(BaseModel):
    """A single ledger entry summarising one run."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    operation: str = ""            # provision, launch
    dry_run: bool = False

    # Outcome
    status: str = ""               # ok, partial, aborted
    stopped_at: str | None = None  # stage name when aborted
    steps_total: int = 0
    steps_succeeded: int = 0
    steps_skipped: int = 0
    steps_failed: int = 0
    duration_ms: int = 0

    # Failures as "stage/step: Kind: error"
    errors: list[str] = Field(default_factory=list)

    context: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_report(cls, report: RunReport, operation: str, **context: Any) -> RunRecord:
        """Summarise a finished RunReport."""
        errors = [
            f"{e.stage}/{e.step_id}: {e.outcome.error_kind}: {e.outcome.error}"
            for e in report.entries
            if e.outcome.failed
        ]
        return cls(
            run_id=report.run_id,
            operation=operation,
            dry_run=report.dry_run,
            status=report.status,
            stopped_at=report.state.stage_name,
            steps_total=report.total,
            steps_succeeded=report.succeeded,
            steps_skipped=report.skipped,
            steps_failed=report.failed,
            duration_ms=_duration_ms(report.started_at, report.ended_at),
            errors=errors,
            context=context,
        )


def _duration_ms(started: str, ended: str) -> int:
    if not started or not ended:
        return 0
    delta = datetime.fromisoformat(ended) - datetime.fromisoformat(started)
    return int(delta.total_seconds() * 1000)


class RunLedger:
    """Append-only run ledger writer.

    Each call to write() appends a single JSON line to the ledger file.
    The file is created if it doesn't exist.
    """

    def __init__(self, path: Path | None = None):
        self._path = path or default_ledger_path()

    @property
    def path(self) -> Path:
        return self._path

    def write(self, record: RunRecord) -> None:
        """Append a record to the ledger.

        A ledger that cannot be written is logged, never fatal to the run.
        """
        line = json.dumps(record.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Run recorded: %s/%s", record.operation, record.run_id)
        except OSError as e:
            logger.error("Failed to write run ledger %s: %s", self._path, e)

    def read_all(self) -> list[RunRecord]:
        """Read all records, oldest first."""
        if not self._path.is_file():
            return []

        records = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(RunRecord.model_validate(json.loads(line)))
                    except (json.JSONDecodeError, ValidationError) as e:
                        logger.warning("Skipping corrupt ledger entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read run ledger: %s", e)

        return records

    def read_recent(self, n: int = 20) -> list[RunRecord]:
        """Read the most recent N records."""
        return self.read_all()[-n:]

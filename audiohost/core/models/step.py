"""
Step, Stage and RunReport models — the provisioning contract.

Steps produce StepOutcomes.  This is the fundamental contract between
the orchestrator and the work it sequences: a step's action returns an
outcome, and anything it raises is captured as a ``failed`` outcome
local to that step.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from audiohost.core.engine.orchestrator import StepContext


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StepOutcome(BaseModel):
    """Result of a single step.

    A tagged variant over ``skipped``, ``succeeded`` and ``failed``.
    Outcomes are frozen: once recorded they are never mutated.
    """

    model_config = ConfigDict(frozen=True)

    status: Literal["skipped", "succeeded", "failed"] = "succeeded"
    reason: str = ""                  # why it was skipped
    error: str | None = None          # raw error text for failures
    error_kind: str | None = None     # ExecutionError, IoError, InstallFailure, ...
    detail: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the step did not fail (succeeded or skipped)."""
        return self.status != "failed"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @classmethod
    def success(cls, **detail: Any) -> StepOutcome:
        """Create a succeeded outcome."""
        return cls(status="succeeded", detail=detail)

    @classmethod
    def skip(cls, reason: str, **detail: Any) -> StepOutcome:
        """Create a skipped outcome."""
        return cls(status="skipped", reason=reason, detail=detail)

    @classmethod
    def failure(
        cls,
        error: str,
        kind: str = "ProvisioningError",
        **detail: Any,
    ) -> StepOutcome:
        """Create a failed outcome."""
        return cls(status="failed", error=error, error_kind=kind, detail=detail)

    def describe(self) -> str:
        """One-line human-readable rendering."""
        if self.status == "skipped":
            return f"skipped ({self.reason})" if self.reason else "skipped"
        if self.status == "failed":
            return f"failed ({self.error_kind}: {self.error})"
        return "succeeded"


StepAction = Callable[["StepContext"], StepOutcome]
StepCheck = Callable[["StepContext"], bool]


@dataclass(frozen=True)
class Step:
    """The smallest unit of provisioning work.

    ``check`` is the idempotency predicate: when it returns True the
    step is already satisfied and ``action`` is not called.
    """

    id: str
    description: str
    action: StepAction
    check: StepCheck | None = None


class StagePolicy(str, enum.Enum):
    """What a failing step does to the rest of the run."""

    ABORT_ON_FAILURE = "abort_on_failure"
    CONTINUE_ON_FAILURE = "continue_on_failure"


@dataclass(frozen=True)
class Stage:
    """A named, ordered group of steps sharing one failure policy.

    ``package_failures_fatal`` decides whether a package step whose
    install report lists failures is recorded as failed or succeeded.
    """

    name: str
    steps: tuple[Step, ...] = ()
    policy: StagePolicy = StagePolicy.ABORT_ON_FAILURE
    package_failures_fatal: bool = True
    description: str = ""

    def __post_init__(self) -> None:
        ids = [s.id for s in self.steps]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ValueError(f"Duplicate step ids in stage '{self.name}': {', '.join(dupes)}")


class RunStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class RunState:
    """Orchestrator state: pending → running(i) → completed | aborted(stage)."""

    status: RunStatus = RunStatus.PENDING
    stage_index: int | None = None
    stage_name: str | None = None

    @property
    def finished(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.ABORTED)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "stage_index": self.stage_index,
            "stage_name": self.stage_name,
        }


@dataclass(frozen=True)
class ReportEntry:
    """One (stage, step id, outcome) record."""

    stage: str
    step_id: str
    outcome: StepOutcome
    recorded_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict:
        return {
            "stage": self.stage,
            "step_id": self.step_id,
            "recorded_at": self.recorded_at,
            **self.outcome.model_dump(mode="json"),
        }


@dataclass
class RunReport:
    """Append-only record of one orchestrator run."""

    run_id: str = ""
    started_at: str = field(default_factory=_now_iso)
    ended_at: str = ""
    dry_run: bool = False
    state: RunState = field(default_factory=RunState)
    _entries: list[ReportEntry] = field(default_factory=list)

    def append(self, stage: str, step_id: str, outcome: StepOutcome) -> None:
        if self.ended_at:
            raise RuntimeError(f"Run report {self.run_id} is finalized")
        self._entries.append(ReportEntry(stage=stage, step_id=step_id, outcome=outcome))

    def finalize(self) -> None:
        self.ended_at = _now_iso()

    @property
    def entries(self) -> tuple[ReportEntry, ...]:
        return tuple(self._entries)

    @property
    def outcomes(self) -> list[tuple[str, StepOutcome]]:
        """Ordered ``(step_id, outcome)`` pairs."""
        return [(e.step_id, e.outcome) for e in self._entries]

    def outcome_for(self, step_id: str) -> StepOutcome | None:
        for entry in self._entries:
            if entry.step_id == step_id:
                return entry.outcome
        return None

    @property
    def total(self) -> int:
        return len(self._entries)

    @property
    def succeeded(self) -> int:
        return sum(1 for e in self._entries if e.outcome.status == "succeeded")

    @property
    def skipped(self) -> int:
        return sum(1 for e in self._entries if e.outcome.skipped)

    @property
    def failed(self) -> int:
        return sum(1 for e in self._entries if e.outcome.failed)

    @property
    def completed(self) -> bool:
        return self.state.status == RunStatus.COMPLETED

    @property
    def status(self) -> str:
        """Coarse summary: ok, partial (completed with failures) or aborted."""
        if self.state.status == RunStatus.ABORTED:
            return "aborted"
        if self.failed:
            return "partial"
        if self.state.status == RunStatus.COMPLETED:
            return "ok"
        return self.state.status.value

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "dry_run": self.dry_run,
            "state": self.state.to_dict(),
            "status": self.status,
            "total": self.total,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "entries": [e.to_dict() for e in self._entries],
        }

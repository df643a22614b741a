"""
Provisioning orchestrator — the central execution loop.

Takes an ordered list of stages, runs their steps strictly in order,
records every outcome in an append-only RunReport, and applies each
stage's failure policy.

State machine:
    pending → running(stage) → completed | aborted(stage)

Flow per step:
    idempotency check → action → outcome → report → log line → policy
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Callable

from audiohost.core.errors import ProvisioningError
from audiohost.core.models.step import (
    RunReport,
    RunStatus,
    Stage,
    StagePolicy,
    Step,
    StepOutcome,
)
from audiohost.core.observability.logging_config import bind_run_id

logger = logging.getLogger(__name__)

TransitionObserver = Callable[[Stage, Step, StepOutcome], None]

_MARKERS = {"succeeded": "✓", "skipped": "⊘", "failed": "✗"}


@dataclass(frozen=True)
class StepContext:
    """What a step sees of the run it belongs to."""

    stage: Stage
    stage_index: int
    step: Step
    run_id: str
    dry_run: bool
    report: RunReport


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"


class ProvisioningOrchestrator:
    """Run stages in declared order under their failure policies.

    An orchestrator runs once.  A fresh run needs a fresh orchestrator,
    which brings a fresh RunReport.

    Args:
        stages: Stages in execution order.
        dry_run: Marks the report; steps see it on their context.
        run_id: Optional explicit run identifier.
        observers: Callbacks invoked after every step transition.
    """

    def __init__(
        self,
        stages: list[Stage],
        *,
        dry_run: bool = False,
        run_id: str | None = None,
        observers: list[TransitionObserver] | None = None,
    ):
        names = [s.name for s in stages]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"Duplicate stage names: {', '.join(dupes)}")

        self._stages = list(stages)
        self._observers = list(observers or [])
        self._report = RunReport(run_id=run_id or generate_run_id(), dry_run=dry_run)

    @property
    def stages(self) -> list[Stage]:
        return list(self._stages)

    @property
    def report(self) -> RunReport:
        return self._report

    @property
    def state(self):
        return self._report.state

    def run(self, start_at: int = 0) -> RunReport:
        """Execute stages from ``start_at`` to the end.

        Args:
            start_at: 0-based index of the first stage to attempt.

        Returns:
            The finalized RunReport.

        Raises:
            RuntimeError: This orchestrator already ran.
            IndexError: ``start_at`` is out of range.
        """
        state = self._report.state
        if state.status != RunStatus.PENDING:
            raise RuntimeError(f"Run {self._report.run_id} already {state.status.value}")
        if not 0 <= start_at <= len(self._stages):
            raise IndexError(f"Stage index {start_at} out of range (0..{len(self._stages)})")

        state.status = RunStatus.RUNNING
        bind_run_id(self._report.run_id)
        try:
            return self._run_stages(start_at)
        finally:
            bind_run_id(None)

    def _run_stages(self, start_at: int) -> RunReport:
        state = self._report.state
        total = len(self._stages)

        for index in range(start_at, total):
            stage = self._stages[index]
            state.stage_index = index
            state.stage_name = stage.name
            logger.info(
                "▶ Stage %d/%d: %s (%s)",
                index + 1, total, stage.name, stage.policy.value,
            )

            for step in stage.steps:
                outcome = self._execute(stage, index, step)
                self._report.append(stage.name, step.id, outcome)
                self._log_transition(stage, step, outcome)
                for observer in self._observers:
                    observer(stage, step, outcome)

                if outcome.failed and stage.policy == StagePolicy.ABORT_ON_FAILURE:
                    state.status = RunStatus.ABORTED
                    logger.warning("Run aborted at stage '%s' (step '%s')", stage.name, step.id)
                    self._report.finalize()
                    return self._report

        state.status = RunStatus.COMPLETED
        state.stage_index = None
        state.stage_name = None
        self._report.finalize()
        logger.info(
            "Run %s completed: %d succeeded, %d skipped, %d failed",
            self._report.run_id,
            self._report.succeeded,
            self._report.skipped,
            self._report.failed,
        )
        return self._report

    def _execute(self, stage: Stage, index: int, step: Step) -> StepOutcome:
        """Run one step; failures become outcomes, never exceptions."""
        ctx = StepContext(
            stage=stage,
            stage_index=index,
            step=step,
            run_id=self._report.run_id,
            dry_run=self._report.dry_run,
            report=self._report,
        )
        where = {"stage": stage.name, "step": step.id}

        try:
            if step.check is not None and step.check(ctx):
                return StepOutcome.skip("already satisfied")
            outcome = step.action(ctx)
        except ProvisioningError as e:
            return StepOutcome.failure(str(e), kind=e.kind, **where)
        except Exception as e:
            # Steps are arbitrary callables; a bug in one is still that step's failure
            logger.debug("Step %s/%s raised", stage.name, step.id, exc_info=True)
            return StepOutcome.failure(str(e) or repr(e), kind=type(e).__name__, **where)

        if outcome is None:
            return StepOutcome.success()
        return outcome

    @staticmethod
    def _log_transition(stage: Stage, step: Step, outcome: StepOutcome) -> None:
        level = logging.WARNING if outcome.failed else logging.INFO
        logger.log(
            level,
            "%s %s/%s → %s",
            _MARKERS[outcome.status],
            stage.name,
            step.id,
            outcome.describe(),
        )

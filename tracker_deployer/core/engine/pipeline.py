"""
Step pipeline — ordered, fail-fast execution of steps.

Flow:
    for each step in declaration order:
        check requires → execute → record outcome → stop on first failure

The pipeline never retries and never reorders. It adds "which step,
which index" to a failure; the calling handler adds "which transition".
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from tracker_deployer.core.engine.step import Step, StepContext
from tracker_deployer.core.models.outcome import ErrorKind, StepOutcome

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Trace of one pipeline run."""

    name: str = ""
    trace_id: str = ""
    total_steps: int = 0
    outcomes: list[StepOutcome] = field(default_factory=list)
    failed_index: int | None = None

    @property
    def ok(self) -> bool:
        return self.failed_index is None

    @property
    def failed_step(self) -> str | None:
        if self.failed_index is None:
            return None
        return self.outcomes[self.failed_index].step_id

    @property
    def failure(self) -> StepOutcome | None:
        if self.failed_index is None:
            return None
        return self.outcomes[self.failed_index]

    @property
    def completed_steps(self) -> list[str]:
        return [o.step_id for o in self.outcomes if o.ok]

    @property
    def duration_ms(self) -> int:
        return sum(o.duration_ms for o in self.outcomes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "trace_id": self.trace_id,
            "ok": self.ok,
            "total_steps": self.total_steps,
            "completed_steps": self.completed_steps,
            "failed_index": self.failed_index,
            "failed_step": self.failed_step,
            "duration_ms": self.duration_ms,
            "outcomes": [o.model_dump(mode="json") for o in self.outcomes],
        }


class StepPipeline:
    """Run steps strictly in order; halt at the first failure."""

    def __init__(self, steps: list[Step], name: str = "pipeline"):
        self._steps = list(steps)
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    @property
    def step_ids(self) -> list[str]:
        return [s.step_id for s in self._steps]

    @property
    def mutates(self) -> bool:
        """Whether any step in the pipeline is an action step."""
        return any(s.mutates for s in self._steps)

    def run(self, context: StepContext) -> PipelineResult:
        total = len(self._steps)
        result = PipelineResult(
            name=self._name,
            trace_id=str(uuid.uuid4()),
            total_steps=total,
        )
        logger.info("Pipeline '%s' starting: %d steps (trace %s)", self._name, total, result.trace_id)

        for index, step in enumerate(self._steps):
            logger.info("[step %d/%d] %s — %s", index + 1, total, step.step_id, step.description)
            outcome = _run_step(step, context)
            result.outcomes.append(outcome)

            if outcome.failed:
                result.failed_index = index
                logger.warning(
                    "[step %d/%d] %s failed (%s): %s",
                    index + 1,
                    total,
                    step.step_id,
                    outcome.kind,
                    outcome.message,
                )
                break

            logger.info(
                "[step %d/%d] %s ok (%dms) %s",
                index + 1,
                total,
                step.step_id,
                outcome.duration_ms,
                outcome.detail,
            )

        if result.ok:
            logger.info("Pipeline '%s' completed in %dms", self._name, result.duration_ms)
        return result


def _run_step(step: Step, context: StepContext) -> StepOutcome:
    """Execute one step, timing it and containing anything it raises."""
    missing = [r for r in step.requires if not context.has(r)]
    started = datetime.now(UTC)
    if missing:
        return StepOutcome.failure(
            step.step_id,
            ErrorKind.PRECONDITION_NOT_MET,
            f"Missing required resource(s): {', '.join(missing)}",
            "This step needs a provisioned host; check the environment with 'tracker-deployer show'.",
            started_at=started.isoformat(),
            ended_at=started.isoformat(),
        )

    t0 = time.monotonic()
    try:
        outcome = step.execute(context)
    except Exception as e:
        logger.exception("Step '%s' raised unexpectedly", step.step_id)
        outcome = StepOutcome.failure(
            step.step_id,
            ErrorKind.REMOTE_EXECUTION_FAILED,
            f"Unexpected error: {type(e).__name__}: {e}",
            "This is likely a bug; re-run with --debug and report the log.",
        )
    elapsed_ms = int((time.monotonic() - t0) * 1000)

    return outcome.model_copy(
        update={
            "step_id": step.step_id,
            "started_at": started.isoformat(),
            "ended_at": datetime.now(UTC).isoformat(),
            "duration_ms": elapsed_ms,
        }
    )

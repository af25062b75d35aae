"""
Transition handler — the shared skeleton of every lifecycle command.

    lock → load → assert stage → re-validate → preconditions → build pipeline → run
         → persist new stage  |  persist failure marker + raise
         → audit entry

The environment store handle and the external collaborators are passed
in explicitly (``Deployer``); there is no process-wide "current
environment".
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from tracker_deployer.adapters.registry import Collaborators
from tracker_deployer.core.config.settings import DeployerSettings
from tracker_deployer.core.engine.pipeline import PipelineResult, StepPipeline
from tracker_deployer.core.engine.step import Step, StepContext
from tracker_deployer.core.errors import EnvironmentNotFoundError, StepFailedError
from tracker_deployer.core.lifecycle.state_machine import Transition, assert_can_apply, next_stage
from tracker_deployer.core.models.environment import Environment, FailureRecord
from tracker_deployer.core.models.outcome import ErrorKind
from tracker_deployer.core.persistence.audit import AuditEntry
from tracker_deployer.core.persistence.store import EnvironmentStore
from tracker_deployer.core.reliability.retry import Backoff
from tracker_deployer.core.validation.validator import ensure_valid

logger = logging.getLogger(__name__)


@dataclass
class Deployer:
    """Everything a handler needs, passed in explicitly."""

    store: EnvironmentStore
    settings: DeployerSettings = field(default_factory=DeployerSettings)
    collaborators: Collaborators = field(default_factory=Collaborators.real)
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def from_settings(cls, settings: DeployerSettings, mock: bool = False) -> Deployer:
        return cls(
            store=EnvironmentStore(
                settings.data_dir,
                lock_attempts=settings.lock_attempts,
                backoff=Backoff(settings.lock_base_delay, settings.lock_max_delay),
            ),
            settings=settings,
            collaborators=Collaborators.fake() if mock else Collaborators.real(),
        )

    def step_context(self, env: Environment) -> StepContext:
        return StepContext(
            environment=env.model_copy(deep=True),
            provider=self.collaborators.provider_for(env),
            probe=self.collaborators.probe,
            remote_factory=self.collaborators.remote_factory,
            build_dir=self.settings.build_path(env.name),
            timeouts=self.settings.timeouts,
            skip_docker_install=self.settings.skip_docker_install,
            sleep=self.sleep,
        )


@dataclass
class TransitionResult:
    """Successful transition summary."""

    environment: str
    transition: str
    stage_before: str
    stage_after: str
    pipeline: PipelineResult

    @property
    def completed_steps(self) -> list[str]:
        return self.pipeline.completed_steps

    def to_dict(self) -> dict[str, Any]:
        return {
            "environment": self.environment,
            "transition": self.transition,
            "stage_before": self.stage_before,
            "stage_after": self.stage_after,
            "completed_steps": self.completed_steps,
            "trace_id": self.pipeline.trace_id,
            "duration_ms": self.pipeline.duration_ms,
        }


def audit_entry(
    command: str,
    env: Environment,
    stage_before: str,
    result: PipelineResult | None = None,
    **kwargs: Any,
) -> AuditEntry:
    entry = AuditEntry(
        command=command,
        environment=env.name,
        stage_before=stage_before,
        stage_after=env.stage.value,
        **kwargs,
    )
    if result is not None:
        failure = result.failure
        entry.trace_id = result.trace_id
        entry.status = "ok" if result.ok else "failed"
        entry.steps_total = result.total_steps
        entry.steps_completed = len(result.completed_steps)
        entry.duration_ms = result.duration_ms
        if failure is not None:
            entry.failed_step = failure.step_id
            entry.error_kind = failure.kind.value if failure.kind else None
            entry.errors = [failure.message]
    return entry


class TransitionHandler(ABC):
    """One lifecycle transition.

    Subclasses set ``transition`` and implement ``build_steps``; this is
    the one place that knows what must be true before a stage is done.
    """

    transition: Transition

    def __init__(self, deployer: Deployer):
        self.deployer = deployer

    @abstractmethod
    def build_steps(self, env: Environment) -> list[Step]:
        """Ordered steps for this transition."""

    def check_preconditions(self, env: Environment) -> None:
        """Raise a ``DeployerError`` if ``env`` cannot take this transition."""

    def seed_facts(self, env: Environment) -> dict[str, Any]:
        """Facts known before the first step runs."""
        return {}

    def apply_facts(self, env: Environment, facts: dict[str, Any]) -> None:
        """Copy pipeline outputs onto the environment (both outcomes)."""

    def build_pipeline(self, env: Environment) -> StepPipeline:
        return StepPipeline(self.build_steps(env), name=f"{self.transition.value}:{env.name}")

    def execute(self, name: str) -> TransitionResult:
        store = self.deployer.store
        transition = self.transition.value
        if not store.exists(name):
            raise EnvironmentNotFoundError(name)

        with store.locked(name):
            env = store.load(name)
            assert_can_apply(env.stage, self.transition, environment=name)
            ensure_valid(env.config, environment=name, transition=transition)
            self.check_preconditions(env)

            pipeline = self.build_pipeline(env)
            context = self.deployer.step_context(env)
            context.facts.update(self.seed_facts(env))
            stage_before = env.stage
            logger.info("%s '%s' (%s → ...)", transition, name, stage_before)

            result = pipeline.run(context)
            self.apply_facts(env, context.facts)

            if result.ok:
                env.advance_to(next_stage(stage_before, self.transition))
                store.save(env)
                store.record(audit_entry(transition, env, stage_before.value, result))
                logger.info("%s '%s' done: %s → %s", transition, name, stage_before, env.stage)
                return TransitionResult(
                    environment=name,
                    transition=transition,
                    stage_before=stage_before.value,
                    stage_after=env.stage.value,
                    pipeline=result,
                )

            failure = result.failure
            assert failure is not None and result.failed_index is not None
            kind = failure.kind or ErrorKind.REMOTE_EXECUTION_FAILED
            env.mark_failed(
                FailureRecord(
                    transition=transition,
                    at=stage_before,
                    step=failure.step_id,
                    step_index=result.failed_index,
                    total_steps=result.total_steps,
                    kind=kind,
                    message=failure.message,
                    remediation_hint=failure.remediation_hint,
                    trace_id=result.trace_id,
                )
            )
            store.save(env)
            store.record(audit_entry(transition, env, stage_before.value, result))
            raise StepFailedError(
                environment=name,
                transition=transition,
                step=failure.step_id,
                index=result.failed_index,
                total=result.total_steps,
                kind=kind,
                message=failure.message,
                remediation_hint=failure.remediation_hint,
                trace_id=result.trace_id,
            )

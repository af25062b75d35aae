"""
Step — the unit of validation or action work in a pipeline.

A step declares what it needs from the ``StepContext`` (``requires``)
and whether it changes anything (``mutates``). It returns a
``StepOutcome`` and never raises; the pipeline converts anything that
escapes into a failure anyway.

Two families:
    validation steps  mutates = False   assert something about the host
    action steps      mutates = True    change the host (or the build dir)

Every step must be idempotent: running it again against the state it
produced reports success again without changing anything.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tracker_deployer.adapters.base import CommandResult, HostProvider, HttpProbe, RemoteExecutor
from tracker_deployer.core.config.settings import Timeouts
from tracker_deployer.core.models.environment import Environment
from tracker_deployer.core.models.outcome import ErrorKind, StepOutcome

logger = logging.getLogger(__name__)

RemoteFactory = Callable[[Environment, str], RemoteExecutor]


# ── Context ─────────────────────────────────────────────────────────


@dataclass
class StepContext:
    """Resources available to the steps of one pipeline run.

    ``environment`` is a snapshot; steps do not mutate it. Outputs meant
    for later steps (and for the handler) go into ``facts``, e.g. the
    instance IP discovered while waiting for the host.
    """

    environment: Environment
    provider: HostProvider | None = None
    probe: HttpProbe | None = None
    remote_factory: RemoteFactory | None = None
    build_dir: Path | None = None
    timeouts: Timeouts = field(default_factory=Timeouts)
    facts: dict[str, Any] = field(default_factory=dict)
    skip_docker_install: bool = False
    sleep: Callable[[float], None] = time.sleep

    _remote: RemoteExecutor | None = field(default=None, init=False, repr=False)
    _remote_ip: str | None = field(default=None, init=False, repr=False)

    @property
    def instance_ip(self) -> str | None:
        return self.facts.get("instance_ip") or self.environment.runtime.instance_ip

    @property
    def remote(self) -> RemoteExecutor | None:
        """Remote executor for the current instance IP (built on first use)."""
        ip = self.instance_ip
        if ip is None or self.remote_factory is None:
            return None
        if self._remote is None or self._remote_ip != ip:
            self._remote = self.remote_factory(self.environment, ip)
            self._remote_ip = ip
        return self._remote

    def has(self, resource: str) -> bool:
        """Whether ``resource`` (a ``Step.requires`` name) is available."""
        if resource == "remote":
            return self.instance_ip is not None and self.remote_factory is not None
        if resource == "instance_ip":
            return self.instance_ip is not None
        return getattr(self, resource, None) is not None


# ── Step contract ───────────────────────────────────────────────────


class Step(ABC):
    """Abstract base class for all steps.

    To create a new step:
        1. Subclass Step
        2. Set step_id, description, mutates, requires
        3. Implement execute(); return self.ok(...) or self.fail(...)
    """

    step_id: str = ""
    description: str = ""
    mutates: bool = False
    requires: tuple[str, ...] = ()

    @abstractmethod
    def execute(self, context: StepContext) -> StepOutcome:
        """Run the step against ``context``. Never raises."""

    # ── Outcome helpers ─────────────────────────────────────────

    def ok(self, detail: str = "", **data: Any) -> StepOutcome:
        return StepOutcome.success(self.step_id, detail=detail, data=data)

    def fail(self, kind: ErrorKind, message: str, remediation_hint: str) -> StepOutcome:
        return StepOutcome.failure(self.step_id, kind, message, remediation_hint)

    def command_failed(
        self,
        result: CommandResult,
        action: str,
        remediation_hint: str,
        *,
        negative_kind: ErrorKind = ErrorKind.REMOTE_EXECUTION_FAILED,
    ) -> StepOutcome:
        """Failure outcome for a non-ok ``CommandResult``.

        A timeout is always reported as ``timeout``; any other failure
        uses ``negative_kind``.
        """
        if result.timed_out:
            return self.fail(
                ErrorKind.TIMEOUT,
                f"{action} timed out",
                remediation_hint or "The host may be slow or unreachable; retry the command.",
            )
        stderr = result.stderr.strip().splitlines()
        tail = stderr[-1] if stderr else ""
        message = f"{action} failed (exit {result.exit_code})"
        if tail:
            message += f": {tail}"
        return self.fail(negative_kind, message, remediation_hint)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.step_id!r})"

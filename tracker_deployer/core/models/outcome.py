"""
StepOutcome — the execution contract between the pipeline and steps.

Steps return outcomes. Never exceptions. A failed outcome carries a
kind from the fixed ``ErrorKind`` taxonomy and a remediation hint the
user can act on.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ErrorKind(StrEnum):
    """Failure taxonomy shared by steps, pipelines and handlers."""

    ILLEGAL_TRANSITION = "illegal_transition"
    CONFIG_VIOLATION = "config_violation"
    PRECONDITION_NOT_MET = "precondition_not_met"
    REMOTE_EXECUTION_FAILED = "remote_execution_failed"
    TIMEOUT = "timeout"
    PERSISTENCE_FAILED = "persistence_failed"
    LOCK_CONTENTION = "lock_contention"
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"


class StepOutcome(BaseModel):
    """Result of one step execution."""

    step_id: str
    status: Literal["ok", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    detail: str = ""
    data: dict[str, Any] = Field(default_factory=dict)

    kind: ErrorKind | None = None
    message: str = ""
    remediation_hint: str = ""

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def success(
        cls,
        step_id: str,
        detail: str = "",
        **kwargs: Any,
    ) -> StepOutcome:
        """Create a success outcome."""
        return cls(step_id=step_id, status="ok", detail=detail, **kwargs)

    @classmethod
    def failure(
        cls,
        step_id: str,
        kind: ErrorKind,
        message: str,
        remediation_hint: str,
        **kwargs: Any,
    ) -> StepOutcome:
        """Create a failure outcome."""
        return cls(
            step_id=step_id,
            status="failed",
            kind=kind,
            message=message,
            remediation_hint=remediation_hint,
            **kwargs,
        )

"""
Deployer errors — the exceptions handlers raise to the CLI.

Every error carries an ``ErrorKind`` and a remediation hint. The CLI
prints both and exits with status 1. Steps never raise these; they
return failed ``StepOutcome``s which the handler turns into a
``StepFailedError``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from tracker_deployer.core.models.outcome import ErrorKind

if TYPE_CHECKING:
    from tracker_deployer.core.validation.validator import ConfigViolation


class DeployerError(Exception):
    """Base class for every surfaced deployer error."""

    kind: ErrorKind = ErrorKind.PRECONDITION_NOT_MET

    def __init__(
        self,
        message: str,
        remediation_hint: str = "",
        *,
        kind: ErrorKind | None = None,
        environment: str | None = None,
        transition: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.remediation_hint = remediation_hint
        self.environment = environment
        self.transition = transition
        if kind is not None:
            self.kind = kind

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
            "remediation_hint": self.remediation_hint,
        }
        if self.environment is not None:
            data["environment"] = self.environment
        if self.transition is not None:
            data["transition"] = self.transition
        return data


class IllegalTransitionError(DeployerError):
    """Requested transition does not apply to the current stage."""

    kind = ErrorKind.ILLEGAL_TRANSITION

    def __init__(self, current: str, requested: str, allowed_from: str, **kwargs: Any):
        self.current = current
        self.requested = requested
        self.allowed_from = allowed_from
        super().__init__(
            f"Cannot {requested}: environment is '{current}', "
            f"'{requested}' requires '{allowed_from}'",
            f"Bring the environment to '{allowed_from}' first, "
            f"or check its stage with 'tracker-deployer show'.",
            transition=requested,
            **kwargs,
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["current"] = self.current
        data["requested"] = self.requested
        data["allowed_from"] = self.allowed_from
        return data


class ConfigViolationError(DeployerError):
    """One or more configuration rules failed."""

    kind = ErrorKind.CONFIG_VIOLATION

    def __init__(self, violations: list[ConfigViolation], **kwargs: Any):
        self.violations = list(violations)
        lines = [f"Configuration has {len(self.violations)} violation(s):"]
        lines.extend(f"  - [{v.rule}] {v.message}" for v in self.violations)
        hints = [v.remediation_hint for v in self.violations if v.remediation_hint]
        super().__init__("\n".join(lines), "\n".join(dict.fromkeys(hints)), **kwargs)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["violations"] = [v.to_dict() for v in self.violations]
        return data


class PersistenceError(DeployerError):
    """Environment record could not be read or written."""

    kind = ErrorKind.PERSISTENCE_FAILED


class LockContentionError(DeployerError):
    """Another process holds the environment lock."""

    kind = ErrorKind.LOCK_CONTENTION

    def __init__(self, environment: str, lock_path: str, attempts: int = 1):
        self.lock_path = lock_path
        self.attempts = attempts
        super().__init__(
            f"Environment '{environment}' is locked by another command "
            f"(gave up after {attempts} attempt(s))",
            f"Wait for the other command to finish. If no command is running, "
            f"the lock is released automatically; check {lock_path}.",
            environment=environment,
        )


class EnvironmentNotFoundError(DeployerError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, environment: str):
        super().__init__(
            f"Environment '{environment}' does not exist",
            "Create it with 'tracker-deployer create --env-file <file>', "
            "or list existing ones with 'tracker-deployer list'.",
            environment=environment,
        )


class EnvironmentAlreadyExistsError(DeployerError):
    kind = ErrorKind.ALREADY_EXISTS

    def __init__(self, environment: str):
        super().__init__(
            f"Environment '{environment}' already exists",
            "Choose a different name, or destroy the existing environment first.",
            environment=environment,
        )


class StepFailedError(DeployerError):
    """A transition halted at a failing step."""

    def __init__(
        self,
        *,
        environment: str,
        transition: str,
        step: str,
        index: int,
        total: int,
        kind: ErrorKind,
        message: str,
        remediation_hint: str,
        trace_id: str = "",
    ):
        self.step = step
        self.index = index
        self.total = total
        self.trace_id = trace_id
        super().__init__(
            f"{transition} failed for '{environment}' at step {index + 1}/{total} "
            f"'{step}': {message}",
            remediation_hint,
            kind=kind,
            environment=environment,
            transition=transition,
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["step"] = self.step
        data["step_index"] = self.index
        data["total_steps"] = self.total
        data["trace_id"] = self.trace_id
        return data

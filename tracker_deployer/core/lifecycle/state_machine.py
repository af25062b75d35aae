"""
Lifecycle state machine — which transition applies to which stage.

    created ─provision→ provisioned ─configure→ configured
            ─release→ released ─run→ running
    created ─register→ provisioned   (existing host, no provider call)

Each transition has exactly one legal source stage. The check runs
before any step executes, so an illegal request has no side effects.
A failed transition leaves the stage where it was; the same transition
can simply be invoked again.
"""

from __future__ import annotations

from enum import StrEnum

from tracker_deployer.core.errors import IllegalTransitionError
from tracker_deployer.core.models.stage import Stage


class Transition(StrEnum):
    PROVISION = "provision"
    CONFIGURE = "configure"
    RELEASE = "release"
    RUN = "run"
    REGISTER = "register"


# transition → (required source stage, target stage)
TRANSITIONS: dict[Transition, tuple[Stage, Stage]] = {
    Transition.PROVISION: (Stage.CREATED, Stage.PROVISIONED),
    Transition.CONFIGURE: (Stage.PROVISIONED, Stage.CONFIGURED),
    Transition.RELEASE: (Stage.CONFIGURED, Stage.RELEASED),
    Transition.RUN: (Stage.RELEASED, Stage.RUNNING),
    Transition.REGISTER: (Stage.CREATED, Stage.PROVISIONED),
}

TERMINAL_STAGE = Stage.RUNNING


def source_stage(transition: Transition) -> Stage:
    return TRANSITIONS[transition][0]


def can_apply(stage: Stage, transition: Transition) -> bool:
    return TRANSITIONS[transition][0] == stage


def assert_can_apply(stage: Stage, transition: Transition, environment: str | None = None) -> None:
    """Raise ``IllegalTransitionError`` unless ``transition`` applies to ``stage``."""
    if not can_apply(stage, transition):
        required = source_stage(transition)
        raise IllegalTransitionError(
            current=stage.value,
            requested=transition.value,
            allowed_from=required.value,
            environment=environment,
        )


def next_stage(stage: Stage, transition: Transition) -> Stage:
    """Target stage of ``transition`` applied to ``stage``."""
    assert_can_apply(stage, transition)
    return TRANSITIONS[transition][1]


def available_transitions(stage: Stage) -> list[Transition]:
    """Transitions that may be invoked from ``stage``, in table order."""
    return [t for t in TRANSITIONS if can_apply(stage, t)]

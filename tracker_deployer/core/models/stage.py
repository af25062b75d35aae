"""
Lifecycle stages of a deployment environment.

    created → provisioned → configured → released → running

The order of declaration is the order of the lifecycle; ``Stage.rank``
relies on it.
"""

from __future__ import annotations

from enum import StrEnum


class Stage(StrEnum):
    """Closed set of lifecycle stages."""

    CREATED = "created"
    PROVISIONED = "provisioned"
    CONFIGURED = "configured"
    RELEASED = "released"
    RUNNING = "running"

    @property
    def rank(self) -> int:
        """Position in the lifecycle (created = 0)."""
        return list(Stage).index(self)

    def at_least(self, other: Stage) -> bool:
        """Whether this stage is ``other`` or later."""
        return self.rank >= other.rank

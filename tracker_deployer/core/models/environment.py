"""
Environment — the root aggregate for one deployment target.

This is the single document that captures everything about one
environment: the user's validated configuration, the lifecycle stage,
what the provider handed back (instance IP), and the advisory failure
marker left by the last halted transition. It is serialized to
``<data_dir>/<name>/environment.json`` and loaded on every command.

Secrets inside ``config`` are ``SecretValue``s; they are persisted as
plain values (the data directory is protected by file permissions) and
redacted everywhere else.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from tracker_deployer.core.models.outcome import ErrorKind
from tracker_deployer.core.models.secret import SecretValue
from tracker_deployer.core.models.stage import Stage
from tracker_deployer.core.models.tracker import HttpsConfig, TrackerConfig

SCHEMA_VERSION = 1

_NAME_RE = re.compile(r"^[a-z][a-z0-9-]*$")


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


def check_environment_name(name: str) -> str | None:
    """Return a reason string if ``name`` is not a valid environment name."""
    if not name:
        return "name cannot be empty"
    if name[0].isdigit():
        return "name cannot start with a digit"
    if name.startswith("-") or name.endswith("-"):
        return "name cannot start or end with a dash"
    if name != name.lower():
        return "name must be lowercase"
    if not _NAME_RE.match(name):
        invalid = sorted({ch for ch in name if not (ch.isascii() and (ch.isalnum() or ch == "-"))})
        return f"name contains invalid characters: {''.join(invalid)}"
    return None


# ── User inputs ─────────────────────────────────────────────────────


class SshCredentials(BaseModel):
    """How to reach the host once it exists."""

    private_key_path: str
    public_key_path: str
    username: str = "torrust"
    port: int = 22


class LxdProvider(BaseModel):
    provider: Literal["lxd"] = "lxd"
    profile_name: str


class HetznerProvider(BaseModel):
    provider: Literal["hetzner"] = "hetzner"
    api_token: SecretValue
    server_type: str = "cx22"
    location: str = "nbg1"
    image: str = "ubuntu-24.04"


ProviderConfig = Annotated[LxdProvider | HetznerProvider, Field(discriminator="provider")]


class EnvironmentConfig(BaseModel):
    """Everything the user supplies when creating an environment."""

    name: str
    ssh_credentials: SshCredentials
    provider: ProviderConfig
    tracker: TrackerConfig
    https: HttpsConfig | None = None

    @property
    def instance_name(self) -> str:
        return f"torrust-tracker-vm-{self.name}"


# ── Runtime state ───────────────────────────────────────────────────


class RuntimeOutputs(BaseModel):
    """Values produced by provisioning (or given to 'register')."""

    instance_ip: str | None = None
    host_id: str | None = None
    # host was brought in with 'register'; the provider does not own it
    registered: bool = False


class FailureRecord(BaseModel):
    """Advisory marker left by a halted transition.

    The environment keeps its pre-transition stage; this record says
    which transition was attempted, where it stopped and why. Re-invoking
    the same transition clears it on success.
    """

    transition: str
    at: Stage
    step: str
    step_index: int
    total_steps: int
    kind: ErrorKind
    message: str = ""
    remediation_hint: str = ""
    failed_at: str = Field(default_factory=_now_iso)
    trace_id: str = ""


class Environment(BaseModel):
    """Root aggregate — serialized to ``environment.json``."""

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = SCHEMA_VERSION

    # ── Identity ─────────────────────────────────────────────────
    name: str
    stage: Stage = Stage.CREATED

    # ── Inputs / outputs ─────────────────────────────────────────
    config: EnvironmentConfig
    runtime: RuntimeOutputs = Field(default_factory=RuntimeOutputs)

    # ── Timestamps ───────────────────────────────────────────────
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    # ── Last failure ─────────────────────────────────────────────
    failure: FailureRecord | None = None

    @classmethod
    def create(cls, config: EnvironmentConfig) -> Environment:
        """New environment at the ``created`` stage."""
        return cls(name=config.name, config=config)

    def touch(self) -> None:
        """Update the last-transition timestamp."""
        self.updated_at = _now_iso()

    def advance_to(self, stage: Stage) -> None:
        """Record a successful transition."""
        self.stage = stage
        self.failure = None
        self.touch()

    def mark_failed(self, record: FailureRecord) -> None:
        """Attach a failure marker without moving the stage."""
        self.failure = record
        self.touch()

    def summary(self) -> dict[str, Any]:
        """Secret-free view for ``show``/``list`` output."""
        tracker = self.config.tracker
        return {
            "name": self.name,
            "stage": self.stage.value,
            "provider": self.config.provider.provider,
            "instance_ip": self.runtime.instance_ip,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "tls_proxy": tracker.uses_tls_proxy(),
            "http_trackers": [t.bind_address for t in tracker.http_trackers],
            "udp_trackers": [t.bind_address for t in tracker.udp_trackers],
            "failure": self.failure.model_dump(mode="json") if self.failure else None,
        }

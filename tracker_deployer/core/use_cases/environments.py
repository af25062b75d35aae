"""
Environment commands outside the lifecycle: create, validate, show,
list, destroy, purge.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tracker_deployer.adapters.base import ProviderError, ProviderTimeout
from tracker_deployer.core.config.loader import load_config
from tracker_deployer.core.errors import (
    DeployerError,
    EnvironmentAlreadyExistsError,
    EnvironmentNotFoundError,
    PersistenceError,
)
from tracker_deployer.core.lifecycle.state_machine import available_transitions
from tracker_deployer.core.models.environment import Environment, EnvironmentConfig
from tracker_deployer.core.models.outcome import ErrorKind
from tracker_deployer.core.models.stage import Stage
from tracker_deployer.core.use_cases.base import Deployer, audit_entry
from tracker_deployer.core.validation.validator import ConfigViolation, ensure_valid, validate_config

logger = logging.getLogger(__name__)


# ── create ──────────────────────────────────────────────────────────


def create_environment(deployer: Deployer, config: EnvironmentConfig) -> Environment:
    """Validate ``config`` and persist a new environment at ``created``.

    Raises:
        ConfigViolationError: every rule the config breaks.
        EnvironmentAlreadyExistsError: the name is taken.
    """
    ensure_valid(config, environment=config.name, transition="create")

    store = deployer.store
    with store.locked(config.name):
        if store.exists(config.name):
            raise EnvironmentAlreadyExistsError(config.name)
        env = Environment.create(config)
        store.save(env)
        store.record(audit_entry("create", env, env.stage.value, status="ok"))

    logger.info("Environment '%s' created", env.name)
    return env


def create_from_file(deployer: Deployer, path: Path) -> Environment:
    return create_environment(deployer, load_config(path))


# ── validate ────────────────────────────────────────────────────────


@dataclass
class ValidateResult:
    source: str
    config: EnvironmentConfig
    violations: list[ConfigViolation] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.violations

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "environment": self.config.name,
            "valid": self.valid,
            "violations": [v.to_dict() for v in self.violations],
        }


def validate_file(path: Path) -> ValidateResult:
    """Parse and check a config file without creating anything."""
    config = load_config(path)
    return ValidateResult(source=str(path), config=config, violations=validate_config(config))


# ── show / list ─────────────────────────────────────────────────────


def show_environment(deployer: Deployer, name: str) -> dict[str, Any]:
    """Secret-free view of one environment."""
    env = deployer.store.load(name)
    data = env.summary()
    data["next"] = [t.value for t in available_transitions(env.stage)]
    data["data_dir"] = str(deployer.store.environment_dir(name))
    data["recent"] = [
        {"timestamp": e.timestamp, "command": e.command, "status": e.status}
        for e in deployer.store.audit(name).read_recent(5)
    ]
    return data


def list_environments(deployer: Deployer) -> list[dict[str, Any]]:
    """One row per environment. Unreadable records are listed with their error."""
    rows = []
    for name in deployer.store.list_names():
        try:
            env = deployer.store.load(name)
        except DeployerError as e:
            rows.append({"name": name, "stage": None, "error": e.message})
            continue
        rows.append(
            {
                "name": env.name,
                "stage": env.stage.value,
                "provider": env.config.provider.provider,
                "instance_ip": env.runtime.instance_ip,
                "failed": env.failure is not None,
                "updated_at": env.updated_at,
            }
        )
    return rows


# ── destroy ─────────────────────────────────────────────────────────


@dataclass
class DestroyResult:
    environment: str
    host_destroyed: bool

    def to_dict(self) -> dict[str, Any]:
        return {"environment": self.environment, "host_destroyed": self.host_destroyed}


def destroy_environment(deployer: Deployer, name: str, keep_host: bool = False) -> DestroyResult:
    """Destroy the host (unless ``keep_host``) and delete the record.

    If the provider fails the record is kept so the command can be
    retried.
    """
    store = deployer.store
    if not store.exists(name):
        raise EnvironmentNotFoundError(name)

    with store.locked(name):
        env = store.load(name)
        had_host = env.stage != Stage.CREATED or env.runtime.host_id is not None
        if env.runtime.registered:
            # registered hosts belong to the operator, not the provider
            had_host = False
        host_destroyed = False

        if had_host and not keep_host:
            provider = deployer.collaborators.provider_for(env)
            timeout = deployer.settings.timeouts.provider
            try:
                provider.destroy_host(env, timeout)
            except ProviderTimeout as e:
                raise DeployerError(
                    f"Provider did not confirm host deletion: {e}",
                    "Run 'destroy' again; the host may already be gone.",
                    kind=ErrorKind.TIMEOUT,
                    environment=name,
                    transition="destroy",
                ) from e
            except ProviderError as e:
                raise DeployerError(
                    f"Provider could not destroy the host: {e}",
                    "Delete the host in the provider console, then run 'destroy --keep-host'.",
                    kind=ErrorKind.REMOTE_EXECUTION_FAILED,
                    environment=name,
                    transition="destroy",
                ) from e
            host_destroyed = True

        store.delete(name)

    logger.info("Environment '%s' destroyed (host destroyed: %s)", name, host_destroyed)
    return DestroyResult(environment=name, host_destroyed=host_destroyed)


# ── purge ───────────────────────────────────────────────────────────


@dataclass
class PurgeResult:
    environment: str
    removed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"environment": self.environment, "removed": self.removed}


def purge_environment(deployer: Deployer, name: str) -> PurgeResult:
    """Delete the record and the build directory. The provider is not called.

    For hosts already gone (or never owned, see ``register``); use
    ``destroy`` to delete a provider host too.
    """
    store = deployer.store
    if not store.exists(name):
        raise EnvironmentNotFoundError(name)

    removed = []
    with store.locked(name):
        data_dir = store.environment_dir(name)
        store.delete(name)
        removed.append(str(data_dir))

    build_dir = deployer.settings.build_path(name)
    if build_dir.exists():
        try:
            shutil.rmtree(build_dir)
        except OSError as e:
            raise PersistenceError(
                f"Record deleted but {build_dir} could not be removed: {e}",
                "Remove the build directory manually.",
                environment=name,
                transition="purge",
            ) from e
        removed.append(str(build_dir))

    logger.info("Environment '%s' purged", name)
    return PurgeResult(environment=name, removed=removed)

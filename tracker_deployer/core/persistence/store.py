"""
Environment store — one JSON record per environment.

Layout:
    <data_dir>/<name>/environment.json       the Environment record
    <data_dir>/<name>/environment.json.lock  flock sidecar
    <data_dir>/<name>/audit.ndjson           append-only ledger

Writes are atomic (temp file in the same directory, then rename).
Secrets are stored as plain values. Protection is delegated to the
filesystem: directories are created ``0o700`` and the record is written
through ``mkstemp`` (``0o600``). Nothing here checks those modes later;
operators who copy or restore data directories must keep them.

Loading is a two-pass decode: the envelope (schema version, stage) is
read and checked first, then the full payload is validated against the
requirements of that stage.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from tracker_deployer.core.errors import (
    DeployerError,
    EnvironmentNotFoundError,
    LockContentionError,
    PersistenceError,
)
from tracker_deployer.core.models.environment import SCHEMA_VERSION, Environment, check_environment_name
from tracker_deployer.core.models.outcome import ErrorKind
from tracker_deployer.core.models.secret import REVEAL_CONTEXT_KEY
from tracker_deployer.core.models.stage import Stage
from tracker_deployer.core.persistence.audit import AUDIT_FILE, AuditEntry, AuditWriter
from tracker_deployer.core.persistence.lock import LOCK_SUFFIX, EnvironmentLock
from tracker_deployer.core.reliability.retry import Backoff, retry_call

logger = logging.getLogger(__name__)

STATE_FILE = "environment.json"

_CORRUPT_HINT = (
    "The environment record is unreadable. Restore it from a backup, or "
    "destroy the environment and create it again."
)


# ── Two-pass decode ─────────────────────────────────────────────────


def _require_instance_ip(env: Environment) -> str | None:
    if not env.runtime.instance_ip:
        return "runtime.instance_ip is missing"
    return None


# stage → checks its payload must pass (each returns a problem or None)
_STAGE_REQUIREMENTS: dict[Stage, list[Callable[[Environment], str | None]]] = {
    Stage.CREATED: [],
    Stage.PROVISIONED: [_require_instance_ip],
    Stage.CONFIGURED: [_require_instance_ip],
    Stage.RELEASED: [_require_instance_ip],
    Stage.RUNNING: [_require_instance_ip],
}


def _describe_errors(e: ValidationError) -> list[str]:
    # input values are left out; they may hold secrets
    return [
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
        for err in e.errors(include_input=False, include_url=False)
    ]


def decode_environment(raw: str, source: str = "<memory>") -> Environment:
    """Decode a persisted record.

    Pass 1 reads an untyped envelope and resolves ``schema_version`` and
    the ``stage`` discriminant. Pass 2 validates the full payload and the
    stage-specific requirements.
    """
    try:
        envelope: Any = json.loads(raw)
    except json.JSONDecodeError as e:
        raise PersistenceError(f"Corrupt environment record {source}: {e}", _CORRUPT_HINT) from e
    if not isinstance(envelope, dict):
        raise PersistenceError(
            f"Corrupt environment record {source}: expected an object", _CORRUPT_HINT
        )

    version = envelope.get("schema_version")
    if version != SCHEMA_VERSION:
        raise PersistenceError(
            f"Unsupported schema_version {version!r} in {source} (expected {SCHEMA_VERSION})",
            "The record was written by a different deployer version; use a matching version.",
        )

    stage_text = envelope.get("stage")
    try:
        stage = Stage(stage_text)
    except ValueError:
        raise PersistenceError(
            f"Unknown stage {stage_text!r} in {source}", _CORRUPT_HINT
        ) from None

    try:
        env = Environment.model_validate(envelope)
    except ValidationError as e:
        raise PersistenceError(
            f"Invalid environment record {source}: {e.error_count()} error(s)\n  "
            + "\n  ".join(_describe_errors(e)),
            _CORRUPT_HINT,
        ) from e

    problems = [p for check in _STAGE_REQUIREMENTS[stage] if (p := check(env))]
    if problems:
        raise PersistenceError(
            f"Environment record {source} at stage '{stage}' is incomplete: {'; '.join(problems)}",
            _CORRUPT_HINT,
        )
    return env


def encode_environment(env: Environment) -> str:
    """Serialize for disk. This is the only place secrets are revealed."""
    data = env.model_dump(mode="json", context={REVEAL_CONTEXT_KEY: True})
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


# ── Store ───────────────────────────────────────────────────────────


class EnvironmentStore:
    """Filesystem-backed environment records, one directory per name."""

    def __init__(
        self,
        data_dir: Path,
        *,
        lock_attempts: int = 5,
        backoff: Backoff | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._data_dir = Path(data_dir)
        self._lock_attempts = lock_attempts
        self._backoff = backoff or Backoff()
        self._sleep = sleep

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    # ── Paths ────────────────────────────────────────────────────

    def environment_dir(self, name: str) -> Path:
        reason = check_environment_name(name)
        if reason:
            raise DeployerError(
                f"Invalid environment name {name!r}: {reason}",
                "Names use lowercase letters, digits and dashes; see 'tracker-deployer list'.",
                kind=ErrorKind.CONFIG_VIOLATION,
            )
        return self._data_dir / name

    def state_path(self, name: str) -> Path:
        return self.environment_dir(name) / STATE_FILE

    def lock_path(self, name: str) -> Path:
        return self.environment_dir(name) / (STATE_FILE + LOCK_SUFFIX)

    def audit(self, name: str) -> AuditWriter:
        return AuditWriter(self.environment_dir(name) / AUDIT_FILE)

    # ── Queries ──────────────────────────────────────────────────

    def exists(self, name: str) -> bool:
        return self.state_path(name).is_file()

    def list_names(self) -> list[str]:
        if not self._data_dir.is_dir():
            return []
        return sorted(p.parent.name for p in self._data_dir.glob(f"*/{STATE_FILE}"))

    # ── Locking ──────────────────────────────────────────────────

    @contextmanager
    def locked(self, name: str) -> Iterator[EnvironmentLock]:
        """Hold the environment's lock for the duration of the block.

        Contention is retried with backoff up to ``lock_attempts`` times
        before ``LockContentionError`` surfaces.
        """
        self._ensure_dir(self._data_dir)
        lock = EnvironmentLock(self.lock_path(name), name)
        try:
            retry_call(
                lock.acquire,
                retry_on=LockContentionError,
                attempts=self._lock_attempts,
                backoff=self._backoff,
                sleep=self._sleep,
                label=f"lock '{name}'",
            )
        except LockContentionError:
            raise LockContentionError(name, str(lock.path), self._lock_attempts) from None
        try:
            yield lock
        finally:
            lock.release()

    # ── Read / write ─────────────────────────────────────────────

    def load(self, name: str) -> Environment:
        path = self.state_path(name)
        if not path.is_file():
            raise EnvironmentNotFoundError(name)
        try:
            raw = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise PersistenceError(
                f"Corrupt environment record {path}: not valid UTF-8 ({e.reason} at byte {e.start})",
                _CORRUPT_HINT,
                environment=name,
            ) from e
        except OSError as e:
            raise PersistenceError(
                f"Cannot read {path}: {e}",
                "Check that the data directory is readable by the current user.",
                environment=name,
            ) from e
        env = decode_environment(raw, source=str(path))
        logger.debug("Loaded environment '%s' (stage=%s)", name, env.stage)
        return env

    def save(self, env: Environment) -> None:
        """Atomically write the record (temp file + rename)."""
        path = self.state_path(env.name)
        content = encode_environment(env)
        try:
            self._ensure_dir(self._data_dir)
            self._ensure_dir(path.parent)
            fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".environment_", suffix=".tmp")
            tmp = Path(tmp_path)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                tmp.replace(path)
            except OSError:
                tmp.unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.error("Failed to save environment '%s' to %s: %s", env.name, path, e)
            raise PersistenceError(
                f"Cannot write {path}: {e}",
                "Check free disk space and that the data directory is writable.",
                environment=env.name,
            ) from e
        logger.debug("Environment '%s' saved (stage=%s)", env.name, env.stage)

    def delete(self, name: str) -> None:
        """Remove the environment directory and everything in it."""
        target = self.environment_dir(name)
        if not target.exists():
            raise EnvironmentNotFoundError(name)
        try:
            shutil.rmtree(target)
        except OSError as e:
            raise PersistenceError(
                f"Cannot delete {target}: {e}",
                "Remove the directory manually.",
                environment=name,
            ) from e
        logger.info("Environment '%s' deleted", name)

    def record(self, entry: AuditEntry) -> None:
        self.audit(entry.environment).write(entry)

    @staticmethod
    def _ensure_dir(path: Path) -> None:
        path.mkdir(mode=0o700, parents=True, exist_ok=True)

"""
Per-environment exclusive lock.

An ``flock`` on a sidecar file next to ``environment.json``. The lock
lives on its own file so the state file can be replaced atomically
while the lock is held. The kernel drops the lock when the process
exits, so a crashed command never leaves an environment locked.
"""

from __future__ import annotations

import fcntl
import logging
from pathlib import Path
from types import TracebackType
from typing import IO

from tracker_deployer.core.errors import LockContentionError

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"


class EnvironmentLock:
    """Non-blocking exclusive lock; use as a context manager.

        with EnvironmentLock(path, "staging"):
            ...  # load → validate → run → persist
    """

    def __init__(self, path: Path, environment: str):
        self._path = path
        self._environment = environment
        self._handle: IO[str] | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        """Take the lock or raise ``LockContentionError`` immediately."""
        if self._handle is not None:
            return
        self._path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        handle = self._path.open("a+", encoding="utf-8")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.close()
            raise LockContentionError(self._environment, str(self._path)) from None
        except OSError:
            handle.close()
            raise
        self._handle = handle
        logger.debug("Lock acquired: %s", self._path)

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None
            logger.debug("Lock released: %s", self._path)

    def __enter__(self) -> EnvironmentLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

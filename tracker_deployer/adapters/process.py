"""
Local process runner shared by the ssh and lxd adapters.
"""

from __future__ import annotations

import logging
import subprocess
import time

from tracker_deployer.adapters.base import CommandResult

logger = logging.getLogger(__name__)


def run_process(argv: list[str], timeout: float, stdin: str | None = None) -> CommandResult:
    """Run ``argv`` and capture its output. Never raises.

    A missing executable is reported as exit code 127, the same as a
    shell would.
    """
    logger.debug("Executing: %s (timeout=%.0fs)", argv[0], timeout)
    start = time.monotonic()
    try:
        result = subprocess.run(
            argv,
            input=stdin,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        logger.debug("%s timed out after %.0fs", argv[0], timeout)
        return CommandResult(
            exit_code=None,
            stdout=_text(e.stdout),
            stderr=_text(e.stderr) or f"timed out after {timeout:.0f}s",
            timed_out=True,
        )
    except FileNotFoundError:
        return CommandResult(exit_code=127, stderr=f"{argv[0]}: command not found")
    except OSError as e:
        return CommandResult(exit_code=126, stderr=f"{argv[0]}: {e}")

    elapsed_ms = int((time.monotonic() - start) * 1000)
    logger.debug("%s exited %d in %dms", argv[0], result.returncode, elapsed_ms)
    return CommandResult(exit_code=result.returncode, stdout=result.stdout, stderr=result.stderr)


def _text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value

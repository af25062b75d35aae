"""
Generated files — what the release renderers produce.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import BaseModel

logger = logging.getLogger(__name__)

REMOTE_DEPLOY_DIR = "/opt/torrust"


class GeneratedFile(BaseModel):
    """A file rendered locally and uploaded to the host.

    Attributes:
        path:      Path relative to the build dir and to the remote deploy dir.
        content:   Full file content.
        sensitive: Contains revealed secrets; written with mode 0o600.
        reason:    Why this file exists.
    """

    path: str
    content: str
    sensitive: bool = False
    reason: str = ""

    def remote_path(self, deploy_dir: str = REMOTE_DEPLOY_DIR) -> str:
        return f"{deploy_dir.rstrip('/')}/{self.path}"


def write_files(files: list[GeneratedFile], build_dir: Path) -> list[Path]:
    """Write rendered files under ``build_dir``; unchanged files are left alone."""
    build_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
    written = []
    for gf in files:
        target = build_dir / gf.path
        target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        if target.is_file() and target.read_text(encoding="utf-8") == gf.content:
            logger.debug("Unchanged: %s", target)
        else:
            target.write_text(gf.content, encoding="utf-8")
            logger.debug("Rendered: %s", target)
        if gf.sensitive:
            os.chmod(target, 0o600)
        written.append(target)
    return written

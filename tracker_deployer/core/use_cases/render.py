"""
Write the release artifacts locally without touching a host.

The input is either a stored environment or a config file; the output
is what ``release`` would upload (tracker.toml, docker-compose.yml,
.env and the Caddyfile when TLS is used). The environment record is
only read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tracker_deployer.core.config.loader import load_config
from tracker_deployer.core.errors import PersistenceError
from tracker_deployer.core.models.environment import EnvironmentConfig
from tracker_deployer.core.rendering import render_release, write_files
from tracker_deployer.core.use_cases.base import Deployer
from tracker_deployer.core.validation.validator import ensure_valid

logger = logging.getLogger(__name__)

RENDER_COMMAND = "render"


@dataclass
class RenderResult:
    environment: str
    source: str
    output_dir: Path
    files: list[Path] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "environment": self.environment,
            "source": self.source,
            "output_dir": str(self.output_dir),
            "files": [str(p.relative_to(self.output_dir)) for p in self.files],
        }


def render_config(config: EnvironmentConfig, output_dir: Path, source: str) -> RenderResult:
    ensure_valid(config, environment=config.name, transition=RENDER_COMMAND)
    try:
        written = write_files(render_release(config), output_dir)
    except OSError as e:
        raise PersistenceError(
            f"Cannot write artifacts to {output_dir}: {e}",
            "Check that the output directory is writable.",
            environment=config.name,
            transition=RENDER_COMMAND,
        ) from e
    logger.info("Rendered %d file(s) for '%s' into %s", len(written), config.name, output_dir)
    return RenderResult(environment=config.name, source=source, output_dir=output_dir, files=written)


def render_environment(deployer: Deployer, name: str, output_dir: Path | None = None) -> RenderResult:
    """Render a stored environment (any stage) into ``output_dir``.

    Defaults to the environment's build directory, the same place
    ``release`` renders to.
    """
    env = deployer.store.load(name)
    target = output_dir or deployer.settings.build_path(name)
    return render_config(env.config, target, source=f"environment {name}")


def render_file(deployer: Deployer, path: Path, output_dir: Path | None = None) -> RenderResult:
    """Render straight from a config file; nothing is stored."""
    config = load_config(path)
    target = output_dir or deployer.settings.build_path(config.name)
    return render_config(config, target, source=f"config file {path}")

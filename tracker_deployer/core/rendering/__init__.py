"""
Release rendering — turns an environment config into deployable files.

    files = render_release(config)
    write_files(files, build_dir)
"""

from __future__ import annotations

from tracker_deployer.core.models.environment import EnvironmentConfig
from tracker_deployer.core.rendering.caddy import render_caddyfile
from tracker_deployer.core.rendering.compose import render_compose, render_env_file
from tracker_deployer.core.rendering.files import REMOTE_DEPLOY_DIR, GeneratedFile, write_files
from tracker_deployer.core.rendering.tracker import render_tracker_toml

# Remote directories the release creates before uploading.
STORAGE_DIRS = [
    "storage/tracker/etc",
    "storage/tracker/lib/database",
    "storage/tracker/log",
]
TLS_STORAGE_DIRS = ["storage/caddy/etc", "storage/caddy/data", "storage/caddy/config"]
MYSQL_STORAGE_DIRS = ["storage/mysql/data"]


def render_release(config: EnvironmentConfig) -> list[GeneratedFile]:
    """All files for one release, in upload order."""
    files = [
        render_tracker_toml(config.tracker),
        render_compose(config),
        render_env_file(config),
    ]
    if config.https is not None:
        caddyfile = render_caddyfile(config.tracker, config.https)
        if caddyfile is not None:
            files.append(caddyfile)
    return files


def storage_dirs(config: EnvironmentConfig) -> list[str]:
    dirs = list(STORAGE_DIRS)
    if config.tracker.uses_tls_proxy():
        dirs += TLS_STORAGE_DIRS
    if config.tracker.core.database.driver == "mysql":
        dirs += MYSQL_STORAGE_DIRS
    return dirs


__all__ = [
    "REMOTE_DEPLOY_DIR",
    "GeneratedFile",
    "render_release",
    "storage_dirs",
    "write_files",
]

"""
tracker.toml renderer.

The admin token is not written here; the container receives it through
``.env`` as a config override, so this file carries no secret.
"""

from __future__ import annotations

from tracker_deployer.core.models.tracker import MysqlDatabase, TrackerConfig
from tracker_deployer.core.rendering.files import GeneratedFile

TRACKER_TOML_PATH = "storage/tracker/etc/tracker.toml"

# Paths as seen inside the tracker container
_CONTAINER_DB_DIR = "/var/lib/torrust/tracker/database"

_HEADER = """\
[metadata]
app = "torrust-tracker"
purpose = "configuration"
schema_version = "2.0.0"

[logging]
threshold = "info"
"""


def _core_section(tracker: TrackerConfig) -> str:
    db = tracker.core.database
    if isinstance(db, MysqlDatabase):
        # Password comes from the environment override, not from this file.
        driver, path = "mysql", f"mysql://{db.username}@{db.host}:{db.port}/{db.database_name}"
    else:
        driver, path = "sqlite3", f"{_CONTAINER_DB_DIR}/{db.database_name}"
    return (
        "[core]\n"
        f"private = {str(tracker.core.private).lower()}\n"
        "\n"
        "[core.database]\n"
        f'driver = "{driver}"\n'
        f'path = "{path}"\n'
    )


def render_tracker_toml(tracker: TrackerConfig) -> GeneratedFile:
    parts = [_HEADER, _core_section(tracker)]

    for udp in tracker.udp_trackers:
        parts.append(f'[[udp_trackers]]\nbind_address = "{udp.bind_address}"\n')

    for http in tracker.http_trackers:
        parts.append(f'[[http_trackers]]\nbind_address = "{http.bind_address}"\n')

    parts.append(f'[http_api]\nbind_address = "{tracker.http_api.bind_address}"\n')
    parts.append(f'[health_check_api]\nbind_address = "{tracker.health_check_api.bind_address}"\n')

    return GeneratedFile(
        path=TRACKER_TOML_PATH,
        content="\n".join(parts),
        reason="Tracker service configuration",
    )

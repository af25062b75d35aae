"""
docker-compose.yml and .env renderers.

The compose file is built as a dict and dumped with ``yaml.safe_dump``
so quoting is never hand-rolled. Secrets only ever land in ``.env``,
which is marked sensitive.
"""

from __future__ import annotations

from typing import Any

import yaml

from tracker_deployer.core.models.environment import EnvironmentConfig
from tracker_deployer.core.models.tracker import MysqlDatabase, TrackerConfig
from tracker_deployer.core.rendering.files import GeneratedFile

COMPOSE_PATH = "docker-compose.yml"
ENV_PATH = ".env"

TRACKER_IMAGE = "torrust/tracker:develop"
CADDY_IMAGE = "caddy:2.8"
MYSQL_IMAGE = "mysql:8.4"


def _tracker_ports(tracker: TrackerConfig) -> list[str]:
    """Published ports. TLS-proxied and loopback services are not published."""
    ports: list[str] = []
    for udp in tracker.udp_trackers:
        port = udp.bind_address.rpartition(":")[2]
        ports.append(f"{port}:{port}/udp")
    for http in tracker.http_trackers:
        if not http.tls_enabled and not http.bind_address.startswith("127."):
            ports.append(f"{http.port}:{http.port}")
    api = tracker.http_api
    if not api.tls_enabled and not api.bind_address.startswith("127."):
        ports.append(f"{api.port}:{api.port}")
    return ports


def compose_document(config: EnvironmentConfig) -> dict[str, Any]:
    tracker = config.tracker
    services: dict[str, Any] = {}
    depends_on: list[str] = []

    if isinstance(tracker.core.database, MysqlDatabase):
        services["mysql"] = {
            "image": MYSQL_IMAGE,
            "restart": "unless-stopped",
            "env_file": [ENV_PATH],
            "volumes": ["./storage/mysql/data:/var/lib/mysql"],
            "networks": ["backend"],
        }
        depends_on.append("mysql")

    tracker_service: dict[str, Any] = {
        "image": TRACKER_IMAGE,
        "restart": "unless-stopped",
        "env_file": [ENV_PATH],
        "volumes": [
            "./storage/tracker/lib:/var/lib/torrust/tracker",
            "./storage/tracker/log:/var/log/torrust/tracker",
            "./storage/tracker/etc:/etc/torrust/tracker",
        ],
        "ports": _tracker_ports(tracker),
        "networks": ["backend"],
    }
    if depends_on:
        tracker_service["depends_on"] = depends_on
    services["tracker"] = tracker_service

    if tracker.uses_tls_proxy():
        services["caddy"] = {
            "image": CADDY_IMAGE,
            "restart": "unless-stopped",
            "ports": ["80:80", "443:443", "443:443/udp"],
            "volumes": [
                "./storage/caddy/etc/Caddyfile:/etc/caddy/Caddyfile:ro",
                "./storage/caddy/data:/data",
                "./storage/caddy/config:/config",
            ],
            "networks": ["backend"],
            "depends_on": ["tracker"],
        }

    return {"name": "torrust", "services": services, "networks": {"backend": {}}}


def render_compose(config: EnvironmentConfig) -> GeneratedFile:
    return GeneratedFile(
        path=COMPOSE_PATH,
        content=yaml.safe_dump(compose_document(config), sort_keys=False),
        reason="Service stack",
    )


def render_env_file(config: EnvironmentConfig) -> GeneratedFile:
    """Container environment. Reveals secrets; written 0o600."""
    tracker = config.tracker
    lines = [
        "# Generated by tracker-deployer. Contains secrets.",
        "USER_ID=1000",
        "TORRUST_TRACKER_CONFIG_TOML_PATH=/etc/torrust/tracker/tracker.toml",
        "TORRUST_TRACKER_CONFIG_OVERRIDE_HTTP_API__ACCESS_TOKENS__ADMIN="
        + tracker.http_api.admin_token.reveal(),
    ]
    db = tracker.core.database
    if isinstance(db, MysqlDatabase):
        password = db.password.reveal()
        lines += [
            f"MYSQL_DATABASE={db.database_name}",
            f"MYSQL_USER={db.username}",
            f"MYSQL_PASSWORD={password}",
            f"MYSQL_ROOT_PASSWORD={password}",
            "TORRUST_TRACKER_CONFIG_OVERRIDE_CORE__DATABASE__PATH="
            f"mysql://{db.username}:{password}@{db.host}:{db.port}/{db.database_name}",
        ]
    return GeneratedFile(
        path=ENV_PATH,
        content="\n".join(lines) + "\n",
        sensitive=True,
        reason="Container environment (secrets)",
    )

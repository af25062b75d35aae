"""
Tracker configuration models — what gets deployed on the host.

These mirror the user-facing sections of the environment config file.
Bind addresses stay as strings here; parsing and every cross-field rule
lives in ``core.validation.validator`` so a config can be loaded, shown
and then rejected with a complete list of problems.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field

from tracker_deployer.core.models.secret import SecretValue


class SqliteDatabase(BaseModel):
    driver: Literal["sqlite3"] = "sqlite3"
    database_name: str = "tracker.db"


class MysqlDatabase(BaseModel):
    driver: Literal["mysql"] = "mysql"
    host: str = "mysql"
    port: int = 3306
    database_name: str = "torrust_tracker"
    username: str = "tracker_user"
    password: SecretValue


DatabaseConfig = Annotated[SqliteDatabase | MysqlDatabase, Field(discriminator="driver")]


class TrackerCoreConfig(BaseModel):
    """Core tracker settings (database, privacy mode)."""

    database: DatabaseConfig = Field(default_factory=SqliteDatabase)
    private: bool = False


class UdpTrackerConfig(BaseModel):
    bind_address: str


class HttpTrackerConfig(BaseModel):
    """One HTTP tracker instance.

    ``use_tls_proxy`` is tri-state on purpose: an absent flag is kept as
    ``None`` so views can show what the user wrote. Every rule treats
    ``None`` as ``False``.
    """

    bind_address: str
    domain: str | None = None
    use_tls_proxy: bool | None = None

    @property
    def tls_enabled(self) -> bool:
        return bool(self.use_tls_proxy)

    @property
    def port(self) -> int | None:
        return _port_of(self.bind_address)


class HttpApiConfig(BaseModel):
    """Tracker REST API (admin token protected)."""

    bind_address: str = "0.0.0.0:1212"
    admin_token: SecretValue
    domain: str | None = None
    use_tls_proxy: bool | None = None

    @property
    def tls_enabled(self) -> bool:
        return bool(self.use_tls_proxy)

    @property
    def port(self) -> int | None:
        return _port_of(self.bind_address)


class HealthCheckApiConfig(BaseModel):
    bind_address: str = "127.0.0.1:1313"

    @property
    def port(self) -> int | None:
        return _port_of(self.bind_address)


class TrackerConfig(BaseModel):
    """Complete tracker deployment configuration."""

    core: TrackerCoreConfig = Field(default_factory=TrackerCoreConfig)
    udp_trackers: list[UdpTrackerConfig] = Field(default_factory=list)
    http_trackers: list[HttpTrackerConfig] = Field(default_factory=list)
    http_api: HttpApiConfig
    health_check_api: HealthCheckApiConfig = Field(default_factory=HealthCheckApiConfig)

    def uses_tls_proxy(self) -> bool:
        """Whether any service is published through the TLS proxy."""
        if self.http_api.tls_enabled:
            return True
        return any(t.tls_enabled for t in self.http_trackers)

    def http_trackers_with_tls(self) -> list[HttpTrackerConfig]:
        return [t for t in self.http_trackers if t.tls_enabled]


class HttpsConfig(BaseModel):
    """Let's Encrypt settings for the TLS-terminating proxy."""

    admin_email: str
    use_staging: bool = False


def _port_of(bind_address: str) -> int | None:
    """Extract the port from ``IP:PORT`` (IPv6 as ``[::]:PORT``)."""
    _, sep, port = bind_address.rpartition(":")
    if not sep:
        return None
    try:
        return int(port)
    except ValueError:
        return None

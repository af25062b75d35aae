"""
Domain models — Pydantic types for the deployer.

All models are re-exported here for convenient access:

    from tracker_deployer.core.models import Environment, Stage, StepOutcome
"""

from tracker_deployer.core.models.environment import (
    Environment,
    EnvironmentConfig,
    FailureRecord,
    HetznerProvider,
    LxdProvider,
    RuntimeOutputs,
    SshCredentials,
)
from tracker_deployer.core.models.outcome import ErrorKind, StepOutcome
from tracker_deployer.core.models.secret import REDACTED, SecretValue
from tracker_deployer.core.models.stage import Stage
from tracker_deployer.core.models.tracker import (
    HealthCheckApiConfig,
    HttpApiConfig,
    HttpsConfig,
    HttpTrackerConfig,
    MysqlDatabase,
    SqliteDatabase,
    TrackerConfig,
    TrackerCoreConfig,
    UdpTrackerConfig,
)

__all__ = [
    "REDACTED",
    # environment.py
    "Environment",
    "EnvironmentConfig",
    # outcome.py
    "ErrorKind",
    "FailureRecord",
    "HealthCheckApiConfig",
    "HetznerProvider",
    "HttpApiConfig",
    "HttpTrackerConfig",
    "HttpsConfig",
    "LxdProvider",
    "MysqlDatabase",
    "RuntimeOutputs",
    # secret.py
    "SecretValue",
    "SqliteDatabase",
    "SshCredentials",
    # stage.py
    "Stage",
    "StepOutcome",
    # tracker.py
    "TrackerConfig",
    "TrackerCoreConfig",
    "UdpTrackerConfig",
]

"""Adapters — concrete collaborators behind the step contracts.

Public re-exports for convenient access.
"""

from tracker_deployer.adapters.base import (
    CommandResult,
    HostInfo,
    HostProvider,
    HttpProbe,
    ProbeResult,
    ProviderError,
    ProviderTimeout,
    RemoteExecutor,
)

__all__ = [
    "CommandResult",
    "HostInfo",
    "HostProvider",
    "HttpProbe",
    "ProbeResult",
    "ProviderError",
    "ProviderTimeout",
    "RemoteExecutor",
]

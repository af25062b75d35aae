"""
Concrete steps, grouped by what they touch.
"""

from tracker_deployer.core.steps.docker import (
    InstallCompose,
    InstallDocker,
    VerifyComposeInstalled,
    VerifyDockerInstalled,
)
from tracker_deployer.core.steps.host import (
    CreateHost,
    VerifyCloudInitComplete,
    WaitForHost,
    WaitSshConnectivity,
)
from tracker_deployer.core.steps.release import (
    CreateStorage,
    DeployFiles,
    RenderTemplates,
    VerifyFilesDeployed,
)
from tracker_deployer.core.steps.services import (
    CheckServiceHealth,
    StartServices,
    VerifyContainersRunning,
)

__all__ = [
    "CheckServiceHealth",
    "CreateHost",
    "CreateStorage",
    "DeployFiles",
    "InstallCompose",
    "InstallDocker",
    "RenderTemplates",
    "StartServices",
    "VerifyCloudInitComplete",
    "VerifyComposeInstalled",
    "VerifyContainersRunning",
    "VerifyDockerInstalled",
    "VerifyFilesDeployed",
    "WaitForHost",
    "WaitSshConnectivity",
]

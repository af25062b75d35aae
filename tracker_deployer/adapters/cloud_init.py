"""
cloud-init user-data for new hosts: one sudo user with the SSH key.
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml

from tracker_deployer.core.models.environment import SshCredentials


def read_public_key(credentials: SshCredentials) -> str:
    path = Path(os.path.expanduser(credentials.public_key_path))
    return path.read_text(encoding="utf-8").strip()


def render_user_data(credentials: SshCredentials, public_key: str) -> str:
    doc = {
        "users": [
            {
                "name": credentials.username,
                "groups": ["sudo"],
                "shell": "/bin/bash",
                "sudo": "ALL=(ALL) NOPASSWD:ALL",
                "ssh_authorized_keys": [public_key],
            }
        ],
        "package_update": True,
        "packages": ["curl", "ca-certificates"],
    }
    return "#cloud-config\n" + yaml.safe_dump(doc, sort_keys=False)

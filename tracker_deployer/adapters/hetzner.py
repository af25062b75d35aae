"""
Hetzner Cloud host provider — REST API over ``urllib.request``.

The API token is revealed only when building the Authorization header.
Servers are found by name (``torrust-tracker-vm-<env>``), so creating
twice returns the first server.
"""

from __future__ import annotations

import http.client
import json
import logging
import socket
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

from tracker_deployer.adapters.base import HostInfo, HostProvider, ProviderError, ProviderTimeout
from tracker_deployer.adapters.cloud_init import read_public_key, render_user_data
from tracker_deployer.core.models.environment import Environment, HetznerProvider

logger = logging.getLogger(__name__)

API_URL = "https://api.hetzner.cloud/v1"


class HetznerHostProvider(HostProvider):
    def __init__(self, api_url: str = API_URL):
        self._api_url = api_url.rstrip("/")

    @property
    def name(self) -> str:
        return "hetzner"

    # ── HTTP ─────────────────────────────────────────────────────

    def _request(
        self,
        environment: Environment,
        method: str,
        path: str,
        timeout: float,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        provider = environment.config.provider
        if not isinstance(provider, HetznerProvider):
            raise ProviderError(f"environment '{environment.name}' is not a hetzner environment")

        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = urllib.request.Request(
            f"{self._api_url}{path}",
            data=data,
            method=method,
            headers={
                "Authorization": f"Bearer {provider.api_token.reveal()}",
                "Content-Type": "application/json",
            },
        )
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                raw = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            raise ProviderError(f"{method} {path}: HTTP {e.code} {_api_error(e)}") from e
        except urllib.error.URLError as e:
            if isinstance(e.reason, (TimeoutError, socket.timeout)):
                raise ProviderTimeout(f"{method} {path} timed out after {timeout:.0f}s") from e
            raise ProviderError(f"{method} {path}: {e.reason}") from e
        except TimeoutError as e:
            raise ProviderTimeout(f"{method} {path} timed out after {timeout:.0f}s") from e
        except (http.client.HTTPException, ConnectionError, UnicodeDecodeError) as e:
            raise ProviderError(f"{method} {path}: unreadable response ({type(e).__name__})") from e
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ProviderError(f"{method} {path}: response is not JSON ({e.msg})") from e
        if not isinstance(data, dict):
            raise ProviderError(f"{method} {path}: expected a JSON object")
        return data

    # ── HostProvider ─────────────────────────────────────────────

    def _find_server(self, environment: Environment, timeout: float) -> dict[str, Any] | None:
        name = urllib.parse.quote(environment.config.instance_name)
        servers = self._request(environment, "GET", f"/servers?name={name}", timeout).get("servers", [])
        return servers[0] if servers else None

    def host_status(self, environment: Environment, timeout: float) -> HostInfo:
        server = self._find_server(environment, timeout)
        if server is None:
            return HostInfo(host_id=environment.config.instance_name, status="absent")
        return _host_info(server)

    def _ensure_ssh_key(self, environment: Environment, timeout: float) -> str:
        key_name = f"{environment.config.instance_name}-key"
        query = urllib.parse.quote(key_name)
        found = self._request(environment, "GET", f"/ssh_keys?name={query}", timeout).get("ssh_keys", [])
        if found:
            return key_name
        try:
            public_key = read_public_key(environment.config.ssh_credentials)
        except OSError as e:
            raise ProviderError(f"cannot read SSH public key: {e}") from e
        self._request(
            environment,
            "POST",
            "/ssh_keys",
            timeout,
            {"name": key_name, "public_key": public_key},
        )
        return key_name

    def create_host(self, environment: Environment, timeout: float) -> HostInfo:
        existing = self._find_server(environment, timeout)
        if existing is not None:
            logger.info("Server %s already exists", existing.get("id"))
            return _host_info(existing)

        provider = environment.config.provider
        assert isinstance(provider, HetznerProvider)
        creds = environment.config.ssh_credentials
        key_name = self._ensure_ssh_key(environment, timeout)
        try:
            public_key = read_public_key(creds)
        except OSError as e:
            raise ProviderError(f"cannot read SSH public key: {e}") from e

        body = {
            "name": environment.config.instance_name,
            "server_type": provider.server_type,
            "location": provider.location,
            "image": provider.image,
            "ssh_keys": [key_name],
            "user_data": render_user_data(creds, public_key),
            "labels": {"managed-by": "tracker-deployer", "environment": environment.name},
        }
        created = self._request(environment, "POST", "/servers", timeout, body)
        server = created.get("server")
        if not server:
            raise ProviderError("server creation returned no server")
        logger.info("Created server %s", server.get("id"))
        return _host_info(server)

    def destroy_host(self, environment: Environment, timeout: float) -> None:
        server = self._find_server(environment, timeout)
        if server is None:
            return
        self._request(environment, "DELETE", f"/servers/{server['id']}", timeout)
        logger.info("Deleted server %s", server["id"])


def _host_info(server: dict[str, Any]) -> HostInfo:
    ipv4 = ((server.get("public_net") or {}).get("ipv4") or {}).get("ip")
    return HostInfo(host_id=str(server.get("id")), status=str(server.get("status", "unknown")), ip=ipv4)


def _api_error(e: urllib.error.HTTPError) -> str:
    try:
        payload = json.loads(e.read().decode("utf-8"))
        return payload.get("error", {}).get("message", "")
    except (ValueError, OSError):
        return str(e.reason)

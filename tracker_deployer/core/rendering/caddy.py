"""
Caddyfile renderer — TLS termination in front of the tracker.

Only rendered when some service uses the TLS proxy. Each TLS-enabled
service gets one site block that reverse-proxies to the tracker
container on the service's port.
"""

from __future__ import annotations

from tracker_deployer.core.models.tracker import HttpsConfig, TrackerConfig
from tracker_deployer.core.rendering.files import GeneratedFile

CADDYFILE_PATH = "storage/caddy/etc/Caddyfile"

_LE_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"


def _site(domain: str, port: int | None) -> str:
    return f"{domain} {{\n\treverse_proxy tracker:{port}\n}}\n"


def render_caddyfile(tracker: TrackerConfig, https: HttpsConfig) -> GeneratedFile | None:
    sites = []
    if tracker.http_api.tls_enabled and tracker.http_api.domain:
        sites.append(_site(tracker.http_api.domain, tracker.http_api.port))
    for http in tracker.http_trackers_with_tls():
        if http.domain:
            sites.append(_site(http.domain, http.port))
    if not sites:
        return None

    global_opts = [f"\temail {https.admin_email}"]
    if https.use_staging:
        global_opts.append(f"\tacme_ca {_LE_STAGING}")
    header = "{\n" + "\n".join(global_opts) + "\n}\n"

    return GeneratedFile(
        path=CADDYFILE_PATH,
        content=header + "\n" + "\n".join(sites),
        reason="TLS-terminating reverse proxy",
    )

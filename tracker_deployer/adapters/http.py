"""
HTTP probe over ``urllib.request``.
"""

from __future__ import annotations

import logging
import socket
import urllib.error
import urllib.request

from tracker_deployer import __version__
from tracker_deployer.adapters.base import HttpProbe, ProbeResult

logger = logging.getLogger(__name__)

USER_AGENT = f"tracker-deployer/{__version__}"


class UrllibHttpProbe(HttpProbe):
    def get(self, url: str, timeout: float) -> ProbeResult:
        req = urllib.request.Request(url, method="GET", headers={"User-Agent": USER_AGENT})
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                return ProbeResult(status=resp.getcode())
        except urllib.error.HTTPError as e:
            return ProbeResult(status=e.code, error=str(e.reason))
        except urllib.error.URLError as e:
            if isinstance(e.reason, (TimeoutError, socket.timeout)):
                return ProbeResult(error="timed out", timed_out=True)
            return ProbeResult(error=str(e.reason)[:200])
        except TimeoutError:
            return ProbeResult(error="timed out", timed_out=True)
        except OSError as e:
            logger.debug("Probe %s failed: %s", url, e)
            return ProbeResult(error=str(e)[:200])

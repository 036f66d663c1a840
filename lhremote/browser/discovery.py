"""
CDP Target Discovery
====================
Enumerates debuggable targets through the HTTP `/json/list` endpoint that
Chromium-based processes expose next to their WebSocket debugger.

Polling policy belongs to the caller: each call makes exactly one request.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from ..config import DEFAULT_HOST
from .errors import CDPConnectionError

logger = logging.getLogger(__name__)

# Per-request HTTP timeout (connect, read) for the discovery endpoint
HTTP_TIMEOUT = (3.0, 5.0)


@dataclass
class CDPTarget:
    """One entry of the `/json/list` response."""
    id: str
    type: str
    url: str
    title: str = ""
    description: str = ""
    devtools_frontend_url: str = ""
    # Missing when another debugger client is already attached
    web_socket_debugger_url: Optional[str] = None

    @classmethod
    def from_dict(cls, entry: Dict[str, Any]) -> "CDPTarget":
        return cls(
            id=entry.get("id", ""),
            type=entry.get("type", ""),
            url=entry.get("url", ""),
            title=entry.get("title", ""),
            description=entry.get("description", ""),
            devtools_frontend_url=entry.get("devtoolsFrontendUrl", ""),
            web_socket_debugger_url=entry.get("webSocketDebuggerUrl"),
        )


def _list_url(port: int, host: str) -> str:
    return f"http://{host}:{port}/json/list"


def discover_targets(port: int, host: str = DEFAULT_HOST) -> List[CDPTarget]:
    """
    Discover CDP targets exposed at the given port.

    Args:
        port: CDP debugging port (9222 for the launcher, dynamic for instances)
        host: Host to query

    Returns:
        Targets in the order the endpoint lists them. Entries are not
        validated; duplicate ids are passed through.

    Raises:
        CDPConnectionError: endpoint unreachable or non-2xx response
    """
    url = _list_url(port, host)

    try:
        response = requests.get(url, timeout=HTTP_TIMEOUT)
    except requests.RequestException as e:
        raise CDPConnectionError(
            f"Failed to discover CDP targets at {url} (port {port}): "
            f"LinkedHelper not running or CDP not enabled",
            cause=e,
        )

    if not response.ok:
        raise CDPConnectionError(
            f"CDP target discovery returned HTTP {response.status_code} at {url}",
            status=response.status_code,
        )

    try:
        data = response.json()
    except ValueError as e:
        raise CDPConnectionError(f"CDP target discovery returned invalid JSON at {url}", cause=e)

    if not isinstance(data, list):
        raise CDPConnectionError(f"CDP target discovery returned a non-list body at {url}")

    targets = [CDPTarget.from_dict(entry) for entry in data if isinstance(entry, dict)]
    logger.debug(f"Discovered {len(targets)} CDP target(s) on port {port}")
    return targets


def is_cdp_port(port: int, host: str = DEFAULT_HOST) -> bool:
    """Check whether a port answers the CDP `/json/list` endpoint."""
    try:
        response = requests.get(_list_url(port, host), timeout=HTTP_TIMEOUT)
    except requests.RequestException:
        return False
    return response.ok

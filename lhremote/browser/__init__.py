"""
lhremote Browser Module
=======================
Chrome DevTools Protocol layer for LinkedHelper.

- discovery: target enumeration via the `/json/list` HTTP endpoint
- cdp_client: WebSocket client bound to a single target
- instance_discovery: locate the dynamic CDP port of a running instance
- errors: CDPError taxonomy
"""

from .cdp_client import CDPClient, EventWaiter, ensure_host_allowed
from .discovery import CDPTarget, discover_targets, is_cdp_port
from .errors import CDPConnectionError, CDPError, CDPEvaluationError, CDPTimeoutError
from .instance_discovery import discover_instance_port, kill_instance_processes

__all__ = [
    'CDPClient',
    'EventWaiter',
    'ensure_host_allowed',
    'CDPTarget',
    'discover_targets',
    'is_cdp_port',
    'discover_instance_port',
    'kill_instance_processes',
    'CDPError',
    'CDPConnectionError',
    'CDPTimeoutError',
    'CDPEvaluationError',
]

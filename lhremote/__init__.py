"""
lhremote - LinkedHelper remote control over the Chrome DevTools Protocol
=======================================================================
Discovers, connects to, supervises and recovers LinkedHelper instances,
and runs LinkedHelper actions against them with bounded waits.

- browser: CDP target discovery, client, instance port discovery
- services: launcher, instance session, lifecycle and UI health
- config: connection defaults and timing budget
"""

from .browser import (
    CDPClient,
    CDPConnectionError,
    CDPError,
    CDPEvaluationError,
    CDPTarget,
    CDPTimeoutError,
    discover_instance_port,
    discover_targets,
)
from .config import DEFAULT_CDP_PORT, Timings
from .services import (
    ActionExecutionError,
    ActionResult,
    AlreadyRunning,
    InstanceNotRunningError,
    InstanceService,
    InvalidProfileUrlError,
    LauncherService,
    ServiceError,
    Started,
    StartInstanceError,
    TimedOut,
    UIBlockedError,
    start_instance_with_recovery,
    wait_for_instance_port,
    wait_for_instance_shutdown,
)

__all__ = [
    'CDPClient',
    'CDPTarget',
    'discover_targets',
    'discover_instance_port',
    'CDPError',
    'CDPConnectionError',
    'CDPTimeoutError',
    'CDPEvaluationError',
    'DEFAULT_CDP_PORT',
    'Timings',
    'InstanceService',
    'LauncherService',
    'ActionResult',
    'Started',
    'AlreadyRunning',
    'TimedOut',
    'start_instance_with_recovery',
    'wait_for_instance_port',
    'wait_for_instance_shutdown',
    'ServiceError',
    'ActionExecutionError',
    'InstanceNotRunningError',
    'InvalidProfileUrlError',
    'StartInstanceError',
    'UIBlockedError',
]

__version__ = "0.1.0"

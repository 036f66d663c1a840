"""
lhremote Services
=================
LinkedHelper control built on the CDP layer.

- launcher: start/stop instances through the launcher window
- instance: drive a running instance (navigation, actions, UI evaluation)
- instance_lifecycle: idempotent start with crash recovery, port polling
- ui_health: UI health model and health-check hooks
"""

from .errors import (
    ActionExecutionError,
    InstanceNotRunningError,
    InvalidProfileUrlError,
    LinkedHelperNotRunningError,
    ServiceError,
    StartInstanceError,
    UIBlockedError,
    WrongPortError,
)
from .instance import ActionResult, InstanceService, SessionState
from .instance_lifecycle import (
    AlreadyRunning,
    Started,
    StartInstanceOutcome,
    TimedOut,
    start_instance_with_recovery,
    wait_for_instance_port,
    wait_for_instance_shutdown,
)
from .launcher import Account, LauncherService
from .ui_health import InstanceIssue, PopupState, UIHealthStatus, launcher_health_checker

__all__ = [
    'ServiceError',
    'ActionExecutionError',
    'InstanceNotRunningError',
    'InvalidProfileUrlError',
    'LinkedHelperNotRunningError',
    'StartInstanceError',
    'UIBlockedError',
    'WrongPortError',
    'ActionResult',
    'InstanceService',
    'SessionState',
    'Started',
    'AlreadyRunning',
    'TimedOut',
    'StartInstanceOutcome',
    'start_instance_with_recovery',
    'wait_for_instance_port',
    'wait_for_instance_shutdown',
    'Account',
    'LauncherService',
    'InstanceIssue',
    'PopupState',
    'UIHealthStatus',
    'launcher_health_checker',
]

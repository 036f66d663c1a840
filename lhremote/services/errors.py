"""
Service-layer error taxonomy.

Errors raised by the launcher, instance and lifecycle services. CDP
transport errors (lhremote.browser.errors) pass through these services
unchanged unless a service adds context, in which case the original error
is chained as the cause.
"""

from typing import Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .ui_health import UIHealthStatus


class ServiceError(Exception):
    """Base class for all service-layer errors."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class LinkedHelperNotRunningError(ServiceError):
    """The launcher has no reachable CDP endpoint."""

    def __init__(self, port: int):
        super().__init__(f"LinkedHelper is not running (no CDP endpoint at port {port})")
        self.port = port


class StartInstanceError(ServiceError):
    """The launcher refused or failed to start an instance."""

    def __init__(self, account_id: int, reason: Optional[str] = None):
        message = f"Failed to start instance for account {account_id}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.account_id = account_id
        self.reason = reason

    @property
    def already_running(self) -> bool:
        return "already running" in str(self).lower()


class InstanceNotRunningError(ServiceError):
    """
    An expected instance is not running, or its CDP targets never appeared.

    `missing` names the targets that were not observed and `target_count`
    is how many targets the endpoint exposed at the last poll. Together they
    tell "still booting" apart from "crashed before loading".
    """

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        missing: Sequence[str] = (),
        target_count: Optional[int] = None,
    ):
        super().__init__(message or "Instance not running")
        self.missing = tuple(missing)
        self.target_count = target_count


class WrongPortError(ServiceError):
    """The CDP port belongs to an instance webview rather than the launcher."""

    def __init__(self, port: int):
        super().__init__(
            f"CDP port {port} appears to be a LinkedHelper instance, not the launcher. "
            f"Use the launcher port instead (default: 9222)."
        )
        self.port = port


class InvalidProfileUrlError(ServiceError):
    """The URL is not a LinkedIn profile URL."""

    def __init__(self, url: str):
        super().__init__(f"Invalid LinkedIn profile URL: {url}")
        self.url = url


class ActionExecutionError(ServiceError):
    """A LinkedHelper action failed. `action_type` names the action, `cause` the underlying error."""

    def __init__(
        self,
        action_type: str,
        message: Optional[str] = None,
        *,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message or f"Action '{action_type}' failed", cause=cause)
        self.action_type = action_type


class UIBlockedError(ServiceError):
    """
    The LinkedHelper UI is blocked by a dialog, critical error or popup.

    Raised by health checkers; `status` carries the health snapshot when
    the checker produced one.
    """

    def __init__(self, message: str, status: Optional["UIHealthStatus"] = None):
        super().__init__(message)
        self.status = status

"""
Instance Service - control of a running LinkedHelper instance
=============================================================
An instance exposes two CDP targets on the same port:

- LinkedIn webview: the Chromium page rendering linkedin.com
- Instance UI: the Electron page hosting the LinkedHelper UI (index.html)

InstanceService connects to both, navigates the webview, and runs
LinkedHelper actions through the UI's `mainWindowService` bridge.

State machine: DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from ..browser.cdp_client import CDPClient, ensure_host_allowed
from ..browser.discovery import CDPTarget, discover_targets
from ..browser.errors import CDPTimeoutError
from ..config import DEFAULT_HOST, DEFAULT_TIMINGS, Timings
from ..infra.timing import SYSTEM_CLOCK, Clock, Deadline
from .errors import (
    ActionExecutionError,
    InstanceNotRunningError,
    InvalidProfileUrlError,
    ServiceError,
    UIBlockedError,
)
from .ui_health import HealthChecker

logger = logging.getLogger(__name__)

LINKEDIN_PROFILE_URL_RE = re.compile(r"^https://www\.linkedin\.com/in/[^/]+/?$")

LINKEDIN_TARGET_NAME = "LinkedIn webview"
UI_TARGET_NAME = "Instance UI"

EXECUTE_ACTION_JS = """(async () => {{
  const mws = window.mainWindowService;
  if (!mws) throw new Error('mainWindowService not found on window');
  return await mws.call('executeSingleAction', {action}, {config});
}})()"""


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class ActionResult:
    """Result of a LinkedHelper action execution."""
    success: bool
    action_type: str
    error: Optional[str] = None


def is_linkedin_target(target: CDPTarget) -> bool:
    return target.type == "page" and "linkedin.com" in target.url


def is_ui_target(target: CDPTarget) -> bool:
    return target.type == "page" and "index.html" in target.url


def assert_linkedin_profile_url(url: str):
    if not isinstance(url, str) or not LINKEDIN_PROFILE_URL_RE.match(url):
        raise InvalidProfileUrlError(url)


class InstanceService:
    """
    Controls a running LinkedHelper instance via CDP.

    Args:
        port: The instance's CDP port (see discover_instance_port)
        host: CDP host, loopback unless allow_remote is set
        timeout: Per-call CDP timeout in seconds (defaults to timings.request_timeout)
        allow_remote: Permit non-loopback hosts; without it a remote host
            raises CDPConnectionError here, before any discovery request
        health_checker: Optional zero-argument hook run after every UI call
        timings: Poll interval and connect deadline
        clock: Time source for the connect poll loop
    """

    def __init__(
        self,
        port: int,
        host: str = DEFAULT_HOST,
        timeout: Optional[float] = None,
        allow_remote: bool = False,
        health_checker: Optional[HealthChecker] = None,
        timings: Optional[Timings] = None,
        clock: Optional[Clock] = None,
    ):
        ensure_host_allowed(host, allow_remote)
        self.port = port
        self.host = host
        self.allow_remote = allow_remote
        self._timings = timings or DEFAULT_TIMINGS
        self.timeout = timeout if timeout is not None else self._timings.request_timeout
        self._clock = clock or SYSTEM_CLOCK
        self._health_checker = health_checker
        self._in_health_check = False
        self._state = SessionState.DISCONNECTED
        self._linkedin_client: Optional[CDPClient] = None
        self._ui_client: Optional[CDPClient] = None

    def __enter__(self) -> "InstanceService":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        """Whether both clients exist and are connected."""
        return (
            self._linkedin_client is not None
            and self._linkedin_client.is_connected
            and self._ui_client is not None
            and self._ui_client.is_connected
        )

    def set_health_checker(self, checker: Optional[HealthChecker]):
        """Install (or clear, with None) the post-call UI health check."""
        self._health_checker = checker

    # ── Connection lifecycle ───────────────────────────────────────

    def connect(self):
        """
        Connect to both instance targets.

        The instance may still be loading LinkedIn after startup, so targets
        are polled until both appear or the connect deadline passes.

        Raises:
            InstanceNotRunningError: a target never appeared
            CDPConnectionError: discovery or a WebSocket handshake failed
            ServiceError: connect() re-entered while connecting
        """
        if self._state == SessionState.CONNECTING:
            raise ServiceError("InstanceService is already connecting")
        if self._state == SessionState.CONNECTED and self.is_connected:
            return
        if self._state == SessionState.CONNECTED:
            # A client dropped since the last connect; start over.
            self.disconnect()

        self._state = SessionState.CONNECTING
        try:
            linkedin_target, ui_target = self._wait_for_targets()
            self._open_clients(linkedin_target, ui_target)
        except BaseException:
            self._state = SessionState.DISCONNECTED
            raise
        self._state = SessionState.CONNECTED
        logger.info(f"Connected to LinkedHelper instance on port {self.port}")

    def disconnect(self):
        """Disconnect from both targets. Safe to call when not connected."""
        was_connected = self._state == SessionState.CONNECTED
        linkedin_client, self._linkedin_client = self._linkedin_client, None
        ui_client, self._ui_client = self._ui_client, None
        for client in (linkedin_client, ui_client):
            if client is not None:
                client.disconnect()
        self._state = SessionState.DISCONNECTED
        if was_connected:
            logger.info(f"Disconnected from LinkedHelper instance on port {self.port}")

    def _wait_for_targets(self):
        interval = self._timings.poll_interval
        deadline = Deadline.after(self._timings.connect_timeout, self._clock)

        targets: List[CDPTarget] = []
        linkedin_target: Optional[CDPTarget] = None
        ui_target: Optional[CDPTarget] = None

        while not deadline.expired():
            targets = discover_targets(self.port, self.host)
            linkedin_target = next((t for t in targets if is_linkedin_target(t)), None)
            ui_target = next((t for t in targets if is_ui_target(t)), None)
            if linkedin_target is not None and ui_target is not None:
                return linkedin_target, ui_target
            logger.debug(
                f"Waiting for instance targets on port {self.port}: "
                f"{len(targets)} target(s), linkedin={linkedin_target is not None}, "
                f"ui={ui_target is not None}"
            )
            self._clock.sleep(interval)

        missing = []
        if linkedin_target is None:
            missing.append(LINKEDIN_TARGET_NAME)
        if ui_target is None:
            missing.append(UI_TARGET_NAME)
        noun = "target" if len(missing) == 1 else "targets"
        raise InstanceNotRunningError(
            f"{' and '.join(missing)} {noun} not found among {len(targets)} "
            f"CDP target(s) on port {self.port}",
            missing=missing,
            target_count=len(targets),
        )

    def _new_client(self) -> CDPClient:
        return CDPClient(
            self.port,
            host=self.host,
            timeout=self.timeout,
            allow_remote=self.allow_remote,
        )

    def _open_clients(self, linkedin_target: CDPTarget, ui_target: CDPTarget):
        opened: List[CDPClient] = []
        try:
            linkedin_client = self._new_client()
            opened.append(linkedin_client)
            linkedin_client.connect(linkedin_target.id)

            ui_client = self._new_client()
            opened.append(ui_client)
            ui_client.connect(ui_target.id)
        except BaseException:
            for client in opened:
                client.disconnect()
            raise

        self._linkedin_client = linkedin_client
        self._ui_client = ui_client

    # ── Operations ─────────────────────────────────────────────────

    def navigate_to_profile(self, url: str):
        """
        Navigate the LinkedIn webview to a profile URL and wait for it to load.

        Raises:
            InvalidProfileUrlError: url is not https://www.linkedin.com/in/<slug>
            CDPTimeoutError: the page did not finish loading in time
        """
        assert_linkedin_profile_url(url)
        client = self._ensure_linkedin_client()

        client.send("Page.enable")
        loaded = client.expect_event("Page.loadEventFired")
        try:
            client.navigate(url)
        except BaseException:
            loaded.cancel()
            raise
        loaded.wait()

    def execute_action(self, action_name: str, config: Optional[Dict[str, Any]] = None) -> ActionResult:
        """
        Run a LinkedHelper action through the instance UI.

        Blocks until the action completes, which can take minutes for
        long-running actions such as ScrapeMessagingHistory.

        Args:
            action_name: Action type, e.g. 'SaveCurrentProfile'
            config: Action configuration object

        Raises:
            ActionExecutionError: the action failed; the cause is chained
            UIBlockedError: the health checker found the UI blocked
        """
        client = self._ensure_ui_client()
        expression = EXECUTE_ACTION_JS.format(
            action=json.dumps(action_name),
            config=json.dumps(config if config is not None else {}),
        )

        logger.info(f"Executing LinkedHelper action {action_name}")
        try:
            client.evaluate(expression, await_promise=True)
        except Exception as e:
            if isinstance(e, CDPTimeoutError):
                self._run_health_check()
            raise ActionExecutionError(
                action_name,
                f"Action '{action_name}' failed: {e}",
                cause=e,
            )

        self._run_health_check()
        return ActionResult(success=True, action_type=action_name)

    def trigger_extraction(self):
        """Save the currently displayed LinkedIn profile to the database."""
        self.execute_action("SaveCurrentProfile")

    def evaluate_ui(self, expression: str, await_promise: bool = True) -> Any:
        """
        Evaluate JavaScript in the LinkedHelper UI context.

        Gives access to `window.mainWindowService` and other internals only
        available on the UI target.
        """
        client = self._ensure_ui_client()
        try:
            value = client.evaluate(expression, await_promise=await_promise)
        except CDPTimeoutError:
            self._run_health_check()
            raise
        self._run_health_check()
        return value

    # ── Internal ───────────────────────────────────────────────────

    def _run_health_check(self):
        """
        Run the health checker, if any.

        UIBlockedError propagates; anything else the checker raises is logged
        and dropped so it cannot replace the call's own outcome. Calls the
        checker itself makes through this service do not re-enter it.
        """
        checker = self._health_checker
        if checker is None or self._in_health_check:
            return
        self._in_health_check = True
        try:
            checker()
        except UIBlockedError:
            raise
        except Exception as e:
            logger.warning(f"UI health check failed on port {self.port} (ignored): {e}")
        finally:
            self._in_health_check = False

    def _ensure_linkedin_client(self) -> CDPClient:
        if self._linkedin_client is None:
            raise ServiceError("InstanceService is not connected (LinkedIn target)")
        return self._linkedin_client

    def _ensure_ui_client(self) -> CDPClient:
        if self._ui_client is None:
            raise ServiceError("InstanceService is not connected (UI target)")
        return self._ui_client

"""
Launcher Service
================
Controls the LinkedHelper launcher, the main Electron window that manages
one instance per LinkedIn account. Connects to the launcher's CDP port
and drives it through `@electron/remote`, which is only available in the
launcher renderer. Evaluating against an instance port fails with
"require is not defined", reported as WrongPortError.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from ..browser.cdp_client import CDPClient
from ..browser.errors import CDPConnectionError, CDPEvaluationError
from ..config import DEFAULT_CDP_PORT, DEFAULT_HOST, REQUEST_TIMEOUT
from .errors import LinkedHelperNotRunningError, ServiceError, StartInstanceError, WrongPortError
from .ui_health import UIHealthStatus

logger = logging.getLogger(__name__)

INSTANCE_STATUSES = ("stopped", "starting", "running", "stopping")

START_INSTANCE_JS = """(async () => {{
  try {{
    const remote = require('@electron/remote');
    const mainWindow = remote.getGlobal('mainWindow');
    await mainWindow.startInstance({params});
    return {{ success: true }};
  }} catch (e) {{
    return {{ success: false, error: e.message }};
  }}
}})()"""

STOP_INSTANCE_JS = """(async () => {{
  const remote = require('@electron/remote');
  const mainWindow = remote.getGlobal('mainWindow');
  return await mainWindow.instanceManager.stopInstance({account_id});
}})()"""

# instanceManager.instances is always empty in the renderer because instances
# run as separate OS processes, so this reports 'stopped' for live instances.
INSTANCE_STATUS_JS = """(() => {{
  const remote = require('@electron/remote');
  const mainWindow = remote.getGlobal('mainWindow');
  const instance = mainWindow.instanceManager.instances?.[{account_id}];
  return instance?.status ?? 'stopped';
}})()"""

LIST_ACCOUNTS_JS = """(() => {
  const remote = require('@electron/remote');
  const mainWindow = remote.getGlobal('mainWindow');
  const passwords = mainWindow.electronStore.get('linkedInPasswords') ?? {};
  return Object.keys(passwords)
    .map(k => {
      const parts = k.split(':li:');
      if (parts.length !== 2) return null;
      const accountId = Number(parts[1]);
      if (Number.isNaN(accountId)) return null;
      return { id: accountId, liId: accountId, name: '', email: null };
    })
    .filter(a => a !== null);
})()"""

UI_HEALTH_JS = """(() => {{
  const remote = require('@electron/remote');
  const mainWindow = remote.getGlobal('mainWindow');
  const im = mainWindow.instanceManager;
  const issues = (im.getInstanceIssues?.({account_id}) ?? []).map(i => ({{
    type: i.type, id: String(i.id), data: i.data ?? {{}}
  }}));
  const popup = mainWindow.popupBS?.value ?? null;
  return {{
    issues,
    popup: popup ? {{
      blocked: true,
      message: popup.message ?? null,
      closable: !popup.unclosable
    }} : null
  }};
}})()"""


@dataclass(frozen=True)
class Account:
    id: int
    li_id: int
    name: str = ""
    email: Optional[str] = None


class LauncherService:
    """
    Launcher-side operations: start/stop instances, list accounts, read UI health.

    Satisfies the launcher interface expected by start_instance_with_recovery.
    """

    def __init__(
        self,
        port: int = DEFAULT_CDP_PORT,
        host: str = DEFAULT_HOST,
        allow_remote: bool = False,
        timeout: Optional[float] = None,
    ):
        self.port = port
        self.host = host
        self.allow_remote = allow_remote
        self.timeout = timeout
        self._client: Optional[CDPClient] = None

    def __enter__(self) -> "LauncherService":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    def connect(self):
        """
        Connect to the launcher.

        Raises:
            LinkedHelperNotRunningError: the launcher CDP endpoint is unreachable
        """
        client = CDPClient(
            self.port,
            host=self.host,
            timeout=self.timeout if self.timeout is not None else REQUEST_TIMEOUT,
            allow_remote=self.allow_remote,
        )
        try:
            client.connect()
        except CDPConnectionError as e:
            raise LinkedHelperNotRunningError(self.port) from e
        self._client = client

    def disconnect(self):
        client, self._client = self._client, None
        if client is not None:
            client.disconnect()

    def start_instance(self, account_id: int):
        """
        Start the instance for an account.

        Raises:
            StartInstanceError: the launcher reported a failure, including
                "already running"
        """
        client = self._ensure_connected()
        params = {
            "linkedInAccount": {"id": account_id, "liId": account_id},
            "accountData": {"id": account_id, "liId": account_id},
            "instanceId": 1,
            "proxy": None,
            "license": None,
            "userId": None,
            "frontendSettings": {},
            "lhAccount": {},
            "zoomDefault": 0.9,
            "shouldBringToFront": True,
            "shouldStartRunningCampaigns": False,
        }
        result = self._evaluate(client, START_INSTANCE_JS.format(params=json.dumps(params)), await_promise=True)
        if not isinstance(result, dict) or not result.get("success"):
            reason = result.get("error") if isinstance(result, dict) else None
            raise StartInstanceError(account_id, reason)
        logger.info(f"Launcher started instance for account {account_id}")

    def stop_instance(self, account_id: int):
        client = self._ensure_connected()
        self._evaluate(client, STOP_INSTANCE_JS.format(account_id=int(account_id)), await_promise=True)
        logger.info(f"Launcher stopped instance for account {account_id}")

    def get_instance_status(self, account_id: int) -> str:
        client = self._ensure_connected()
        status = self._evaluate(client, INSTANCE_STATUS_JS.format(account_id=int(account_id)))
        return status if status in INSTANCE_STATUSES else "stopped"

    def list_accounts(self) -> List[Account]:
        """Accounts configured in the launcher's Electron store."""
        client = self._ensure_connected()
        raw = self._evaluate(client, LIST_ACCOUNTS_JS) or []
        return [
            Account(
                id=int(item["id"]),
                li_id=int(item.get("liId", item["id"])),
                name=item.get("name") or "",
                email=item.get("email"),
            )
            for item in raw
            if isinstance(item, dict) and "id" in item
        ]

    def check_ui_health(self, account_id: int) -> UIHealthStatus:
        """Dialogs, critical errors and popup overlays currently blocking the account's UI."""
        client = self._ensure_connected()
        raw = self._evaluate(client, UI_HEALTH_JS.format(account_id=int(account_id)))
        return UIHealthStatus.from_dict(raw if isinstance(raw, dict) else None)

    def _ensure_connected(self) -> CDPClient:
        if self._client is None:
            raise ServiceError("LauncherService is not connected")
        return self._client

    def _evaluate(self, client: CDPClient, expression: str, await_promise: bool = False) -> Any:
        try:
            return client.evaluate(expression, await_promise=await_promise)
        except CDPEvaluationError as e:
            if "require is not defined" in str(e):
                raise WrongPortError(self.port) from e
            raise

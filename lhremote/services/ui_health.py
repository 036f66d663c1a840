"""
UI health model and health-check hooks.

LinkedHelper reports some blocking conditions only through its UI: modal
dialogs waiting for a button press, critical-error banners, and popup
overlays. None of them surface as protocol errors, so callers install a
health checker on InstanceService that runs after each call and raises
UIBlockedError when the UI is blocked.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

from .errors import UIBlockedError

if TYPE_CHECKING:
    from .launcher import LauncherService

HealthChecker = Callable[[], None]


@dataclass(frozen=True)
class InstanceIssue:
    """A dialog or critical error reported on an instance."""
    type: str  # "dialog" | "critical-error"
    id: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def message(self) -> str:
        if self.type == "dialog":
            return str((self.data.get("options") or {}).get("message", ""))
        return str(self.data.get("message", ""))


@dataclass(frozen=True)
class PopupState:
    """Blocking popup overlay in the launcher UI."""
    blocked: bool
    message: Optional[str] = None
    closable: Optional[bool] = None


@dataclass(frozen=True)
class UIHealthStatus:
    healthy: bool
    issues: List[InstanceIssue] = field(default_factory=list)
    popup: Optional[PopupState] = None

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "UIHealthStatus":
        """Build a status from the launcher's evaluate() payload."""
        raw = raw or {}
        issues = [
            InstanceIssue(
                type=str(item.get("type", "")),
                id=str(item.get("id", "")),
                data=item.get("data") or {},
            )
            for item in raw.get("issues") or []
            if isinstance(item, dict)
        ]
        popup_raw = raw.get("popup")
        popup = None
        if isinstance(popup_raw, dict):
            popup = PopupState(
                blocked=bool(popup_raw.get("blocked")),
                message=popup_raw.get("message"),
                closable=popup_raw.get("closable"),
            )
        healthy = not issues and not (popup is not None and popup.blocked)
        return cls(healthy=healthy, issues=issues, popup=popup)

    def describe(self) -> str:
        parts = []
        for issue in self.issues:
            text = issue.message or issue.id
            parts.append(f"{issue.type}: {text}")
        if self.popup is not None and self.popup.blocked:
            parts.append(f"popup: {self.popup.message or 'blocking overlay'}")
        return "; ".join(parts) if parts else "healthy"


def raise_if_blocked(status: UIHealthStatus):
    if not status.healthy:
        raise UIBlockedError(f"LinkedHelper UI is blocked ({status.describe()})", status)


def launcher_health_checker(launcher: "LauncherService", account_id: int) -> HealthChecker:
    """
    Build a health checker that asks the launcher for the account's UI state.

    Usage:
        instance.set_health_checker(launcher_health_checker(launcher, account_id))
    """
    def check():
        raise_if_blocked(launcher.check_ui_health(account_id))

    return check

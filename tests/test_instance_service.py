import json
import logging
from unittest.mock import MagicMock, call

import pytest

from lhremote.browser.cdp_client import CDPClient
from lhremote.browser.discovery import CDPTarget
from lhremote.browser.errors import CDPConnectionError, CDPEvaluationError, CDPTimeoutError
from lhremote.config import Timings
from lhremote.services import instance as instance_module
from lhremote.services.errors import (
    ActionExecutionError,
    InstanceNotRunningError,
    InvalidProfileUrlError,
    ServiceError,
    UIBlockedError,
)
from lhremote.services.instance import ActionResult, InstanceService, SessionState

LINKEDIN_TARGET = CDPTarget(
    id="LI1",
    type="page",
    url="https://www.linkedin.com/feed/",
    web_socket_debugger_url="ws://127.0.0.1:9223/devtools/page/LI1",
)
UI_TARGET = CDPTarget(
    id="UI1",
    type="page",
    url="chrome-extension://abc/index.html#/",
    web_socket_debugger_url="ws://127.0.0.1:9223/devtools/page/UI1",
)
PROFILE_URL = "https://www.linkedin.com/in/jane-doe/"


@pytest.fixture
def clients(monkeypatch):
    """Replace CDPClient inside the instance module; returns created mocks in order."""
    created = []

    def factory(port, host="127.0.0.1", timeout=30.0, allow_remote=False):
        client = MagicMock(spec=CDPClient)
        client.port = port
        client.host = host
        client.timeout = timeout
        client.allow_remote = allow_remote
        client.is_connected = True
        client.send.return_value = {}
        client.evaluate.return_value = None
        created.append(client)
        return client

    monkeypatch.setattr(instance_module, "CDPClient", factory)
    return created


@pytest.fixture
def discover(monkeypatch):
    mock = MagicMock(return_value=[LINKEDIN_TARGET, UI_TARGET])
    monkeypatch.setattr(instance_module, "discover_targets", mock)
    return mock


@pytest.fixture
def service(clock, timings):
    return InstanceService(9223, timings=timings, clock=clock)


@pytest.fixture
def connected(service, clients, discover):
    service.connect()
    return service


def linkedin(clients):
    return clients[0]


def ui(clients):
    return clients[1]


# ── connect ────────────────────────────────────────────────────────


def test_connect_opens_both_targets(service, clients, discover, clock):
    service.connect()

    assert service.is_connected
    assert service.state == SessionState.CONNECTED
    assert len(clients) == 2
    linkedin(clients).connect.assert_called_once_with("LI1")
    ui(clients).connect.assert_called_once_with("UI1")
    assert clock.sleeps == []


def test_connect_shares_connection_options(clock, clients, discover):
    service = InstanceService(9300, host="10.0.0.2", timeout=12.5, allow_remote=True, clock=clock)
    service.connect()

    for client in clients:
        assert client.port == 9300
        assert client.host == "10.0.0.2"
        assert client.timeout == 12.5
        assert client.allow_remote is True


@pytest.mark.parametrize("host", ["10.0.0.5", "127.evil.example"])
def test_remote_host_rejected_before_discovery(clock, clients, discover, host):
    with pytest.raises(CDPConnectionError, match="not allowed"):
        InstanceService(9223, host=host, clock=clock)

    discover.assert_not_called()
    assert clients == []
    assert clock.sleeps == []


def test_default_timings_ignore_environment(monkeypatch, clock, clients, discover):
    monkeypatch.setenv("LHREMOTE_CONNECT_TIMEOUT", "5")
    discover.return_value = []

    with pytest.raises(InstanceNotRunningError):
        InstanceService(9223, clock=clock).connect()
    assert discover.call_count == 30

    discover.reset_mock()
    with pytest.raises(InstanceNotRunningError):
        InstanceService(9223, timings=Timings.from_env(), clock=clock).connect()
    assert discover.call_count == 5


def test_connect_polls_until_both_targets_appear(service, clients, discover, clock):
    discover.side_effect = [[UI_TARGET], [UI_TARGET], [LINKEDIN_TARGET, UI_TARGET]]

    service.connect()

    assert service.is_connected
    assert discover.call_count == 3
    assert clock.sleeps == [1.0, 1.0]


def test_connect_ignores_non_page_targets(service, clients, discover, clock):
    worker = CDPTarget(id="W", type="service_worker", url="https://www.linkedin.com/sw.js")
    discover.return_value = [worker, UI_TARGET]

    with pytest.raises(InstanceNotRunningError):
        service.connect()
    assert clients == []


@pytest.mark.parametrize("targets, missing, pattern", [
    ([UI_TARGET], ("LinkedIn webview",), r"LinkedIn webview target not found among 1 CDP target\(s\) on port 9223"),
    ([LINKEDIN_TARGET], ("Instance UI",), r"Instance UI target not found among 1 CDP target\(s\)"),
    ([], ("LinkedIn webview", "Instance UI"), r"LinkedIn webview and Instance UI targets not found among 0"),
])
def test_connect_times_out_naming_missing_targets(service, clients, discover, clock, targets, missing, pattern):
    discover.return_value = targets

    with pytest.raises(InstanceNotRunningError, match=pattern) as excinfo:
        service.connect()

    assert excinfo.value.missing == missing
    assert excinfo.value.target_count == len(targets)
    assert clock.now >= 30.0
    assert discover.call_count == 30
    assert clients == []
    assert service.state == SessionState.DISCONNECTED


def test_connect_discovery_error_propagates(service, clients, discover):
    discover.side_effect = CDPConnectionError("unreachable")

    with pytest.raises(CDPConnectionError, match="unreachable"):
        service.connect()
    assert service.state == SessionState.DISCONNECTED


def test_connect_is_all_or_nothing(service, clients, discover):
    def fail_second(target_id):
        if target_id == "UI1":
            raise CDPConnectionError("WebSocket connection failed")

    original = instance_module.CDPClient

    def factory(*args, **kwargs):
        client = original(*args, **kwargs)
        client.connect.side_effect = fail_second
        return client

    instance_module.CDPClient = factory
    try:
        with pytest.raises(CDPConnectionError, match="WebSocket connection failed"):
            service.connect()
    finally:
        instance_module.CDPClient = original

    assert len(clients) == 2
    linkedin(clients).disconnect.assert_called_once()
    ui(clients).disconnect.assert_called_once()
    assert not service.is_connected
    assert service.state == SessionState.DISCONNECTED
    with pytest.raises(ServiceError, match="not connected"):
        service.evaluate_ui("1")


def test_connect_is_not_reentrant(service, clients, discover):
    def reenter(port, host):
        service.connect()

    discover.side_effect = reenter

    with pytest.raises(ServiceError, match="already connecting"):
        service.connect()
    assert service.state == SessionState.DISCONNECTED


def test_connect_when_connected_is_noop(connected, clients, discover):
    connected.connect()
    assert len(clients) == 2
    assert discover.call_count == 1


# ── disconnect ─────────────────────────────────────────────────────


def test_disconnect_tears_down_both_clients(connected, clients):
    connected.disconnect()

    linkedin(clients).disconnect.assert_called_once()
    ui(clients).disconnect.assert_called_once()
    assert not connected.is_connected
    assert connected.state == SessionState.DISCONNECTED


def test_disconnect_when_never_connected(service):
    service.disconnect()
    service.disconnect()
    assert service.state == SessionState.DISCONNECTED


def test_is_connected_requires_both_clients(connected, clients):
    ui(clients).is_connected = False
    assert not connected.is_connected


def test_context_manager(clock, clients, discover):
    with InstanceService(9223, clock=clock) as service:
        assert service.is_connected
    assert not service.is_connected
    for client in clients:
        client.disconnect.assert_called_once()


# ── navigate_to_profile ───────────────────────────────────────────


@pytest.mark.parametrize("url", [
    "https://www.linkedin.com/feed/",
    "https://www.linkedin.com/in/jane/details/experience/",
    "http://www.linkedin.com/in/jane/",
    "https://linkedin.com/in/jane/",
    "https://www.linkedin.com.evil.example/in/jane/",
    "javascript:alert(1)",
    "",
])
def test_navigate_to_profile_rejects_non_profile_urls(connected, clients, url):
    with pytest.raises(InvalidProfileUrlError):
        connected.navigate_to_profile(url)

    client = linkedin(clients)
    client.send.assert_not_called()
    client.navigate.assert_not_called()
    client.expect_event.assert_not_called()


def test_navigate_to_profile_enables_page_navigates_and_waits(connected, clients):
    client = linkedin(clients)
    waiter = client.expect_event.return_value

    connected.navigate_to_profile(PROFILE_URL)

    assert client.mock_calls[-4:] == [
        call.send("Page.enable"),
        call.expect_event("Page.loadEventFired"),
        call.navigate(PROFILE_URL),
        call.expect_event().wait(),
    ]
    ui(clients).navigate.assert_not_called()
    waiter.cancel.assert_not_called()


def test_navigate_to_profile_cancels_waiter_when_navigate_fails(connected, clients):
    client = linkedin(clients)
    client.navigate.side_effect = CDPTimeoutError("slow")

    with pytest.raises(CDPTimeoutError):
        connected.navigate_to_profile(PROFILE_URL)
    client.expect_event.return_value.cancel.assert_called_once()


def test_navigate_to_profile_load_timeout_propagates(connected, clients):
    linkedin(clients).expect_event.return_value.wait.side_effect = CDPTimeoutError("no load")

    with pytest.raises(CDPTimeoutError, match="no load"):
        connected.navigate_to_profile(PROFILE_URL)


def test_navigate_to_profile_requires_connection(service):
    with pytest.raises(ServiceError, match="LinkedIn target"):
        service.navigate_to_profile(PROFILE_URL)


# ── execute_action ─────────────────────────────────────────────────


def test_execute_action_evaluates_bridge_call(connected, clients):
    result = connected.execute_action("MessageToPerson", {"messageTemplate": {"type": "variants"}})

    assert result == ActionResult(success=True, action_type="MessageToPerson")
    client = ui(clients)
    expression = client.evaluate.call_args[0][0]
    assert "mainWindowService" in expression
    assert "'executeSingleAction', \"MessageToPerson\"" in expression
    assert json.dumps({"messageTemplate": {"type": "variants"}}) in expression
    assert client.evaluate.call_args[1] == {"await_promise": True}
    linkedin(clients).evaluate.assert_not_called()


def test_execute_action_default_config_is_empty_object(connected, clients):
    connected.execute_action("SaveCurrentProfile")
    assert "\"SaveCurrentProfile\", {})" in ui(clients).evaluate.call_args[0][0]


def test_trigger_extraction_runs_save_current_profile(connected, clients):
    connected.trigger_extraction()
    assert "\"SaveCurrentProfile\"" in ui(clients).evaluate.call_args[0][0]


def test_execute_action_runs_health_check_once_after_success(connected, clients):
    order = []
    ui(clients).evaluate.side_effect = lambda *a, **k: order.append("evaluate")
    checker = MagicMock(side_effect=lambda: order.append("check"))
    connected.set_health_checker(checker)

    result = connected.execute_action("SaveCurrentProfile")

    assert result.success
    checker.assert_called_once_with()
    assert order == ["evaluate", "check"]


def test_execute_action_ui_blocked_after_success_fails(connected, clients):
    connected.set_health_checker(MagicMock(side_effect=UIBlockedError("dialog open")))

    with pytest.raises(UIBlockedError, match="dialog open"):
        connected.execute_action("SaveCurrentProfile")
    ui(clients).evaluate.assert_called_once()


def test_execute_action_timeout_runs_health_check_and_wraps(connected, clients):
    timeout = CDPTimeoutError("Timed out waiting for response to Runtime.evaluate (id=7)")
    ui(clients).evaluate.side_effect = timeout
    checker = MagicMock()
    connected.set_health_checker(checker)

    with pytest.raises(ActionExecutionError) as excinfo:
        connected.execute_action("ScrapeMessagingHistory")

    checker.assert_called_once_with()
    error = excinfo.value
    assert error.action_type == "ScrapeMessagingHistory"
    assert error.cause is timeout
    assert error.__cause__ is timeout
    assert "Action 'ScrapeMessagingHistory' failed" in str(error)


def test_execute_action_timeout_with_blocked_ui_raises_ui_blocked(connected, clients):
    ui(clients).evaluate.side_effect = CDPTimeoutError("timed out")
    connected.set_health_checker(MagicMock(side_effect=UIBlockedError("popup")))

    with pytest.raises(UIBlockedError, match="popup"):
        connected.execute_action("SaveCurrentProfile")


def test_execute_action_evaluation_error_skips_health_check(connected, clients):
    failure = CDPEvaluationError("Error: mainWindowService not found on window")
    ui(clients).evaluate.side_effect = failure
    checker = MagicMock()
    connected.set_health_checker(checker)

    with pytest.raises(ActionExecutionError) as excinfo:
        connected.execute_action("SaveCurrentProfile")

    checker.assert_not_called()
    assert excinfo.value.cause is failure


def test_failing_health_check_does_not_mask_success(connected, clients, caplog):
    connected.set_health_checker(MagicMock(side_effect=CDPTimeoutError("health check timed out")))

    with caplog.at_level(logging.WARNING, logger="lhremote.services.instance"):
        result = connected.execute_action("SaveCurrentProfile")

    assert result == ActionResult(success=True, action_type="SaveCurrentProfile")
    assert "health check timed out" in caplog.text


def test_failing_health_check_does_not_mask_failure(connected, clients):
    timeout = CDPTimeoutError("timed out")
    ui(clients).evaluate.side_effect = timeout
    connected.set_health_checker(MagicMock(side_effect=RuntimeError("checker broke")))

    with pytest.raises(ActionExecutionError) as excinfo:
        connected.execute_action("SaveCurrentProfile")
    assert excinfo.value.cause is timeout


def test_health_checker_can_be_cleared(connected, clients):
    checker = MagicMock()
    connected.set_health_checker(checker)
    connected.set_health_checker(None)

    connected.execute_action("SaveCurrentProfile")
    checker.assert_not_called()


def test_health_checker_from_constructor(clock, clients, discover):
    checker = MagicMock()
    service = InstanceService(9223, clock=clock, health_checker=checker)
    service.connect()

    service.evaluate_ui("1")
    checker.assert_called_once_with()


def test_execute_action_requires_connection(service):
    with pytest.raises(ServiceError, match="UI target"):
        service.execute_action("SaveCurrentProfile")


# ── evaluate_ui ────────────────────────────────────────────────────


def test_evaluate_ui_passes_through(connected, clients):
    ui(clients).evaluate.return_value = {"campaigns": 3}
    checker = MagicMock()
    connected.set_health_checker(checker)

    assert connected.evaluate_ui("window.stats()", await_promise=False) == {"campaigns": 3}
    ui(clients).evaluate.assert_called_once_with("window.stats()", await_promise=False)
    checker.assert_called_once_with()


def test_evaluate_ui_timeout_runs_health_check_and_reraises(connected, clients):
    timeout = CDPTimeoutError("timed out")
    ui(clients).evaluate.side_effect = timeout
    checker = MagicMock()
    connected.set_health_checker(checker)

    with pytest.raises(CDPTimeoutError) as excinfo:
        connected.evaluate_ui("window.slow()")
    assert excinfo.value is timeout
    checker.assert_called_once_with()


def test_evaluate_ui_blocked(connected, clients):
    connected.set_health_checker(MagicMock(side_effect=UIBlockedError("critical error")))
    with pytest.raises(UIBlockedError):
        connected.evaluate_ui("1")


def test_health_checker_using_the_session_does_not_recurse(connected, clients):
    checker = MagicMock(side_effect=lambda: connected.evaluate_ui("window.health()"))
    connected.set_health_checker(checker)

    connected.execute_action("SaveCurrentProfile")

    checker.assert_called_once_with()
    assert ui(clients).evaluate.call_count == 2

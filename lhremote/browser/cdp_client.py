"""
CDP Client - Chrome DevTools Protocol connection to a single target
===================================================================
Speaks CDP over one WebSocket (websocket-client, sync) to one debuggable
target discovered through `/json/list`.

Features:
- Request/response correlation by message id, one waiter per call
- Per-call timeout that leaves the connection usable
- One-shot event waiters that can be armed before the triggering call
- Runtime.evaluate / Page.navigate helpers

Threading: `connect()` starts one reader thread per connection. The reader
only completes pending calls and dispatches events; it never issues
requests. It exits when the connection closes.
"""

import json
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from urllib.parse import urlparse

import websocket

from ..config import DEFAULT_HOST, REQUEST_TIMEOUT
from ..infra.loopback import is_loopback_address
from .discovery import discover_targets
from .errors import CDPConnectionError, CDPEvaluationError, CDPTimeoutError

logger = logging.getLogger(__name__)

# Granularity at which the reader thread notices a local disconnect
RECV_POLL_INTERVAL = 0.5

# How long disconnect() waits for the reader thread to exit
READER_JOIN_TIMEOUT = 1.0

SAFE_URL_SCHEMES = ("http", "https")

EventListener = Callable[[Dict[str, Any]], None]


def ensure_host_allowed(host: str, allow_remote: bool = False):
    """Raise CDPConnectionError for a non-loopback host unless allow_remote is set."""
    if not allow_remote and not is_loopback_address(host):
        raise CDPConnectionError(
            f'Remote CDP connections to "{host}" are not allowed. '
            "Use allow_remote=True to connect to non-loopback addresses."
        )


class _PendingCall:
    """Waiter for a single request id."""
    __slots__ = ("method", "done", "result", "error")

    def __init__(self, method: str):
        self.method = method
        self.done = threading.Event()
        self.result: Optional[Dict[str, Any]] = None
        self.error: Optional[Exception] = None


class EventWaiter:
    """
    One-shot waiter for a CDP event.

    Created through `CDPClient.expect_event()` so it is registered before the
    call that triggers the event is sent; otherwise a fast event could be
    dispatched by the reader thread before anyone listens for it.
    """

    def __init__(self, client: "CDPClient", event: str):
        self.event = event
        self._client = client
        self._done = threading.Event()
        self._params: Optional[Dict[str, Any]] = None
        self._error: Optional[Exception] = None

    def _deliver(self, params: Dict[str, Any]):
        if self._done.is_set():
            return
        self._params = params
        self._done.set()

    def _fail(self, error: Exception):
        if self._done.is_set():
            return
        self._error = error
        self._done.set()

    def wait(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Block until the event fires. Raises CDPTimeoutError on expiry."""
        limit = self._client.timeout if timeout is None else timeout
        try:
            if not self._done.wait(limit):
                raise CDPTimeoutError(f"Timed out waiting for event {self.event}")
        finally:
            self.cancel()
        if self._error is not None:
            raise self._error
        return self._params or {}

    def cancel(self):
        self._client._remove_waiter(self)


class CDPClient:
    """
    Chrome DevTools Protocol client bound to one target.

    A client binds to one target id for its whole life; talking to a
    different target requires a new client.
    """

    def __init__(
        self,
        port: int,
        host: str = DEFAULT_HOST,
        timeout: float = REQUEST_TIMEOUT,
        allow_remote: bool = False,
    ):
        ensure_host_allowed(host, allow_remote)
        self._port = port
        self._host = host
        self._timeout = timeout
        self._ws: Optional[websocket.WebSocket] = None
        self._msg_id = 0
        self._lock = threading.Lock()
        self._pending: Dict[int, _PendingCall] = {}
        self._listeners: Dict[str, List[EventListener]] = {}
        self._waiters: Set[EventWaiter] = set()
        self._recv_thread: Optional[threading.Thread] = None
        self._running = False
        self._target_id: Optional[str] = None

    @property
    def port(self) -> int:
        return self._port

    @property
    def host(self) -> str:
        return self._host

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def target_id(self) -> Optional[str]:
        return self._target_id

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and self._running

    # ── Connection lifecycle ───────────────────────────────────────

    def connect(self, target_id: Optional[str] = None):
        """
        Open a WebSocket connection to a CDP target.

        Args:
            target_id: Target to attach to. When omitted, the first `page`
                target is used.

        Raises:
            CDPConnectionError: target missing, no debugger URL, or the
                WebSocket handshake failed
        """
        if self._target_id is not None and target_id is not None and target_id != self._target_id:
            raise CDPConnectionError(
                f"Client is bound to target {self._target_id}; "
                f"create a new client for target {target_id}"
            )
        if self.is_connected:
            return

        resolved_id, ws_url = self._resolve_websocket_url(target_id or self._target_id)
        self._open_websocket(ws_url)
        self._target_id = resolved_id
        logger.info(f"CDP connected to target {resolved_id} on port {self._port}")

    def disconnect(self):
        """Close the connection. Pending calls and event waiters fail with CDPConnectionError."""
        ws = self._ws
        self._running = False
        self._ws = None

        if ws is not None:
            try:
                ws.close(timeout=0)
            except (websocket.WebSocketException, OSError) as e:
                logger.debug(f"CDP close error (ignored): {e}")

        thread = self._recv_thread
        self._recv_thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=READER_JOIN_TIMEOUT)

        self._fail_all_pending(CDPConnectionError("Client disconnected"))
        if ws is not None:
            logger.info(f"CDP disconnected from target {self._target_id} on port {self._port}")

    # ── Requests ───────────────────────────────────────────────────

    def send(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Send a CDP method call and wait for its response.

        Returns:
            The `result` object of the response

        Raises:
            CDPConnectionError: not connected, send failed, or the connection
                dropped while waiting
            CDPTimeoutError: no response within the timeout
            CDPEvaluationError: the response carried a protocol error
        """
        ws = self._ws
        if ws is None or not self._running:
            raise CDPConnectionError("Not connected")

        call = _PendingCall(method)
        with self._lock:
            self._msg_id += 1
            msg_id = self._msg_id
            self._pending[msg_id] = call

        message: Dict[str, Any] = {"id": msg_id, "method": method}
        if params is not None:
            message["params"] = params

        try:
            ws.send(json.dumps(message))
        except (websocket.WebSocketException, OSError) as e:
            with self._lock:
                self._pending.pop(msg_id, None)
            raise CDPConnectionError(f"Send failed for {method}: {e}", cause=e)

        limit = self._timeout if timeout is None else timeout
        if not call.done.wait(limit):
            with self._lock:
                self._pending.pop(msg_id, None)
            # The response may have landed between the wait expiring and the pop
            if not call.done.is_set():
                raise CDPTimeoutError(
                    f"Timed out waiting for response to {method} (id={msg_id})"
                )

        if call.error is not None:
            raise call.error
        return call.result or {}

    def evaluate(self, expression: str, await_promise: bool = True) -> Any:
        """
        Evaluate a JavaScript expression via Runtime.evaluate.

        Args:
            expression: JavaScript source
            await_promise: Wait for a returned Promise to settle

        Returns:
            The value of the result, serialized by value

        Raises:
            CDPEvaluationError: the expression threw
        """
        result = self.send("Runtime.evaluate", {
            "expression": expression,
            "awaitPromise": await_promise,
            "returnByValue": True,
        })

        exception = result.get("exceptionDetails")
        if exception:
            description = (
                (exception.get("exception") or {}).get("description")
                or exception.get("text")
                or "Unknown evaluation error"
            )
            raise CDPEvaluationError(description)

        return (result.get("result") or {}).get("value")

    def navigate(self, url: str) -> Dict[str, Any]:
        """
        Navigate the target via Page.navigate.

        Only http and https are accepted; file:, javascript:, data: and
        similar schemes are rejected before anything is sent.

        Raises:
            ValueError: unsupported URL scheme
        """
        scheme = urlparse(url).scheme.lower()
        if scheme not in SAFE_URL_SCHEMES:
            raise ValueError(f"Unsafe URL scheme: {scheme + ':' if scheme else '(none)'}")
        return self.send("Page.navigate", {"url": url})

    # ── Events ─────────────────────────────────────────────────────

    def on(self, event: str, listener: EventListener):
        """Subscribe to a CDP event. Listeners run on the reader thread."""
        with self._lock:
            self._listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: EventListener):
        """Remove a listener registered with `on()`."""
        with self._lock:
            listeners = self._listeners.get(event)
            if listeners and listener in listeners:
                listeners.remove(listener)
                if not listeners:
                    del self._listeners[event]

    def expect_event(self, event: str) -> EventWaiter:
        """Arm a one-shot waiter for `event`; call `.wait()` on it later."""
        if not self.is_connected:
            raise CDPConnectionError("Not connected")
        waiter = EventWaiter(self, event)
        with self._lock:
            self._waiters.add(waiter)
            self._listeners.setdefault(event, []).append(waiter._deliver)
        return waiter

    def wait_for_event(self, event: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Block until the next occurrence of `event` and return its params."""
        return self.expect_event(event).wait(timeout)

    def _remove_waiter(self, waiter: EventWaiter):
        with self._lock:
            self._waiters.discard(waiter)
        self.off(waiter.event, waiter._deliver)

    # ── Internal ───────────────────────────────────────────────────

    def _resolve_websocket_url(self, target_id: Optional[str]) -> Tuple[str, str]:
        targets = discover_targets(self._port, self._host)

        if target_id:
            target = next((t for t in targets if t.id == target_id), None)
        else:
            target = next((t for t in targets if t.type == "page"), None)

        if target is None:
            if target_id:
                raise CDPConnectionError(f"Target {target_id} not found among {len(targets)} targets")
            raise CDPConnectionError(f"No page target found among {len(targets)} targets")

        if not target.web_socket_debugger_url:
            raise CDPConnectionError(
                f"Target {target.id} has no webSocketDebuggerUrl (another debugger may be attached)"
            )
        return target.id, target.web_socket_debugger_url

    def _open_websocket(self, url: str):
        try:
            ws = websocket.create_connection(url, timeout=self._timeout, suppress_origin=True)
        except (websocket.WebSocketException, OSError) as e:
            raise CDPConnectionError(f"WebSocket connection failed to {url}: {e}", cause=e)

        ws.settimeout(RECV_POLL_INTERVAL)
        self._ws = ws
        self._running = True
        self._recv_thread = threading.Thread(
            target=self._recv_loop,
            args=(ws,),
            daemon=True,
            name=f"cdp-recv-{self._port}",
        )
        self._recv_thread.start()

    def _recv_loop(self, ws: websocket.WebSocket):
        """Background thread receiving frames for one connection."""
        while self._running and self._ws is ws:
            try:
                raw = ws.recv()
            except websocket.WebSocketTimeoutException:
                continue
            except Exception as e:
                if self._running:
                    logger.debug(f"CDP recv error: {e}")
                break
            if not raw:
                continue
            self._handle_message(raw)

        self._handle_connection_lost(ws)

    def _handle_message(self, raw: Any):
        try:
            msg = json.loads(raw)
        except ValueError:
            return  # malformed frame
        if not isinstance(msg, dict):
            return

        msg_id = msg.get("id")
        if msg_id is not None:
            with self._lock:
                call = self._pending.pop(msg_id, None)
            if call is None:
                logger.debug(f"Dropping CDP response for unknown or expired id={msg_id}")
                return
            error = msg.get("error")
            if error:
                message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
                call.error = CDPEvaluationError(message)
            else:
                call.result = msg.get("result") or {}
            call.done.set()
            return

        method = msg.get("method")
        if method:
            self._dispatch_event(method, msg.get("params") or {})

    def _dispatch_event(self, method: str, params: Dict[str, Any]):
        with self._lock:
            listeners = list(self._listeners.get(method, ()))
        for listener in listeners:
            try:
                listener(params)
            except Exception as e:
                # Listeners must not take down the reader
                logger.warning(f"CDP listener for {method} failed: {e}")

    def _handle_connection_lost(self, ws: websocket.WebSocket):
        if self._ws is not ws:
            return  # local disconnect already cleaned up
        self._running = False
        self._ws = None
        try:
            ws.shutdown()
        except (websocket.WebSocketException, OSError):
            pass
        logger.warning(f"CDP connection to target {self._target_id} on port {self._port} was lost")
        self._fail_all_pending(CDPConnectionError("WebSocket closed"))

    def _fail_all_pending(self, error: CDPConnectionError):
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
            waiters = list(self._waiters)
        for call in pending:
            call.error = error
            call.done.set()
        for waiter in waiters:
            waiter._fail(error)

"""
Pytest configuration and fixtures for lhremote tests.
"""
import json
import threading
from typing import Any, Callable, Dict, List, Optional

import pytest
from websockets.exceptions import ConnectionClosed
from websockets.sync.server import serve

from lhremote.browser.discovery import CDPTarget
from lhremote.config import Timings
from lhremote.infra.timing import Clock


class FakeClock(Clock):
    """Virtual clock: sleep() advances time instantly."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


Responder = Callable[[Dict[str, Any]], Optional[List[Dict[str, Any]]]]


class FakeCDPServer:
    """
    In-process CDP WebSocket endpoint.

    Every received frame is recorded. A responder registered for the
    method decides which frames to send back (responses, events, or
    nothing); without one the call is answered with an empty result.
    """

    def __init__(self) -> None:
        self.received: List[Dict[str, Any]] = []
        self.responders: Dict[str, Responder] = {}
        self.connections: List[Any] = []
        self._server = serve(self._handle, "127.0.0.1", 0)
        self.port = self._server.socket.getsockname()[1]
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def ws_url(self, target_id: str) -> str:
        return f"ws://127.0.0.1:{self.port}/devtools/page/{target_id}"

    def target(self, target_id: str, url: str = "about:blank", type: str = "page") -> CDPTarget:
        return CDPTarget(id=target_id, type=type, url=url, web_socket_debugger_url=self.ws_url(target_id))

    def respond(self, method: str, responder: Responder) -> None:
        self.responders[method] = responder

    def methods(self) -> List[str]:
        return [msg.get("method") for msg in self.received]

    def drop_connections(self) -> None:
        for connection in list(self.connections):
            connection.close()

    def _handle(self, connection) -> None:
        self.connections.append(connection)
        try:
            for raw in connection:
                msg = json.loads(raw)
                self.received.append(msg)
                responder = self.responders.get(msg.get("method"))
                frames = responder(msg) if responder else [{"id": msg["id"], "result": {}}]
                for frame in frames or []:
                    connection.send(json.dumps(frame))
        except ConnectionClosed:
            pass

    def stop(self) -> None:
        self._server.shutdown()
        self._thread.join(timeout=1.0)


@pytest.fixture(autouse=True)
def no_proxy_env(monkeypatch):
    """Keep loopback HTTP requests off any proxy configured in the environment."""
    for name in ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timings() -> Timings:
    return Timings()


@pytest.fixture
def cdp_server():
    server = FakeCDPServer()
    try:
        yield server
    finally:
        server.stop()

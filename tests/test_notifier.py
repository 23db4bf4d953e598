from __future__ import annotations

import socket
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Iterator, List, Tuple

import pytest

from cronguard.notifier import Event, HealthChecksNotifier


class _PingServer(HTTPServer):
    status = 200

    def __init__(self) -> None:
        super().__init__(("127.0.0.1", 0), _PingHandler)
        self.requests: List[Tuple[str, str, str]] = []


class _PingHandler(BaseHTTPRequestHandler):
    server: _PingServer

    def do_POST(self) -> None:
        length = int(self.headers.get("Content-Length", "0"))
        body = self.rfile.read(length).decode("utf-8")
        self.server.requests.append((self.path, body, self.headers.get("Content-Type", "")))
        self.send_response(self.server.status)
        self.end_headers()
        self.wfile.write(b"OK")

    def log_message(self, format: str, *args: object) -> None:
        return None


@pytest.fixture
def ping_server() -> Iterator[_PingServer]:
    server = _PingServer()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


def _base_url(server: _PingServer) -> str:
    host, port = server.server_address[:2]
    return f"http://{host}:{port}/ping/abc/"


@pytest.mark.parametrize("event", [Event.START, Event.FAIL, Event.COMPLETE])
def test_posts_event_with_run_id(ping_server: _PingServer, event: Event) -> None:
    notifier = HealthChecksNotifier(_base_url(ping_server), timeout=5)

    assert notifier.notify(event, "run-123") is True

    path, body, content_type = ping_server.requests[-1]
    assert path == f"/ping/abc/{event.value}"
    assert body == "rid=run-123"
    assert content_type == "application/x-www-form-urlencoded"


def test_error_status_is_reported_not_raised(ping_server: _PingServer) -> None:
    ping_server.status = 500
    notifier = HealthChecksNotifier(_base_url(ping_server), timeout=5)
    assert notifier.notify(Event.FAIL, "run-1") is False


def test_unreachable_endpoint_is_swallowed() -> None:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    notifier = HealthChecksNotifier(f"http://127.0.0.1:{port}", timeout=1)
    assert notifier.notify(Event.START, "run-1") is False


@pytest.mark.parametrize("base_url", [None, "", "   "])
def test_disabled_notifier_does_nothing(base_url: str) -> None:
    notifier = HealthChecksNotifier(base_url)
    assert notifier.enabled is False
    assert notifier.notify(Event.COMPLETE, "run-1") is False


def test_url_for_strips_trailing_slash() -> None:
    notifier = HealthChecksNotifier("https://hc-ping.com/uuid///")
    assert notifier.url_for(Event.COMPLETE) == "https://hc-ping.com/uuid/complete"

"""
Pytest configuration and fixtures.

Ensures the repository root is importable and provides fakes for the
management client, API session and compose runner, plus a local HTTP
server for wire-level client tests.
"""

import json
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

# Add the repository root to Python path if not already present
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from mineosctl.client import ApiError, Server, StopAllItem, StopAllResult  # noqa: E402
from mineosctl.config import Settings  # noqa: E402


class FakeClient:
    """Records calls; behaviour is set through attributes."""

    def __init__(self, servers=(), stop_all_result=None, kill_errors=None, healthy=True):
        self.servers = [Server(name, status) for name, status in servers]
        self.stop_all_result = stop_all_result or StopAllResult()
        self.kill_errors = kill_errors or {}
        self.healthy = healthy
        self.calls = []

    def list_servers(self):
        self.calls.append(("list_servers",))
        return list(self.servers)

    def server_action(self, name, action):
        self.calls.append(("server_action", name, action))
        if action == "kill" and name in self.kill_errors:
            raise self.kill_errors[name]

    def stop_all(self, timeout_seconds):
        self.calls.append(("stop_all", timeout_seconds))
        return self.stop_all_result

    def send_console_command(self, name, command):
        self.calls.append(("console", name, command))

    def health(self):
        self.calls.append(("health",))
        if not self.healthy:
            raise ApiError("health check failed")

    def is_healthy(self):
        self.calls.append(("is_healthy",))
        return self.healthy


class FakeSession:
    """Stands in for ApiSession: every call goes to one FakeClient."""

    def __init__(self, client=None, settings=None, error=None):
        self.fake = client or FakeClient()
        self._settings = settings or Settings(env_path=Path("/nonexistent/.env"))
        self.error = error
        self.retry_calls = 0

    def settings(self):
        return self._settings

    def client(self):
        return self.fake

    def with_retry(self, op):
        self.retry_calls += 1
        if self.error is not None:
            raise self.error
        return op(self.fake)


class FakeCompose:
    def __init__(self):
        self.calls = []

    def up(self):
        self.calls.append(("up",))

    def stop(self, timeout):
        self.calls.append(("stop", timeout))

    def down(self, volumes=False):
        self.calls.append(("down", volumes))

    def ps(self):
        self.calls.append(("ps",))

    def logs(self, service=None, tail=200, follow=True):
        self.calls.append(("logs", service, tail, follow))


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def fake_compose():
    return FakeCompose()


@pytest.fixture
def env_file(tmp_path: Path) -> Path:
    """A minimal stack settings file."""
    path = tmp_path / ".env"
    path.write_text(
        "API_PORT=5078\n"
        "ApiKey__SeedKey=seed-key-value\n"
        "MINEOS_SHUTDOWN_TIMEOUT=120\n",
        encoding="utf-8",
    )
    return path


class ApiStub:
    """
    Routes for the local test server.

    ``routes`` maps (method, path-with-query) to (status, body, content_type);
    body may be a dict/list (sent as JSON) or str. ``streams`` maps a GET
    path to event-stream text that is sent before the connection goes idle
    until ``release`` is set.
    """

    def __init__(self):
        self.routes = {}
        self.streams = {}
        self.requests = []
        self.base_url = ""
        self.release = threading.Event()

    def add(self, method, path, status=200, body=None, content_type="application/json"):
        self.routes[(method, path)] = (status, body, content_type)

    def add_stream(self, path, events):
        self.streams[path] = events


def _make_handler(stub: ApiStub):
    class Handler(BaseHTTPRequestHandler):
        def _handle(self, method):
            length = int(self.headers.get("Content-Length") or 0)
            body = self.rfile.read(length) if length else b""
            stub.requests.append({
                "method": method,
                "path": self.path,
                "headers": self.headers,
                "body": body.decode("utf-8") if body else "",
            })

            if method == "GET" and self.path in stub.streams:
                self._stream(stub.streams[self.path])
                return

            route = stub.routes.get((method, self.path))
            if route is None:
                status, payload, content_type = 404, "not found", "text/plain"
            else:
                status, payload, content_type = route

            if isinstance(payload, (dict, list)):
                data = json.dumps(payload).encode("utf-8")
            else:
                data = (payload or "").encode("utf-8")

            self.send_response(status)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)

        def _stream(self, events):
            # No Content-Length: the body runs until the connection closes
            self.send_response(200)
            self.send_header("Content-Type", "text/event-stream")
            self.end_headers()
            self.wfile.write(events.encode("utf-8"))
            self.wfile.flush()
            stub.release.wait(30)

        def do_GET(self):
            self._handle("GET")

        def do_POST(self):
            self._handle("POST")

        def log_message(self, format, *args):
            pass

    return Handler


@pytest.fixture
def api_server():
    """A local HTTP server answering from an ApiStub."""
    stub = ApiStub()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _make_handler(stub))
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    stub.base_url = f"http://127.0.0.1:{server.server_address[1]}"
    try:
        yield stub
    finally:
        stub.release.set()
        server.shutdown()
        server.server_close()


def stop_all_result(*items, running=0, skipped=0):
    """Build a StopAllResult from (name, status[, error]) tuples."""
    results = tuple(StopAllItem(*item) for item in items)
    return StopAllResult(
        total=len(results),
        running=running,
        stopped=sum(1 for item in results if not item.error),
        skipped=skipped,
        results=results,
    )

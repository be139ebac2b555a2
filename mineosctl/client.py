"""
MineOS management API client.

Lists servers, runs per-server actions, sends console commands, and opens
console log streams. Uses urllib from stdlib to avoid external dependencies.
"""

import http.client
import json
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Iterator, Optional

from .config import CliConfig, Settings
from .utils import format_timestamp, get_logger


API_PREFIX = "/api/v1"
SERVER_ACTIONS = ("start", "stop", "restart", "kill")


class ApiError(Exception):
    """Management API error."""
    pass


class TransportError(ApiError):
    """The management API is not reachable."""
    pass


class ApiKeyMissing(ApiError):
    """No API key is configured."""

    def __init__(self, message: str = ""):
        super().__init__(
            message or
            "api key missing; set MINEOS_API_KEY in .env or provide ApiKey__StaticKey"
        )


class ApiKeyInvalid(ApiError):
    """The API rejected the configured key."""

    def __init__(self, message: str = "invalid API key"):
        super().__init__(message)


class LogSource(Enum):
    """Named channels of a managed server's output."""
    COMBINED = "combined"
    SERVER = "server"
    JAVA = "java"
    CRASH = "crash"

    def next(self) -> "LogSource":
        """The following source in display order, wrapping around."""
        members = list(LogSource)
        return members[(members.index(self) + 1) % len(members)]

    @classmethod
    def parse(cls, value: Optional[str]) -> "LogSource":
        """Parse a source name; blank means combined."""
        value = (value or "").strip().lower()
        if not value:
            return cls.COMBINED
        try:
            return cls(value)
        except ValueError:
            names = ", ".join(s.value for s in cls)
            raise ValueError(f"unknown log source '{value}' (expected one of: {names})")


@dataclass(frozen=True)
class Server:
    """A managed game server."""
    name: str
    status: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Server":
        return cls(name=str(data.get("name", "")), status=str(data.get("status", "unknown")))


@dataclass(frozen=True)
class StopAllItem:
    """Outcome of stopping one server."""
    name: str
    status: str
    error: Optional[str] = None


@dataclass(frozen=True)
class StopAllResult:
    """Aggregate outcome of a stop-all request."""
    total: int = 0
    running: int = 0
    stopped: int = 0
    skipped: int = 0
    results: tuple[StopAllItem, ...] = field(default_factory=tuple)

    @property
    def failures(self) -> list[StopAllItem]:
        return [item for item in self.results if item.error]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StopAllResult":
        items = tuple(
            StopAllItem(
                name=str(item.get("name", "")),
                status=str(item.get("status", "")),
                error=item.get("error") or None,
            )
            for item in (data.get("results") or [])
        )
        return cls(
            total=int(data.get("total", 0)),
            running=int(data.get("running", 0)),
            stopped=int(data.get("stopped", 0)),
            skipped=int(data.get("skipped", 0)),
            results=items,
        )

    def summary(self) -> str:
        return (
            f"Total: {self.total}, running: {self.running}, "
            f"stopped: {self.stopped}, skipped: {self.skipped}"
        )


@dataclass(frozen=True)
class LogEntry:
    """One line of a managed server's console output."""
    message: str
    timestamp: Optional[datetime] = None
    source: LogSource = LogSource.COMBINED

    def render(self) -> str:
        if self.timestamp is None:
            return self.message
        return f"[{format_timestamp(self.timestamp)}] {self.message}"


def parse_log_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp; unparseable or zero values become None."""
    if not value or not isinstance(value, str):
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        # Sub-microsecond precision from .NET serializers
        head, dot, tail = value.partition(".")
        if not dot:
            return None
        digits = "".join(ch for ch in tail if ch.isdigit())
        zone = tail[len(digits):].replace("Z", "+00:00")
        try:
            ts = datetime.fromisoformat(f"{head}.{digits[:6]}{zone}")
        except ValueError:
            return None
    if ts.year <= 1:
        return None
    return ts


def parse_sse_lines(
    lines: Iterable[str],
    source: LogSource = LogSource.COMBINED
) -> Iterator[LogEntry]:
    """
    Decode Server-Sent Event lines into log entries.

    Only ``data:`` lines carrying a JSON object are entries; anything else
    (comments, event names, blank or undecodable payloads) is skipped.
    """
    for line in lines:
        line = line.rstrip("\r\n")
        if not line.startswith("data:"):
            continue
        payload = line[len("data:"):].strip()
        if not payload:
            continue
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            continue
        if not isinstance(data, dict):
            continue
        entry_source = source
        if data.get("source"):
            try:
                entry_source = LogSource.parse(str(data["source"]))
            except ValueError:
                pass
        yield LogEntry(
            message=str(data.get("message", "")),
            timestamp=parse_log_timestamp(data.get("timestamp")),
            source=entry_source,
        )


class ConsoleStream:
    """
    An open console log stream.

    Only the reading thread may close it. Any other thread stops a blocked
    read with interrupt(), which shuts the connection down through a
    duplicate of the socket and so never waits on the reader's buffer lock.
    """

    def __init__(self, response):
        self.response = response
        self.logger = get_logger()
        self._sock = None
        try:
            self._sock = socket.fromfd(response.fileno(), socket.AF_INET, socket.SOCK_STREAM)
        except (OSError, ValueError) as e:
            self.logger.debug(f"Log stream cannot be interrupted: {e}")

    def __iter__(self) -> Iterator[bytes]:
        return iter(self.response)

    def interrupt(self) -> None:
        """Make a blocked read return end-of-stream. Safe from any thread."""
        if self._sock is None:
            return
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            # Already closed by the peer or the reader
            self.logger.debug(f"Interrupting log stream: {e}")

    def close(self) -> None:
        try:
            self.response.close()
        finally:
            if self._sock is not None:
                self._sock.close()
                self._sock = None


def _read_body(error: urllib.error.HTTPError) -> str:
    try:
        text = error.read().decode('utf-8', errors='replace').strip()
    except OSError:
        return ""
    return text or "(empty response)"


class ManagementClient:
    """Client for the MineOS management REST API."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 15.0):
        """
        Initialize the client.

        Args:
            base_url: API origin (e.g., "http://localhost:5078")
            api_key: Value for the X-Api-Key header
            timeout: Request timeout in seconds (not applied to log streams)
        """
        self.base_url = base_url.rstrip('/')
        self.api_url = self.base_url + API_PREFIX
        self.api_key = (api_key or "").strip()
        self.timeout = timeout
        self.logger = get_logger()

    @classmethod
    def from_settings(cls, settings: Settings, config: Optional[CliConfig] = None) -> "ManagementClient":
        """Build a client for the local stack described by the settings file."""
        config = config or CliConfig()
        base = f"http://{config.api.host}:{settings.effective_api_port}"
        return cls(base, settings.effective_api_key, timeout=config.api.request_timeout)

    def _require_key(self) -> None:
        if not self.api_key:
            raise ApiKeyMissing()

    def _open(
        self,
        method: str,
        endpoint: str,
        what: str,
        data: Optional[dict] = None,
        authenticated: bool = True,
        timeout: Optional[float] = -1,
    ):
        """Send a request and return the open response."""
        url = f"{self.api_url}{endpoint}"
        headers = {"Accept": "application/json"}
        if authenticated:
            headers["X-Api-Key"] = self.api_key
        body = None
        if data is not None:
            body = json.dumps(data).encode('utf-8')
            headers["Content-Type"] = "application/json"

        request = urllib.request.Request(url, data=body, headers=headers, method=method)
        if timeout == -1:
            timeout = self.timeout

        self.logger.debug(f"{method} {url}")
        try:
            if timeout is None:
                return urllib.request.urlopen(request)
            return urllib.request.urlopen(request, timeout=timeout)
        except urllib.error.HTTPError as e:
            if e.code in (401, 403):
                raise ApiKeyInvalid()
            raise ApiError(f"{what} failed: {_read_body(e)}")
        except urllib.error.URLError as e:
            if isinstance(e.reason, ConnectionRefusedError):
                raise TransportError(f"MineOS API not reachable at {self.base_url}")
            raise TransportError(f"Could not connect to MineOS API: {e.reason}")
        except (socket.timeout, TimeoutError):
            raise TransportError(f"Connection to MineOS API timed out")
        except (OSError, http.client.HTTPException) as e:
            raise TransportError(f"{what} failed: {e}")

    def _request(
        self,
        method: str,
        endpoint: str,
        what: str,
        data: Optional[dict] = None,
        authenticated: bool = True,
    ) -> Any:
        """
        Make a request and decode the JSON response.

        Returns:
            Decoded JSON, or None for an empty body

        Raises:
            ApiKeyInvalid: On 401/403
            TransportError: If the API is not reachable
            ApiError: For other API errors
        """
        with self._open(method, endpoint, what, data=data, authenticated=authenticated) as response:
            try:
                content = response.read().decode('utf-8')
            except (socket.timeout, TimeoutError):
                raise TransportError(f"{what} timed out reading response")
            except OSError as e:
                raise TransportError(f"{what} failed: {e}")

        if not content.strip():
            return None
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise ApiError(f"Invalid JSON response: {e}")

    def health(self) -> None:
        """
        Check API health.

        Raises:
            ApiError: If the API is unhealthy or unreachable
        """
        self._request("GET", "/health", "health check", authenticated=False)

    def is_healthy(self) -> bool:
        try:
            self.health()
            return True
        except ApiError:
            return False

    def list_servers(self) -> list[Server]:
        """Fetch all managed servers."""
        self._require_key()
        data = self._request("GET", "/servers/list", "list servers")
        if not isinstance(data, list):
            raise ApiError("list servers failed: expected a JSON array")
        return [Server.from_dict(item) for item in data if isinstance(item, dict)]

    def server_action(self, name: str, action: str) -> None:
        """Run start/stop/restart/kill on one server."""
        self._require_key()
        name = (name or "").strip()
        action = (action or "").strip()
        if not name:
            raise ApiError("server name is required")
        if not action:
            raise ApiError("action is required")

        endpoint = (
            f"/servers/{urllib.parse.quote(name, safe='')}"
            f"/actions/{urllib.parse.quote(action, safe='')}"
        )
        self._request("POST", endpoint, "server action")
        self.logger.info(f"Server action {action}: {name}")

    def stop_all(self, timeout_seconds: int) -> StopAllResult:
        """Ask the API to stop every running server within timeout_seconds."""
        self._require_key()
        query = urllib.parse.urlencode({"timeoutSeconds": int(timeout_seconds)})
        data = self._request("POST", f"/servers/actions/stop-all?{query}", "stop-all")
        result = StopAllResult.from_dict(data if isinstance(data, dict) else {})
        self.logger.info(f"Stop-all ({timeout_seconds}s): {result.summary()}")
        return result

    def send_console_command(self, name: str, command: str) -> None:
        """Send one console command to a server."""
        self._require_key()
        name = (name or "").strip()
        command = (command or "").strip()
        if not name:
            raise ApiError("server name is required")
        if not command:
            raise ApiError("console command is required")

        endpoint = f"/servers/{urllib.parse.quote(name, safe='')}/console"
        self._request("POST", endpoint, "console command", data={"command": command})
        self.logger.info(f"Console command sent to {name}")

    def open_console_stream(self, name: str, source: LogSource = LogSource.COMBINED) -> ConsoleStream:
        """
        Open the console log event stream for a server.

        The returned stream is line-iterable and must be closed by the
        thread that reads it.
        """
        self._require_key()
        name = (name or "").strip()
        if not name:
            raise ApiError("server name is required")

        endpoint = f"/servers/{urllib.parse.quote(name, safe='')}/console/stream"
        endpoint += "?" + urllib.parse.urlencode({"source": source.value})
        # No read timeout: the stream stays idle while the server is quiet,
        # and a timed-out socket file cannot be read again
        return ConsoleStream(self._open("GET", endpoint, "stream logs", timeout=None))

    def iter_console_logs(
        self,
        response,
        source: LogSource = LogSource.COMBINED
    ) -> Iterator[LogEntry]:
        """
        Yield entries from an open console stream until it closes.

        Raises:
            TransportError: If the connection fails mid-stream
        """
        def lines() -> Iterator[str]:
            try:
                for raw in response:
                    yield raw.decode('utf-8', errors='replace')
            except (socket.timeout, TimeoutError):
                raise TransportError("log stream timed out")
            except (OSError, ValueError, http.client.HTTPException) as e:
                raise TransportError(f"log stream failed: {e}")

        return parse_sse_lines(lines(), source)

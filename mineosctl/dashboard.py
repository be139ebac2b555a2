"""
Dashboard state machine.

All dashboard state lives in DashboardModel and is changed only by
Dashboard.update(). Background work is expressed as commands: callables
that perform one blocking operation and return exactly one message, which
the runtime feeds back into update().
"""

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Union

from .client import ApiError, LogEntry, LogSource, Server, StopAllResult
from .config import ConfigError, effective_shutdown_timeout
from .credentials import CredentialStoreError
from .logstream import LogStreamer, LogSubscription
from .report import sort_servers
from .retry import ApiSession
from .utils import get_logger


LOG_CAPACITY = 500

# Normal-mode hotkey -> server action
ACTION_KEYS = {
    "s": "start",
    "x": "stop",
    "e": "restart",
    "K": "kill",
}

CALL_ERRORS = (ApiError, CredentialStoreError, ConfigError)


class Mode(Enum):
    NORMAL = "normal"
    COMMAND = "command"


@dataclass
class DashboardModel:
    """Everything the dashboard shows."""
    mode: Mode = Mode.NORMAL
    servers: list[Server] = field(default_factory=list)
    selected_index: int = 0
    logs: deque = field(default_factory=lambda: deque(maxlen=LOG_CAPACITY))
    log_subscription: Optional[LogSubscription] = None
    log_source: LogSource = LogSource.COMBINED
    logs_visible: bool = True
    status_message: Optional[str] = None
    error_message: Optional[str] = None
    command_input: str = ""
    width: int = 80
    height: int = 24
    loading: bool = False
    quitting: bool = False

    def selected_server(self) -> Optional[Server]:
        if not self.servers:
            return None
        return self.servers[self.selected_index]

    def set_status(self, message: str) -> None:
        self.status_message = message
        self.error_message = None

    def set_error(self, message: str) -> None:
        self.error_message = message
        self.status_message = None

    @property
    def log_server(self) -> Optional[str]:
        if self.log_subscription is None:
            return None
        return self.log_subscription.server


# Messages

@dataclass(frozen=True)
class KeyPressed:
    key: str


@dataclass(frozen=True)
class Resized:
    width: int
    height: int


@dataclass(frozen=True)
class ServersLoaded:
    servers: tuple[Server, ...] = ()
    error: Optional[str] = None


@dataclass(frozen=True)
class ActionCompleted:
    description: str
    error: Optional[str] = None
    result: Optional[StopAllResult] = None


@dataclass(frozen=True)
class LogEntryReceived:
    generation: int
    entry: LogEntry


@dataclass(frozen=True)
class LogStreamEnded:
    generation: int
    error: Optional[str] = None


@dataclass(frozen=True)
class RefreshTick:
    pass


Message = Union[
    KeyPressed, Resized, ServersLoaded, ActionCompleted,
    LogEntryReceived, LogStreamEnded, RefreshTick,
]
Command = Callable[[], Message]


class Dashboard:
    """Update function and the commands it issues."""

    def __init__(self, session: ApiSession, streamer: Optional[LogStreamer] = None):
        self.session = session
        self.streamer = streamer or LogStreamer(session)
        self.logger = get_logger()

    def init(self, model: DashboardModel) -> list[Command]:
        """Commands to run at startup."""
        model.loading = True
        model.set_status("Loading servers...")
        return [self.fetch_servers]

    def shutdown(self, model: DashboardModel) -> None:
        """Release the active log subscription."""
        self._stop_logs(model)

    def update(self, model: DashboardModel, msg: Message) -> tuple[DashboardModel, list[Command]]:
        """Apply one message. The only place the model changes."""
        if isinstance(msg, KeyPressed):
            if model.mode == Mode.COMMAND:
                return model, self._command_key(model, msg.key)
            return model, self._normal_key(model, msg.key)

        if isinstance(msg, Resized):
            model.width = msg.width
            model.height = msg.height
            return model, []

        if isinstance(msg, ServersLoaded):
            return model, self._servers_loaded(model, msg)

        if isinstance(msg, ActionCompleted):
            if msg.error:
                model.set_error(f"{msg.description} failed: {msg.error}")
            elif msg.result is not None:
                model.set_status(f"{msg.description}: {msg.result.summary()}")
            else:
                model.set_status(f"{msg.description}: ok")
            return model, self._reload(model)

        if isinstance(msg, LogEntryReceived):
            if not self._is_current(model, msg.generation):
                return model, []
            model.logs.append(msg.entry.render())
            return model, [self._listen(model.log_subscription)]

        if isinstance(msg, LogStreamEnded):
            if not self._is_current(model, msg.generation):
                return model, []
            server = model.log_server
            self._stop_logs(model)
            if msg.error:
                model.set_error(f"Log stream for {server} ended: {msg.error}")
            else:
                model.set_status(f"Log stream for {server} closed")
            return model, []

        if isinstance(msg, RefreshTick):
            return model, self._reload(model)

        self.logger.debug(f"Ignoring unknown message: {msg!r}")
        return model, []

    # Keys

    def _normal_key(self, model: DashboardModel, key: str) -> list[Command]:
        if key in ("q", "ctrl+c"):
            model.quitting = True
            self._stop_logs(model)
            return []

        if key in ("up", "down"):
            if not model.servers:
                return []
            step = -1 if key == "up" else 1
            index = max(0, min(len(model.servers) - 1, model.selected_index + step))
            if index == model.selected_index:
                return []
            model.selected_index = index
            return self._restart_logs(model)

        if key == "r":
            model.set_status("Reloading servers...")
            return self._reload(model)

        if key == "l":
            model.logs_visible = not model.logs_visible
            if not model.logs_visible:
                self._stop_logs(model)
                model.set_status("Logs hidden")
                return []
            model.set_status("Logs shown")
            return self._restart_logs(model)

        if key == "o":
            model.log_source = model.log_source.next()
            model.set_status(f"Log source: {model.log_source.value}")
            return self._restart_logs(model)

        if key == "c":
            if model.selected_server() is None:
                model.set_error("No server selected")
                return []
            model.mode = Mode.COMMAND
            model.command_input = ""
            return []

        if key in ACTION_KEYS:
            server = model.selected_server()
            if server is None:
                model.set_error("No server selected")
                return []
            action = ACTION_KEYS[key]
            model.set_status(f"{action.capitalize()} {server.name}...")
            return [self._server_action(server.name, action)]

        if key == "a":
            model.set_status("Stopping all servers...")
            return [self._stop_all]

        return []

    def _command_key(self, model: DashboardModel, key: str) -> list[Command]:
        if key == "ctrl+c":
            model.mode = Mode.NORMAL
            model.command_input = ""
            return self._normal_key(model, key)

        if key == "esc":
            model.mode = Mode.NORMAL
            model.command_input = ""
            model.set_status("Command cancelled")
            return []

        if key == "enter":
            command = model.command_input.strip()
            model.mode = Mode.NORMAL
            model.command_input = ""
            server = model.selected_server()
            if not command:
                return []
            if server is None:
                model.set_error("No server selected")
                return []
            model.set_status(f"Sending to {server.name}: {command}")
            return [self._console(server.name, command)]

        if key == "backspace":
            model.command_input = model.command_input[:-1]
            return []

        if len(key) == 1 and key.isprintable():
            model.command_input += key
        return []

    # Servers

    def _servers_loaded(self, model: DashboardModel, msg: ServersLoaded) -> list[Command]:
        model.loading = False
        if msg.error:
            model.set_error(f"Loading servers failed: {msg.error}")
            return []

        previous = model.selected_server()
        model.servers = sort_servers(msg.servers)
        if not model.servers:
            model.selected_index = 0
            self._stop_logs(model)
            return []

        names = [s.name for s in model.servers]
        if previous is not None and previous.name in names:
            model.selected_index = names.index(previous.name)
        else:
            model.selected_index = min(model.selected_index, len(model.servers) - 1)

        if model.status_message in ("Loading servers...", "Reloading servers..."):
            model.set_status(f"{len(model.servers)} server(s)")

        # Only a moved selection reopens logs; an ended stream stays ended
        selected = model.selected_server()
        if previous is None or previous.name != selected.name:
            return self._restart_logs(model)
        return []

    def _reload(self, model: DashboardModel) -> list[Command]:
        if model.loading:
            return []
        model.loading = True
        return [self.fetch_servers]

    # Log subscription

    def _is_current(self, model: DashboardModel, generation: int) -> bool:
        subscription = model.log_subscription
        return subscription is not None and subscription.generation == generation

    def _stop_logs(self, model: DashboardModel) -> None:
        if model.log_subscription is not None:
            model.log_subscription.cancel()
            model.log_subscription = None

    def _restart_logs(self, model: DashboardModel) -> list[Command]:
        # Cancel first: two live subscriptions would interleave in one buffer
        self._stop_logs(model)
        model.logs.clear()

        server = model.selected_server()
        if not model.logs_visible or server is None:
            return []

        try:
            model.log_subscription = self.streamer.open(server.name, model.log_source)
        except ApiError as e:
            model.set_error(f"Opening logs failed: {e}")
            return []
        return [self._listen(model.log_subscription)]

    def _listen(self, subscription: LogSubscription) -> Command:
        def listen() -> Message:
            try:
                entry = subscription.next_entry()
            except ApiError as e:
                return LogStreamEnded(subscription.generation, str(e))
            if entry is None:
                return LogStreamEnded(subscription.generation)
            return LogEntryReceived(subscription.generation, entry)
        return listen

    # One-shot calls

    def fetch_servers(self) -> Message:
        try:
            servers = self.session.with_retry(lambda c: c.list_servers())
        except CALL_ERRORS as e:
            return ServersLoaded(error=str(e))
        return ServersLoaded(servers=tuple(servers))

    def _server_action(self, name: str, action: str) -> Command:
        def run() -> Message:
            description = f"{action.capitalize()} {name}"
            try:
                self.session.with_retry(lambda c: c.server_action(name, action))
            except CALL_ERRORS as e:
                return ActionCompleted(description, error=str(e))
            return ActionCompleted(description)
        return run

    def _stop_all(self) -> Message:
        try:
            timeout = effective_shutdown_timeout(0, self.session.settings().shutdown_timeout)
            result = self.session.with_retry(lambda c: c.stop_all(timeout))
        except CALL_ERRORS as e:
            return ActionCompleted("Stop all", error=str(e))
        return ActionCompleted("Stop all", result=result)

    def _console(self, name: str, command: str) -> Command:
        def run() -> Message:
            description = f"Console {name}"
            try:
                self.session.with_retry(lambda c: c.send_console_command(name, command))
            except CALL_ERRORS as e:
                return ActionCompleted(description, error=str(e))
            return ActionCompleted(description)
        return run

"""
Line-oriented interactive shell for the MineOS management API.

A readline prompt alternative to the full-screen dashboard: pick a server
with 'use', then act on it, follow its logs, or send console commands.
"""

import readline  # noqa: F401  (line editing and history for input())
import shlex
from typing import Optional

from .client import SERVER_ACTIONS, ApiError, LogSource
from .config import ConfigError, effective_shutdown_timeout
from .credentials import CredentialStoreError
from .logstream import LogStreamer
from .report import format_server_list, format_status, format_stop_all
from .retry import ApiSession
from .utils import Colors, get_logger


class Shell:
    """Interactive shell bound to one stack."""

    BUILTIN_COMMANDS = {
        'list': 'List servers (alias: ls)',
        'use': 'use <server> - select a server',
        'start': 'start [server]',
        'stop': 'stop [server]',
        'restart': 'restart [server]',
        'kill': 'kill [server]',
        'stop-all': 'stop-all [timeout] - stop every running server',
        'logs': 'logs [server] [source] - follow logs (Ctrl+C to return)',
        'console': 'console <command> - send to the selected server',
        'status': 'Show stack status',
        'health': 'Check API health',
        'help': 'Show available commands',
        'quit': 'Leave the shell (aliases: exit, q)',
    }

    def __init__(self, session: ApiSession, streamer: Optional[LogStreamer] = None):
        """
        Initialize the shell.

        Args:
            session: API session used for every call
            streamer: Log streamer (built from session when None)
        """
        self.session = session
        self.streamer = streamer or LogStreamer(session)
        self.logger = get_logger()
        self.current: Optional[str] = None
        self._running = False

    @property
    def prompt(self) -> str:
        if self.current:
            return f"[mineos:{self.current}] > "
        return "[mineos] > "

    def start(self) -> None:
        """Run the input loop until quit or EOF."""
        self._running = True
        print(f"\n{Colors.info('MineOS Shell')}")
        print("Type 'help' for available commands, 'quit' to leave.\n")

        while self._running:
            try:
                line = input(self.prompt).strip()
            except EOFError:
                # Ctrl+D pressed
                print()
                break
            except KeyboardInterrupt:
                print()
                continue

            if not line:
                continue

            try:
                self.process_command(line)
            except (ApiError, CredentialStoreError, ConfigError) as e:
                self.logger.error(f"{line}: {e}")
                print(f"{Colors.error('Error:')} {e}")

        self._running = False

    def process_command(self, line: str) -> None:
        """Process one command line."""
        try:
            parts = shlex.split(line)
        except ValueError as e:
            print(f"{Colors.error('Error:')} {e}")
            return
        if not parts:
            return

        cmd, args = parts[0].lower(), parts[1:]

        if cmd in ('quit', 'exit', 'q'):
            self._running = False
        elif cmd in ('list', 'ls'):
            self._cmd_list()
        elif cmd == 'use':
            self._cmd_use(args)
        elif cmd in SERVER_ACTIONS:
            self._cmd_action(cmd, args)
        elif cmd == 'stop-all':
            self._cmd_stop_all(args)
        elif cmd == 'logs':
            self._cmd_logs(args)
        elif cmd == 'console':
            self._cmd_console(line.split(None, 1)[1] if len(parts) > 1 else "")
        elif cmd == 'status':
            self._cmd_status()
        elif cmd == 'health':
            self._cmd_health()
        elif cmd == 'help':
            self._cmd_help()
        else:
            print(f"Unknown command: {cmd} (type 'help')")

    def _target(self, args: list[str]) -> Optional[str]:
        name = args[0] if args else self.current
        if not name:
            print(f"{Colors.warning('No server selected.')} Use 'use <server>' or pass a name.")
        return name

    def _cmd_list(self) -> None:
        servers = self.session.with_retry(lambda c: c.list_servers())
        for line in format_server_list(servers, current=self.current or ""):
            print(line)

    def _cmd_use(self, args: list[str]) -> None:
        if not args:
            print("Usage: use <server>")
            return
        name = args[0]
        servers = self.session.with_retry(lambda c: c.list_servers())
        if name not in {s.name for s in servers}:
            print(f"{Colors.warning('Unknown server:')} {name}")
            return
        self.current = name
        print(f"Selected {name}")

    def _cmd_action(self, action: str, args: list[str]) -> None:
        name = self._target(args)
        if not name:
            return
        self.session.with_retry(lambda c: c.server_action(name, action))
        print(f"{Colors.success(action.capitalize())} {name}")

    def _cmd_stop_all(self, args: list[str]) -> None:
        override = 0
        if args:
            try:
                override = int(args[0])
            except ValueError:
                print("Usage: stop-all [timeout]")
                return
        timeout = effective_shutdown_timeout(override, self.session.settings().shutdown_timeout)
        result = self.session.with_retry(lambda c: c.stop_all(timeout))
        for line in format_stop_all(result):
            print(line)

    def _cmd_logs(self, args: list[str]) -> None:
        name = self._target(args[:1])
        if not name:
            return
        try:
            source = LogSource.parse(args[1] if len(args) > 1 else "")
        except ValueError as e:
            print(f"{Colors.error('Error:')} {e}")
            return

        print(f"{Colors.info('Following logs for')} {name} [{source.value}] (Ctrl+C to stop)")
        subscription = self.streamer.open(name, source)
        try:
            for entry in subscription:
                print(entry.render())
        except KeyboardInterrupt:
            print()
        finally:
            subscription.cancel()

    def _cmd_console(self, command: str) -> None:
        if not self.current:
            print(f"{Colors.warning('No server selected.')} Use 'use <server>' first.")
            return
        command = command.strip()
        if not command:
            print("Usage: console <command>")
            return
        self.session.with_retry(lambda c: c.send_console_command(self.current, command))
        print(f"Sent to {self.current}: {command}")

    def _cmd_status(self) -> None:
        healthy = self.session.client().is_healthy()
        for line in format_status(self.session.settings(), healthy):
            print(line)

    def _cmd_health(self) -> None:
        self.session.client().health()
        print(Colors.success("API is healthy"))

    def _cmd_help(self) -> None:
        print(f"\n{Colors.info('Available Commands')}")
        print("-" * 40)
        for cmd, desc in self.BUILTIN_COMMANDS.items():
            print(f"  {cmd:10} - {desc}")
        print("-" * 40)
        print()

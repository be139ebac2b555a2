"""
Command-line entry point for the MineOS control tool.

Handles CLI parsing, logging setup, confirmation of destructive commands,
and mapping failures to exit codes.
"""

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .client import SERVER_ACTIONS, ApiError, LogSource
from .compose import ComposeError, ComposeRunner
from .config import (
    CliConfig, ConfigError, effective_shutdown_timeout, load_cli_config,
    load_settings, resolve_env_path,
)
from .credentials import CredentialStoreError, refresh_api_key
from .lifecycle import DEFAULT_WAIT_TIMEOUT, StackController
from .logstream import LogStreamer
from .report import format_server_list, format_status, format_stop_all
from .retry import ApiSession
from .utils import (
    Colors, UserCancelled, get_logger, mask, require_confirmation, setup_logging,
)


EXIT_OK = 0
EXIT_ERROR = 1

# Commands that reach the API, the credential store or docker
OPERATION_ERRORS = (ConfigError, ApiError, CredentialStoreError, ComposeError)


@dataclass
class Context:
    """Resolved configuration shared by every command."""
    config: CliConfig
    env_path: Path
    assume_yes: bool = False

    def session(self, notify: Optional[Callable[[str], None]] = print) -> ApiSession:
        return ApiSession(self.env_path, self.config, notify=notify)

    def controller(self) -> StackController:
        session = self.session()
        return StackController(session, ComposeRunner(session.settings()))

    def confirm(self, prompt: str) -> None:
        require_confirmation(prompt, assume_yes=self.assume_yes)


def cmd_list(ctx: Context, args: argparse.Namespace) -> int:
    servers = ctx.session().with_retry(lambda c: c.list_servers())
    for line in format_server_list(servers):
        print(line)
    return EXIT_OK


def cmd_action(ctx: Context, args: argparse.Namespace) -> int:
    action, name = args.command, args.server
    if action == "kill":
        ctx.confirm(f"Kill server '{name}' without saving?")
    ctx.session().with_retry(lambda c: c.server_action(name, action))
    print(f"{Colors.success(action.capitalize())} {name}")
    return EXIT_OK


def cmd_stop_all(ctx: Context, args: argparse.Namespace) -> int:
    session = ctx.session()
    timeout = effective_shutdown_timeout(args.timeout or 0, session.settings().shutdown_timeout)
    ctx.confirm(f"Stop all running servers (timeout {timeout}s)?")

    result = session.with_retry(lambda c: c.stop_all(timeout))
    for line in format_stop_all(result):
        print(line)
    if result.failures:
        print(f"{Colors.warning('Warning:')} {len(result.failures)} server(s) failed to stop")
    return EXIT_OK


def cmd_logs(ctx: Context, args: argparse.Namespace) -> int:
    try:
        source = LogSource.parse(args.source)
    except ValueError as e:
        raise ApiError(str(e))

    streamer = LogStreamer(ctx.session())
    subscription = streamer.open(args.server, source)
    try:
        for entry in subscription:
            print(entry.render(), flush=True)
    except KeyboardInterrupt:
        print()
    finally:
        subscription.cancel()
    return EXIT_OK


def cmd_console(ctx: Context, args: argparse.Namespace) -> int:
    command = " ".join(args.text).strip()
    ctx.session().with_retry(lambda c: c.send_console_command(args.server, command))
    print(f"Sent to {args.server}: {command}")
    return EXIT_OK


def cmd_health(ctx: Context, args: argparse.Namespace) -> int:
    ctx.session().client().health()
    print(Colors.success("API is healthy"))
    return EXIT_OK


def cmd_status(ctx: Context, args: argparse.Namespace) -> int:
    session = ctx.session()
    settings = session.settings()
    healthy = session.client().is_healthy()

    print(f"\n{Colors.info('MineOS Status')}")
    print("=" * 50)
    for line in format_status(settings, healthy):
        print(f"  {line}")
    print()
    return EXIT_OK


def cmd_api_key(ctx: Context, args: argparse.Namespace) -> int:
    settings = load_settings(ctx.env_path)
    key = refresh_api_key(settings)
    print(f"{Colors.success('API key refreshed:')} {mask(key)}")
    return EXIT_OK


def cmd_stack(ctx: Context, args: argparse.Namespace) -> int:
    action = args.stack_command

    if action == "ps":
        ComposeRunner(load_settings(ctx.env_path)).ps()
        return EXIT_OK

    if action == "logs":
        compose = ComposeRunner(load_settings(ctx.env_path))
        try:
            compose.logs(args.service, tail=args.tail, follow=not args.no_follow)
        except KeyboardInterrupt:
            print()
        return EXIT_OK

    if action == "stop":
        what = "Kill all servers and stop" if args.force else "Stop"
        ctx.confirm(f"{what} the MineOS stack?")
    elif action in ("restart", "down"):
        ctx.confirm(f"{action.capitalize()} the MineOS stack?")

    controller = ctx.controller()
    if action == "up":
        controller.start(wait=not args.no_wait, wait_timeout=args.wait_timeout)
    elif action == "stop":
        controller.stop(force=args.force, timeout_seconds=args.timeout or 0)
    elif action == "restart":
        controller.restart(
            wait=not args.no_wait,
            wait_timeout=args.wait_timeout,
            timeout_seconds=args.timeout or 0,
        )
    elif action == "down":
        controller.down(volumes=args.volumes, timeout_seconds=args.timeout or 0)
    return EXIT_OK


def cmd_shell(ctx: Context, args: argparse.Namespace) -> int:
    from .shell import Shell

    Shell(ctx.session()).start()
    return EXIT_OK


def cmd_dashboard(ctx: Context, args: argparse.Namespace) -> int:
    from .dashboard import Dashboard, DashboardModel
    from .tui import DashboardRuntime

    # curses owns the terminal: refresh notices go to the log only
    session = ctx.session(notify=None)
    session.settings()
    model = DashboardModel(log_source=LogSource.parse(ctx.config.dashboard.log_source))
    runtime = DashboardRuntime(
        Dashboard(session),
        model,
        refresh_interval=ctx.config.dashboard.refresh_interval,
    )
    return runtime.run()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mineos-ctl",
        description="MineOS control tool - manage servers and the container stack",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ./mineos-ctl.py                       Open the dashboard
  ./mineos-ctl.py list                  List servers
  ./mineos-ctl.py logs survival java    Follow a server's Java log
  ./mineos-ctl.py stack stop --force    Kill servers, then stop containers
        """
    )

    parser.add_argument(
        '--config',
        type=Path,
        help='Path to config.yaml'
    )
    parser.add_argument(
        '--env',
        type=Path,
        help='Path to the stack settings file (default from config, else ./.env)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '-y', '--yes',
        action='store_true',
        help='Do not ask for confirmation'
    )
    parser.set_defaults(func=cmd_dashboard)

    sub = parser.add_subparsers(dest='command', metavar='<command>')

    p = sub.add_parser('list', help='List servers')
    p.set_defaults(func=cmd_list)

    for action in SERVER_ACTIONS:
        p = sub.add_parser(action, help=f'{action.capitalize()} a server')
        p.add_argument('server')
        p.set_defaults(func=cmd_action)

    p = sub.add_parser('stop-all', help='Stop every running server')
    p.add_argument('timeout', type=int, nargs='?', default=0,
                   help='Shutdown budget in seconds (default MINEOS_SHUTDOWN_TIMEOUT or 300)')
    p.set_defaults(func=cmd_stop_all)

    p = sub.add_parser('logs', help='Follow a server\'s console log')
    p.add_argument('server')
    p.add_argument('source', nargs='?', default='combined',
                   help='combined, server, java or crash')
    p.set_defaults(func=cmd_logs)

    p = sub.add_parser('console', help='Send a console command')
    p.add_argument('server')
    p.add_argument('text', nargs='+', metavar='command')
    p.set_defaults(func=cmd_console)

    p = sub.add_parser('health', help='Check API health')
    p.set_defaults(func=cmd_health)

    p = sub.add_parser('status', help='Show stack status')
    p.set_defaults(func=cmd_status)

    p = sub.add_parser('api-key', help='Manage the API key')
    p.add_argument('api_key_command', choices=['refresh'])
    p.set_defaults(func=cmd_api_key)

    p = sub.add_parser('stack', help='Control the container stack')
    stack = p.add_subparsers(dest='stack_command', metavar='<action>', required=True)
    p.set_defaults(func=cmd_stack)

    sp = stack.add_parser('up', help='Start containers')
    sp.add_argument('--no-wait', action='store_true', help='Do not wait for the API')
    sp.add_argument('--wait-timeout', type=int, default=DEFAULT_WAIT_TIMEOUT)

    sp = stack.add_parser('stop', help='Stop servers, then containers')
    sp.add_argument('--force', action='store_true', help='Kill servers and stop containers immediately')
    sp.add_argument('--timeout', type=int, default=0, help='Server shutdown budget in seconds')

    sp = stack.add_parser('restart', help='Graceful stop, then start')
    sp.add_argument('--no-wait', action='store_true')
    sp.add_argument('--wait-timeout', type=int, default=DEFAULT_WAIT_TIMEOUT)
    sp.add_argument('--timeout', type=int, default=0)

    sp = stack.add_parser('down', help='Graceful stop, then remove containers')
    sp.add_argument('--volumes', action='store_true', help='Also remove volumes')
    sp.add_argument('--timeout', type=int, default=0)

    stack.add_parser('ps', help='Show container status')

    sp = stack.add_parser('logs', help='Show container logs')
    sp.add_argument('service', nargs='?', help='Compose service (default: all)')
    sp.add_argument('--tail', type=int, default=200, help='Lines of history (0 for all)')
    sp.add_argument('--no-follow', action='store_true', help='Print and exit')

    p = sub.add_parser('shell', help='Interactive shell')
    p.set_defaults(func=cmd_shell)

    p = sub.add_parser('dashboard', help='Full-screen dashboard (default)')
    p.set_defaults(func=cmd_dashboard)

    return parser


def run(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load configuration
    try:
        config = load_cli_config(args.config)
    except ConfigError as e:
        print(f"[mineos] {Colors.error('Configuration error:')} {e}")
        return EXIT_ERROR

    # Setup logging
    log_level = "DEBUG" if args.debug else config.logging.level
    setup_logging(
        log_file=config.logging.file,
        level=log_level,
        console_output=False  # Operator output is printed directly
    )

    logger = get_logger()
    ctx = Context(
        config=config,
        env_path=resolve_env_path(args.env or config.stack.env_file),
        assume_yes=args.yes,
    )
    logger.info(f"mineos-ctl {args.command or 'dashboard'} (settings: {ctx.env_path})")

    try:
        return args.func(ctx, args)
    except UserCancelled as e:
        print(str(e) or "Cancelled")
        return EXIT_OK
    except OPERATION_ERRORS as e:
        logger.error(f"{args.command or 'dashboard'} failed: {e}")
        print(f"{Colors.error('Error:')} {e}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print()
        return EXIT_ERROR

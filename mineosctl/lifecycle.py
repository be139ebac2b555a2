"""
Whole-stack start/stop/restart for MineOS.

Game servers are stopped through the management API before the containers
hosting them are stopped, so worlds are saved before the API goes away.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from .client import (
    ApiError, ApiKeyInvalid, ApiKeyMissing, ManagementClient,
    Server, StopAllItem, StopAllResult,
)
from .compose import ComposeRunner
from .config import DEFAULT_SHUTDOWN_TIMEOUT, effective_shutdown_timeout
from .credentials import CredentialStoreError
from .report import NO_SERVERS, format_stop_all
from .retry import ApiSession
from .utils import Colors, format_duration, get_logger


# Game servers are already down by the time containers stop, and the API,
# web and proxy containers exit promptly on SIGTERM
CONTAINER_STOP_TIMEOUT = 30
FORCE_CONTAINER_STOP_TIMEOUT = 0

HEALTH_POLL_INTERVAL = 2
DEFAULT_WAIT_TIMEOUT = 60


@dataclass
class ShutdownReport:
    """What happened during a stack stop."""
    timeout_seconds: int
    forced: bool = False
    servers: Optional[StopAllResult] = None
    server_error: Optional[str] = None
    container_timeout: Optional[int] = None

    @property
    def partial_failure(self) -> bool:
        return bool(self.server_error) or bool(self.servers and self.servers.failures)


class StackController:
    """Sequences server-level and container-level lifecycle operations."""

    def __init__(
        self,
        session: ApiSession,
        compose: ComposeRunner,
        out: Callable[[str], None] = print,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.compose = compose
        self.out = out
        self.sleep = sleep
        self.clock = clock
        self.logger = get_logger()

    def shutdown_timeout(self, override: int = 0) -> int:
        """Server-level budget: override, then MINEOS_SHUTDOWN_TIMEOUT, then 300s."""
        if override and override > 0:
            return override
        return effective_shutdown_timeout(
            0, self.session.settings().shutdown_timeout, DEFAULT_SHUTDOWN_TIMEOUT
        )

    def start(self, wait: bool = True, wait_timeout: int = DEFAULT_WAIT_TIMEOUT) -> bool:
        """
        Start the containers and optionally wait for the API.

        Returns:
            True if started (and healthy, when waiting); False if the health
            wait timed out. A timeout is a warning: the containers did start.
        """
        self.compose.up()
        if not wait:
            return True
        return self.wait_for_api(wait_timeout)

    def wait_for_api(self, timeout: int = DEFAULT_WAIT_TIMEOUT) -> bool:
        """
        Poll the health endpoint until it succeeds or timeout elapses.

        Returns:
            True if healthy, False on timeout
        """
        if timeout <= 0:
            timeout = DEFAULT_WAIT_TIMEOUT

        client = self.session.client()
        self.out("Waiting for API to be ready...")
        start_time = self.clock()
        deadline = start_time + timeout

        while True:
            if client.is_healthy():
                elapsed = self.clock() - start_time
                self.logger.info(f"API ready after {format_duration(elapsed)}")
                self.out("API is ready.")
                return True

            if self.clock() >= deadline:
                message = f"API did not become ready within {timeout}s"
                self.logger.warning(message)
                self.out(f"{Colors.warning('Warning:')} {message}")
                return False

            self.sleep(HEALTH_POLL_INTERVAL)

    def stop_servers(self, force: bool, timeout_seconds: int) -> StopAllResult:
        """
        Stop every managed server through the API.

        With force, each server is killed in turn and failures are collected
        per server. Otherwise one stop-all call gets the whole budget.
        An empty server list makes no further calls.
        """
        # Survives the retry after a key refresh: killed servers are not killed again
        killed: set[str] = set()

        def op(client: ManagementClient) -> StopAllResult:
            servers = client.list_servers()
            if not servers:
                self.out(NO_SERVERS)
                return StopAllResult()
            if force:
                return self._kill_all(client, servers, killed)
            self.out(f"Stopping {len(servers)} server(s) (timeout {timeout_seconds}s)...")
            return client.stop_all(timeout_seconds)

        return self.session.with_retry(op)

    def _kill_all(self, client: ManagementClient, servers: list[Server], killed: set[str]) -> StopAllResult:
        items = []
        for server in servers:
            if server.name in killed:
                items.append(StopAllItem(name=server.name, status="killed"))
                continue
            self.out(f"Killing server: {server.name}")
            try:
                client.server_action(server.name, "kill")
            except (ApiKeyMissing, ApiKeyInvalid):
                raise
            except ApiError as e:
                self.logger.error(f"Failed to kill {server.name}: {e}")
                items.append(StopAllItem(name=server.name, status="error", error=str(e)))
                continue
            killed.add(server.name)
            items.append(StopAllItem(name=server.name, status="killed"))

        return StopAllResult(
            total=len(servers),
            running=sum(1 for s in servers if s.status.lower() == "running"),
            stopped=sum(1 for item in items if not item.error),
            skipped=0,
            results=tuple(items),
        )

    def stop(self, force: bool = False, timeout_seconds: int = 0) -> ShutdownReport:
        """
        Stop game servers, then the containers.

        Server-level failures are reported as warnings; the containers are
        stopped regardless.

        Raises:
            ComposeError: If the container stop fails
        """
        timeout = self.shutdown_timeout(timeout_seconds)
        report = ShutdownReport(timeout_seconds=timeout, forced=force)

        if force:
            self.out("Force stop enabled; killing servers and stopping containers immediately.")

        try:
            report.servers = self.stop_servers(force, timeout)
        except (ApiError, CredentialStoreError) as e:
            report.server_error = str(e)
            self.logger.warning(f"Server shutdown failed: {e}")
            self.out(f"{Colors.warning('Warning:')} {e}")
        else:
            if report.servers.total:
                for line in format_stop_all(report.servers):
                    self.out(line)

        report.container_timeout = FORCE_CONTAINER_STOP_TIMEOUT if force else CONTAINER_STOP_TIMEOUT
        self.out("Stopping Docker services...")
        self.compose.stop(report.container_timeout)
        self.logger.info("Stack stopped")
        return report

    def restart(
        self,
        wait: bool = True,
        wait_timeout: int = DEFAULT_WAIT_TIMEOUT,
        timeout_seconds: int = 0
    ) -> bool:
        """Graceful stop followed by start."""
        self.stop(force=False, timeout_seconds=timeout_seconds)
        return self.start(wait=wait, wait_timeout=wait_timeout)

    def down(self, volumes: bool = False, timeout_seconds: int = 0) -> ShutdownReport:
        """Graceful stop followed by removing the containers."""
        report = self.stop(force=False, timeout_seconds=timeout_seconds)
        self.compose.down(volumes)
        return report

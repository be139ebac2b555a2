"""
Docker Compose control for the MineOS container stack.

Handles detecting the compose executable and starting, stopping and
removing the stack's containers.
"""

import shutil
import subprocess
from pathlib import Path
from typing import Optional

from .config import Settings
from .utils import get_logger


class ComposeError(Exception):
    """Compose-related error."""
    pass


def detect_compose() -> tuple[str, list[str]]:
    """
    Find a usable compose executable.

    Returns:
        Tuple of (executable, base_args)

    Raises:
        ComposeError: If neither docker compose nor docker-compose works
    """
    if shutil.which("docker"):
        try:
            result = subprocess.run(
                ["docker", "compose", "version"],
                capture_output=True,
                text=True,
                timeout=15
            )
            if result.returncode == 0:
                return "docker", ["compose"]
        except (OSError, subprocess.TimeoutExpired):
            pass

    if shutil.which("docker-compose"):
        return "docker-compose", []

    raise ComposeError("docker compose is not available")


def compose_files(settings: Settings) -> list[str]:
    """Compose files for this installation, in override order."""
    files = ["docker-compose.yml"]
    if settings.network_mode.strip().lower() == "host":
        files.append("docker-compose.host.yml")
    if settings.build_from_source_enabled:
        files.append("docker-compose.build.yml")
    return files


class ComposeRunner:
    """Runs docker compose against the stack described by a settings file."""

    def __init__(self, settings: Settings, exe: Optional[str] = None, base_args: Optional[list[str]] = None):
        """
        Initialize the runner.

        Args:
            settings: Stack settings (locates the compose files)
            exe: Compose executable (detected when None)
            base_args: Arguments placed before every subcommand
        """
        if exe is None:
            exe, base_args = detect_compose()
        self.exe = exe
        self.settings = settings
        self.logger = get_logger()
        self.base_args = list(base_args or []) + self._stack_args()

    def _stack_args(self) -> list[str]:
        env_path = self.settings.env_path
        args: list[str] = []
        if env_path.is_file():
            args.extend(["--env-file", str(env_path)])
        compose_dir = env_path.parent
        for name in compose_files(self.settings):
            args.extend(["-f", str(compose_dir / name)])
        return args

    def build_command(self, args: list[str]) -> list[str]:
        """Full command line for a compose subcommand."""
        return [self.exe] + self.base_args + list(args)

    def run(self, args: list[str]) -> None:
        """
        Run a compose subcommand with output passed through to the terminal.

        Raises:
            ComposeError: If the command cannot start or exits non-zero
        """
        cmd = self.build_command(args)
        self.logger.info(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, cwd=Path(self.settings.env_path).parent)
        except OSError as e:
            raise ComposeError(f"Failed to run {self.exe}: {e}")

        if result.returncode != 0:
            raise ComposeError(
                f"{self.exe} {' '.join(args)} exited with status {result.returncode}"
            )

    def up(self) -> None:
        """Start all containers in the background."""
        self.run(["up", "-d"])

    def stop(self, timeout: int) -> None:
        """Stop containers, allowing timeout seconds before SIGKILL."""
        self.run(["stop", "-t", str(int(timeout))])

    def down(self, volumes: bool = False) -> None:
        """Stop and remove containers (and optionally volumes)."""
        args = ["down", "--remove-orphans"]
        if volumes:
            args.append("--volumes")
        self.run(args)

    def logs(self, service: Optional[str] = None, tail: int = 200, follow: bool = True) -> None:
        """Show container logs, all services or one; tail <= 0 shows everything."""
        args = ["logs"]
        if follow:
            args.append("-f")
        if tail > 0:
            args.extend(["--tail", str(int(tail))])
        if service:
            args.append(service)
        self.run(args)

    def ps(self) -> None:
        """Show container status."""
        self.run(["ps"])

"""
Shared utilities for the MineOS control tool.

Provides logging setup, terminal formatting, and confirmation prompts.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional


LOGGER_NAME = "mineos"


class UserCancelled(Exception):
    """The operator declined a confirmation prompt."""
    pass


def setup_logging(
    log_file: Optional[Path] = None,
    level: str = "INFO",
    console_output: bool = True
) -> logging.Logger:
    """
    Set up logging for the control tool.

    Args:
        log_file: Path to log file (None for no file logging)
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        console_output: Whether to also log to console

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Clear any existing handlers
    logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    if log_file:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            print(f"[mineos] Warning: Could not create log file: {e}")

    # The dashboard owns the terminal, so console output is opt-in
    if console_output:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter("[mineos] %(message)s"))
        console_handler.setLevel(logging.INFO)
        logger.addHandler(console_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger


def get_logger() -> logging.Logger:
    """Get the mineos logger instance."""
    return logging.getLogger(LOGGER_NAME)


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to human-readable string."""
    if seconds < 60:
        return f"{int(seconds)}s"
    elif seconds < 3600:
        mins = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{mins}m {secs}s"
    else:
        hours = int(seconds // 3600)
        mins = int((seconds % 3600) // 60)
        return f"{hours}h {mins}m"


def format_timestamp(ts: Optional[datetime]) -> str:
    """Format a log timestamp as RFC 3339, or an empty string."""
    if ts is None:
        return ""
    return ts.isoformat(timespec="seconds")


def mask(value: str) -> str:
    """Mask a secret for display, keeping only the first and last three characters."""
    if not value:
        return "(empty)"
    if len(value) <= 6:
        return "***"
    return value[:3] + "***" + value[-3:]


def fallback(value: str, default: str) -> str:
    """Return value, or default when value is blank."""
    value = (value or "").strip()
    return value if value else default


def confirm_action(prompt: str, default: bool = False) -> bool:
    """
    Ask user for confirmation.

    Args:
        prompt: The question to ask
        default: Default answer if user just presses Enter

    Returns:
        True if user confirmed, False otherwise
    """
    suffix = " [Y/n]: " if default else " [y/N]: "
    while True:
        try:
            response = input(prompt + suffix).strip().lower()
            if not response:
                return default
            if response in ('y', 'yes'):
                return True
            if response in ('n', 'no'):
                return False
            print("Please enter 'y' or 'n'")
        except EOFError:
            return False


def require_confirmation(prompt: str, assume_yes: bool = False) -> None:
    """
    Confirm a destructive action or raise UserCancelled.

    Args:
        prompt: The question to ask
        assume_yes: Skip the prompt (``--yes``)
    """
    if assume_yes:
        return
    if not confirm_action(prompt):
        raise UserCancelled("Cancelled")


class Colors:
    """ANSI color codes for terminal output."""
    RED = '\033[91m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    BLUE = '\033[94m'
    MAGENTA = '\033[95m'
    CYAN = '\033[96m'
    RESET = '\033[0m'
    BOLD = '\033[1m'

    @classmethod
    def enabled(cls) -> bool:
        """Check if colors should be enabled (TTY check)."""
        return os.isatty(1)  # stdout is a TTY

    @classmethod
    def wrap(cls, text: str, color: str) -> str:
        """Wrap text in color codes if enabled."""
        if cls.enabled():
            return f"{color}{text}{cls.RESET}"
        return text

    @classmethod
    def error(cls, text: str) -> str:
        """Format text as error (red)."""
        return cls.wrap(text, cls.RED)

    @classmethod
    def success(cls, text: str) -> str:
        """Format text as success (green)."""
        return cls.wrap(text, cls.GREEN)

    @classmethod
    def warning(cls, text: str) -> str:
        """Format text as warning (yellow)."""
        return cls.wrap(text, cls.YELLOW)

    @classmethod
    def info(cls, text: str) -> str:
        """Format text as info (cyan)."""
        return cls.wrap(text, cls.CYAN)

"""
Full-screen curses runtime for the dashboard.

Owns the terminal, the message queue and the worker pool. Keys, worker
results and refresh ticks all go through Dashboard.update() on this thread.
"""

import curses
import queue
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from .dashboard import (
    ActionCompleted, Command, Dashboard, DashboardModel, KeyPressed, Message,
    RefreshTick, Resized,
)
from .utils import get_logger
from .view import render


KEY_POLL_MS = 100
WORKERS = 4


class Pair:
    DEFAULT = 0
    HEADER = 1
    RUNNING = 2
    ERROR = 3
    STATUS = 4
    BORDER = 5
    HIGHLIGHT = 6
    DIM = 7
    INPUT = 8


def init_colors():
    curses.start_color()
    curses.use_default_colors()
    curses.init_pair(Pair.HEADER, curses.COLOR_BLACK, curses.COLOR_CYAN)
    curses.init_pair(Pair.RUNNING, curses.COLOR_GREEN, -1)
    curses.init_pair(Pair.ERROR, curses.COLOR_RED, -1)
    curses.init_pair(Pair.STATUS, curses.COLOR_YELLOW, -1)
    curses.init_pair(Pair.BORDER, curses.COLOR_BLUE, -1)
    curses.init_pair(Pair.HIGHLIGHT, curses.COLOR_WHITE, curses.COLOR_BLUE)
    curses.init_pair(Pair.DIM, curses.COLOR_WHITE, -1)
    curses.init_pair(Pair.INPUT, curses.COLOR_CYAN, -1)


def style_attr(style: str) -> int:
    """curses attribute for a view style name."""
    if not curses.has_colors():
        return curses.A_REVERSE if style in ("header", "selected") else 0
    return {
        "header": curses.color_pair(Pair.HEADER) | curses.A_BOLD,
        "title": curses.A_BOLD,
        "selected": curses.color_pair(Pair.HIGHLIGHT) | curses.A_BOLD,
        "running": curses.color_pair(Pair.RUNNING),
        "error": curses.color_pair(Pair.ERROR) | curses.A_BOLD,
        "status": curses.color_pair(Pair.STATUS),
        "border": curses.color_pair(Pair.BORDER),
        "dim": curses.color_pair(Pair.DIM) | curses.A_DIM,
        "input": curses.color_pair(Pair.INPUT),
    }.get(style, 0)


def safe_addstr(win, y: int, x: int, text: str, attr: int = 0):
    """Write text to window, clipping at the right edge."""
    try:
        max_y, max_x = win.getmaxyx()
        if y < 0 or y >= max_y or x < 0 or x >= max_x:
            return
        # The bottom-right cell cannot be written without scrolling
        limit = max_x - x - (1 if y == max_y - 1 else 0)
        if limit <= 0:
            return
        win.addnstr(y, x, text, limit, attr)
    except curses.error:
        pass


def normalize_key(key: int) -> Optional[str]:
    """Map a curses key code to the dashboard's key names."""
    if key == curses.KEY_UP:
        return "up"
    if key == curses.KEY_DOWN:
        return "down"
    if key in (curses.KEY_ENTER, 10, 13):
        return "enter"
    if key == 27:
        return "esc"
    if key in (curses.KEY_BACKSPACE, 127, 8):
        return "backspace"
    if key == 3:
        return "ctrl+c"
    if 32 <= key < 127:
        return chr(key)
    return None


class DashboardRuntime:
    """Event loop: poll keys, apply messages, run commands, redraw."""

    def __init__(
        self,
        dashboard: Dashboard,
        model: Optional[DashboardModel] = None,
        refresh_interval: float = 5.0,
        workers: int = WORKERS
    ):
        self.dashboard = dashboard
        self.model = model or DashboardModel()
        self.refresh_interval = refresh_interval
        self.messages: "queue.Queue[Message]" = queue.Queue()
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mineos-dash")
        self.logger = get_logger()

    def run(self) -> int:
        curses.wrapper(self._main)
        return 0

    def dispatch(self, msg: Message) -> None:
        self.model, commands = self.dashboard.update(self.model, msg)
        self.submit(commands)

    def submit(self, commands: list[Command]) -> None:
        for command in commands:
            future = self.executor.submit(command)
            future.add_done_callback(self._post_result)

    def _post_result(self, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            # Keep the loop alive; the failure shows in the footer
            self.logger.error(f"Background task failed: {error!r}")
            self.messages.put(ActionCompleted("Background task", error=str(error)))
            return
        self.messages.put(future.result())

    def drain(self) -> None:
        """Apply every message posted since the last iteration."""
        while True:
            try:
                msg = self.messages.get_nowait()
            except queue.Empty:
                return
            self.dispatch(msg)

    def draw(self, stdscr) -> None:
        stdscr.erase()
        for segment in render(self.model):
            safe_addstr(stdscr, segment.row, segment.col, segment.text, style_attr(segment.style))
        stdscr.refresh()

    def _main(self, stdscr) -> None:
        try:
            curses.curs_set(0)
        except curses.error:
            pass
        init_colors()
        stdscr.timeout(KEY_POLL_MS)

        height, width = stdscr.getmaxyx()
        self.dispatch(Resized(width, height))
        self.submit(self.dashboard.init(self.model))

        next_tick = time.monotonic() + self.refresh_interval
        try:
            while not self.model.quitting:
                self.draw(stdscr)

                key = stdscr.getch()
                if key == curses.KEY_RESIZE:
                    height, width = stdscr.getmaxyx()
                    self.dispatch(Resized(width, height))
                elif key != -1:
                    name = normalize_key(key)
                    if name is not None:
                        self.dispatch(KeyPressed(name))

                self.drain()

                if self.refresh_interval > 0 and time.monotonic() >= next_tick:
                    self.dispatch(RefreshTick())
                    next_tick = time.monotonic() + self.refresh_interval
        except KeyboardInterrupt:
            self.dispatch(KeyPressed("ctrl+c"))
        finally:
            self.dashboard.shutdown(self.model)
            self.executor.shutdown(wait=False, cancel_futures=True)

"""
Dashboard rendering.

render() turns a DashboardModel into positioned text segments; it reads the
model and nothing else, so the screen is fully recomputed on every update.
"""

from dataclasses import dataclass

from .dashboard import DashboardModel, Mode
from .report import NO_SERVERS


HELP_TEXT = (
    "up/down select  r reload  l logs  o source  c command  "
    "s start  x stop  e restart  K kill  a stop-all  q quit"
)

MIN_LIST_WIDTH = 20
MAX_LIST_WIDTH = 32


@dataclass(frozen=True)
class Segment:
    """Text at a screen position, with a style name for the runtime to colour."""
    row: int
    col: int
    text: str
    style: str = "normal"


def _clip(text: str, width: int) -> str:
    if width <= 0:
        return ""
    if len(text) <= width:
        return text
    if width <= 3:
        return text[:width]
    return text[:width - 3] + "..."


def list_width(width: int) -> int:
    return max(MIN_LIST_WIDTH, min(MAX_LIST_WIDTH, width // 3))


def _header(model: DashboardModel) -> str:
    logs = "on" if model.logs_visible else "off"
    return (
        f" MineOS  |  mode: {model.mode.value}  |  logs: {logs}"
        f"  |  source: {model.log_source.value}"
    )


def _footer(model: DashboardModel) -> Segment:
    row = model.height - 1
    if model.mode == Mode.COMMAND:
        return Segment(row, 0, _clip(f"> {model.command_input}", model.width), "input")
    if model.error_message:
        return Segment(row, 0, _clip(f"Error: {model.error_message}", model.width), "error")
    if model.status_message:
        return Segment(row, 0, _clip(model.status_message, model.width), "status")
    return Segment(row, 0, _clip(HELP_TEXT, model.width), "dim")


def _server_rows(model: DashboardModel, top: int, rows: int, width: int) -> list[Segment]:
    segments = [Segment(top, 0, _clip("Servers", width), "title")]
    rows -= 1
    if not model.servers:
        segments.append(Segment(top + 1, 0, _clip(NO_SERVERS, width), "dim"))
        return segments
    if rows <= 0:
        return segments

    # Scroll so the selection stays visible
    first = max(0, model.selected_index - rows + 1)
    for offset, server in enumerate(model.servers[first:first + rows]):
        index = first + offset
        selected = index == model.selected_index
        marker = ">" if selected else " "
        name_width = max(1, width - len(server.status) - 3)
        text = f"{marker} {_clip(server.name, name_width):<{name_width}} {server.status}"
        if selected:
            style = "selected"
        elif server.status.lower() == "running":
            style = "running"
        else:
            style = "normal"
        segments.append(Segment(top + 1 + offset, 0, _clip(text, width), style))
    return segments


def _log_rows(model: DashboardModel, top: int, rows: int, col: int, width: int) -> list[Segment]:
    if not model.logs_visible:
        return [Segment(top, col, _clip("Logs hidden (press l to show)", width), "dim")]

    server = model.log_server or (model.selected_server().name if model.servers else "-")
    segments = [Segment(top, col, _clip(f"Logs: {server} [{model.log_source.value}]", width), "title")]
    rows -= 1
    if rows <= 0:
        return segments

    lines = list(model.logs)[-rows:]
    for offset, line in enumerate(lines):
        segments.append(Segment(top + 1 + offset, col, _clip(line, width), "normal"))
    return segments


def render(model: DashboardModel) -> list[Segment]:
    """Lay out header, server list, log tail and footer for the model's screen size."""
    width, height = model.width, model.height
    if width <= 0 or height <= 0:
        return []

    segments = [Segment(0, 0, _clip(_header(model), width).ljust(width), "header")]
    if height >= 2:
        segments.append(_footer(model))

    body_top = 1
    body_rows = height - 2
    if body_rows <= 0:
        return segments

    left = min(list_width(width), width)
    segments.extend(_server_rows(model, body_top, body_rows, left))

    log_col = left + 2
    log_width = width - log_col
    if log_width > 0:
        for row in range(body_top, body_top + body_rows):
            segments.append(Segment(row, left, "|", "border"))
        segments.extend(_log_rows(model, body_top, body_rows, log_col, log_width))
    return segments


def render_lines(model: DashboardModel) -> list[str]:
    """The rendered screen as plain text rows (no styling)."""
    grid = [[" "] * model.width for _ in range(model.height)]
    for segment in render(model):
        for i, ch in enumerate(segment.text):
            col = segment.col + i
            if 0 <= segment.row < model.height and 0 <= col < model.width:
                grid[segment.row][col] = ch
    return ["".join(row).rstrip() for row in grid]

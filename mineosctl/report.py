"""
Plain-text formatting of server lists and stop results.
"""

from typing import Optional, Sequence

from .client import Server, StopAllResult
from .config import Settings
from .utils import Colors, fallback


NO_SERVERS = "No servers found."


def sort_servers(servers: Sequence[Server]) -> list[Server]:
    return sorted(servers, key=lambda s: s.name)


def format_server_list(servers: Sequence[Server], current: Optional[str] = None) -> list[str]:
    """
    Lines for a server listing, sorted by name.

    Args:
        servers: Servers as returned by the API
        current: Name to mark with ``*`` (shell selection); None for no marker column
    """
    if not servers:
        return [NO_SERVERS]

    lines = []
    for server in sort_servers(servers):
        if current is None:
            lines.append(f"{server.name}\t{server.status}")
        else:
            prefix = "*" if server.name == current else " "
            lines.append(f"{prefix} {server.name}\t{server.status}")
    return lines


def format_stop_all(result: StopAllResult) -> list[str]:
    """Summary line followed by one line per server (with its error, if any)."""
    lines = [result.summary()]
    for item in result.results:
        if item.error:
            lines.append(f"{item.name}\t{item.status}\t{item.error}")
        else:
            lines.append(f"{item.name}\t{item.status}")
    return lines


def format_status(settings: Settings, healthy: bool) -> list[str]:
    """Stack overview: API health plus the public endpoints from the settings file."""
    api = Colors.success("healthy") if healthy else Colors.error("unreachable")
    return [
        f"API:            {api}",
        f"Web origin:     {fallback(settings.web_origin, 'http://localhost:3000')}",
        f"Minecraft host: {fallback(settings.minecraft_host, 'localhost')}",
        f"Network mode:   {fallback(settings.network_mode, 'bridge')}",
    ]

"""
Terminal rendering for CLI results.

JSON results go to stdout as plain indented text so they can be piped;
tables are rendered with rich.
"""

import json
from typing import Any, Dict

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mcpcli.core.configs import ServerProfile
from mcpcli.daemon.supervisor import DaemonStatus, RunState

console = Console()
err_console = Console(stderr=True)

STATE_STYLES = {
    RunState.RUNNING: "green",
    RunState.NOT_RUNNING: "dim",
    RunState.STALE: "yellow",
}


def format_json(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def print_json(value: Any) -> None:
    """Print a result as indented JSON, unstyled."""
    console.print(format_json(value), markup=False, highlight=False, soft_wrap=True)


def print_error(message: str) -> None:
    err_console.print(
        f"Error: {message}", style="red", markup=False, highlight=False, soft_wrap=True
    )


def print_servers(servers: Dict[str, ServerProfile]) -> None:
    """Table of configured servers."""
    if not servers:
        console.print("[dim]No servers configured[/dim]")
        return

    table = Table(title="MCP Servers", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Daemon", justify="center")
    table.add_column("Command", style="green")
    table.add_column("Description")

    for name, profile in sorted(servers.items()):
        table.add_row(
            escape(name),
            "yes" if profile.supports_daemon else "no",
            escape(" ".join([*profile.command, *profile.default_args])),
            escape(profile.description),
        )

    console.print(table)


def print_daemon_status(status: DaemonStatus) -> None:
    """Two-column table describing one daemon."""
    style = STATE_STYLES.get(status.state, "")
    table = Table(title=f"Daemon: {status.server_name}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    table.add_row("State", f"[{style}]{status.state.value}[/{style}]" if style else status.state.value)
    table.add_row("Project", escape(status.project_dir))
    if status.pid is not None:
        table.add_row("PID", str(status.pid))
    if status.socket_path:
        table.add_row("Socket", escape(status.socket_path))
    if status.cleaned_up:
        table.add_row("Note", "removed state left by a dead daemon")

    info = status.info
    if info:
        table.add_row("Healthy", "yes" if info.get("healthy") else "no")
        table.add_row("Uptime", f"{info.get('uptime_seconds', 0):.0f}s")
        table.add_row("Pending calls", str(info.get("pending_calls", 0)))
        if info.get("server_pid"):
            table.add_row("Server PID", str(info["server_pid"]))
        if info.get("protocol_version"):
            table.add_row("Protocol", str(info["protocol_version"]))
        server_info = info.get("server_info") or {}
        if server_info.get("name"):
            table.add_row(
                "Server",
                f"{server_info['name']} {server_info.get('version', '')}".strip(),
            )

    console.print(table)

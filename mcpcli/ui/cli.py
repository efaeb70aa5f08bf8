"""Main CLI entry point - one subcommand per operation."""

import json
import logging
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import typer

from mcpcli.core.configs import (
    ServerProfile,
    get_daemon_settings,
    get_server_profile,
    load_server_config,
)
from mcpcli.core.router import ClientRouter
from mcpcli.core.templates import resolve_server_args
from mcpcli.daemon.supervisor import DaemonSupervisor, RunState
from mcpcli.errors import McpCliError
from mcpcli.ui.output import console, print_daemon_status, print_error, print_json, print_servers

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="mcp-cli - call MCP server tools from the command line.",
)


@dataclass
class CliState:
    server: Optional[str] = None
    server_args: Optional[List[str]] = None
    config: Optional[Path] = None
    verbose: bool = False


# ============================================================================
# Shared Setup
# ============================================================================

def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _parse_server_args(raw: Optional[str]) -> Optional[List[str]]:
    """``--server-args`` JSON array; None when the option is absent."""
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        print_error(f"--server-args must be a JSON array of strings: {e}")
        raise typer.Exit(1)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        print_error("--server-args must be a JSON array of strings")
        raise typer.Exit(1)
    return value


@contextmanager
def _handle_errors() -> Iterator[None]:
    """Map any mcp-cli error to 'Error: ...' on stderr and exit status 1."""
    try:
        yield
    except McpCliError as e:
        print_error(str(e))
        raise typer.Exit(1)


def _require_server(state: CliState) -> str:
    """Selected server name; exits when none was given."""
    if not state.server:
        print_error("No server selected. Use --server NAME (see 'mcp-cli list-servers').")
        raise typer.Exit(1)
    return state.server


def _resolve_server(state: CliState) -> Tuple[str, ServerProfile, List[str]]:
    """Load the selected profile and its fully expanded argument list."""
    server_name = _require_server(state)
    profile = get_server_profile(server_name, state.config)
    server_args = resolve_server_args(
        profile, server_name, override=state.server_args, cwd=Path.cwd()
    )
    return server_name, profile, server_args


def _supervisor(server_name: str) -> DaemonSupervisor:
    settings = get_daemon_settings()
    return DaemonSupervisor(
        server_name,
        Path.cwd(),
        socket_dir=settings.socket_dir,
        start_timeout=settings.start_timeout,
        stop_timeout=settings.stop_timeout,
    )


def _router(state: CliState) -> ClientRouter:
    server_name, profile, server_args = _resolve_server(state)
    settings = get_daemon_settings()
    return ClientRouter(
        server_name,
        profile,
        project_dir=Path.cwd(),
        server_args=server_args,
        supervisor=_supervisor(server_name),
        daemon_enabled=settings.enabled,
    )


def _read_tool_args(raw: str) -> dict:
    """Tool arguments from ``--args`` (``-`` reads stdin)."""
    text = sys.stdin.read() if raw == "-" else raw
    if not text.strip():
        return {}
    try:
        arguments = json.loads(text)
    except json.JSONDecodeError as e:
        print_error(f"Invalid JSON in --args: {e}")
        raise typer.Exit(1)
    if not isinstance(arguments, dict):
        print_error("--args must be a JSON object")
        raise typer.Exit(1)
    return arguments


@app.callback()
def main(
    ctx: typer.Context,
    server: Optional[str] = typer.Option(None, "--server", "-s", help="Server name from the config"),
    server_args: Optional[str] = typer.Option(
        None, "--server-args", help="JSON array replacing the server's default args"
    ),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to the servers JSON config"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging on stderr"),
) -> None:
    """Global options shared by every command."""
    _setup_logging(verbose)
    ctx.obj = CliState(
        server=server,
        server_args=_parse_server_args(server_args),
        config=config,
        verbose=verbose,
    )


# ============================================================================
# Commands
# ============================================================================

@app.command("list-servers")
def list_servers(ctx: typer.Context) -> None:
    """List configured MCP servers."""
    with _handle_errors():
        servers = load_server_config(ctx.obj.config)
    print_servers(servers)


@app.command("list-tools")
def list_tools(ctx: typer.Context) -> None:
    """
    List the tools a server exposes.

    Example: mcp-cli -s playwright list-tools
    """
    with _handle_errors():
        result = _router(ctx.obj).list_tools()
    print_json(result)


@app.command()
def call(
    ctx: typer.Context,
    tool: str = typer.Argument(..., help="Tool name"),
    args: str = typer.Option("{}", "--args", "-a", help="JSON object of tool arguments, or - for stdin"),
) -> None:
    """
    Call a tool and print its result as JSON.

    Example: mcp-cli -s playwright call browser_navigate -a '{"url": "https://example.com"}'
    """
    arguments = _read_tool_args(args)
    with _handle_errors():
        result = _router(ctx.obj).call_tool(tool, arguments)
    print_json(result)


@app.command()
def shell(ctx: typer.Context) -> None:
    """Interactive shell for one server."""
    from mcpcli.ui.shell import run_shell

    with _handle_errors():
        router = _router(ctx.obj)
        with router.open_session() as session:
            run_shell(session, router.server_name)


@app.command("start-daemon")
def start_daemon(
    ctx: typer.Context,
    idle_timeout: float = typer.Option(
        0.0, "--idle-timeout", min=0.0, help="Stop after this many idle seconds (0 = never)"
    ),
) -> None:
    """Start a background daemon for the server in the current directory."""
    with _handle_errors():
        server_name, profile, server_args = _resolve_server(ctx.obj)
        status = _supervisor(server_name).start(
            profile, server_args=server_args, idle_timeout=idle_timeout
        )
    console.print(
        f"Daemon started for '{server_name}' (pid {status.pid})", markup=False, highlight=False
    )


@app.command("stop-daemon")
def stop_daemon(ctx: typer.Context) -> None:
    """Stop the daemon for the server in the current directory."""
    # Name only: a daemon must stay stoppable after its profile is removed
    server_name = _require_server(ctx.obj)
    with _handle_errors():
        supervisor = _supervisor(server_name)
        before = supervisor.status()
        supervisor.stop()
    if before.state is RunState.NOT_RUNNING:
        console.print(f"No daemon running for '{server_name}'", markup=False, highlight=False)
    else:
        console.print(
            f"Daemon stopped for '{server_name}' (pid {before.pid})", markup=False, highlight=False
        )


@app.command("daemon-status")
def daemon_status(ctx: typer.Context) -> None:
    """Show the daemon status for the server in the current directory."""
    server_name = _require_server(ctx.obj)
    with _handle_errors():
        status = _supervisor(server_name).status()
    print_daemon_status(status)


def run() -> None:
    """Entry point for console script mapping."""
    app()


if __name__ == "__main__":
    run()

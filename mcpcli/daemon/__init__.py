"""Daemon architecture for mcp-cli.

This module provides a long-running background process that keeps one MCP
server connection open so repeated CLI invocations skip the spawn and
handshake.

Architecture:
- ProjectProfileState: On-disk records keyed by (project dir, server name)
- DaemonServer: Async Unix socket server relaying requests to the server
- DaemonClient: Lightweight client that connects to daemon via socket
- DaemonSupervisor: Start, stop and status from the client side
"""

from mcpcli.daemon.state import ProjectProfileState
from mcpcli.daemon.client import DaemonClient
from mcpcli.daemon.supervisor import DaemonStatus, DaemonSupervisor, RunState

__all__ = [
    "ProjectProfileState",
    "DaemonClient",
    "DaemonStatus",
    "DaemonSupervisor",
    "RunState",
]

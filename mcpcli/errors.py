"""Error taxonomy for mcp-cli.

Every failure the core can surface derives from ``McpCliError`` and carries
the context a caller needs to decide what to do next: the server name, the
project directory the daemon identity is keyed on, and the underlying cause.
The CLI layer maps any of these to exit status 1.
"""

from pathlib import Path
from typing import Any, Optional, Union


class McpCliError(Exception):
    """Base class for all mcp-cli errors."""

    def __init__(
        self,
        message: str,
        *,
        server_name: Optional[str] = None,
        project_dir: Optional[Union[str, Path]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.message = message
        self.server_name = server_name or None
        self.project_dir = str(project_dir) if project_dir else None
        self.cause = cause
        super().__init__(self._render())

    def _render(self) -> str:
        hints = []
        if self.server_name:
            hints.append(f"server={self.server_name}")
        if self.project_dir:
            hints.append(f"dir={self.project_dir}")
        text = self.message
        if hints:
            text = f"{text} ({', '.join(hints)})"
        if self.cause is not None:
            text = f"{text}: {self.cause}"
        return text

    def with_context(
        self,
        server_name: Optional[str] = None,
        project_dir: Optional[Union[str, Path]] = None,
    ) -> "McpCliError":
        """Fill in missing context and return self (for re-raising)."""
        if server_name and not self.server_name:
            self.server_name = server_name
        if project_dir and not self.project_dir:
            self.project_dir = str(project_dir)
        self.args = (self._render(),)
        return self


class ConfigError(McpCliError):
    """Configuration file missing, unreadable, or invalid."""


class SpawnError(McpCliError):
    """The server command could not be started."""

    def __init__(self, message: str, *, command: Optional[list] = None, **kwargs: Any) -> None:
        self.command = list(command or [])
        super().__init__(message, **kwargs)


class HandshakeError(McpCliError):
    """The server started but protocol initialization failed or timed out."""


class TransportError(McpCliError):
    """Channel I/O failure or malformed framing, mid-session."""


class ChannelClosed(TransportError):
    """The peer closed its end of the stream."""


class RemoteError(McpCliError):
    """The server answered a request with a JSON-RPC error object."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[int] = None,
        data: Any = None,
        **kwargs: Any,
    ) -> None:
        self.code = code
        self.data = data
        super().__init__(message, **kwargs)


class ToolError(McpCliError):
    """A tool call returned a result flagged with ``isError``."""

    def __init__(self, message: str, *, result: Any = None, **kwargs: Any) -> None:
        self.result = result
        super().__init__(message, **kwargs)


class DaemonError(McpCliError):
    """Base class for daemon lifecycle and routing errors."""


class DaemonNotRunning(DaemonError):
    """No daemon is reachable for this (directory, server) pair."""


class DaemonAlreadyRunning(DaemonError):
    """A daemon already owns this (directory, server) pair."""


class DaemonUnhealthy(DaemonError):
    """The daemon is alive but its backing server transport died."""


class DaemonStartError(DaemonError):
    """A daemon start was attempted but readiness was never reached."""


class UnsupportedDaemonMode(DaemonError):
    """The server profile does not allow daemon mode."""

"""Client router: daemon when one is running, a fresh server otherwise.

The router is the only piece callers need. For each call it asks the
supervisor whether a daemon is running for (project dir, server); if so the
request goes through the daemon socket, and if the daemon turns out to be
gone or broken the same call is retried once on a direct transport.
The router never starts a daemon.
"""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Union

from mcpcli.core.configs import ServerProfile
from mcpcli.daemon.supervisor import DaemonSupervisor, RunState
from mcpcli.errors import (
    DaemonNotRunning,
    DaemonUnhealthy,
    ToolError,
    TransportError,
)
from mcpcli.transport.protocol import result_or_raise
from mcpcli.transport.stdio import SubprocessTransport

logger = logging.getLogger(__name__)

ROUTE_DAEMON = "daemon"
ROUTE_DIRECT = "direct"

# Daemon failures that mean "use a fresh server for this call instead"
FALLBACK_ERRORS = (DaemonNotRunning, DaemonUnhealthy, TransportError)


def tool_error_message(result: Any) -> str:
    """First text content of a tool result, used when it carries isError."""
    content = result.get("content") if isinstance(result, dict) else None
    if isinstance(content, list):
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text" and item.get("text"):
                return str(item["text"])
    return "Tool returned an error"


class ClientRouter:
    """
    Chooses daemon or direct transport per call.

    Usage:
        router = ClientRouter("playwright", profile, project_dir=Path.cwd())
        tools = router.list_tools()
        result = router.call_tool("browser_navigate", {"url": "https://example.com"})
    """

    def __init__(
        self,
        server_name: str,
        profile: ServerProfile,
        project_dir: Optional[Union[str, Path]] = None,
        server_args: Optional[Sequence[str]] = None,
        supervisor: Optional[DaemonSupervisor] = None,
        daemon_enabled: bool = True,
        transport_factory: Callable[..., Any] = SubprocessTransport,
    ):
        """
        Args:
            server_name: Server name from the config
            profile: Resolved server profile
            project_dir: Directory the daemon identity is keyed on (default: cwd)
            server_args: Expanded argument override for direct transports
            supervisor: Supervisor for this (dir, server); built lazily if None
            daemon_enabled: False forces direct transports
            transport_factory: Builds direct transports (profile, server_name=,
                server_args=, cwd=)
        """
        self.server_name = server_name
        self.profile = profile
        self.project_dir = Path(project_dir if project_dir is not None else Path.cwd()).resolve()
        self.server_args = None if server_args is None else list(server_args)
        self.daemon_enabled = daemon_enabled
        self.transport_factory = transport_factory
        self._supervisor = supervisor
        self.last_route: Optional[str] = None

    @property
    def uses_daemon(self) -> bool:
        return self.daemon_enabled and self.profile.supports_daemon

    @property
    def supervisor(self) -> DaemonSupervisor:
        if self._supervisor is None:
            self._supervisor = DaemonSupervisor(self.server_name, self.project_dir)
        return self._supervisor

    def new_transport(self) -> Any:
        """Unstarted direct transport for this server."""
        return self.transport_factory(
            self.profile,
            server_name=self.server_name,
            server_args=self.server_args,
            cwd=self.project_dir,
        )

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def request(self, method: str, params: Optional[Any] = None) -> Dict[str, Any]:
        """
        Send one request and return the response envelope.

        Raises:
            McpCliError: Spawn, handshake or transport failure on the direct
                path (daemon failures fall back instead)
        """
        envelope = self._request_via_daemon(method, params)
        if envelope is not None:
            return envelope
        return self._request_direct(method, params)

    def _request_via_daemon(self, method: str, params: Optional[Any]) -> Optional[Dict[str, Any]]:
        if not self.uses_daemon:
            return None

        status = self.supervisor.status()
        if status.state is not RunState.RUNNING or not status.socket_path:
            logger.debug(f"No running daemon for '{self.server_name}' ({status.state.value})")
            return None

        client = self.supervisor.client(status.socket_path)
        try:
            envelope = client.request(method, params)
        except FALLBACK_ERRORS as e:
            logger.warning(f"Daemon unavailable, falling back to direct mode: {e}")
            return None
        self.last_route = ROUTE_DAEMON
        return envelope

    def _request_direct(self, method: str, params: Optional[Any]) -> Dict[str, Any]:
        with self.new_transport() as transport:
            envelope = transport.request(method, params)
        self.last_route = ROUTE_DIRECT
        return envelope

    def call(self, method: str, params: Optional[Any] = None) -> Any:
        """Send a request and return its ``result`` (raises RemoteError)."""
        envelope = self.request(method, params)
        return result_or_raise(envelope, self.server_name, str(self.project_dir))

    def list_tools(self) -> Any:
        return self.call("tools/list", {})

    def call_tool(self, name: str, arguments: Any = None) -> Any:
        """
        Call a tool and return its result.

        Raises:
            ToolError: If the result is flagged ``isError``
            RemoteError: If the server answered with a JSON-RPC error
        """
        result = self.call("tools/call", {"name": name, "arguments": arguments or {}})
        return check_tool_result(result, self.server_name, str(self.project_dir))

    def open_session(self) -> "RouterSession":
        return RouterSession(self)


def check_tool_result(result: Any, server_name: str, project_dir: Optional[str]) -> Any:
    if isinstance(result, dict) and result.get("isError"):
        raise ToolError(
            tool_error_message(result),
            result=result,
            server_name=server_name,
            project_dir=project_dir,
        )
    return result


class RouterSession:
    """
    Long-lived routing for the interactive shell.

    Uses the daemon while one is running. Otherwise one direct transport is
    started on first use and kept until ``close()``.
    """

    def __init__(self, router: ClientRouter):
        self.router = router
        self._transport: Optional[Any] = None

    @property
    def last_route(self) -> Optional[str]:
        return self.router.last_route

    def request(self, method: str, params: Optional[Any] = None) -> Dict[str, Any]:
        envelope = self.router._request_via_daemon(method, params)
        if envelope is not None:
            return envelope

        if self._transport is None or not self._transport.is_alive():
            self._discard_transport()
            self._transport = self.router.new_transport().start()
        try:
            envelope = self._transport.request(method, params)
        except TransportError:
            self._discard_transport()
            raise
        self.router.last_route = ROUTE_DIRECT
        return envelope

    def call(self, method: str, params: Optional[Any] = None) -> Any:
        envelope = self.request(method, params)
        return result_or_raise(envelope, self.router.server_name, str(self.router.project_dir))

    def list_tools(self) -> Any:
        return self.call("tools/list", {})

    def call_tool(self, name: str, arguments: Any = None) -> Any:
        result = self.call("tools/call", {"name": name, "arguments": arguments or {}})
        return check_tool_result(result, self.router.server_name, str(self.router.project_dir))

    def status(self) -> Dict[str, Any]:
        """Route summary for the shell's ``status`` command."""
        info: Dict[str, Any] = {
            "server": self.router.server_name,
            "project_dir": str(self.router.project_dir),
            "supports_daemon": self.router.profile.supports_daemon,
            "last_route": self.router.last_route,
            "direct_server_pid": self._transport.pid if self._transport else None,
        }
        if self.router.uses_daemon:
            info["daemon"] = self.router.supervisor.status().to_dict()
        return info

    def _discard_transport(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    def close(self) -> None:
        self._discard_transport()

    def __enter__(self) -> "RouterSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

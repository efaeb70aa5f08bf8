"""Lightweight client for daemon communication.

Connects to a daemon's Unix socket, sends one JSON-RPC request and reads
one response. Designed for short-lived CLI invocations: stdlib socket, no
event loop.

Usage:
    client = DaemonClient(socket_path)
    info = client.status()
    result = client.call("tools/call", {"name": "echo", "arguments": {}})
"""

import itertools
import logging
import socket
from pathlib import Path
from typing import Any, Dict, Optional, Union

from mcpcli.daemon.protocol import (
    DAEMON_UNHEALTHY,
    STATUS_METHOD,
    daemon_error_code,
)
from mcpcli.errors import (
    ChannelClosed,
    DaemonError,
    DaemonNotRunning,
    DaemonUnhealthy,
    TransportError,
)
from mcpcli.transport.channel import MessageChannel
from mcpcli.transport.protocol import make_request, result_or_raise

logger = logging.getLogger(__name__)

_request_ids = itertools.count(1)


class DaemonClient:
    """
    Transport handle that reaches the server through a running daemon.

    Each request opens its own connection, so a client object can be shared
    between threads.
    """

    def __init__(
        self,
        socket_path: Union[str, Path],
        timeout: Optional[float] = None,
        probe_timeout: float = 2.0,
        server_name: str = "",
        project_dir: Optional[Union[str, Path]] = None,
    ):
        """
        Args:
            socket_path: Path to the daemon's Unix socket
            timeout: Socket timeout for requests (None = wait for the server)
            probe_timeout: Socket timeout for the status probe
            server_name: Name used in error messages
            project_dir: Directory used in error messages
        """
        self.socket_path = Path(socket_path)
        self.timeout = timeout
        self.probe_timeout = probe_timeout
        self.server_name = server_name
        self.project_dir = str(project_dir) if project_dir else None

    def status(self) -> Dict[str, Any]:
        """
        Ask the daemon for its status without touching the server.

        Raises:
            DaemonNotRunning: If nothing listens on the socket
            TransportError: If the daemon does not answer in time
        """
        envelope = self._exchange(STATUS_METHOD, {}, timeout=self.probe_timeout)
        result = result_or_raise(envelope, self.server_name, self.project_dir)
        return result if isinstance(result, dict) else {}

    def request(self, method: str, params: Optional[Any] = None) -> Dict[str, Any]:
        """
        Relay one request and return the server's response envelope.

        Raises:
            DaemonNotRunning: If the socket cannot be reached
            DaemonUnhealthy: If the daemon lost its server
            TransportError: If the connection fails mid-exchange
        """
        return self._exchange(method, params, timeout=self.timeout)

    def call(self, method: str, params: Optional[Any] = None) -> Any:
        envelope = self.request(method, params)
        return result_or_raise(envelope, self.server_name, self.project_dir)

    def list_tools(self) -> Any:
        return self.call("tools/list", {})

    def call_tool(self, name: str, arguments: Any) -> Any:
        return self.call("tools/call", {"name": name, "arguments": arguments})

    def _connect(self, timeout: Optional[float]) -> socket.socket:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        try:
            sock.connect(str(self.socket_path))
        except OSError as e:
            sock.close()
            raise DaemonNotRunning(
                f"Failed to connect to daemon at {self.socket_path}",
                server_name=self.server_name,
                project_dir=self.project_dir,
                cause=e,
            ) from e
        return sock

    def _exchange(
        self,
        method: str,
        params: Optional[Any],
        timeout: Optional[float],
    ) -> Dict[str, Any]:
        request_id = next(_request_ids)
        sock = self._connect(timeout)
        # Replies are unbounded; the daemon limits incoming requests
        channel = MessageChannel.from_socket(
            sock, max_message_size=None, name=f"daemon:{self.socket_path.name}"
        )
        try:
            channel.send(make_request(request_id, method, params))
            envelope = channel.receive()
        except ChannelClosed as e:
            raise TransportError(
                "Daemon closed the connection without answering",
                server_name=self.server_name,
                project_dir=self.project_dir,
                cause=e,
            ) from e
        except TransportError as e:
            raise e.with_context(self.server_name, self.project_dir)
        finally:
            channel.close()

        if envelope.get("id") != request_id:
            raise TransportError(
                f"Daemon answered id {envelope.get('id')!r}, expected {request_id}",
                server_name=self.server_name,
                project_dir=self.project_dir,
            )

        code = daemon_error_code(envelope)
        if code is not None:
            message = envelope["error"].get("message", "daemon error")
            if code == DAEMON_UNHEALTHY:
                raise DaemonUnhealthy(
                    message, server_name=self.server_name, project_dir=self.project_dir
                )
            raise DaemonError(
                f"Daemon rejected request: {message}",
                server_name=self.server_name,
                project_dir=self.project_dir,
            )
        return envelope

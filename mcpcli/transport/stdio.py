"""Subprocess transport: one spawned MCP server over its standard streams.

The server runs as a child process. Requests are written to its stdin and
responses read from its stdout, one JSON-RPC message per line. Stderr is
inherited so server diagnostics land wherever ours go (the terminal for a
direct call, the daemon log in daemon mode).

Usage:
    with SubprocessTransport(profile, server_name="echo") as transport:
        tools = transport.list_tools()
"""

import logging
import os
import subprocess
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from mcpcli.core.configs import ServerProfile
from mcpcli.errors import (
    ChannelClosed,
    HandshakeError,
    McpCliError,
    RemoteError,
    SpawnError,
    TransportError,
)
from mcpcli.transport.channel import MessageChannel
from mcpcli.transport.protocol import (
    CLIENT_INFO,
    HANDSHAKE_TIMEOUT,
    METHOD_NOT_FOUND,
    PROTOCOL_VERSION,
    is_notification,
    is_request,
    is_response,
    make_error,
    make_notification,
    make_request,
    make_result,
    result_or_raise,
)

logger = logging.getLogger(__name__)


def build_command(profile: ServerProfile, server_args: Optional[Sequence[str]] = None) -> List[str]:
    """
    Full argv for a profile.

    An explicit ``server_args`` list replaces ``default_args`` wholesale,
    even when it is empty.
    """
    args = profile.default_args if server_args is None else server_args
    return [*profile.command, *args]


class SubprocessTransport:
    """
    JSON-RPC client bound to one spawned MCP server.

    Only one request is in flight at a time; concurrent callers are
    serialized by an internal lock.
    """

    def __init__(
        self,
        profile: ServerProfile,
        server_name: str = "",
        server_args: Optional[Sequence[str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
    ):
        """
        Args:
            profile: Server profile to launch
            server_name: Name used in errors and logs
            server_args: Explicit argument override (None = profile defaults)
            cwd: Working directory for the child (default: inherit)
            handshake_timeout: Seconds to wait for the initialize response
        """
        self.profile = profile
        self.server_name = server_name
        self.server_args = None if server_args is None else list(server_args)
        self.cwd = str(cwd) if cwd else None
        self.handshake_timeout = handshake_timeout

        self.protocol_version: Optional[str] = None
        self.server_info: Dict[str, Any] = {}
        self.server_capabilities: Dict[str, Any] = {}

        self._process: Optional[subprocess.Popen] = None
        self._channel: Optional[MessageChannel] = None
        self._request_id = 0
        self._lock = threading.Lock()
        # Guards spawn against a concurrent close from another thread
        self._lifecycle_lock = threading.Lock()
        self._closing = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> "SubprocessTransport":
        """Spawn the server and perform the initialize handshake."""
        self._spawn()
        try:
            self._handshake()
        except McpCliError:
            self.close()
            raise
        logger.info(
            f"MCP server '{self.server_name}' ready "
            f"(pid {self.pid}, protocol {self.protocol_version})"
        )
        return self

    def _spawn(self) -> None:
        command = build_command(self.profile, self.server_args)
        if not command:
            raise SpawnError(
                "Server profile has empty command",
                command=command,
                server_name=self.server_name,
            )

        env = dict(os.environ)
        env.update(self.profile.env)

        logger.info(f"Starting MCP server: {' '.join(command)}")
        with self._lifecycle_lock:
            if self._closing:
                raise SpawnError(
                    "Transport was closed before the MCP server started",
                    command=command,
                    server_name=self.server_name,
                    project_dir=self.cwd,
                )
            # The child stays in our process group, so killing the daemon's
            # group takes the server with it
            try:
                self._process = subprocess.Popen(
                    command,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=None,
                    cwd=self.cwd,
                    env=env,
                )
            except OSError as e:
                raise SpawnError(
                    f"Failed to spawn MCP server {command!r}",
                    command=command,
                    server_name=self.server_name,
                    project_dir=self.cwd,
                    cause=e,
                ) from e

            self._channel = MessageChannel(
                reader=self._process.stdout,
                writer=self._process.stdin,
                max_message_size=None,
                name=f"stdio:{self.server_name or command[0]}",
            )

    def _handshake(self) -> None:
        params = {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": dict(CLIENT_INFO),
        }

        timed_out = threading.Event()

        def _expire() -> None:
            timed_out.set()
            self._terminate_process()

        timer = threading.Timer(self.handshake_timeout, _expire)
        timer.daemon = True
        timer.start()
        try:
            envelope = self.request("initialize", params)
        except TransportError as e:
            if timed_out.is_set():
                reason = f"no initialize response within {self.handshake_timeout:.0f}s"
            else:
                reason = "server exited or closed its output during initialize"
            raise HandshakeError(
                f"MCP handshake failed: {reason}",
                server_name=self.server_name,
                project_dir=self.cwd,
                cause=e,
            ) from e
        finally:
            timer.cancel()

        try:
            result = result_or_raise(envelope) or {}
        except RemoteError as e:
            raise HandshakeError(
                "MCP server rejected initialize",
                server_name=self.server_name,
                project_dir=self.cwd,
                cause=e,
            ) from e

        if not isinstance(result, dict):
            raise HandshakeError(
                f"Invalid initialize result: {result!r}",
                server_name=self.server_name,
            )
        self.protocol_version = result.get("protocolVersion")
        self.server_info = result.get("serverInfo") or {}
        self.server_capabilities = result.get("capabilities") or {}
        if self.protocol_version and self.protocol_version != PROTOCOL_VERSION:
            logger.info(
                f"Server negotiated protocol {self.protocol_version} "
                f"(requested {PROTOCOL_VERSION})"
            )

        self.notify("notifications/initialized")

    def is_alive(self) -> bool:
        return self._process is not None and self._process.poll() is None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    def close(self, timeout: float = 5.0) -> None:
        """
        Terminate the child process and release the channel.

        May be called from another thread while ``start()`` is running; the
        handshake then fails and no server is left behind.
        """
        with self._lifecycle_lock:
            self._closing = True
            if self._process is None:
                return
        self._terminate_process(timeout)
        if self._channel is not None:
            self._channel.close()
        logger.debug(f"MCP server '{self.server_name}' stopped")
        self._process = None

    def _terminate_process(self, timeout: float = 5.0) -> None:
        process = self._process
        if process is None or process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"MCP server pid {process.pid} ignored SIGTERM, killing")
            process.kill()
            process.wait()

    def __enter__(self) -> "SubprocessTransport":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    def request(self, method: str, params: Optional[Any] = None) -> Dict[str, Any]:
        """
        Send one request and return the matching response envelope.

        Notifications and server-initiated requests that arrive before the
        response are handled inline.

        Raises:
            TransportError: On any channel failure or if the server died
        """
        with self._lock:
            channel = self._require_channel()
            request_id = self.next_id()
            try:
                channel.send(make_request(request_id, method, params))
            except TransportError as e:
                raise e.with_context(self.server_name, self.cwd)

            while True:
                try:
                    message = channel.receive()
                except ChannelClosed as e:
                    raise TransportError(
                        f"MCP server closed the connection while waiting for '{method}'",
                        server_name=self.server_name,
                        project_dir=self.cwd,
                        cause=e,
                    ) from e
                except TransportError as e:
                    raise e.with_context(self.server_name, self.cwd)

                if is_response(message):
                    if message.get("id") == request_id:
                        return message
                    logger.warning(
                        f"Discarding response with unexpected id {message.get('id')!r} "
                        f"(waiting for {request_id})"
                    )
                elif is_request(message):
                    self._answer_server_request(channel, message)
                elif is_notification(message):
                    logger.debug(f"Server notification: {message.get('method')}")
                else:
                    logger.warning(f"Ignoring unrecognized message: {message!r}")

    def _answer_server_request(self, channel: MessageChannel, message: Dict[str, Any]) -> None:
        method = message.get("method")
        if method == "ping":
            channel.send(make_result(message["id"], {}))
        else:
            logger.debug(f"Rejecting server request '{method}'")
            channel.send(
                make_error(message["id"], METHOD_NOT_FOUND, f"Method not supported by client: {method}")
            )

    def notify(self, method: str, params: Optional[Any] = None) -> None:
        with self._lock:
            self._require_channel().send(make_notification(method, params))

    def call(self, method: str, params: Optional[Any] = None) -> Any:
        """Send a request and return its ``result`` (raises RemoteError)."""
        envelope = self.request(method, params)
        return result_or_raise(envelope, self.server_name, self.cwd)

    def list_tools(self) -> Any:
        return self.call("tools/list", {})

    def call_tool(self, name: str, arguments: Any) -> Any:
        return self.call("tools/call", {"name": name, "arguments": arguments})

    def _require_channel(self) -> MessageChannel:
        if self._channel is None or self._process is None:
            raise TransportError(
                "Transport not started", server_name=self.server_name
            )
        if self._channel.closed:
            raise TransportError(
                "Transport channel is closed", server_name=self.server_name
            )
        return self._channel

"""Async Unix socket server for the mcp-cli daemon.

This module implements the long-running daemon process that:
1. Spawns one MCP server and completes its handshake once at startup
2. Accepts client connections on a Unix socket (one request per connection)
3. Relays every request onto the shared server connection, one at a time

Usage:
    python -m mcpcli.daemon.server --project-dir DIR --server NAME [--daemonize]

    Or use the CLI:
    mcp-cli --server NAME start-daemon
"""

import asyncio
import itertools
import logging
import os
import signal
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

import setproctitle

from mcpcli.core.configs import ServerProfile
from mcpcli.daemon.protocol import (
    DAEMON_UNHEALTHY,
    STATUS_METHOD,
    make_daemon_error,
    relay_response,
)
from mcpcli.daemon.state import ProjectProfileState
from mcpcli.errors import McpCliError, TransportError
from mcpcli.transport.protocol import (
    INVALID_REQUEST,
    MAX_MESSAGE_SIZE,
    PARSE_ERROR,
    decode_message,
    encode_message,
    is_request,
    make_error,
    make_result,
)
from mcpcli.transport.stdio import SubprocessTransport

logger = logging.getLogger(__name__)

PROCESS_TITLE_PREFIX = "mcp-cli-daemon"


@dataclass
class PendingCall:
    """One client request waiting for (or undergoing) its server exchange."""

    call_id: int
    request_id: Any
    method: str
    params: Any
    client: Any
    future: asyncio.Future
    arrived_at: float = field(default_factory=time.time)
    abandoned: bool = False


class DaemonServer:
    """
    Async Unix socket server for one (project directory, server) pair.

    Handles concurrent client connections using asyncio. The server
    connection is owned by a single worker task fed through a queue, so
    exchanges never interleave on the wire.
    """

    def __init__(
        self,
        state: ProjectProfileState,
        profile: ServerProfile,
        server_args: Optional[Sequence[str]] = None,
        idle_timeout: float = 0.0,
        transport_factory: Optional[Callable[[], Any]] = None,
        health_interval: float = 0.5,
        install_signal_handlers: bool = True,
    ):
        """
        Initialize daemon server.

        Args:
            state: On-disk records for this daemon
            profile: Server profile to launch
            server_args: Expanded argument override (None = profile defaults)
            idle_timeout: Shutdown after this many seconds idle (0 = never)
            transport_factory: Builds the unstarted server transport
                (default: SubprocessTransport for ``profile``)
            health_interval: Seconds between server liveness checks
            install_signal_handlers: Handle SIGTERM/SIGINT (main thread only)
        """
        self.state = state
        self.profile = profile
        self.server_name = state.server_name
        self.server_args = None if server_args is None else list(server_args)
        self.idle_timeout = idle_timeout
        self.transport_factory = transport_factory or self._default_transport
        self.health_interval = health_interval
        self.install_signal_handlers = install_signal_handlers

        self.transport: Optional[Any] = None
        self.server: Optional[asyncio.Server] = None
        self.socket_path: Optional[Path] = None
        self.healthy = True
        self.exit_code = 0
        self.started_at: float = time.time()
        self.last_request_time: float = time.time()

        self._shutdown_event: asyncio.Event = asyncio.Event()
        self._queue: "asyncio.Queue[PendingCall]" = asyncio.Queue()
        self._pending: Dict[int, PendingCall] = {}
        self._call_ids = itertools.count(1)
        self._handlers: Set[asyncio.Task] = set()
        self._writers: Set[asyncio.StreamWriter] = set()
        self._tasks: List[asyncio.Task] = []

    def _default_transport(self) -> SubprocessTransport:
        return SubprocessTransport(
            self.profile,
            server_name=self.server_name,
            server_args=self.server_args,
            cwd=self.state.project_dir,
        )

    async def start(self) -> int:
        """
        Run the daemon until shutdown.

        Returns:
            Process exit status: 0 after a requested shutdown, 1 when the
            server could not be started or its transport died
        """
        pid = os.getpid()
        logger.info(
            f"Starting mcp-cli daemon for '{self.server_name}' in {self.state.project_dir} (pid {pid})"
        )
        # Before the handshake: a stop during startup must close the server
        if self.install_signal_handlers:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self._signal_handler)

        self.state.write_pid(pid)

        try:
            self.transport = await self._open_transport()
        except McpCliError as e:
            # The pid record stays behind so a waiting supervisor sees a dead pid
            logger.error(f"Failed to start MCP server: {e}")
            return 1
        if self.transport is None:
            self.state.clear_runtime(expected_pid=pid)
            logger.info("Daemon stopped before the MCP server was ready")
            return 0

        try:
            await self._bind(pid)
        except OSError as e:
            logger.error(f"Failed to bind daemon socket: {e}")
            await asyncio.to_thread(self.transport.close)
            self.state.clear_runtime(expected_pid=pid)
            return 1

        logger.info(f"Daemon listening on {self.socket_path}")

        self._tasks.append(asyncio.create_task(self._worker()))
        self._tasks.append(asyncio.create_task(self._health_watcher()))
        if self.idle_timeout > 0:
            self._tasks.append(asyncio.create_task(self._idle_watcher()))

        await self._shutdown_event.wait()
        await self._cleanup()
        return self.exit_code

    async def _open_transport(self) -> Optional[Any]:
        """
        Start the server transport unless shutdown is requested first.

        Returns:
            The started transport, or None when shutdown won the race (the
            half-started server is closed before returning)
        """
        transport = self.transport_factory()
        opening = asyncio.ensure_future(asyncio.to_thread(transport.start))
        stopping = asyncio.ensure_future(self._shutdown_event.wait())
        try:
            await asyncio.wait({opening, stopping}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopping.cancel()
        if opening.done():
            return opening.result()

        logger.info("Shutdown requested during MCP server startup")
        await asyncio.to_thread(transport.close)
        try:
            await opening
        except McpCliError as e:
            logger.debug(f"MCP server startup aborted: {e}")
        return None

    async def _bind(self, pid: int) -> None:
        self.state.ensure_socket_dir()
        self.socket_path = self.state.socket_path_for(pid)
        self.socket_path.unlink(missing_ok=True)

        self.server = await asyncio.start_unix_server(
            self._handle_client,
            path=str(self.socket_path),
            limit=MAX_MESSAGE_SIZE + 1,
        )
        # Owner only
        os.chmod(self.socket_path, 0o600)
        self.state.write_socket_path(self.socket_path)

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    # ------------------------------------------------------------------
    # Client connections
    # ------------------------------------------------------------------

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle a single client connection: one request, one response."""
        task = asyncio.current_task()
        if task is not None:
            self._handlers.add(task)
        self._writers.add(writer)
        try:
            try:
                line = await reader.readline()
            except ValueError:
                # StreamReader reports an over-limit line as ValueError
                await self._reply(
                    writer,
                    make_error(None, INVALID_REQUEST, f"Request exceeds {MAX_MESSAGE_SIZE} bytes"),
                )
                return
            if not line.strip():
                return

            self.last_request_time = time.time()

            try:
                request = decode_message(line)
            except TransportError as e:
                await self._reply(writer, make_error(None, PARSE_ERROR, f"Parse error: {e}"))
                return

            if not is_request(request):
                await self._reply(
                    writer,
                    make_error(request.get("id"), INVALID_REQUEST, "Expected a JSON-RPC request"),
                )
                return

            if request["method"] == STATUS_METHOD:
                response = make_result(request["id"], self.status_info())
            elif not self.healthy:
                response = self._unhealthy_error(request["id"])
            else:
                response = await self._dispatch(request, reader, writer)
                if response is None:
                    return

            await self._reply(writer, response)

        except ConnectionError as e:
            logger.debug(f"Client connection lost: {e}")
        except Exception as e:
            logger.exception(f"Error handling client: {e}")
        finally:
            self._writers.discard(writer)
            if task is not None:
                self._handlers.discard(task)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError) as e:
                logger.debug(f"Error closing client connection: {e}")

    async def _dispatch(
        self,
        request: Dict[str, Any],
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> Optional[Dict[str, Any]]:
        """
        Queue a request for the worker and wait for its response.

        Returns None if the client disconnects first. An exchange already
        sent to the server is left to finish and its result is dropped.
        """
        call = PendingCall(
            call_id=next(self._call_ids),
            request_id=request["id"],
            method=request["method"],
            params=request.get("params"),
            client=writer,
            future=asyncio.get_running_loop().create_future(),
        )
        self._pending[call.call_id] = call
        await self._queue.put(call)

        eof = asyncio.create_task(self._wait_for_eof(reader))
        try:
            done, _ = await asyncio.wait(
                {call.future, eof},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if call.future in done:
                return call.future.result()
            call.abandoned = True
            logger.info(
                f"Client disconnected before call {call.call_id} ({call.method}) completed"
            )
            return None
        finally:
            eof.cancel()
            self._pending.pop(call.call_id, None)

    @staticmethod
    async def _wait_for_eof(reader: asyncio.StreamReader) -> None:
        while True:
            try:
                chunk = await reader.read(4096)
            except ConnectionError:
                return
            if not chunk:
                return

    async def _reply(self, writer: asyncio.StreamWriter, response: Dict[str, Any]) -> None:
        writer.write(encode_message(response))
        await writer.drain()

    # ------------------------------------------------------------------
    # Server exchanges
    # ------------------------------------------------------------------

    async def _worker(self) -> None:
        """Run queued calls against the transport one at a time."""
        while True:
            call = await self._queue.get()
            if call.abandoned or call.future.done():
                logger.debug(f"Skipping call {call.call_id}: client already gone")
                continue
            if not self.healthy:
                self._fail_call(call, "Daemon transport is unhealthy")
                continue

            logger.debug(f"Dispatching call {call.call_id}: {call.method}")
            try:
                envelope = await asyncio.to_thread(
                    self.transport.request, call.method, call.params
                )
            except TransportError as e:
                logger.error(f"Transport failed during '{call.method}': {e}")
                self._fail_call(call, f"MCP server transport failed: {e.message}")
                self._mark_unhealthy(e.message)
                continue

            self.last_request_time = time.time()
            if call.abandoned or call.future.done():
                logger.debug(f"Discarding response for abandoned call {call.call_id}")
                continue
            call.future.set_result(relay_response(envelope, call.request_id))

    def _fail_call(self, call: PendingCall, message: str) -> None:
        if not call.future.done():
            call.future.set_result(
                make_daemon_error(call.request_id, DAEMON_UNHEALTHY, message)
            )

    def _unhealthy_error(self, request_id: Any) -> Dict[str, Any]:
        return make_daemon_error(
            request_id,
            DAEMON_UNHEALTHY,
            f"Daemon for '{self.server_name}' lost its MCP server",
        )

    def _mark_unhealthy(self, reason: str) -> None:
        """Fail everything outstanding and begin shutdown with status 1."""
        if not self.healthy:
            return
        self.healthy = False
        self.exit_code = 1
        logger.error(f"Daemon unhealthy: {reason}")
        for call in list(self._pending.values()):
            self._fail_call(call, f"Daemon unhealthy: {reason}")
        self._shutdown_event.set()

    async def _health_watcher(self) -> None:
        """Notice a server that dies while no request is in flight."""
        while not self._shutdown_event.is_set():
            await asyncio.sleep(self.health_interval)
            if self.transport is not None and not self.transport.is_alive():
                self._mark_unhealthy("MCP server process exited")
                return

    async def _idle_watcher(self) -> None:
        """Watch for idle timeout and shutdown if exceeded."""
        interval = min(60.0, max(self.idle_timeout / 4, 0.1))
        while not self._shutdown_event.is_set():
            await asyncio.sleep(interval)
            if self._pending:
                continue

            idle_time = time.time() - self.last_request_time
            if idle_time > self.idle_timeout:
                logger.info(
                    f"Idle timeout reached ({idle_time:.0f}s > {self.idle_timeout:.0f}s), "
                    "shutting down"
                )
                self._shutdown_event.set()
                break

    def status_info(self) -> Dict[str, Any]:
        """Answer to the status probe; never touches the transport channel."""
        transport = self.transport
        return {
            "running": True,
            "healthy": self.healthy,
            "pid": os.getpid(),
            "socket_path": str(self.socket_path) if self.socket_path else None,
            "server": self.server_name,
            "project_dir": str(self.state.project_dir),
            "uptime_seconds": round(time.time() - self.started_at, 3),
            "pending_calls": len(self._pending),
            "server_pid": getattr(transport, "pid", None),
            "protocol_version": getattr(transport, "protocol_version", None),
            "server_info": getattr(transport, "server_info", None) or {},
        }

    def _signal_handler(self) -> None:
        """Handle SIGTERM/SIGINT for graceful shutdown."""
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    async def _cleanup(self, grace: float = 2.0) -> None:
        """Cleanup on shutdown."""
        logger.info("Cleaning up...")

        if self.server:
            self.server.close()

        for call in list(self._pending.values()):
            self._fail_call(call, "Daemon is shutting down")

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

        # Let handlers deliver the failures set above
        if self._handlers:
            _, still_running = await asyncio.wait(set(self._handlers), timeout=grace)
            for task in still_running:
                task.cancel()
        for writer in list(self._writers):
            writer.close()

        if self.server:
            try:
                await asyncio.wait_for(self.server.wait_closed(), timeout=grace)
            except asyncio.TimeoutError:
                logger.warning("Timed out waiting for client connections to close")

        if self.transport is not None:
            await asyncio.to_thread(self.transport.close)

        self.state.clear_runtime(expected_pid=os.getpid())
        if self.socket_path is not None:
            self.socket_path.unlink(missing_ok=True)

        logger.info("Daemon stopped")


def _daemonize(log_path: Path) -> None:
    """Double fork, start a new session and point stdio at the log file."""
    if os.fork() > 0:
        os._exit(0)

    os.setsid()

    if os.fork() > 0:
        os._exit(0)

    devnull = os.open(os.devnull, os.O_RDONLY)
    os.dup2(devnull, sys.stdin.fileno())
    os.close(devnull)

    log_path.parent.mkdir(parents=True, exist_ok=True)
    log_fd = os.open(str(log_path), os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
    os.dup2(log_fd, sys.stdout.fileno())
    os.dup2(log_fd, sys.stderr.fileno())
    os.close(log_fd)


def run_daemon(
    project_dir: str,
    server_name: str,
    socket_dir: Optional[str] = None,
    idle_timeout: Optional[float] = None,
    daemonize: bool = False,
) -> None:
    """
    Run the daemon server.

    The launch description written by the supervisor is read (and removed)
    before forking so a malformed launch fails with the launcher's status.

    Args:
        project_dir: Directory the daemon belongs to
        server_name: Server name from the config
        socket_dir: Socket directory (default: /tmp/.mcp-<uid>)
        idle_timeout: Override the launch file's idle timeout (0 = never)
        daemonize: Fork to background (Unix only)
    """
    state = ProjectProfileState(project_dir, server_name, socket_dir=socket_dir)
    launch = state.read_launch(consume=True)
    profile = ServerProfile.from_dict(server_name, launch["profile"])
    server_args = launch.get("server_args")
    if idle_timeout is None:
        idle_timeout = float(launch.get("idle_timeout", 0.0))

    if daemonize:
        _daemonize(state.log_path)
    os.chdir(state.project_dir)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Set process title after daemonization (monitoring tools and stop() use it)
    setproctitle.setproctitle(
        f"{PROCESS_TITLE_PREFIX}: {server_name} ({state.project_dir})"
    )

    server = DaemonServer(
        state,
        profile,
        server_args=server_args,
        idle_timeout=idle_timeout,
    )
    sys.exit(asyncio.run(server.start()))


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="mcp-cli daemon server")
    parser.add_argument("--project-dir", required=True, help="Directory the daemon belongs to")
    parser.add_argument("--server", required=True, help="Server name from the config")
    parser.add_argument("--socket-dir", help="Directory for the Unix socket")
    parser.add_argument(
        "--idle-timeout",
        type=float,
        default=None,
        help="Shutdown after this many seconds idle (0 = never)",
    )
    parser.add_argument(
        "--daemonize",
        action="store_true",
        help="Fork to background",
    )

    args = parser.parse_args()

    run_daemon(
        project_dir=args.project_dir,
        server_name=args.server,
        socket_dir=args.socket_dir,
        idle_timeout=args.idle_timeout,
        daemonize=args.daemonize,
    )

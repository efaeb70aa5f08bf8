"""Daemon lifecycle: start, stop and status for one (directory, server) pair.

The supervisor never talks to the MCP server itself. It reads the records
kept by ``ProjectProfileState``, probes the daemon socket, and launches or
signals the daemon process.
"""

import enum
import errno
import logging
import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Union

from mcpcli.core.configs import DEFAULT_START_TIMEOUT, DEFAULT_STOP_TIMEOUT, ServerProfile
from mcpcli.daemon.client import DaemonClient
from mcpcli.daemon.server import PROCESS_TITLE_PREFIX
from mcpcli.daemon.state import ProjectProfileState
from mcpcli.errors import (
    DaemonAlreadyRunning,
    DaemonError,
    DaemonStartError,
    McpCliError,
    UnsupportedDaemonMode,
)

logger = logging.getLogger(__name__)

DAEMON_MODULE = "mcpcli.daemon.server"

Launcher = Callable[[Sequence[str], Path, Path], Optional[int]]


class RunState(enum.Enum):
    RUNNING = "running"
    NOT_RUNNING = "not_running"
    STALE = "stale"


@dataclass
class DaemonStatus:
    """Snapshot of a daemon's state as seen from the outside."""

    state: RunState
    server_name: str
    project_dir: str
    pid: Optional[int] = None
    socket_path: Optional[str] = None
    info: Dict[str, Any] = field(default_factory=dict)
    cleaned_up: bool = False

    @property
    def running(self) -> bool:
        return self.state is RunState.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "server": self.server_name,
            "project_dir": self.project_dir,
            "pid": self.pid,
            "socket_path": self.socket_path,
            "cleaned_up": self.cleaned_up,
            "info": self.info,
        }


def is_process_alive(pid: int) -> bool:
    """True if ``pid`` exists and is not a zombie."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except OSError as e:
        if e.errno == errno.ESRCH:
            return False
        if e.errno != errno.EPERM:
            raise
    # Exited children of init linger as zombies until reaped
    stat_path = Path(f"/proc/{pid}/stat")
    try:
        stat = stat_path.read_text()
    except OSError:
        return True
    # Format: "pid (comm) S ...", comm may contain spaces or parentheses
    fields = stat.rsplit(")", 1)[-1].split()
    return not fields or fields[0] != "Z"


def _looks_like_daemon(pid: int) -> bool:
    """
    Check that a live pid is an mcp-cli daemon before signalling it.

    Guards against pid reuse after a crash. Where /proc is unavailable the
    check is skipped.
    """
    cmdline_path = Path(f"/proc/{pid}/cmdline")
    if not Path("/proc/self").exists():
        return True
    try:
        cmdline = cmdline_path.read_bytes().replace(b"\0", b" ").decode("utf-8", "replace")
    except OSError:
        return False
    return PROCESS_TITLE_PREFIX in cmdline or DAEMON_MODULE in cmdline


def detach_and_run(
    argv: Sequence[str],
    cwd: Path,
    log_path: Path,
    timeout: float = 30.0,
) -> Optional[int]:
    """
    Default launcher: run ``argv`` in a new session with output to the log.

    The daemon entry point double-forks, so the process started here exits
    as soon as the real daemon is detached.

    Returns:
        Exit status of the launched process
    """
    # The daemon must import the same mcpcli as the caller
    env = dict(os.environ)
    package_root = str(Path(__file__).resolve().parents[2])
    env["PYTHONPATH"] = os.pathsep.join(p for p in (package_root, env.get("PYTHONPATH")) if p)

    with open(log_path, "ab") as log_file:
        process = subprocess.Popen(
            list(argv),
            cwd=str(cwd),
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=log_file,
            stderr=log_file,
            start_new_session=True,
            close_fds=True,
        )
    try:
        return process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning(f"Daemon launcher pid {process.pid} did not detach, killing")
        process.kill()
        return process.wait()


class DaemonSupervisor:
    """
    Start, stop and inspect the daemon for a (directory, server) pair.

    Usage:
        supervisor = DaemonSupervisor("playwright", "/path/to/project")
        supervisor.start(profile)
        supervisor.status().pid
        supervisor.stop()
    """

    def __init__(
        self,
        server_name: str,
        project_dir: Optional[Union[str, Path]] = None,
        socket_dir: Optional[Union[str, Path]] = None,
        start_timeout: float = DEFAULT_START_TIMEOUT,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        probe_timeout: float = 2.0,
        launcher: Optional[Launcher] = None,
    ):
        """
        Args:
            server_name: Server name from the config
            project_dir: Directory the daemon belongs to (default: cwd)
            socket_dir: Socket directory (default: /tmp/.mcp-<uid>)
            start_timeout: Seconds to wait for a new daemon to answer
            stop_timeout: Seconds to wait after SIGTERM before SIGKILL
            probe_timeout: Socket timeout for status probes
            launcher: ``detach-and-run`` callable (argv, cwd, log_path)
        """
        self.server_name = server_name
        self.state = ProjectProfileState(
            project_dir if project_dir is not None else Path.cwd(),
            server_name,
            socket_dir=socket_dir,
        )
        self.socket_dir = Path(socket_dir) if socket_dir else None
        self.start_timeout = start_timeout
        self.stop_timeout = stop_timeout
        self.probe_timeout = probe_timeout
        self.launcher = launcher or detach_and_run

    @property
    def project_dir(self) -> Path:
        return self.state.project_dir

    def _status(self, state: RunState, **kwargs: Any) -> DaemonStatus:
        return DaemonStatus(
            state=state,
            server_name=self.server_name,
            project_dir=str(self.project_dir),
            **kwargs,
        )

    def client(self, socket_path: Union[str, Path], timeout: Optional[float] = None) -> DaemonClient:
        return DaemonClient(
            socket_path,
            timeout=timeout,
            probe_timeout=self.probe_timeout,
            server_name=self.server_name,
            project_dir=self.project_dir,
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> DaemonStatus:
        """
        Current state, cleaning up after a daemon that died.

        Never creates anything on disk.
        """
        pid = self.state.read_pid()
        socket_path = self.state.read_socket_path()

        if pid is None and socket_path is None:
            return self._status(RunState.NOT_RUNNING)

        if pid is None or not is_process_alive(pid) or not _looks_like_daemon(pid):
            logger.info(f"Removing leftover state for dead daemon (pid {pid}) in {self.state.state_dir}")
            self.state.clear_runtime()
            return self._status(RunState.NOT_RUNNING, pid=pid, cleaned_up=True)

        if socket_path is None or not socket_path.exists():
            return self._status(RunState.STALE, pid=pid)

        try:
            info = self.client(socket_path).status()
        except McpCliError as e:
            logger.debug(f"Status probe failed for pid {pid}: {e}")
            return self._status(RunState.STALE, pid=pid, socket_path=str(socket_path))

        if info.get("pid") != pid:
            logger.debug(f"Socket answered for pid {info.get('pid')}, expected {pid}")
            return self._status(RunState.STALE, pid=pid, socket_path=str(socket_path))

        return self._status(
            RunState.RUNNING, pid=pid, socket_path=str(socket_path), info=info
        )

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def _daemon_argv(self) -> list:
        argv = [
            sys.executable,
            "-m",
            DAEMON_MODULE,
            "--project-dir",
            str(self.project_dir),
            "--server",
            self.server_name,
            "--daemonize",
        ]
        if self.socket_dir is not None:
            argv += ["--socket-dir", str(self.socket_dir)]
        return argv

    def start(
        self,
        profile: ServerProfile,
        server_args: Optional[Sequence[str]] = None,
        idle_timeout: float = 0.0,
    ) -> DaemonStatus:
        """
        Launch a daemon and wait until it answers the status probe.

        Args:
            profile: Server profile the daemon should run
            server_args: Expanded argument override (None = profile defaults)
            idle_timeout: Daemon exits after this many idle seconds (0 = never)

        Raises:
            UnsupportedDaemonMode: If the profile does not allow daemons
            DaemonAlreadyRunning: If a daemon is running (or stale) here
            DaemonStartError: If the daemon did not become ready
        """
        if not profile.supports_daemon:
            raise UnsupportedDaemonMode(
                "Server profile does not support daemon mode",
                server_name=self.server_name,
                project_dir=self.project_dir,
            )

        current = self.status()
        if current.state is not RunState.NOT_RUNNING:
            raise DaemonAlreadyRunning(
                f"Daemon already {current.state.value} with pid {current.pid}",
                server_name=self.server_name,
                project_dir=self.project_dir,
            )

        self.state.ensure_dir()
        self.state.write_launch(
            {
                "server_name": self.server_name,
                "project_dir": str(self.project_dir),
                "profile": profile.to_dict(),
                "server_args": None if server_args is None else list(server_args),
                "idle_timeout": idle_timeout,
            }
        )

        log_path = self.state.log_path
        logger.info(f"Starting daemon for '{self.server_name}' in {self.project_dir}")
        try:
            exit_code = self.launcher(self._daemon_argv(), self.project_dir, log_path)
        except OSError as e:
            self.state.clear_runtime()
            raise DaemonStartError(
                f"Failed to launch daemon; see {log_path}",
                server_name=self.server_name,
                project_dir=self.project_dir,
                cause=e,
            ) from e
        if exit_code:
            self.state.clear_runtime()
            raise DaemonStartError(
                f"Daemon launcher exited with status {exit_code}; see {log_path}",
                server_name=self.server_name,
                project_dir=self.project_dir,
            )

        return self._wait_until_ready()

    def _wait_until_ready(self) -> DaemonStatus:
        deadline = time.monotonic() + self.start_timeout
        seen_pid: Optional[int] = None
        last_error: Optional[Exception] = None

        while time.monotonic() < deadline:
            pid = self.state.read_pid()
            if pid is not None:
                seen_pid = pid
            if seen_pid is not None and not is_process_alive(seen_pid):
                self.state.clear_runtime()
                raise DaemonStartError(
                    f"Daemon exited during startup; see {self.state.log_path}",
                    server_name=self.server_name,
                    project_dir=self.project_dir,
                )

            socket_path = self.state.read_socket_path()
            if pid is not None and socket_path is not None:
                try:
                    info = self.client(socket_path).status()
                except McpCliError as e:
                    last_error = e
                else:
                    if info.get("pid") == pid:
                        logger.info(f"Daemon ready (pid {pid}, socket {socket_path})")
                        return self._status(
                            RunState.RUNNING,
                            pid=pid,
                            socket_path=str(socket_path),
                            info=info,
                        )
            time.sleep(0.05)

        if seen_pid is not None and is_process_alive(seen_pid):
            self._terminate(seen_pid)
        self.state.clear_runtime()
        raise DaemonStartError(
            f"Daemon did not become ready within {self.start_timeout:.0f}s; "
            f"see {self.state.log_path}",
            server_name=self.server_name,
            project_dir=self.project_dir,
            cause=last_error,
        )

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    def stop(self) -> DaemonStatus:
        """
        Terminate the daemon and remove its records from the state directory.

        A no-op when nothing is running.
        """
        current = self.status()
        if current.state is RunState.NOT_RUNNING:
            return current

        logger.info(f"Stopping daemon pid {current.pid} for '{self.server_name}'")
        self._terminate(current.pid)
        self.state.clear_runtime()
        self.state.remove()
        return self._status(RunState.NOT_RUNNING, pid=current.pid)

    def _terminate(self, pid: int) -> None:
        """SIGTERM, bounded wait, then SIGKILL."""
        if not self._signal(pid, signal.SIGTERM):
            return
        if self._wait_for_exit(pid, self.stop_timeout):
            return

        logger.warning(f"Daemon pid {pid} ignored SIGTERM, sending SIGKILL")
        if not self._kill_group(pid):
            return
        if not self._wait_for_exit(pid, self.stop_timeout):
            raise DaemonError(
                f"Daemon pid {pid} did not exit after SIGKILL",
                server_name=self.server_name,
                project_dir=self.project_dir,
            )

    @staticmethod
    def _signal(pid: int, sig: int) -> bool:
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            return False
        return True

    @staticmethod
    def _kill_group(pid: int) -> bool:
        """
        SIGKILL the daemon together with its MCP server.

        A detached daemon runs in a session of its own whose one process
        group holds the daemon and the server it spawned. Anything else gets
        a plain SIGKILL.
        """
        try:
            pgid = os.getpgid(pid)
            if pgid == os.getsid(pid) and pgid != os.getpgrp():
                os.killpg(pgid, signal.SIGKILL)
            else:
                os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            return False
        return True

    @staticmethod
    def _wait_for_exit(pid: int, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if not is_process_alive(pid):
                return True
            time.sleep(0.05)
        return not is_process_alive(pid)

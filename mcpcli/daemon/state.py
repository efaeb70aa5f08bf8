"""On-disk state for one daemon, keyed by (project directory, server name).

Layout:

    <project>/.mcp-profile/<server>/
        daemon.pid       pid of the running daemon
        daemon.socket    path of its Unix socket
        daemon.log       daemon stderr (kept after a crash for postmortem)
        launch.json      launch description, consumed at daemon startup

    /tmp/.mcp-<uid>/<server>-<pid>.sock   the socket itself

The socket lives outside the project because Unix socket paths are limited
to ~100 bytes. Embedding the daemon pid keeps sockets from two projects
apart even for the same server name.

Nothing here touches the disk until a write method is called, so probing
status for a directory that never had a daemon leaves no trace.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

from mcpcli.core.templates import PROFILE_DIRNAME, sanitize_server_name

logger = logging.getLogger(__name__)


def default_socket_dir() -> Path:
    """Per-user socket directory under the system temp dir."""
    return Path(tempfile.gettempdir()) / f".mcp-{os.getuid()}"


def _write_atomic(path: Path, text: str, mode: int = 0o600) -> None:
    """Write via a temp file + rename so readers never see a partial file."""
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class ProjectProfileState:
    """
    Paths and records for the daemon of one (directory, server) pair.

    The absolute project directory is part of the identity: two directories
    never share state even for the same server name.
    """

    PID_FILE = "daemon.pid"
    SOCKET_FILE = "daemon.socket"
    LOG_FILE = "daemon.log"
    LAUNCH_FILE = "launch.json"

    def __init__(
        self,
        project_dir: Union[str, Path],
        server_name: str,
        socket_dir: Optional[Union[str, Path]] = None,
    ):
        """
        Args:
            project_dir: Working directory the daemon belongs to
            server_name: Server name from the config
            socket_dir: Where sockets are created (default: /tmp/.mcp-<uid>)
        """
        self.project_dir = Path(project_dir).resolve()
        self.server_name = server_name
        self.safe_name = sanitize_server_name(server_name)
        if not self.safe_name:
            raise ValueError(f"Server name {server_name!r} has no usable characters")
        self.socket_dir = Path(socket_dir) if socket_dir else default_socket_dir()

        self.state_dir = self.project_dir / PROFILE_DIRNAME / self.safe_name
        self.pid_path = self.state_dir / self.PID_FILE
        self.socket_record_path = self.state_dir / self.SOCKET_FILE
        self.log_path = self.state_dir / self.LOG_FILE
        self.launch_path = self.state_dir / self.LAUNCH_FILE

    @property
    def key(self) -> tuple:
        return (str(self.project_dir), self.server_name)

    def __repr__(self) -> str:
        return f"ProjectProfileState({str(self.project_dir)!r}, {self.server_name!r})"

    def exists(self) -> bool:
        return self.state_dir.exists()

    def ensure_dir(self) -> None:
        """Create the state directory (owner-only)."""
        self.state_dir.mkdir(mode=0o700, parents=True, exist_ok=True)

    def ensure_socket_dir(self) -> None:
        self.socket_dir.mkdir(mode=0o700, parents=True, exist_ok=True)

    def socket_path_for(self, pid: int) -> Path:
        return self.socket_dir / f"{self.safe_name}-{pid}.sock"

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def read_pid(self) -> Optional[int]:
        """Recorded daemon pid, or None if absent or unreadable."""
        try:
            text = self.pid_path.read_text().strip()
        except FileNotFoundError:
            return None
        try:
            pid = int(text)
        except ValueError:
            logger.warning(f"Invalid PID in {self.pid_path}: {text!r}")
            return None
        return pid if pid > 0 else None

    def write_pid(self, pid: int) -> None:
        self.ensure_dir()
        _write_atomic(self.pid_path, f"{pid}\n")

    def read_socket_path(self) -> Optional[Path]:
        try:
            text = self.socket_record_path.read_text().strip()
        except FileNotFoundError:
            return None
        return Path(text) if text else None

    def write_socket_path(self, socket_path: Union[str, Path]) -> None:
        self.ensure_dir()
        _write_atomic(self.socket_record_path, f"{socket_path}\n")

    def write_launch(self, launch: Dict[str, Any]) -> None:
        """Launch description for the daemon entry point (may hold env secrets)."""
        self.ensure_dir()
        _write_atomic(self.launch_path, json.dumps(launch, indent=2))

    def read_launch(self, consume: bool = True) -> Dict[str, Any]:
        data = json.loads(self.launch_path.read_text(encoding="utf-8"))
        if consume:
            self.launch_path.unlink(missing_ok=True)
        return data

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def clear_runtime(self, expected_pid: Optional[int] = None) -> None:
        """
        Remove the pid record, socket record and socket file.

        With ``expected_pid`` set, records belonging to a different daemon
        are left alone (a newer daemon may already own the directory).
        """
        recorded_pid = self.read_pid()
        if expected_pid is not None and recorded_pid not in (None, expected_pid):
            logger.info(
                f"State now belongs to pid {recorded_pid}; leaving it in place"
            )
            socket_path = self.socket_path_for(expected_pid)
            socket_path.unlink(missing_ok=True)
            return

        socket_path = self.read_socket_path()
        if socket_path is None and recorded_pid is not None:
            socket_path = self.socket_path_for(recorded_pid)
        if socket_path is not None:
            socket_path.unlink(missing_ok=True)

        self.socket_record_path.unlink(missing_ok=True)
        self.pid_path.unlink(missing_ok=True)
        self.launch_path.unlink(missing_ok=True)

    def remove(self) -> None:
        """
        Delete the daemon records, log included, then any emptied directories.

        The state directory doubles as the server's ``{profile_dir}``, so
        files the server wrote there are kept.
        """
        self.clear_runtime()
        self.log_path.unlink(missing_ok=True)
        for directory in (self.state_dir, self.state_dir.parent):
            if not directory.is_dir() or any(directory.iterdir()):
                return
            directory.rmdir()

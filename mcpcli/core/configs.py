"""Configuration management for mcp-cli.

Loads server profiles from a JSON file (default
~/.claude/scripts/mcp-servers.json):

    {
      "playwright": {
        "command": ["npx", "@playwright/mcp@latest"],
        "default_args": ["--headless"],
        "supports_daemon": true,
        "description": "Playwright browser automation",
        "env": {},
        "env_file": ".env.playwright"
      }
    }

Provides ServerProfile (how to launch one server) and DaemonSettings
(daemon timeouts and switches read from the environment).
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from dotenv import dotenv_values

from mcpcli.errors import ConfigError

# Default location for server profiles (compatible with the original tool).
CONFIG_PATH = Path.home() / ".claude" / "scripts" / "mcp-servers.json"
CONFIG_ENV_VAR = "MCPCLI_CONFIG"


@dataclass(frozen=True)
class ServerProfile:
    """Immutable description of one MCP server."""

    command: Tuple[str, ...]
    default_args: Tuple[str, ...] = ()
    supports_daemon: bool = False
    description: str = ""
    env: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(
        cls,
        name: str,
        data: Mapping[str, Any],
        base_dir: Optional[Path] = None,
    ) -> "ServerProfile":
        """
        Build a profile from its JSON object.

        Args:
            name: Server name (for error messages)
            data: Parsed JSON object for this server
            base_dir: Directory that relative ``env_file`` paths resolve against

        Raises:
            ConfigError: If a field has the wrong type or ``command`` is empty
        """
        if not isinstance(data, Mapping):
            raise ConfigError("Profile must be a JSON object", server_name=name)

        command = _string_list(data.get("command"), "command", name)
        if not command:
            raise ConfigError("Profile 'command' must be a non-empty list", server_name=name)

        default_args = _string_list(data.get("default_args", []), "default_args", name)

        supports_daemon = data.get("supports_daemon", False)
        if not isinstance(supports_daemon, bool):
            raise ConfigError("'supports_daemon' must be true or false", server_name=name)

        description = data.get("description", "") or ""
        if not isinstance(description, str):
            raise ConfigError("'description' must be a string", server_name=name)

        env: Dict[str, str] = {}
        env_file = data.get("env_file")
        if env_file:
            env.update(_load_env_file(env_file, base_dir, name))

        explicit_env = data.get("env", {}) or {}
        if not isinstance(explicit_env, Mapping) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in explicit_env.items()
        ):
            raise ConfigError("'env' must map strings to strings", server_name=name)
        env.update(explicit_env)

        return cls(
            command=tuple(command),
            default_args=tuple(default_args),
            supports_daemon=supports_daemon,
            description=description,
            env=env,
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-compatible form (round-trips through ``from_dict``)."""
        return {
            "command": list(self.command),
            "default_args": list(self.default_args),
            "supports_daemon": self.supports_daemon,
            "description": self.description,
            "env": dict(self.env),
        }


# Readiness wait for a new daemon; exceeds the 30 s handshake timeout
DEFAULT_START_TIMEOUT = 45.0
DEFAULT_STOP_TIMEOUT = 5.0


@dataclass
class DaemonSettings:
    enabled: bool = True
    start_timeout: float = DEFAULT_START_TIMEOUT
    stop_timeout: float = DEFAULT_STOP_TIMEOUT
    socket_dir: Optional[Path] = None


def _string_list(value: Any, key: str, name: str) -> list:
    if value is None:
        raise ConfigError(f"Profile is missing '{key}'", server_name=name)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"'{key}' must be a list of strings", server_name=name)
    return list(value)


def _load_env_file(env_file: Any, base_dir: Optional[Path], name: str) -> Dict[str, str]:
    if not isinstance(env_file, str):
        raise ConfigError("'env_file' must be a path string", server_name=name)
    path = Path(env_file).expanduser()
    if not path.is_absolute() and base_dir is not None:
        path = base_dir / path
    if not path.exists():
        raise ConfigError(f"env_file not found: {path}", server_name=name)
    # Keys without a value (bare "KEY" lines) come back as None; skip them
    return {k: v for k, v in dotenv_values(path).items() if v is not None}


def resolve_config_path(path: Optional[Union[str, Path]] = None) -> Path:
    """Explicit path, else $MCPCLI_CONFIG, else the default location."""
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get(CONFIG_ENV_VAR, "").strip()
    if env_path:
        return Path(env_path).expanduser()
    return CONFIG_PATH


def load_server_config(path: Optional[Union[str, Path]] = None) -> Dict[str, ServerProfile]:
    """
    Load all server profiles.

    Raises:
        ConfigError: If the file is missing, not JSON, or a profile is invalid
    """
    config_path = resolve_config_path(path)
    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found: {config_path}\n"
            "Create it with server profiles."
        )

    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Failed to read config: {config_path}", cause=e) from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config: {config_path}", cause=e) from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config root must be a JSON object: {config_path}")

    base_dir = config_path.parent
    return {
        name: ServerProfile.from_dict(name, data, base_dir=base_dir)
        for name, data in raw.items()
    }


def get_server_profile(
    server_name: str,
    path: Optional[Union[str, Path]] = None,
) -> ServerProfile:
    """Load the config and return one profile, or raise ConfigError."""
    servers = load_server_config(path)
    if server_name not in servers:
        raise ConfigError(
            f"Server '{server_name}' not found in config", server_name=server_name
        )
    return servers[server_name]


def _get_bool(value: Optional[str]) -> bool:
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or str(value).strip() == "":
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e


def get_daemon_settings() -> DaemonSettings:
    """
    Daemon switches and timeouts from the environment.

    MCPCLI_NO_DAEMON=1 disables daemon routing entirely; the other variables
    override the start/stop waits and the socket directory.
    """
    socket_dir = os.environ.get("MCPCLI_SOCKET_DIR", "").strip()
    return DaemonSettings(
        enabled=not _get_bool(os.environ.get("MCPCLI_NO_DAEMON")),
        start_timeout=_get_float("MCPCLI_DAEMON_START_TIMEOUT_S", DEFAULT_START_TIMEOUT),
        stop_timeout=_get_float("MCPCLI_DAEMON_STOP_TIMEOUT_S", DEFAULT_STOP_TIMEOUT),
        socket_dir=Path(socket_dir).expanduser() if socket_dir else None,
    )

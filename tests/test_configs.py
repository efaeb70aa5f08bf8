"""
Tests for server profile loading and daemon settings.
"""

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from mcpcli.core.configs import (
    CONFIG_ENV_VAR,
    ServerProfile,
    get_daemon_settings,
    get_server_profile,
    load_server_config,
    resolve_config_path,
)
from mcpcli.errors import ConfigError


class TestServerConfig(unittest.TestCase):
    """Test cases for the JSON config loader."""

    def setUp(self):
        """Set up test environment with temporary directories."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_file = Path(self.temp_dir) / "mcp-servers.json"

    def tearDown(self):
        """Clean up temporary files."""
        import shutil

        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, data) -> None:
        self.config_file.write_text(json.dumps(data))

    def test_load_full_profile(self):
        self._write_config({
            "playwright": {
                "command": ["npx", "@playwright/mcp@latest"],
                "default_args": ["--headless"],
                "supports_daemon": True,
                "description": "Browser automation",
                "env": {"DEBUG": "0"},
            },
            "minimal": {"command": ["srv"]},
        })
        servers = load_server_config(self.config_file)

        playwright = servers["playwright"]
        self.assertEqual(playwright.command, ("npx", "@playwright/mcp@latest"))
        self.assertEqual(playwright.default_args, ("--headless",))
        self.assertTrue(playwright.supports_daemon)
        self.assertEqual(playwright.env, {"DEBUG": "0"})

        minimal = servers["minimal"]
        self.assertEqual(minimal.default_args, ())
        self.assertFalse(minimal.supports_daemon)
        self.assertEqual(minimal.description, "")

    def test_env_file_is_relative_to_config(self):
        (Path(self.temp_dir) / ".env.srv").write_text("TOKEN=from-file\nLEVEL=info\n")
        self._write_config({
            "srv": {"command": ["srv"], "env_file": ".env.srv", "env": {"LEVEL": "debug"}},
        })
        profile = load_server_config(self.config_file)["srv"]
        self.assertEqual(profile.env["TOKEN"], "from-file")
        # Explicit env wins over the file
        self.assertEqual(profile.env["LEVEL"], "debug")

    def test_missing_env_file(self):
        self._write_config({"srv": {"command": ["srv"], "env_file": "nope.env"}})
        with self.assertRaises(ConfigError):
            load_server_config(self.config_file)

    def test_missing_file(self):
        with self.assertRaises(ConfigError) as ctx:
            load_server_config(self.config_file)
        self.assertIn(str(self.config_file), str(ctx.exception))

    def test_invalid_json(self):
        self.config_file.write_text("{not json")
        with self.assertRaises(ConfigError):
            load_server_config(self.config_file)

    def test_root_must_be_object(self):
        self._write_config(["srv"])
        with self.assertRaises(ConfigError):
            load_server_config(self.config_file)

    def test_invalid_profiles(self):
        invalid = [
            {"command": []},
            {"command": "srv --stdio"},
            {"default_args": ["--x"]},
            {"command": ["srv"], "supports_daemon": "yes"},
            {"command": ["srv"], "env": {"PORT": 8080}},
        ]
        for data in invalid:
            with self.subTest(data=data):
                with self.assertRaises(ConfigError):
                    ServerProfile.from_dict("srv", data)

    def test_get_server_profile_unknown_name(self):
        self._write_config({"srv": {"command": ["srv"]}})
        self.assertEqual(get_server_profile("srv", self.config_file).command, ("srv",))
        with self.assertRaises(ConfigError) as ctx:
            get_server_profile("other", self.config_file)
        self.assertEqual(ctx.exception.server_name, "other")

    def test_profile_survives_launch_serialization(self):
        profile = ServerProfile(
            command=("srv",), default_args=("-v",), supports_daemon=True, env={"A": "1"}
        )
        self.assertEqual(ServerProfile.from_dict("srv", json.loads(json.dumps(profile.to_dict()))), profile)

    def test_config_path_resolution(self):
        with patch.dict(os.environ, {CONFIG_ENV_VAR: str(self.config_file)}):
            self.assertEqual(resolve_config_path(), self.config_file)
            self.assertEqual(resolve_config_path("/explicit.json"), Path("/explicit.json"))
        with patch.dict(os.environ, {CONFIG_ENV_VAR: ""}):
            self.assertTrue(str(resolve_config_path()).endswith("mcp-servers.json"))


class TestDaemonSettings(unittest.TestCase):
    """Environment-driven daemon switches."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = get_daemon_settings()
        self.assertTrue(settings.enabled)
        self.assertEqual(settings.start_timeout, 45.0)
        self.assertEqual(settings.stop_timeout, 5.0)
        self.assertIsNone(settings.socket_dir)

    def test_overrides(self):
        env = {
            "MCPCLI_NO_DAEMON": "1",
            "MCPCLI_DAEMON_START_TIMEOUT_S": "2.5",
            "MCPCLI_DAEMON_STOP_TIMEOUT_S": "1",
            "MCPCLI_SOCKET_DIR": "/tmp/sockets",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = get_daemon_settings()
        self.assertFalse(settings.enabled)
        self.assertEqual(settings.start_timeout, 2.5)
        self.assertEqual(settings.stop_timeout, 1.0)
        self.assertEqual(settings.socket_dir, Path("/tmp/sockets"))

    def test_bad_number(self):
        with patch.dict(os.environ, {"MCPCLI_DAEMON_START_TIMEOUT_S": "soon"}, clear=True):
            with self.assertRaises(ConfigError):
                get_daemon_settings()


if __name__ == "__main__":
    unittest.main()

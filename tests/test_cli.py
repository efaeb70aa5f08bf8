"""
Tests for the typer command line.
"""

import json
import os
import unittest

from typer.testing import CliRunner

from mcpcli.daemon.supervisor import DaemonSupervisor
from mcpcli.ui.cli import app

from mcp_test_utils import echo_profile, remove_tree, short_tempdir, text_of, whoami


class TestCli(unittest.TestCase):

    def setUp(self):
        self.runner = CliRunner()
        self.project = short_tempdir()
        self.sockets = short_tempdir("mcp-sock-")
        self.config_file = os.path.join(self.project, "servers.json")
        servers = {
            "echo": dict(echo_profile(supports_daemon=False, default_args=["--default"]).to_dict()),
            "echod": dict(echo_profile(supports_daemon=True).to_dict(), description="Echo with daemon"),
        }
        with open(self.config_file, "w") as handle:
            json.dump(servers, handle)

        self.old_cwd = os.getcwd()
        os.chdir(self.project)

    def tearDown(self):
        os.chdir(self.old_cwd)
        DaemonSupervisor("echod", self.project, socket_dir=self.sockets).stop()
        remove_tree(self.project)
        remove_tree(self.sockets)

    def invoke(self, *args, input=None):
        return self.runner.invoke(
            app,
            ["--config", self.config_file, *args],
            input=input,
            env={"MCPCLI_SOCKET_DIR": self.sockets, "MCPCLI_NO_DAEMON": ""},
        )

    def test_list_servers(self):
        result = self.invoke("list-servers")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("echod", result.output)
        self.assertIn("Echo with daemon", result.output)

    def test_list_tools(self):
        result = self.invoke("-s", "echo", "list-tools")
        self.assertEqual(result.exit_code, 0, result.output)
        names = [tool["name"] for tool in json.loads(result.stdout)["tools"]]
        self.assertIn("echo", names)

    def test_call_with_inline_args(self):
        result = self.invoke("-s", "echo", "call", "echo", "-a", '{"text": "hi there"}')
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(text_of(json.loads(result.stdout)), "hi there")

    def test_call_with_args_from_stdin(self):
        result = self.invoke("-s", "echo", "call", "echo", "--args", "-", input='{"text": "piped"}')
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(text_of(json.loads(result.stdout)), "piped")

    def test_invalid_tool_args(self):
        result = self.invoke("-s", "echo", "call", "echo", "-a", "[1]")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("JSON object", result.output)

    def test_tool_error_exits_1(self):
        result = self.invoke("-s", "echo", "call", "fail")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Error: boom", result.output)

    def test_unknown_tool_exits_1(self):
        result = self.invoke("-s", "echo", "call", "no_such_tool")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Unknown tool", result.output)

    def test_missing_server_option(self):
        result = self.invoke("list-tools")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("list-servers", result.output)

    def test_unknown_server(self):
        result = self.invoke("-s", "nope", "list-tools")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("not found", result.output)

    def test_missing_config(self):
        result = self.runner.invoke(
            app, ["--config", os.path.join(self.project, "missing.json"), "list-servers"]
        )
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Configuration file not found", result.output)

    def test_server_args_override_and_expansion(self):
        default = self.invoke("-s", "echo", "call", "whoami")
        self.assertEqual(whoami(json.loads(default.stdout))["args"], ["--default"])

        empty = self.invoke("-s", "echo", "--server-args", "[]", "call", "whoami")
        self.assertEqual(whoami(json.loads(empty.stdout))["args"], [])

        templated = self.invoke("-s", "echo", "--server-args", '["{profile_dir}"]', "call", "whoami")
        self.assertEqual(whoami(json.loads(templated.stdout))["args"], [".mcp-profile/echo"])

    def test_invalid_server_args(self):
        result = self.invoke("-s", "echo", "--server-args", "not-json", "list-tools")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("JSON array", result.output)

    def test_daemon_commands(self):
        started = self.invoke("-s", "echod", "start-daemon")
        self.assertEqual(started.exit_code, 0, started.output)
        self.assertIn("Daemon started", started.output)

        status = self.invoke("-s", "echod", "daemon-status")
        self.assertEqual(status.exit_code, 0, status.output)
        self.assertIn("running", status.output)

        first = whoami(json.loads(self.invoke("-s", "echod", "call", "whoami").stdout))
        second = whoami(json.loads(self.invoke("-s", "echod", "call", "whoami").stdout))
        self.assertEqual(first["pid"], second["pid"])

        again = self.invoke("-s", "echod", "start-daemon")
        self.assertEqual(again.exit_code, 1)
        self.assertIn("already", again.output)

        stopped = self.invoke("-s", "echod", "stop-daemon")
        self.assertEqual(stopped.exit_code, 0, stopped.output)
        self.assertIn("Daemon stopped", stopped.output)
        self.assertFalse(os.path.exists(os.path.join(self.project, ".mcp-profile")))

        status = self.invoke("-s", "echod", "daemon-status")
        self.assertIn("not_running", status.output)

        noop = self.invoke("-s", "echod", "stop-daemon")
        self.assertEqual(noop.exit_code, 0)
        self.assertIn("No daemon running", noop.output)

    def test_daemon_outlives_its_config_entry(self):
        started = self.invoke("-s", "echod", "start-daemon")
        self.assertEqual(started.exit_code, 0, started.output)

        with open(self.config_file, "w") as handle:
            json.dump({}, handle)

        status = self.invoke("-s", "echod", "daemon-status")
        self.assertEqual(status.exit_code, 0, status.output)
        self.assertIn("running", status.output)

        stopped = self.invoke("-s", "echod", "stop-daemon")
        self.assertEqual(stopped.exit_code, 0, stopped.output)
        self.assertIn("Daemon stopped", stopped.output)

    def test_start_daemon_unsupported(self):
        result = self.invoke("-s", "echo", "start-daemon")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("does not support daemon mode", result.output)


if __name__ == "__main__":
    unittest.main()

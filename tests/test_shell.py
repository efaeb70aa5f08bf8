"""
Tests for the interactive shell loop.
"""

import io
import unittest
from contextlib import redirect_stderr, redirect_stdout

from mcpcli.errors import ToolError
from mcpcli.ui.shell import parse_call, run_shell


class ScriptedPrompt:
    """Feeds prepared lines, then behaves like Ctrl-D."""

    def __init__(self, lines):
        self.lines = list(lines)
        self.prompts = []

    def get_input(self, message):
        self.prompts.append(message)
        if not self.lines:
            raise EOFError
        return self.lines.pop(0)


class FakeSession:

    def __init__(self):
        self.calls = []

    def list_tools(self):
        return {"tools": [{"name": "echo", "description": "Echo text\nMore detail"}]}

    def call_tool(self, name, arguments):
        self.calls.append((name, arguments))
        if name == "fail":
            raise ToolError("boom")
        return {"content": [{"type": "text", "text": arguments.get("text", "")}]}

    def status(self):
        return {"server": "echo", "last_route": "direct"}


class TestShell(unittest.TestCase):

    def _run(self, lines):
        session = FakeSession()
        prompt = ScriptedPrompt(lines)
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            run_shell(session, "echo", input_prompt=prompt)
        return session, prompt, out.getvalue(), err.getvalue()

    def test_parse_call(self):
        self.assertEqual(parse_call("call echo"), ("echo", {}))
        self.assertEqual(parse_call('call echo {"text": "a b"}'), ("echo", {"text": "a b"}))
        for bad in ("call", "call echo {oops", "call echo [1]"):
            with self.subTest(line=bad):
                with self.assertRaises(ValueError):
                    parse_call(bad)

    def test_commands(self):
        session, prompt, out, _ = self._run([
            "help",
            "list-tools",
            'call echo {"text": "hello"}',
            "status",
        ])
        self.assertIn("call <tool> [json]", out)
        self.assertIn("echo: Echo text", out)
        self.assertNotIn("More detail", out)
        self.assertIn('"text": "hello"', out)
        self.assertIn('"last_route": "direct"', out)
        self.assertEqual(session.calls, [("echo", {"text": "hello"})])
        self.assertEqual(prompt.prompts[0], "mcp> ")

    def test_errors_do_not_end_the_loop(self):
        session, prompt, out, err = self._run([
            "call fail",
            "call echo {bad",
            "frobnicate",
            'call echo {"text": "after"}',
            "exit",
            "call echo",
        ])
        self.assertIn("Error: boom", err)
        self.assertIn("Invalid JSON", err)
        self.assertIn("Unknown command: frobnicate", out)
        # Nothing after 'exit' runs
        self.assertEqual(session.calls, [("fail", {}), ("echo", {"text": "after"})])
        self.assertEqual(prompt.lines, ["call echo"])


if __name__ == "__main__":
    unittest.main()

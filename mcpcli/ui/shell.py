"""
Interactive shell for one MCP server.

Keeps a router session open so repeated calls reuse the daemon or a single
direct server process. Provides history navigation through prompt_toolkit.
"""

import json
from typing import Any, Optional

from prompt_toolkit import prompt
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.key_binding import KeyBindings
from rich.markup import escape

from mcpcli.errors import McpCliError
from mcpcli.ui.output import console, format_json, print_error

PROMPT = "mcp> "

HELP_TEXT = """Commands:
  list-tools               List the server's tools
  call <tool> [json]       Call a tool with optional JSON arguments
  status                   Show routing and daemon status
  help                     Show this help
  exit, quit               Leave the shell"""


class ShellPrompt:
    """Line input with history and proper terminal support."""

    def __init__(self):
        self.history = InMemoryHistory()
        self.bindings = self._setup_key_bindings()

    def _setup_key_bindings(self) -> KeyBindings:
        kb = KeyBindings()

        @kb.add('c-c')  # Ctrl+C
        def _(event):
            """Handle Ctrl+C gracefully."""
            event.app.exit(exception=KeyboardInterrupt)

        return kb

    def get_input(self, message: str) -> str:
        """Get user input with history navigation (Up/Down arrows work automatically)."""
        return prompt(
            message,
            history=self.history,
            key_bindings=self.bindings,
        ).strip()


def parse_call(line: str) -> tuple:
    """
    Split ``call <tool> [json]`` into (tool, arguments).

    Raises:
        ValueError: If the tool name is missing or the JSON is invalid
    """
    rest = line[len("call"):].strip()
    if not rest:
        raise ValueError("Usage: call <tool> [json]")
    parts = rest.split(None, 1)
    tool = parts[0]
    if len(parts) == 1:
        return tool, {}
    try:
        arguments = json.loads(parts[1])
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON arguments: {e}") from e
    if not isinstance(arguments, dict):
        raise ValueError("Tool arguments must be a JSON object")
    return tool, arguments


def run_shell(session: Any, server_name: str, input_prompt: Optional[Any] = None) -> None:
    """
    Read-eval loop until exit, Ctrl-C or Ctrl-D.

    Args:
        session: Router session (``list_tools``, ``call_tool``, ``status``)
        server_name: Shown in the banner
        input_prompt: Object with ``get_input(message)`` (default: ShellPrompt)
    """
    input_prompt = input_prompt or ShellPrompt()
    console.print(f"[bold]MCP shell for '{escape(server_name)}'[/bold]. Type 'help' for commands.")

    while True:
        try:
            line = input_prompt.get_input(PROMPT)
        except (KeyboardInterrupt, EOFError):
            console.print()
            break
        if not line:
            continue

        command = line.split(None, 1)[0]
        if command in ("exit", "quit"):
            break

        try:
            if command == "help":
                console.print(HELP_TEXT, markup=False, highlight=False)
            elif command == "list-tools":
                result = session.list_tools()
                for tool in (result or {}).get("tools", []):
                    description = (tool.get("description") or "").splitlines()
                    summary = f": {description[0]}" if description else ""
                    console.print(f"  {tool.get('name')}{summary}", markup=False, highlight=False)
            elif command == "call":
                tool, arguments = parse_call(line)
                result = session.call_tool(tool, arguments)
                console.print(format_json(result), markup=False, highlight=False)
            elif command == "status":
                console.print(format_json(session.status()), markup=False, highlight=False)
            else:
                console.print(f"Unknown command: {command}. Type 'help'.", markup=False)
        except (McpCliError, ValueError) as e:
            print_error(str(e))

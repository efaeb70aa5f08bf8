"""mcp-cli: call MCP server tools directly or through a per-project daemon."""

__version__ = "1.0.0"

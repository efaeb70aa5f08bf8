#!/usr/bin/env python3
"""
Main entry point for the Typer-based mcp-cli.

This delegates to the UI layer in mcpcli.ui.cli to keep the console script
mapping stable.
"""

from mcpcli.ui.cli import run as mcp_cli


if __name__ == "__main__":
    mcp_cli()

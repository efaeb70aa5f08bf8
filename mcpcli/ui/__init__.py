"""Command line, interactive shell and terminal output."""

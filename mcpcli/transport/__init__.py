"""Transports to an MCP server: line framing, message channel, stdio subprocess."""

from mcpcli.transport.channel import MessageChannel
from mcpcli.transport.stdio import SubprocessTransport, build_command

__all__ = [
    "MessageChannel",
    "SubprocessTransport",
    "build_command",
]

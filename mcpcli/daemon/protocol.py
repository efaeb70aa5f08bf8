"""JSON-RPC protocol for daemon IPC.

Clients speak plain MCP JSON-RPC to the daemon socket, one request line and
one response line per connection:

    -> {"jsonrpc": "2.0", "id": 7, "method": "tools/call", "params": {...}}
    <- {"jsonrpc": "2.0", "id": 7, "result": {...}}

The daemon forwards the request to its server unchanged except for the id,
which it maps to the server-side id and back. Two additions:

Status probe (answered without touching the server):
    -> {"jsonrpc": "2.0", "id": 1, "method": "daemon/status", "params": {}}
    <- {"jsonrpc": "2.0", "id": 1, "result": {"running": true, "pid": 4242, ...}}

Daemon-originated errors carry ``data.origin == "mcp-cli-daemon"`` so a
client can tell them apart from errors relayed from the server:
    <- {"jsonrpc": "2.0", "id": 7,
        "error": {"code": -32001, "message": "...", "data": {"origin": "mcp-cli-daemon"}}}
"""

from typing import Any, Dict, Optional

from mcpcli.transport.protocol import JSONRPC_VERSION, make_error, make_request

STATUS_METHOD = "daemon/status"
DAEMON_ORIGIN = "mcp-cli-daemon"

# Implementation-defined JSON-RPC server error range (-32000 to -32099)
DAEMON_UNHEALTHY = -32001


def make_status_request(request_id: Any = 0) -> Dict[str, Any]:
    return make_request(request_id, STATUS_METHOD, {})


def make_daemon_error(
    request_id: Any,
    code: int,
    message: str,
    **extra: Any,
) -> Dict[str, Any]:
    """Error envelope tagged as coming from the daemon itself."""
    data = {"origin": DAEMON_ORIGIN}
    data.update(extra)
    return make_error(request_id, code, message, data)


def daemon_error_code(envelope: Dict[str, Any]) -> Optional[int]:
    """
    Code of a daemon-originated error, or None.

    Errors relayed from the MCP server return None even when the server
    happens to use a code in the same range.
    """
    error = envelope.get("error")
    if not isinstance(error, dict):
        return None
    data = error.get("data")
    if isinstance(data, dict) and data.get("origin") == DAEMON_ORIGIN:
        return error.get("code")
    return None


def relay_response(envelope: Dict[str, Any], client_id: Any) -> Dict[str, Any]:
    """Server response re-addressed to the client's request id."""
    response = dict(envelope)
    response["id"] = client_id
    response.setdefault("jsonrpc", JSONRPC_VERSION)
    return response

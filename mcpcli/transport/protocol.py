"""JSON-RPC 2.0 envelopes and line framing for MCP stdio.

MCP over stdio exchanges one JSON object per line:

    {"jsonrpc": "2.0", "id": 1, "method": "tools/list", "params": {}}
    {"jsonrpc": "2.0", "id": 1, "result": {"tools": [...]}}
    {"jsonrpc": "2.0", "method": "notifications/initialized", "params": {}}

``json.dumps`` escapes control characters inside strings, so a serialized
message never contains a raw newline and the newline is a safe delimiter.
The same framing is used on the daemon socket.
"""

import json
from typing import Any, Dict, Optional

from mcpcli.errors import RemoteError, TransportError

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2025-06-18"
CLIENT_INFO = {"name": "mcp-cli", "version": "1.0.0"}

# 1 MiB per daemon request
MAX_MESSAGE_SIZE = 1024 * 1024

# Seconds to wait for the initialize response
HANDSHAKE_TIMEOUT = 30.0

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601


def make_request(request_id: Any, method: str, params: Optional[Any] = None) -> Dict[str, Any]:
    """Build a request envelope. ``params`` is passed through untouched."""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "method": method,
        "params": {} if params is None else params,
    }


def make_notification(method: str, params: Optional[Any] = None) -> Dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "method": method,
        "params": {} if params is None else params,
    }


def make_result(request_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def make_error(
    request_id: Any,
    code: int,
    message: str,
    data: Optional[Any] = None,
) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


def is_response(message: Dict[str, Any]) -> bool:
    return "method" not in message and ("result" in message or "error" in message)


def is_notification(message: Dict[str, Any]) -> bool:
    return "method" in message and "id" not in message


def is_request(message: Dict[str, Any]) -> bool:
    return "method" in message and "id" in message


def encode_message(message: Dict[str, Any]) -> bytes:
    """
    Serialize one message to a newline-terminated UTF-8 line.

    Raises:
        TransportError: If the message is not JSON-serializable
    """
    try:
        text = json.dumps(message, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise TransportError("Message is not JSON-serializable", cause=e) from e
    return text.encode("utf-8") + b"\n"


def decode_message(line: bytes) -> Dict[str, Any]:
    """
    Parse one framed line into a message object.

    Raises:
        TransportError: If the line is not valid UTF-8 JSON or not an object
    """
    try:
        message = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise TransportError("Malformed JSON-RPC message", cause=e) from e
    if not isinstance(message, dict):
        raise TransportError(
            f"Expected a JSON object, got {type(message).__name__}"
        )
    return message


def result_or_raise(
    envelope: Dict[str, Any],
    server_name: Optional[str] = None,
    project_dir: Optional[str] = None,
) -> Any:
    """
    Return the ``result`` of a response envelope.

    Raises:
        RemoteError: If the envelope carries a JSON-RPC ``error``
    """
    error = envelope.get("error")
    if error is not None:
        if isinstance(error, dict):
            message = str(error.get("message", "Unknown error"))
            code = error.get("code")
            data = error.get("data")
        else:
            message, code, data = str(error), None, None
        raise RemoteError(
            f"MCP error: {message}",
            code=code,
            data=data,
            server_name=server_name,
            project_dir=project_dir,
        )
    return envelope.get("result")

"""Minimal line-delimited MCP server used by the process-level tests.

Tools:
    echo        {"text": str}                   -> text
    slow_echo   {"text": str, "delay": float}   -> text after a delay
    fail        {}                              -> result flagged isError
    crash       {}                              -> process exits without answering
    whoami      {}                              -> JSON with pid, cwd, args, env marker
    ping_client {}                              -> pings the client before answering
    big         {"size": int}                   -> text of "size" bytes

Environment switches:
    ECHO_FAIL_INIT=1   answer initialize with an error
    ECHO_HANG_INIT=1   never answer initialize
    ECHO_PID_FILE=PATH write this process's pid to PATH at startup
"""

import json
import os
import sys
import time

TOOLS = [
    {"name": "echo", "description": "Echo the given text", "inputSchema": {"type": "object"}},
    {"name": "slow_echo", "description": "Echo after a delay", "inputSchema": {"type": "object"}},
    {"name": "fail", "description": "Always fails", "inputSchema": {"type": "object"}},
    {"name": "crash", "description": "Exit immediately", "inputSchema": {"type": "object"}},
    {"name": "whoami", "description": "Describe this process", "inputSchema": {"type": "object"}},
    {"name": "ping_client", "description": "Ping the client first", "inputSchema": {"type": "object"}},
    {"name": "big", "description": "Return a large text result", "inputSchema": {"type": "object"}},
]


def send(message):
    sys.stdout.write(json.dumps(message) + "\n")
    sys.stdout.flush()


def text_result(text, is_error=False):
    result = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["isError"] = True
    return result


def call_tool(request_id, params):
    name = params.get("name")
    arguments = params.get("arguments") or {}

    send({"jsonrpc": "2.0", "method": "notifications/message",
          "params": {"level": "info", "data": f"calling {name}"}})

    if name == "echo":
        return text_result(str(arguments.get("text", "")))
    if name == "slow_echo":
        time.sleep(float(arguments.get("delay", 0.2)))
        return text_result(str(arguments.get("text", "")))
    if name == "fail":
        return text_result("boom", is_error=True)
    if name == "crash":
        os._exit(3)
    if name == "whoami":
        return text_result(json.dumps({
            "pid": os.getpid(),
            "cwd": os.getcwd(),
            "args": sys.argv[1:],
            "marker": os.environ.get("ECHO_MARKER"),
        }))
    if name == "ping_client":
        send({"jsonrpc": "2.0", "id": "srv-ping", "method": "ping"})
        reply = json.loads(sys.stdin.readline())
        ok = reply.get("id") == "srv-ping" and reply.get("result") == {}
        return text_result("pong" if ok else "bad ping reply")
    if name == "big":
        return text_result("x" * int(arguments.get("size", 0)))
    return None


def main():
    pid_file = os.environ.get("ECHO_PID_FILE")
    if pid_file:
        with open(pid_file, "w") as f:
            f.write(str(os.getpid()))

    for line in sys.stdin:
        if not line.strip():
            continue
        message = json.loads(line)
        if "id" not in message:
            continue
        request_id = message["id"]
        method = message.get("method")
        params = message.get("params") or {}

        if method == "initialize":
            if os.environ.get("ECHO_HANG_INIT") == "1":
                time.sleep(3600)
            if os.environ.get("ECHO_FAIL_INIT") == "1":
                send({"jsonrpc": "2.0", "id": request_id,
                      "error": {"code": -32603, "message": "init refused"}})
                continue
            send({"jsonrpc": "2.0", "id": request_id, "result": {
                "protocolVersion": params.get("protocolVersion"),
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "echo-server", "version": "0.1.0"},
            }})
        elif method == "tools/list":
            send({"jsonrpc": "2.0", "id": request_id, "result": {"tools": TOOLS}})
        elif method == "tools/call":
            result = call_tool(request_id, params)
            if result is None:
                send({"jsonrpc": "2.0", "id": request_id,
                      "error": {"code": -32602, "message": f"Unknown tool: {params.get('name')}"}})
            else:
                send({"jsonrpc": "2.0", "id": request_id, "result": result})
        else:
            send({"jsonrpc": "2.0", "id": request_id,
                  "error": {"code": -32601, "message": f"Method not found: {method}"}})


if __name__ == "__main__":
    main()

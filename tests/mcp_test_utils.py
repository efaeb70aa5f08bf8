"""Shared helpers for the test suite."""

import json
import shutil
import sys
import tempfile
import time
from pathlib import Path

from mcpcli.core.configs import ServerProfile

ECHO_SERVER = Path(__file__).resolve().parent / "support" / "echo_server.py"


def echo_profile(supports_daemon=True, default_args=(), env=None):
    """Profile that runs the bundled echo server with this interpreter."""
    return ServerProfile(
        command=(sys.executable, "-u", str(ECHO_SERVER)),
        default_args=tuple(default_args),
        supports_daemon=supports_daemon,
        description="Echo test server",
        env=env or {},
    )


def short_tempdir(prefix="mcp-"):
    """Temp dir under /tmp so Unix socket paths stay short."""
    return tempfile.mkdtemp(prefix=prefix, dir="/tmp")


def remove_tree(path):
    shutil.rmtree(path, ignore_errors=True)


def text_of(result):
    """Text of the first content item of a tool result."""
    return result["content"][0]["text"]


def whoami(result):
    return json.loads(text_of(result))


def wait_until(predicate, timeout=10.0, interval=0.05):
    """Poll until ``predicate()`` is truthy; return its last value."""
    deadline = time.monotonic() + timeout
    value = predicate()
    while not value and time.monotonic() < deadline:
        time.sleep(interval)
        value = predicate()
    return value

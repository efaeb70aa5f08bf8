"""Template variables in server argument lists.

Supported variables:
- {profile_dir}: .mcp-profile/<server-name> (sanitized)
- {pid}: process id of the process doing the expansion
- {cwd}: current working directory

Server names are sanitized before they reach a path so a name like
"../../etc" cannot escape the profile directory.
"""

import os
from pathlib import Path
from typing import List, Optional, Sequence, Union

from mcpcli.core.configs import ServerProfile

PROFILE_DIRNAME = ".mcp-profile"


def sanitize_server_name(name: str) -> str:
    """Keep only alphanumerics, hyphens and underscores."""
    return "".join(c for c in name if c.isalnum() or c in "-_")


def expand_template_vars(
    arg: str,
    server_name: str,
    cwd: Optional[Union[str, Path]] = None,
    pid: Optional[int] = None,
) -> str:
    profile_dir = str(Path(PROFILE_DIRNAME) / sanitize_server_name(server_name))
    return (
        arg.replace("{profile_dir}", profile_dir)
        .replace("{pid}", str(pid if pid is not None else os.getpid()))
        .replace("{cwd}", str(cwd if cwd is not None else Path.cwd()))
    )


def resolve_server_args(
    profile: ServerProfile,
    server_name: str,
    override: Optional[Sequence[str]] = None,
    cwd: Optional[Union[str, Path]] = None,
) -> List[str]:
    """
    The argument list a server should be launched with, fully expanded.

    ``override`` (even an empty list) replaces ``profile.default_args``.
    """
    args = profile.default_args if override is None else override
    return [expand_template_vars(arg, server_name, cwd=cwd) for arg in args]

"""Foreground process detection for terminal sessions.

The terminal runs a shell (or a REPL directly). What matters for sending
is the process the user is actually talking to: the first child of the
session process when there is one, otherwise the session process itself.
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)

_PS_TIMEOUT = 2.0

# Process names that identify an IPython-style REPL with %cpaste support
PASTE_CAPABLE_NAMES = frozenset({"ipython", "ipython3", "jupyter-console", "jupyter"})


def _run(argv: list[str]) -> str:
    """Run a process-table query and return its stripped stdout ("" on failure)."""
    try:
        result = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=_PS_TIMEOUT,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("Process query %s failed: %s", argv[0], e)
        return ""
    return result.stdout.strip()


def first_child_pid(pid: int) -> int | None:
    """Return the first child of ``pid`` (lowest pid from ``pgrep -P``)."""
    out = _run(["pgrep", "-P", str(pid)])
    for token in out.split():
        if token.isdigit():
            return int(token)
    return None


def process_name(pid: int) -> str | None:
    """Return the image name (``comm``) of ``pid``, or None if it is gone."""
    name = _run(["ps", "-o", "comm=", "-p", str(pid)])
    return name or None


def foreground_process_name(pid: int) -> str | None:
    """Name of the process the terminal is talking to.

    Walks the tree one level: the first child of ``pid`` if any, falling
    back to ``pid`` itself.
    """
    if pid <= 0:
        return None
    child = first_child_pid(pid)
    if child is not None:
        name = process_name(child)
        if name:
            return name
    return process_name(pid)


def basename(name: str) -> str:
    """Final path component of a process name, minus a login-shell dash."""
    return os.path.basename(name.strip()).lstrip("-")


def is_shell_name(name: str | None, shell_names: list[str] | tuple[str, ...]) -> bool:
    """True if ``name`` is one of the plain system shells."""
    if not name:
        return False
    return basename(name) in shell_names


def is_paste_capable_name(name: str | None) -> bool:
    """True if ``name`` looks like an IPython-style REPL."""
    if not name:
        return False
    return basename(name).lower() in PASTE_CAPABLE_NAMES

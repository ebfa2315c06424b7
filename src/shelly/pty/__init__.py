"""PTY session management — the one interactive subprocess.

The REPL runs in a pseudo-terminal with its own process group. Its output
is buffered line by line with absolute line numbers, so callers can mark
a watermark and later read only what came after it.
"""

from shelly.pty.buffer import RollingBuffer
from shelly.pty.session import Geometry, Session, SessionMode, SessionStatus

__all__ = [
    "Geometry",
    "RollingBuffer",
    "Session",
    "SessionMode",
    "SessionStatus",
]

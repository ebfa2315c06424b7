"""Rolling output buffer for terminal sessions."""

from __future__ import annotations

import threading
from collections import deque


class RollingBuffer:
    """Thread-safe rolling buffer of terminal output lines.

    Lines keep their absolute index for the life of the buffer: once old
    lines are evicted past ``max_lines``, ``read(offset)`` still takes the
    index a line had when it was written. This is what makes line-count
    watermarks stable.

    The last line is the *in-progress* line: output that has not seen a
    newline yet (typically a prompt). PTY reads split text at arbitrary
    points, so ``append_text`` extends that line before starting new ones.
    """

    def __init__(self, max_lines: int = 50_000) -> None:
        self._lines: deque[str] = deque(maxlen=max_lines)
        self._dropped: int = 0  # Lines evicted from the left
        self._lock = threading.Lock()

    def _push(self, line: str) -> None:
        if self._lines.maxlen is not None and len(self._lines) == self._lines.maxlen:
            self._dropped += 1
        self._lines.append(line)

    def append_text(self, text: str) -> None:
        """Append raw terminal text.

        The first fragment extends the in-progress line; every newline
        completes a line (trailing carriage returns removed) and opens a
        new, possibly empty, in-progress line.
        """
        if not text:
            return
        pieces = text.split("\n")
        with self._lock:
            if self._lines:
                self._lines[-1] += pieces[0]
            else:
                self._push(pieces[0])
            for piece in pieces[1:]:
                self._lines[-1] = self._lines[-1].rstrip("\r")
                self._push(piece)

    def append(self, line: str) -> None:
        """Append one complete line."""
        self.append_text(line + "\n")

    def read(self, offset: int = 0, limit: int | None = None) -> list[str]:
        """Read lines starting at an absolute line index.

        Offsets that fall before the retained window start at the oldest
        retained line.
        """
        with self._lock:
            lines = list(self._lines)
            first = self._dropped
        start = min(max(offset - first, 0), len(lines))
        end = len(lines) if limit is None else min(start + limit, len(lines))
        return lines[start:end]

    def read_tail(self, n: int = 100) -> list[str]:
        """Read the last N lines."""
        with self._lock:
            lines = list(self._lines)
        return lines[-n:] if len(lines) > n else lines

    def watermark_index(self) -> int:
        """Line count stepped back past trailing whitespace-only lines.

        Output that later fills those blank lines (the in-progress line,
        or blank rows a REPL printed ahead of time) is then read as new.
        """
        with self._lock:
            index = self._dropped + len(self._lines)
            for line in reversed(self._lines):
                if line.strip():
                    break
                index -= 1
        return index

    @property
    def line_count(self) -> int:
        """Absolute number of lines, including the in-progress line."""
        with self._lock:
            return self._dropped + len(self._lines)

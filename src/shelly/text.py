"""Terminal text scrubbing — escape sequences and control bytes."""

from __future__ import annotations

import re

# CSI (incl. private "?"/">" params), OSC (BEL or ST terminated), charset
# designation, then any other two-byte ESC sequence.
_ANSI_RE = re.compile(
    r"""
    \x1b\[[0-?]*[ -/]*[@-~]
    | \x1b\][^\x07\x1b]*(?:\x07|\x1b\\)
    | \x1b[()*+][A-Za-z0-9]
    | \x1b[@-Z\\-_=>]
    """,
    re.VERBOSE,
)


def strip_ansi(text: str) -> str:
    """Strip ANSI escape sequences from text."""
    return _ANSI_RE.sub("", text)


def apply_carriage_returns(line: str) -> str:
    """Resolve in-line carriage returns the way a terminal displays them.

    Text after the last non-trailing ``\\r`` overwrites the start of the
    line; whatever is left over to the right stays visible.
    """
    line = line.rstrip("\r")
    if "\r" not in line:
        return line
    shown = ""
    for segment in line.split("\r"):
        shown = segment + shown[len(segment):]
    return shown


def sanitize_binary_output(text: str) -> str:
    """Remove binary garbage from output.

    Keeps printable chars, tabs, newlines, and carriage returns.
    Strips everything else (control chars, undefined code points, format chars).
    """
    cleaned = []
    for ch in text:
        cp = ord(ch)
        if ch in ("\t", "\n", "\r"):
            cleaned.append(ch)
        elif cp >= 32 and cp not in range(0x7F, 0xA0):
            if cp not in range(0xFFF9, 0xFFFC):
                cleaned.append(ch)
    return "".join(cleaned)


def clean_line(line: str) -> str:
    """Escape sequences, carriage-return overwrites and control bytes removed."""
    return sanitize_binary_output(apply_carriage_returns(strip_ansi(line)))

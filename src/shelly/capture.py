"""Output capture — recover the real output a send produced.

A capture pass reads the session output written since a watermark and
reduces it, one pure step at a time, to the lines the REPL actually
printed:

1. read lines since the watermark
2. strip escape sequences and control bytes
3. remove the echo of the lines that were sent
4. remove prompt and paste-mode control lines
5. drop trailing blank lines

A non-empty result replaces the sink's content. An empty one leaves the
sink alone, so a failed capture never clobbers a good one.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterable, Protocol, Sequence

import pyperclip

from shelly.errors import NoActiveSession
from shelly.text import clean_line

if TYPE_CHECKING:
    from shelly.pty.session import Session
    from shelly.wire import Wire

logger = logging.getLogger(__name__)


# Prompt and control lines dropped from captured output
DEFAULT_PROMPT_PATTERNS: tuple[str, ...] = (
    r"^\s*In \[\d+\]:.*$",  # IPython numbered input prompt
    r"^\s*\.\.\.:.*$",  # IPython continuation
    r"^\.\.\.( .*)?$",  # Python continuation
    r"^>>>( .*)?$",  # Python prompt, bare or with echoed code
    r"^>\s*$",  # generic prompt
    r"^:+\s*$",  # bare colon prompt(s) (%cpaste body)
    r"^%cpaste\b.*$",  # paste-mode entry
    r"^--\s*$",  # paste-mode terminator
    r"^Pasting code; enter '--' alone on the line to stop",
    r"^\s*<EOF>\s*$",  # paste-mode exit via Ctrl-D
)


@dataclass(frozen=True)
class PromptRules:
    """Patterns that classify a captured line as prompt/control noise.

    Patterns are searched (not anchored implicitly); anchor them with
    ``^``/``$`` where needed.
    """

    patterns: tuple[str, ...] = DEFAULT_PROMPT_PATTERNS
    _compiled: tuple[re.Pattern, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "_compiled", tuple(re.compile(p) for p in self.patterns)
        )

    def extend(self, patterns: Iterable[str]) -> PromptRules:
        """Return new rules with ``patterns`` appended."""
        return PromptRules(patterns=(*self.patterns, *patterns))

    def matches(self, line: str) -> bool:
        return any(p.search(line) for p in self._compiled)


DEFAULT_PROMPT_RULES = PromptRules()


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class Sink(Protocol):
    """Destination for cleaned capture output."""

    def set(self, lines: list[str]) -> None: ...


class RegisterSink:
    """Named in-memory registers, like an editor's yank registers."""

    def __init__(self, name: str = "+", registers: dict[str, list[str]] | None = None) -> None:
        self.name = name
        self.registers: dict[str, list[str]] = registers if registers is not None else {}

    def set(self, lines: list[str]) -> None:
        self.registers[self.name] = list(lines)

    def get(self, name: str | None = None) -> list[str] | None:
        return self.registers.get(name or self.name)

    @property
    def text(self) -> str:
        return "\n".join(self.get() or [])


class ClipboardSink:
    """System clipboard via pyperclip."""

    def set(self, lines: list[str]) -> None:
        pyperclip.copy("\n".join(lines))


class CallbackSink:
    """Hands captured lines to a host callback."""

    def __init__(self, callback: Callable[[list[str]], None]) -> None:
        self._callback = callback

    def set(self, lines: list[str]) -> None:
        self._callback(list(lines))


# ---------------------------------------------------------------------------
# Pipeline steps
# ---------------------------------------------------------------------------


def clean_lines(lines: Sequence[str]) -> list[str]:
    """Strip escape sequences and control bytes from every line."""
    return [clean_line(line) for line in lines]


def remove_echo(lines: Sequence[str], sent_lines: Sequence[str]) -> list[str]:
    """Remove the terminal's echo of ``sent_lines``.

    Each sent line removes its first exact match at or after the position
    of the previous removal; the scan never goes back. A sent line with no
    exact match (e.g. wrapped by the terminal) removes nothing and stays
    in the output.
    """
    remaining = list(lines)
    cursor = 0
    for sent in sent_lines:
        for i in range(cursor, len(remaining)):
            if remaining[i] == sent:
                del remaining[i]
                cursor = i
                break
    return remaining


def remove_prompts(lines: Sequence[str], rules: PromptRules = DEFAULT_PROMPT_RULES) -> list[str]:
    """Drop every line matching a prompt/control pattern."""
    return [line for line in lines if not rules.matches(line)]


def strip_trailing_blank(lines: Sequence[str]) -> list[str]:
    """Drop whitespace-only lines from the end."""
    end = len(lines)
    while end > 0 and not lines[end - 1].strip():
        end -= 1
    return list(lines[:end])


def scrub(
    raw_lines: Sequence[str],
    sent_lines: Sequence[str],
    rules: PromptRules = DEFAULT_PROMPT_RULES,
) -> list[str]:
    """Steps 2-5 of a capture pass over already-read raw lines."""
    lines = clean_lines(raw_lines)
    lines = remove_echo(lines, sent_lines)
    lines = remove_prompts(lines, rules)
    return strip_trailing_blank(lines)


# ---------------------------------------------------------------------------
# Capture pass
# ---------------------------------------------------------------------------


@dataclass
class CaptureResult:
    """Cleaned output of one capture pass."""

    lines: list[str] = field(default_factory=list)
    start: int = 0  # First absolute output line read
    end: int = 0  # Session watermark after the pass

    @property
    def empty(self) -> bool:
        return not self.lines

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


def capture(
    session: Session | None,
    watermark_before: int,
    sent_lines: Sequence[str],
    *,
    rules: PromptRules = DEFAULT_PROMPT_RULES,
    sink: Sink | None = None,
    wire: Wire | None = None,
) -> CaptureResult:
    """Read and clean the output produced since ``watermark_before``.

    Reading starts at the later of ``watermark_before`` and the session's
    own watermark, which this pass then advances. A second pass with no
    new output in between therefore comes back empty.

    Raises:
        NoActiveSession: ``session`` is missing or no longer alive.
    """
    if session is None or not session.alive:
        raise NoActiveSession()

    start = max(watermark_before, session.watermark)
    end = session.buffer.watermark_index()
    raw = session.buffer.read(start, limit=max(end - start, 0))
    session.watermark = max(session.watermark, end)

    lines = scrub(raw, sent_lines, rules)
    result = CaptureResult(lines=lines, start=start, end=session.watermark)
    logger.debug(
        "Session %s capture: %d raw lines from %d -> %d clean",
        session.id,
        len(raw),
        start,
        len(lines),
    )

    if result.empty:
        return result

    if sink is not None:
        sink.set(result.lines)
    if wire is not None:
        wire.send_capture(session.id, result.lines)
    return result

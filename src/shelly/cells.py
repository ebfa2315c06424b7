"""Cell and range extraction from source text.

Positions follow editor conventions: line numbers are 1-based, column
offsets are 0-based and inclusive.
"""

from __future__ import annotations

import enum
import os
import re
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Sequence

from shelly.errors import EmptyCell

# Cell boundary markers
DEFAULT_DELIMITER_PATTERNS: tuple[str, ...] = (
    r"^\s*(#|--)\s*%%",  # "# %%" (Python), "-- %%" (Lua/SQL)
    r"^\s*In ?\[\d+\]",  # numbered interactive input marker
    r"^```",  # fenced block
)


@dataclass(frozen=True)
class DelimiterRule:
    """Immutable set of patterns that mark a line as a cell boundary."""

    patterns: tuple[str, ...] = DEFAULT_DELIMITER_PATTERNS
    _compiled: tuple[re.Pattern, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "_compiled", tuple(re.compile(p) for p in self.patterns)
        )

    def extend(self, patterns: Iterable[str]) -> DelimiterRule:
        return DelimiterRule(patterns=(*self.patterns, *patterns))

    def is_delimiter(self, line: str) -> bool:
        return any(p.search(line) for p in self._compiled)


DEFAULT_DELIMITER_RULE = DelimiterRule()


class RangeUnit(enum.StrEnum):
    LINE = "line"
    CHAR = "char"
    BLOCK = "block"


@dataclass
class Cell:
    """One executable span of source lines."""

    text: str
    start: int  # First content line (after trimming)
    end: int  # Last content line (after trimming)
    next_cell_start: int | None = None  # Line of the following delimiter

    @property
    def lines(self) -> list[str]:
        return self.text.split("\n")


def _is_blank(line: str) -> bool:
    return not line.strip()


def extract_cell(
    lines: Sequence[str],
    cursor_line: int,
    rule: DelimiterRule = DEFAULT_DELIMITER_RULE,
) -> Cell:
    """Extract the cell containing ``cursor_line``.

    The cell starts after the nearest delimiter at or above the cursor
    and ends before the next delimiter below it. Blank lines at either
    end are dropped.

    Raises:
        EmptyCell: the cell has no non-blank lines.
        ValueError: ``cursor_line`` is outside ``lines``.
    """
    total = len(lines)
    if not 1 <= cursor_line <= total:
        raise ValueError(f"Cursor line {cursor_line} outside 1..{total}")

    cell_start = 1
    for i in range(cursor_line, 0, -1):
        if rule.is_delimiter(lines[i - 1]):
            cell_start = i + 1
            break

    cell_end = total
    next_cell_start = None
    for i in range(cursor_line + 1, total + 1):
        if rule.is_delimiter(lines[i - 1]):
            cell_end = i - 1
            next_cell_start = i
            break

    while cell_start <= cell_end and _is_blank(lines[cell_start - 1]):
        cell_start += 1
    while cell_end >= cell_start and _is_blank(lines[cell_end - 1]):
        cell_end -= 1

    if cell_start > cell_end:
        raise EmptyCell(cursor_line)

    return Cell(
        text="\n".join(lines[cell_start - 1 : cell_end]),
        start=cell_start,
        end=cell_end,
        next_cell_start=next_cell_start,
    )


def iter_cells(
    lines: Sequence[str],
    rule: DelimiterRule = DEFAULT_DELIMITER_RULE,
) -> Iterator[Cell]:
    """Yield every non-empty cell in order."""
    line = 1
    while line <= len(lines):
        if rule.is_delimiter(lines[line - 1]):
            line += 1
            continue
        try:
            cell = extract_cell(lines, line, rule)
        except EmptyCell:
            cell = None
        if cell is not None:
            yield cell
        nxt = _next_delimiter(lines, line, rule)
        if nxt is None:
            break
        line = nxt + 1


def _next_delimiter(lines: Sequence[str], after: int, rule: DelimiterRule) -> int | None:
    for i in range(after + 1, len(lines) + 1):
        if rule.is_delimiter(lines[i - 1]):
            return i
    return None


def extract_range(
    lines: Sequence[str],
    start: tuple[int, int],
    end: tuple[int, int],
    unit: RangeUnit | str = RangeUnit.LINE,
) -> str | None:
    """Text between two ``(line, column)`` positions.

    ``LINE`` joins whole lines; ``CHAR`` cuts the first line from the
    start column and the last line through the end column. Returns None
    when the range covers no lines.

    Raises:
        ValueError: ``unit`` is ``BLOCK`` (not supported).
    """
    unit = RangeUnit(unit)
    if unit is RangeUnit.BLOCK:
        raise ValueError("Block selection not supported")

    start_line, start_col = start
    end_line, end_col = end
    selected = list(lines[max(start_line, 1) - 1 : end_line])
    if not selected:
        return None

    if unit is RangeUnit.LINE:
        return "\n".join(selected)

    if len(selected) == 1:
        selected[0] = selected[0][start_col : end_col + 1]
    else:
        selected[0] = selected[0][start_col:]
        selected[-1] = selected[-1][: end_col + 1]
    return "\n".join(selected)


# ---------------------------------------------------------------------------
# Filename placeholders
# ---------------------------------------------------------------------------

# A lone "%" (not "%%" or an IPython magic like "%timeit")
_PLACEHOLDER_RE = re.compile(r"(?<!%)(\\?)%((?::[phtre])*)(?![\w%])")


def _apply_modifiers(path: str, modifiers: str) -> str:
    for mod in modifiers.split(":")[1:]:
        if mod == "p":
            path = os.path.abspath(path)
        elif mod == "h":
            path = os.path.dirname(path) or "."
        elif mod == "t":
            path = os.path.basename(path)
        elif mod == "r":
            path = os.path.splitext(path)[0]
        elif mod == "e":
            path = os.path.splitext(path)[1].lstrip(".")
    return path


def expand_file_placeholders(text: str, current_file: str) -> str:
    """Expand ``%`` to the current file name.

    Filename modifiers ``:p`` (absolute), ``:h`` (head), ``:t`` (tail),
    ``:r`` (root) and ``:e`` (extension) may follow, e.g. ``%:p:h``.
    ``\\%`` produces a literal ``%``. IPython magics (``%timeit``,
    ``%%time``) are left alone. Nothing is expanded when there is no
    current file.
    """
    if not current_file:
        return text

    def _sub(m: re.Match) -> str:
        if m.group(1):
            return "%" + m.group(2)
        return _apply_modifiers(current_file, m.group(2))

    return _PLACEHOLDER_RE.sub(_sub, text)

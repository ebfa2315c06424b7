"""Shelly — one persistent terminal session and the ways to send into it.

This is the surface a host (editor bridge, CLI) wires to its own
commands and keys. It owns the single session: opening a new one closes
the old one, and any send without a live session opens one first.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Sequence

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_delay, wait_fixed

from shelly.capture import DEFAULT_PROMPT_RULES, ClipboardSink, RegisterSink, Sink
from shelly.cells import (
    DEFAULT_DELIMITER_RULE,
    Cell,
    RangeUnit,
    expand_file_placeholders,
    extract_cell,
    extract_range,
)
from shelly.config import CaptureConfig, ShellyConfig
from shelly.errors import EmptyCell, ShellyError
from shelly.pty.session import Geometry, Session
from shelly.send import SendAck, send
from shelly.text import clean_line
from shelly.wire import Wire

logger = logging.getLogger(__name__)

# Last output line of a terminal waiting for input: REPL or shell prompt
_READY_RE = re.compile(r"(In \[\d+\]:|>>>|[$#%>:])\s*$")


class _NotReady(Exception):
    pass


async def wait_until_ready(session: Session, timeout: float = 5.0, interval: float = 0.05) -> bool:
    """Wait until the session's last output line looks like a prompt.

    Returns False on timeout or if the session dies; a program without a
    recognisable prompt is not an error.
    """
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(interval),
            retry=retry_if_exception_type(_NotReady),
            reraise=True,
        ):
            with attempt:
                if not session.alive:
                    return False
                tail = session.buffer.read_tail(1)
                if not tail or not _READY_RE.search(clean_line(tail[-1])):
                    raise _NotReady()
    except _NotReady:
        logger.debug("Session %s: no prompt after %.1fs", session.id, timeout)
        return False
    return True


def make_sink(config: CaptureConfig) -> Sink:
    if config.sink == "clipboard":
        return ClipboardSink()
    return RegisterSink(config.register_name)


@dataclass
class SentCell:
    """A cell that was sent, with the line the host should move to."""

    cell: Cell
    ack: SendAck

    @property
    def next_cell_start(self) -> int | None:
        return self.cell.next_cell_start


class Shelly:
    """Single-session terminal manager.

    All errors except ``EmptyCell`` propagate to the caller and are also
    reported on the wire. Empty cells and unsupported selections are
    warnings: logged, put on the wire, and the send returns None.
    """

    def __init__(
        self,
        config: ShellyConfig | None = None,
        wire: Wire | None = None,
        sink: Sink | None = None,
    ) -> None:
        self.config = config or ShellyConfig()
        self.wire = wire or Wire()
        self.sink = sink or make_sink(self.config.capture)
        self.prompt_rules = DEFAULT_PROMPT_RULES.extend(
            self.config.capture.extra_prompt_patterns
        )
        self.delimiters = DEFAULT_DELIMITER_RULE.extend(
            self.config.cells.extra_delimiter_patterns
        )
        self._session: Session | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def is_live(self) -> bool:
        return self._session is not None and self._session.alive

    async def open(self, wait_ready: bool = True) -> Session:
        """Return the live session, spawning one if there is none.

        Raises:
            SpawnFailed: the configured command could not be started.
        """
        if self._session is not None and self._session.alive:
            return self._session
        self.close()

        term = self.config.terminal
        try:
            session = await Session.open(
                term.command,
                cwd=term.cwd,
                env=term.env,
                geometry=Geometry(rows=term.rows, cols=term.cols),
                max_lines=term.max_lines,
            )
        except ShellyError as e:
            self.wire.send_error(str(e))
            raise

        self._session = session
        session.on_close(self._on_session_closed)
        self.wire.send_session_open(session.id, session.command, session.pid)
        if wait_ready:
            await wait_until_ready(session, timeout=term.startup_timeout)
        return session

    def _on_session_closed(self, session: Session) -> None:
        if self._session is session:
            self._session = None
        self.wire.send_session_close(session.id)

    def close(self) -> None:
        """Close the session if there is one. Safe to call repeatedly."""
        session, self._session = self._session, None
        if session is not None:
            session.close()

    async def toggle(self) -> Session | None:
        """Open the session if it is not live, otherwise close it."""
        if self.is_live:
            self.close()
            return None
        return await self.open()

    def notify_surface_closed(self) -> None:
        """Host hook: the surface showing the terminal was destroyed."""
        self.close()

    def resize(self, rows: int, cols: int) -> None:
        """Host hook: the terminal surface changed size."""
        self.config.terminal.rows = rows
        self.config.terminal.cols = cols
        if self._session is not None:
            self._session.resize(rows, cols)

    async def shutdown(self) -> None:
        self.close()
        self.wire.close()

    async def __aenter__(self) -> Shelly:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def _send(self, payload: str | Sequence[str], source: Any = None) -> SendAck:
        session = await self.open()
        try:
            return await send(
                session,
                payload,
                source=source,
                config=self.config.send,
                rules=self.prompt_rules,
                sink=self.sink,
                wire=self.wire,
            )
        except ShellyError as e:
            self.wire.send_error(str(e))
            raise

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.wire.send_warning(message)

    async def send_text(
        self, text: str, current_file: str = "", source: Any = None
    ) -> SendAck:
        """Send arbitrary text; ``%`` expands to ``current_file``."""
        return await self._send(expand_file_placeholders(text, current_file), source)

    async def send_line(
        self, lines: Sequence[str], line: int, source: Any = None
    ) -> SendAck:
        """Send line number ``line`` (1-based) of ``lines``."""
        if not 1 <= line <= len(lines):
            raise ValueError(f"Line {line} outside 1..{len(lines)}")
        return await self._send(lines[line - 1], source)

    async def send_cell(
        self, lines: Sequence[str], cursor_line: int, source: Any = None
    ) -> SentCell | None:
        """Send the cell under ``cursor_line``.

        Returns None (after a warning) if the cell is empty.
        """
        try:
            cell = extract_cell(lines, cursor_line, self.delimiters)
        except EmptyCell as e:
            self._warn(str(e))
            return None
        ack = await self._send(cell.text, source)
        return SentCell(cell=cell, ack=ack)

    async def send_range(
        self,
        lines: Sequence[str],
        start: tuple[int, int],
        end: tuple[int, int],
        unit: RangeUnit | str = RangeUnit.LINE,
        source: Any = None,
    ) -> SendAck | None:
        """Send the text of a motion or selection range."""
        unit = RangeUnit(unit)
        if unit is RangeUnit.BLOCK:
            self._warn("Block selection not supported")
            return None
        text = extract_range(lines, start, end, unit)
        if text is None:
            return None
        return await self._send(text, source)

    async def send_selection(
        self,
        lines: Sequence[str],
        start: tuple[int, int],
        end: tuple[int, int],
        source: Any = None,
    ) -> SendAck | None:
        """Send a characterwise selection."""
        return await self.send_range(lines, start, end, RangeUnit.CHAR, source)

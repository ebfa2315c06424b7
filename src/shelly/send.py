"""Send orchestrator — write a payload into the session and schedule capture."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Sequence

from shelly.capture import DEFAULT_PROMPT_RULES, CaptureResult, PromptRules, Sink, capture
from shelly.config import SendConfig
from shelly.errors import NoActiveSession, SelfTargetRejected, TargetIsShell
from shelly.pty import process
from shelly.pty.session import SessionMode

if TYPE_CHECKING:
    from shelly.pty.session import Session
    from shelly.wire import Wire

logger = logging.getLogger(__name__)


@dataclass
class SendAck:
    """Acknowledgement of a submitted send.

    The capture pass runs later; ``await ack.wait()`` for its result.
    """

    session_id: str
    mode: SessionMode
    watermark_before: int
    sent_lines: list[str]
    capture_task: asyncio.Task | None = field(default=None, repr=False)

    async def wait(self) -> CaptureResult | None:
        """Wait for the capture pass.

        Returns None if the session went away before the capture fired.
        """
        if self.capture_task is None:
            return None
        await asyncio.wait({self.capture_task})
        if self.capture_task.cancelled():
            return None
        return self.capture_task.result()


def split_payload(payload: str | Sequence[str]) -> list[str]:
    """Normalise a payload to a list of lines."""
    if isinstance(payload, str):
        return payload.split("\n")
    return list(payload)


def check_target(
    session: Session | None,
    source: Any = None,
    shell_names: Sequence[str] = ("sh", "bash", "zsh"),
) -> Session:
    """Fail fast if ``session`` must not receive input from ``source``.

    Raises:
        SelfTargetRejected: ``source`` is the session itself.
        NoActiveSession: there is no live session.
        TargetIsShell: the session is sitting at a bare shell prompt.
    """
    if source is not None and session is not None and (
        source is session or source == session.id
    ):
        raise SelfTargetRejected()
    if session is None or not session.alive:
        raise NoActiveSession()
    name = session.foreground_process_name()
    if process.is_shell_name(name, tuple(shell_names)):
        raise TargetIsShell(process.basename(name or ""))
    return session


async def send(
    session: Session | None,
    payload: str | Sequence[str],
    *,
    source: Any = None,
    config: SendConfig | None = None,
    rules: PromptRules = DEFAULT_PROMPT_RULES,
    sink: Sink | None = None,
    wire: Wire | None = None,
) -> SendAck:
    """Send ``payload`` to the session's foreground process.

    Every precondition is checked before a single byte is written. In
    paste mode the body follows the ``%cpaste`` entry after
    ``paste_delay`` seconds, so IPython has switched to block input
    before the body arrives. A capture pass is scheduled
    ``capture_delay`` seconds after submission; this call does not wait
    for it.

    Overlapping sends are not serialised: a send issued before the
    previous capture fired may see its output captured twice or not at
    all.
    """
    config = config or SendConfig()
    session = check_target(session, source, config.shell_names)
    lines = split_payload(payload)
    body = "\n".join(lines)

    watermark_before = session.buffer.watermark_index()
    mode = session.detect_mode()

    if mode is SessionMode.PASTE:
        session.write(config.paste_entry)

        def _write_body() -> None:
            # The process can die between the entry marker and the body
            try:
                session.write(body + "\n")
                session.write(config.paste_end)
            except (NoActiveSession, OSError) as e:
                logger.debug("Session %s: paste body not written: %s", session.id, e)

        session.defer(config.paste_delay, _write_body)
    else:
        session.write(body + "\n")

    logger.debug(
        "Session %s: sent %d line(s) in %s mode (watermark %d)",
        session.id,
        len(lines),
        mode.value,
        watermark_before,
    )
    if wire is not None:
        wire.send_sent(session.id, mode.value, lines)

    capture_task = session.defer(
        config.capture_delay,
        lambda: capture(session, watermark_before, lines, rules=rules, sink=sink, wire=wire),
    )
    return SendAck(
        session_id=session.id,
        mode=mode,
        watermark_before=watermark_before,
        sent_lines=lines,
        capture_task=capture_task,
    )

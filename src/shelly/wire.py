"""Wire protocol — decouples the terminal core from its host.

Events flow from sessions, sends and capture passes to whatever hosts
the core (the CLI, an editor bridge). Hosts subscribe to the wire and
render or forward events.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    SESSION_OPEN = "session_open"
    SESSION_CLOSE = "session_close"
    SEND = "send"
    CAPTURE = "capture"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Async message bus: core -> host subscribers.

    Single-producer, multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(event)

    def send_session_open(self, session_id: str, command: list[str], pid: int | None) -> None:
        self.send(
            WireEvent(
                type=EventType.SESSION_OPEN,
                data={"session_id": session_id, "command": command, "pid": pid},
            )
        )

    def send_session_close(self, session_id: str) -> None:
        self.send(WireEvent(type=EventType.SESSION_CLOSE, data={"session_id": session_id}))

    def send_sent(self, session_id: str, mode: str, lines: list[str]) -> None:
        self.send(
            WireEvent(
                type=EventType.SEND,
                data={"session_id": session_id, "mode": mode, "lines": lines},
            )
        )

    def send_capture(self, session_id: str, lines: list[str]) -> None:
        self.send(
            WireEvent(
                type=EventType.CAPTURE,
                data={"session_id": session_id, "lines": lines},
            )
        )

    def send_warning(self, message: str) -> None:
        self.send(WireEvent(type=EventType.WARNING, data={"message": message}))

    def send_error(self, error: str) -> None:
        self.send(WireEvent(type=EventType.ERROR, data={"error": error}))

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        if self._closed:
            return
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)

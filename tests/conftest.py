"""Shared fixtures: an in-memory stand-in for a terminal session."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from shelly.pty.buffer import RollingBuffer
from shelly.pty.session import SessionMode


class FakeSession:
    """Records writes instead of talking to a PTY."""

    def __init__(
        self,
        process_name: str | None = "python3",
        mode: SessionMode = SessionMode.PLAIN,
    ) -> None:
        self.id = "fake0001"
        self.buffer = RollingBuffer()
        self.mode = mode
        self.watermark = 0
        self.process_name = process_name
        self.writes: list[str] = []
        self.alive = True
        self.write_error: Exception | None = None
        self.deferred: list[asyncio.Task] = []

    def write(self, text: str) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.writes.append(text)

    def foreground_process_name(self) -> str | None:
        return self.process_name

    def detect_mode(self) -> SessionMode:
        return self.mode

    def defer(self, delay: float, action: Callable[[], Any]) -> asyncio.Task:
        async def _fire() -> Any:
            await asyncio.sleep(delay)
            if not self.alive:
                return None
            return action()

        task = asyncio.get_running_loop().create_task(_fire())
        self.deferred.append(task)
        return task

    def close(self) -> None:
        self.alive = False
        self.watermark = 0


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def ipython_session() -> FakeSession:
    return FakeSession(process_name="ipython", mode=SessionMode.PASTE)

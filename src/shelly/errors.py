"""Errors raised by shelly operations."""

from __future__ import annotations


class ShellyError(Exception):
    """Base class for all shelly errors."""


class SpawnFailed(ShellyError):
    """The terminal command could not be launched."""

    def __init__(self, command: list[str], reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"Cannot start {' '.join(command) or '<empty>'}: {reason}")


class NoActiveSession(ShellyError):
    """A send or capture was attempted without a live session."""

    def __init__(self, message: str = "No active terminal session") -> None:
        super().__init__(message)


class TargetIsShell(ShellyError):
    """The session's foreground process is a bare shell, not a REPL."""

    def __init__(self, process_name: str) -> None:
        self.process_name = process_name
        super().__init__(
            f"Cannot send text: active process is a shell ({process_name}). "
            "Start a REPL first."
        )


class SelfTargetRejected(ShellyError):
    """The text source is the session's own output surface."""

    def __init__(self) -> None:
        super().__init__("Cannot send text from a terminal to itself")


class EmptyCell(ShellyError, UserWarning):
    """The cell under the cursor has no content.

    Also a ``UserWarning`` so hosts can route it through ``warnings`` or
    report it at warning level instead of treating it as a failure.
    """

    def __init__(self, line: int) -> None:
        self.line = line
        super().__init__(f"No cell content found at line {line}")

"""shelly — send code to a persistent REPL terminal and capture its output."""

from shelly.capture import (
    CallbackSink,
    CaptureResult,
    ClipboardSink,
    PromptRules,
    RegisterSink,
    capture,
)
from shelly.cells import Cell, DelimiterRule, RangeUnit, extract_cell, extract_range
from shelly.config import ShellyConfig
from shelly.errors import (
    EmptyCell,
    NoActiveSession,
    SelfTargetRejected,
    ShellyError,
    SpawnFailed,
    TargetIsShell,
)
from shelly.pty import Session, SessionMode
from shelly.send import SendAck, send
from shelly.terminal import Shelly

__version__ = "0.1.0"

__all__ = [
    "CallbackSink",
    "CaptureResult",
    "Cell",
    "ClipboardSink",
    "DelimiterRule",
    "EmptyCell",
    "NoActiveSession",
    "PromptRules",
    "RangeUnit",
    "RegisterSink",
    "SelfTargetRejected",
    "SendAck",
    "Session",
    "SessionMode",
    "Shelly",
    "ShellyConfig",
    "ShellyError",
    "SpawnFailed",
    "TargetIsShell",
    "capture",
    "extract_cell",
    "extract_range",
    "send",
]

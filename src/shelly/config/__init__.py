"""Configuration — Pydantic models for shelly settings."""

from __future__ import annotations

import json
import os
import shlex
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field


def _default_shell() -> list[str]:
    return [os.environ.get("SHELL") or "/bin/sh"]


class TerminalConfig(BaseModel):
    """How the terminal session is spawned."""

    command: list[str] = Field(
        default_factory=_default_shell,
        description="Command and arguments to run in the terminal (default: $SHELL)",
    )
    cwd: str | None = Field(
        default=None, description="Working directory. Defaults to the current directory."
    )
    env: dict[str, str] = Field(default_factory=dict)
    rows: int = Field(default=16, description="Initial terminal height in rows")
    cols: int = Field(default=120, description="Initial terminal width in columns")
    max_lines: int = Field(default=50_000, description="Output lines kept in memory")
    startup_timeout: float = Field(
        default=5.0, description="Seconds to wait for the first prompt after spawning"
    )


class SendConfig(BaseModel):
    """Wire format and timing of sends."""

    paste_delay: float = Field(
        default=0.05,
        description="Seconds between entering paste mode and writing the body",
    )
    capture_delay: float = Field(
        default=0.5, description="Seconds between a send and its capture pass"
    )
    shell_names: list[str] = Field(
        default_factory=lambda: ["sh", "bash", "zsh"],
        description="Process names treated as a bare shell (sends are refused)",
    )
    paste_entry: str = Field(default="%cpaste -q\n")
    paste_end: str = Field(default="\x04")


class CaptureConfig(BaseModel):
    """Where captured output goes and what gets scrubbed."""

    extra_prompt_patterns: list[str] = Field(
        default_factory=list,
        description="Additional regexes for prompt/control lines to drop",
    )
    sink: Literal["register", "clipboard"] = Field(default="register")
    register_name: str = Field(default="+", description="Register name for the register sink")


class CellConfig(BaseModel):
    """Cell delimiter settings."""

    extra_delimiter_patterns: list[str] = Field(default_factory=list)


class ShellyConfig(BaseModel):
    """Top-level shelly configuration."""

    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    send: SendConfig = Field(default_factory=SendConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    cells: CellConfig = Field(default_factory=CellConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> ShellyConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            SHELLY_COMMAND        - Terminal command (shell-style quoting)
            SHELLY_CWD            - Terminal working directory
            SHELLY_PASTE_DELAY    - Seconds between paste-mode entry and body
            SHELLY_CAPTURE_DELAY  - Seconds between send and capture
            SHELLY_SINK           - "register" or "clipboard"
        """
        load_dotenv()

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        terminal = config_data.get("terminal", {})
        send = config_data.get("send", {})
        capture = config_data.get("capture", {})

        env_command = os.environ.get("SHELLY_COMMAND")
        if env_command:
            terminal["command"] = shlex.split(env_command)

        env_cwd = os.environ.get("SHELLY_CWD")
        if env_cwd:
            terminal["cwd"] = env_cwd

        env_paste_delay = os.environ.get("SHELLY_PASTE_DELAY")
        if env_paste_delay:
            send["paste_delay"] = float(env_paste_delay)

        env_capture_delay = os.environ.get("SHELLY_CAPTURE_DELAY")
        if env_capture_delay:
            send["capture_delay"] = float(env_capture_delay)

        env_sink = os.environ.get("SHELLY_SINK")
        if env_sink:
            capture["sink"] = env_sink.lower()

        if terminal:
            config_data["terminal"] = terminal
        if send:
            config_data["send"] = send
        if capture:
            config_data["capture"] = capture

        return cls.model_validate(config_data)

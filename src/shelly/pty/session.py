"""Terminal session — the one managed interactive subprocess."""

from __future__ import annotations

import asyncio
import codecs
import enum
import fcntl
import inspect
import logging
import os
import pty
import re
import shutil
import signal
import struct
import subprocess
import termios
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from shelly.errors import NoActiveSession, SpawnFailed
from shelly.pty import process
from shelly.pty.buffer import RollingBuffer
from shelly.text import clean_line

logger = logging.getLogger(__name__)

_IPYTHON_HINT_RE = re.compile(r"In \[\d+\]:|IPython")
_MODE_SCAN_LINES = 10


class SessionStatus(enum.Enum):
    """Lifecycle states for a session."""

    RUNNING = "running"
    EXITED = "exited"  # Process exited on its own
    CLOSED = "closed"  # Released by close()


class SessionMode(enum.Enum):
    """How payloads are written to the foreground process."""

    PLAIN = "plain"
    PASTE = "paste"  # IPython-style %cpaste block entry


@dataclass
class Geometry:
    rows: int = 16
    cols: int = 120


CloseCallback = Callable[["Session"], None]


@dataclass
class Session:
    """A managed pseudo-terminal session.

    Owns the process handle exclusively: nothing else writes to the PTY
    or kills the process. ``watermark`` is the absolute index of the
    last output line a capture pass has processed; it only moves forward
    while the session lives and is reset by ``close()``.

    Deferred actions (the paste body write, capture passes) are scheduled
    through ``defer()`` so that closing the session cancels them and a
    late fire against a dead session does nothing.
    """

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    command: list[str] = field(default_factory=list)
    cwd: str = field(default_factory=os.getcwd)
    env: dict[str, str] = field(default_factory=dict)
    geometry: Geometry = field(default_factory=Geometry)
    buffer: RollingBuffer = field(default_factory=RollingBuffer)
    mode: SessionMode = SessionMode.PLAIN
    watermark: int = 0

    _master_fd: int = field(default=-1, init=False)
    _proc: subprocess.Popen | None = field(default=None, init=False)
    _pgid: int = field(default=0, init=False)
    _reader_task: asyncio.Task | None = field(default=None, init=False)
    _status: SessionStatus = field(default=SessionStatus.CLOSED, init=False)
    _released: bool = field(default=True, init=False)
    _close_callbacks: list[CloseCallback] = field(default_factory=list, init=False)
    _pending: set[asyncio.Task] = field(default_factory=set, init=False)

    @classmethod
    async def open(
        cls,
        command: list[str],
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        geometry: Geometry | None = None,
        max_lines: int = 50_000,
    ) -> Session:
        """Spawn ``command`` in a new PTY and return the live session.

        Raises:
            SpawnFailed: the command is empty, missing, not executable, or
                the working directory is unusable.
        """
        session = cls(
            command=list(command),
            cwd=cwd or os.getcwd(),
            env=env or {},
            geometry=geometry or Geometry(),
            buffer=RollingBuffer(max_lines=max_lines),
        )
        await session.start()
        return session

    def _resolve_executable(self) -> str:
        if not self.command or not self.command[0]:
            raise SpawnFailed(self.command, "empty command")
        program = self.command[0]
        if os.sep in program:
            if not (os.path.isfile(program) and os.access(program, os.X_OK)):
                raise SpawnFailed(self.command, "not executable")
            return program
        resolved = shutil.which(program)
        if resolved is None:
            raise SpawnFailed(self.command, "not found or not executable")
        return resolved

    async def start(self) -> None:
        """Spawn the process in a new PTY with its own process group."""
        executable = self._resolve_executable()
        if not os.path.isdir(self.cwd):
            raise SpawnFailed(self.command, f"working directory does not exist: {self.cwd}")

        master_fd, slave_fd = pty.openpty()
        _set_winsize(slave_fd, self.geometry)

        env = {**os.environ, "TERM": "dumb", **self.env}
        env.pop("PROMPT_COMMAND", None)

        try:
            self._proc = subprocess.Popen(
                [executable, *self.command[1:]],
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                env=env,
                cwd=self.cwd,
            )
        except OSError as e:
            os.close(master_fd)
            raise SpawnFailed(self.command, str(e)) from e
        finally:
            os.close(slave_fd)

        self._master_fd = master_fd
        self._pgid = os.getpgid(self._proc.pid)
        self._status = SessionStatus.RUNNING
        self._released = False
        self.watermark = 0

        self._reader_task = asyncio.create_task(self._read_loop())

        logger.info(
            "Session %s started: pid=%d cmd=%s cwd=%s",
            self.id,
            self._proc.pid,
            " ".join(self.command),
            self.cwd,
        )

    async def _read_loop(self) -> None:
        """Continuously read output from the PTY master fd."""
        loop = asyncio.get_running_loop()
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        fd = self._master_fd
        try:
            while self._status == SessionStatus.RUNNING:
                try:
                    data = await loop.run_in_executor(None, os.read, fd, 4096)
                except OSError:
                    break
                if not data:
                    break
                self.buffer.append_text(decoder.decode(data))
        finally:
            if self._status == SessionStatus.RUNNING:
                self._status = SessionStatus.EXITED
                exit_code = self._release()
                logger.info("Session %s exited (code=%s)", self.id, exit_code)
                self._notify_closed()

    # ------------------------------------------------------------------
    # Liveness and teardown
    # ------------------------------------------------------------------

    @property
    def alive(self) -> bool:
        return (
            self._status == SessionStatus.RUNNING
            and self._proc is not None
            and self._proc.poll() is None
        )

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    def on_close(self, callback: CloseCallback) -> Callable[[], None]:
        """Subscribe to the session going away.

        Fires once, either when ``close()`` runs or when the process exits
        on its own. Returns an unsubscribe function.
        """
        self._close_callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._close_callbacks:
                self._close_callbacks.remove(callback)

        return _unsubscribe

    def _notify_closed(self) -> None:
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception("Error in on_close callback for session %s", self.id)

    def close(self) -> None:
        """Kill the process tree and release the handle. Idempotent."""
        if self._released:
            return
        was_running = self._status == SessionStatus.RUNNING
        self._status = SessionStatus.CLOSED
        self._release()
        logger.info("Session %s closed", self.id)
        if was_running:
            self._notify_closed()

    def _release(self) -> int | None:
        """Cancel deferred work, kill the process group, free the PTY.

        Runs once, from ``close()`` or when the process exits on its own.
        Returns the exit code if the process was reaped.
        """
        self._released = True
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for task in list(self._pending):
            if task is not current:
                task.cancel()
        self._pending.clear()
        if self._reader_task is not None and self._reader_task is not current:
            self._reader_task.cancel()

        try:
            os.killpg(self._pgid, signal.SIGKILL)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)
        except OSError as e:
            logger.warning("Error killing session %s: %s", self.id, e)

        exit_code = None
        if self._proc is not None:
            try:
                exit_code = self._proc.wait(timeout=2)
            except subprocess.TimeoutExpired:
                logger.warning("Session %s process did not exit after SIGKILL", self.id)

        try:
            os.close(self._master_fd)
        except OSError:
            pass

        self._master_fd = -1
        self._proc = None
        self.watermark = 0
        return exit_code

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    def write(self, text: str) -> None:
        """Write ``text`` to the process's input."""
        if not self.alive:
            raise NoActiveSession(f"Session {self.id} is not running")
        data = memoryview(text.encode())
        while data:
            written = os.write(self._master_fd, data)
            data = data[written:]
        logger.debug("Session %s <- %r", self.id, text)

    def resize(self, rows: int, cols: int) -> None:
        """Persist the geometry hint and apply it to the PTY."""
        self.geometry = Geometry(rows=rows, cols=cols)
        if self._master_fd >= 0:
            _set_winsize(self._master_fd, self.geometry)

    def defer(
        self, delay: float, action: Callable[[], Any | Awaitable[Any]]
    ) -> asyncio.Task:
        """Run ``action`` after ``delay`` seconds unless the session is gone.

        The task is cancelled by ``close()``; if it fires against a dead
        session anyway, the action is skipped and the task yields None.
        """

        async def _fire() -> Any:
            await asyncio.sleep(delay)
            if not self.alive:
                logger.debug("Session %s gone, skipping deferred action", self.id)
                return None
            result = action()
            if inspect.isawaitable(result):
                result = await result
            return result

        task = asyncio.get_running_loop().create_task(_fire())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    # ------------------------------------------------------------------
    # Foreground process inspection
    # ------------------------------------------------------------------

    def foreground_process_name(self) -> str | None:
        """Name of the process currently running under the terminal."""
        if not self.alive or self._proc is None:
            return None
        return process.foreground_process_name(self._proc.pid)

    def detect_mode(self) -> SessionMode:
        """Decide whether payloads need IPython paste-mode wrapping."""
        mode = SessionMode.PLAIN
        if process.is_paste_capable_name(self.foreground_process_name()):
            mode = SessionMode.PASTE
        else:
            for line in self.buffer.read_tail(_MODE_SCAN_LINES):
                if _IPYTHON_HINT_RE.search(clean_line(line)):
                    mode = SessionMode.PASTE
                    break
        if mode != self.mode:
            logger.debug("Session %s mode: %s", self.id, mode.value)
        self.mode = mode
        return mode

    def __del__(self) -> None:
        if not self._released and self._status == SessionStatus.RUNNING:
            self.close()


def _set_winsize(fd: int, geometry: Geometry) -> None:
    try:
        fcntl.ioctl(
            fd,
            termios.TIOCSWINSZ,
            struct.pack("HHHH", geometry.rows, geometry.cols, 0, 0),
        )
    except OSError as e:
        logger.debug("Cannot set window size on fd %d: %s", fd, e)

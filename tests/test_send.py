"""Tests for shelly.send (preconditions, wire format, deferred capture)."""

from __future__ import annotations

import asyncio

import pytest

from shelly.capture import RegisterSink
from shelly.config import SendConfig
from shelly.errors import NoActiveSession, SelfTargetRejected, TargetIsShell
from shelly.pty.session import SessionMode
from shelly.send import check_target, send, split_payload
from shelly.wire import EventType, Wire

FAST = SendConfig(paste_delay=0.01, capture_delay=0.05)


# ---------------------------------------------------------------------------
# split_payload
# ---------------------------------------------------------------------------


class TestSplitPayload:
    def test_string(self) -> None:
        assert split_payload("a\nb") == ["a", "b"]

    def test_sequence(self) -> None:
        assert split_payload(("a", "b")) == ["a", "b"]

    def test_single_line(self) -> None:
        assert split_payload("x = 1") == ["x = 1"]


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------


class TestCheckTarget:
    def test_no_session(self) -> None:
        with pytest.raises(NoActiveSession):
            check_target(None)

    def test_dead_session(self, fake_session) -> None:
        fake_session.alive = False
        with pytest.raises(NoActiveSession):
            check_target(fake_session)

    def test_self_target_by_identity(self, fake_session) -> None:
        with pytest.raises(SelfTargetRejected):
            check_target(fake_session, source=fake_session)

    def test_self_target_by_id(self, fake_session) -> None:
        with pytest.raises(SelfTargetRejected):
            check_target(fake_session, source=fake_session.id)

    def test_self_target_checked_before_liveness(self, fake_session) -> None:
        fake_session.alive = False
        with pytest.raises(SelfTargetRejected):
            check_target(fake_session, source=fake_session)

    @pytest.mark.parametrize("name", ["sh", "bash", "zsh", "/bin/bash", "-zsh"])
    def test_shell_rejected(self, fake_session, name: str) -> None:
        fake_session.process_name = name
        with pytest.raises(TargetIsShell):
            check_target(fake_session)

    def test_custom_shell_names(self, fake_session) -> None:
        fake_session.process_name = "fish"
        check_target(fake_session)
        with pytest.raises(TargetIsShell):
            check_target(fake_session, shell_names=["fish"])

    def test_repl_accepted(self, fake_session) -> None:
        fake_session.process_name = "python3"
        assert check_target(fake_session, source="editor-buffer") is fake_session

    def test_unknown_process_accepted(self, fake_session) -> None:
        fake_session.process_name = None
        assert check_target(fake_session) is fake_session


# ---------------------------------------------------------------------------
# send — wire format
# ---------------------------------------------------------------------------


class TestSendPlain:
    async def test_writes_payload_and_one_newline(self, fake_session) -> None:
        await send(fake_session, ["x = 1", "print(x)"], config=FAST)
        assert fake_session.writes == ["x = 1\nprint(x)\n"]

    async def test_no_paste_markers(self, fake_session) -> None:
        ack = await send(fake_session, "1 + 1", config=FAST)
        await ack.wait()
        stream = "".join(fake_session.writes)
        assert "%cpaste" not in stream
        assert "\x04" not in stream
        assert ack.mode is SessionMode.PLAIN

    async def test_shell_gets_nothing(self, fake_session) -> None:
        fake_session.process_name = "bash"
        with pytest.raises(TargetIsShell):
            await send(fake_session, "ls", config=FAST)
        assert fake_session.writes == []

    async def test_self_target_gets_nothing(self, fake_session) -> None:
        with pytest.raises(SelfTargetRejected):
            await send(fake_session, "x", source=fake_session, config=FAST)
        assert fake_session.writes == []


class TestSendPaste:
    async def test_entry_body_end_in_order(self, ipython_session) -> None:
        body = "def f():\n    return 1\n\nf()"
        ack = await send(ipython_session, body, config=FAST)
        # Only the entry marker is written up front
        assert ipython_session.writes == ["%cpaste -q\n"]
        await ack.wait()
        assert ipython_session.writes == ["%cpaste -q\n", body + "\n", "\x04"]
        assert ack.mode is SessionMode.PASTE

    async def test_body_skipped_if_session_dies(self, ipython_session) -> None:
        ack = await send(ipython_session, "x = 1", config=FAST)
        ipython_session.close()
        assert await ack.wait() is None
        assert ipython_session.writes == ["%cpaste -q\n"]

    @pytest.mark.parametrize("error", [OSError(5, "Input/output error"), NoActiveSession()])
    async def test_body_write_failure_is_contained(self, ipython_session, error) -> None:
        await send(ipython_session, "x = 1", config=FAST)
        # The process dies after the entry marker went out but still looks alive
        ipython_session.write_error = error
        body_task = ipython_session.deferred[0]
        await asyncio.wait({body_task})
        assert body_task.exception() is None
        assert ipython_session.writes == ["%cpaste -q\n"]


# ---------------------------------------------------------------------------
# send — capture scheduling
# ---------------------------------------------------------------------------


class TestSendCapture:
    async def test_capture_sees_output_after_send(self, fake_session) -> None:
        fake_session.buffer.append_text("earlier output\n>>> ")
        sink = RegisterSink()
        ack = await send(fake_session, "1 + 1", config=FAST, sink=sink)
        assert ack.watermark_before == 2
        assert ack.sent_lines == ["1 + 1"]
        # The REPL echoes onto the prompt line, prints, and prompts again
        fake_session.buffer.append_text("1 + 1\n2\n>>> ")
        result = await ack.wait()
        assert result is not None
        assert result.lines == ["2"]
        assert sink.get() == ["2"]

    async def test_send_does_not_move_watermark(self, fake_session) -> None:
        fake_session.buffer.append_text("a\nb\n")
        await send(fake_session, "x", config=SendConfig(capture_delay=10))
        assert fake_session.watermark == 0

    async def test_capture_skipped_after_close(self, fake_session) -> None:
        sink = RegisterSink()
        sink.set(["kept"])
        ack = await send(fake_session, "x", config=FAST, sink=sink)
        fake_session.buffer.append_text("output\n")
        fake_session.close()
        assert await ack.wait() is None
        assert sink.get() == ["kept"]

    async def test_send_event(self, fake_session) -> None:
        wire = Wire()
        q = wire.subscribe()
        await send(fake_session, "a\nb", config=FAST, wire=wire)
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.SEND
        assert event.data == {"session_id": "fake0001", "mode": "plain", "lines": ["a", "b"]}

"""Tests for shelly.capture (pipeline steps, prompt rules, sinks, capture pass)."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from shelly.capture import (
    DEFAULT_PROMPT_RULES,
    CallbackSink,
    ClipboardSink,
    PromptRules,
    RegisterSink,
    capture,
    remove_echo,
    remove_prompts,
    scrub,
    strip_trailing_blank,
)
from shelly.errors import NoActiveSession
from shelly.wire import EventType, Wire


# ---------------------------------------------------------------------------
# remove_echo
# ---------------------------------------------------------------------------


class TestRemoveEcho:
    def test_removes_first_match_only(self) -> None:
        lines = ["x = 1", "x = 1"]
        assert remove_echo(lines, ["x = 1"]) == ["x = 1"]

    def test_later_duplicate_is_kept_as_output(self) -> None:
        # "print('a')" echoed, then the REPL prints something equal to a later sent line
        lines = ["print('b')", "b", "print('b')"]
        assert remove_echo(lines, ["print('b')"]) == ["b", "print('b')"]

    def test_scan_never_goes_back(self) -> None:
        # Second sent line's only match lies before the first match
        lines = ["b", "a"]
        assert remove_echo(lines, ["a", "b"]) == ["b"]

    def test_multiple_lines_in_order(self) -> None:
        lines = ["def f():", "    return 1", "f()", "1"]
        sent = ["def f():", "    return 1", "f()"]
        assert remove_echo(lines, sent) == ["1"]

    def test_wrapped_echo_is_not_recognised(self) -> None:
        # A terminal-wrapped echo does not match exactly and stays in the output
        sent = ["x = 'aaaaaaaaaa'"]
        lines = ["x = 'aaaaa", "aaaaa'"]
        assert remove_echo(lines, sent) == lines

    def test_unmatched_line_does_not_move_cursor(self) -> None:
        lines = ["a", "b"]
        assert remove_echo(lines, ["zzz", "a", "b"]) == []

    def test_empty_inputs(self) -> None:
        assert remove_echo([], ["a"]) == []
        assert remove_echo(["a"], []) == ["a"]


# ---------------------------------------------------------------------------
# PromptRules / remove_prompts
# ---------------------------------------------------------------------------


class TestPromptRules:
    @pytest.mark.parametrize(
        "line",
        [
            "In [1]: ",
            "In [12]: x = 1",
            "   ...: ",
            "   ...:     return x",
            "... ",
            ">>> ",
            ">>> 1 + 1",
            ">",
            ":",
            "::",
            "%cpaste -q",
            "--",
            "Pasting code; enter '--' alone on the line to stop or use Ctrl-D.",
            "<EOF>",
        ],
    )
    def test_default_rules_match(self, line: str) -> None:
        assert DEFAULT_PROMPT_RULES.matches(line)

    @pytest.mark.parametrize(
        "line",
        ["2", "Out[1]: 2", "hello > world", "a: b", "...and more", "-- comment", ""],
    )
    def test_default_rules_keep_output(self, line: str) -> None:
        assert not DEFAULT_PROMPT_RULES.matches(line)

    def test_extend_adds_patterns(self) -> None:
        rules = DEFAULT_PROMPT_RULES.extend([r"^irb\(main\)"])
        assert rules.matches("irb(main):001:0> ")
        assert not DEFAULT_PROMPT_RULES.matches("irb(main):001:0> ")

    def test_rules_are_immutable(self) -> None:
        rules = PromptRules(patterns=(r"^x$",))
        with pytest.raises(AttributeError):
            rules.patterns = ()  # type: ignore[misc]

    def test_remove_prompts(self) -> None:
        rules = PromptRules(patterns=(r"^>>>\s*$",))
        assert remove_prompts(["a", ">>> ", "b"], rules) == ["a", "b"]


# ---------------------------------------------------------------------------
# strip_trailing_blank / scrub
# ---------------------------------------------------------------------------


class TestStripTrailingBlank:
    def test_strips_whitespace_lines(self) -> None:
        assert strip_trailing_blank(["a", "", "  ", "\t"]) == ["a"]

    def test_keeps_inner_blanks(self) -> None:
        assert strip_trailing_blank(["a", "", "b"]) == ["a", "", "b"]

    def test_all_blank(self) -> None:
        assert strip_trailing_blank(["", " "]) == []


class TestScrub:
    def test_reference_example(self) -> None:
        raw = ["\x1b[32mfoo\x1b[0m", ">>> ", "1 + 1", "2", ""]
        rules = PromptRules(patterns=(r"^>>>\s*$",))
        assert scrub(raw, ["1 + 1"], rules) == ["foo", "2"]

    def test_ipython_transcript(self) -> None:
        raw = [
            "In [3]: total = 0",
            "   ...: for i in range(3):",
            "   ...:     total += i",
            "   ...: ",
            "In [4]: total",
            "Out[4]: 3",
            "",
        ]
        sent = ["total = 0", "for i in range(3):", "    total += i", "total"]
        assert scrub(raw, sent) == ["Out[4]: 3"]

    def test_order_is_preserved(self) -> None:
        raw = ["x", ">>> ", "y", "... ", "z"]
        assert scrub(raw, []) == ["x", "y", "z"]


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class TestSinks:
    def test_register_sink_replaces(self) -> None:
        sink = RegisterSink("a")
        sink.set(["one"])
        sink.set(["two", "three"])
        assert sink.get() == ["two", "three"]
        assert sink.text == "two\nthree"

    def test_register_sink_shares_registers(self) -> None:
        registers: dict[str, list[str]] = {}
        RegisterSink("a", registers).set(["x"])
        RegisterSink("b", registers).set(["y"])
        assert registers == {"a": ["x"], "b": ["y"]}

    def test_callback_sink(self) -> None:
        received: list[list[str]] = []
        CallbackSink(received.append).set(["hi"])
        assert received == [["hi"]]

    def test_clipboard_sink_uses_pyperclip(self) -> None:
        with patch("shelly.capture.pyperclip.copy") as copy:
            ClipboardSink().set(["a", "b"])
        copy.assert_called_once_with("a\nb")


# ---------------------------------------------------------------------------
# capture
# ---------------------------------------------------------------------------


class TestCapture:
    def test_reference_example(self, fake_session) -> None:
        fake_session.buffer.append_text("\n".join(["\x1b[32mfoo\x1b[0m", ">>> ", "1 + 1", "2", ""]))
        sink = RegisterSink()
        result = capture(
            fake_session,
            0,
            ["1 + 1"],
            rules=PromptRules(patterns=(r"^>>>\s*$",)),
            sink=sink,
        )
        assert result.lines == ["foo", "2"]
        assert sink.get() == ["foo", "2"]

    def test_reads_only_after_watermark(self, fake_session) -> None:
        fake_session.buffer.append_text("old output\n")
        mark = fake_session.buffer.watermark_index()
        fake_session.buffer.append_text("new output\n")
        result = capture(fake_session, mark, [])
        assert result.lines == ["new output"]

    def test_second_pass_is_empty(self, fake_session) -> None:
        fake_session.buffer.append_text("42\n>>> ")
        sink = RegisterSink()
        first = capture(fake_session, 0, [], sink=sink)
        second = capture(fake_session, 0, [], sink=sink)
        assert first.lines == ["42"]
        assert second.empty
        assert sink.get() == ["42"]

    def test_watermark_advances_monotonically(self, fake_session) -> None:
        fake_session.buffer.append_text("a\nb\n")
        capture(fake_session, 0, [])
        assert fake_session.watermark == 2
        capture(fake_session, 0, [])
        assert fake_session.watermark == 2

    def test_empty_capture_leaves_sink_untouched(self, fake_session) -> None:
        sink = RegisterSink()
        sink.set(["previous"])
        fake_session.buffer.append_text(">>> \n\n")
        result = capture(fake_session, 0, [], sink=sink)
        assert result.empty
        assert sink.get() == ["previous"]

    def test_dead_session_raises(self, fake_session) -> None:
        fake_session.alive = False
        with pytest.raises(NoActiveSession):
            capture(fake_session, 0, [])

    def test_no_session_raises(self) -> None:
        with pytest.raises(NoActiveSession):
            capture(None, 0, [])

    def test_emits_capture_event(self, fake_session) -> None:
        wire = Wire()
        q = wire.subscribe()
        fake_session.buffer.append_text("out\n")
        capture(fake_session, 0, [], wire=wire)
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.CAPTURE
        assert event.data["lines"] == ["out"]

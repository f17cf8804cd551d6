"""Tests for shellpool.pool.execution.CommandExecution."""

from __future__ import annotations

import pytest

from shellpool.errors import CommandTimeoutError, TerminalClosedError
from shellpool.pool.execution import CommandExecution, ExecutionState, wrap_command

from conftest import FakeClock, FakeTerminal


def _start(execution: CommandExecution, terminal: FakeTerminal, command: str = "cmd") -> list[str]:
    lines: list[str] = []
    execution.on("line", lines.append)
    execution.run(terminal, command)
    return lines


def _framed(execution: CommandExecution, body: str) -> str:
    return f"{execution.start_marker}\r\n{body}{execution.end_marker}\r\n"


# ---------------------------------------------------------------------------
# Command framing
# ---------------------------------------------------------------------------


class TestWrapCommand:
    def test_exact_framing(self) -> None:
        assert wrap_command("make", "S", "E") == (
            'echo "S";\n{ make; } 2>&1;\nEXIT_CODE=$?;\necho "E";\nexit $EXIT_CODE'
        )

    def test_run_sends_wrapped_command(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        execution.run(terminal, "ls -la")
        assert terminal.sent == [
            (wrap_command("ls -la", execution.start_marker, execution.end_marker), True)
        ]
        assert execution.state is ExecutionState.AWAITING_START

    def test_markers_are_distinct(self) -> None:
        execution = CommandExecution()
        assert execution.start_marker != execution.end_marker
        assert execution.end_marker not in execution.start_marker

    def test_run_twice_rejected(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        execution.run(terminal, "true")
        with pytest.raises(RuntimeError):
            execution.run(terminal, "true")


# ---------------------------------------------------------------------------
# Output capture
# ---------------------------------------------------------------------------


class TestCapture:
    def test_echo_hello(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        events: list[str] = []
        lines = _start(execution, terminal, "echo hello")
        execution.on("completed", lambda: events.append("completed"))
        execution.on("continue", lambda: events.append("continue"))

        terminal.write(_framed(execution, "hello\r\n"))

        assert lines == ["hello"]
        assert events == ["completed", "continue"]
        assert execution.state is ExecutionState.COMPLETED
        assert execution.full_output == "hello\n"

    def test_output_before_start_marker_is_ignored(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        lines = _start(execution, terminal)
        terminal.write("bash: no job control in this shell\r\n")
        terminal.write(_framed(execution, "real\r\n"))
        assert lines == ["real"]

    def test_echoed_command_does_not_trigger_markers(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        lines = _start(execution, terminal, "echo hi")
        echoed = wrap_command("echo hi", execution.start_marker, execution.end_marker)
        terminal.write(echoed.replace("\n", "\r\n") + "\r\n")
        assert execution.state is ExecutionState.AWAITING_START

        terminal.write(_framed(execution, "hi\r\n"))
        assert lines == ["hi"]
        assert execution.state is ExecutionState.COMPLETED

    def test_ansi_is_stripped(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        lines = _start(execution, terminal)
        terminal.write(
            _framed(execution, "\x1b[32mgreen\x1b[0m\r\n\x1b]633;C\x07plain\r\n")
        )
        assert lines == ["green", "plain"]

    def test_blank_lines_are_skipped(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        lines = _start(execution, terminal)
        terminal.write(_framed(execution, "a\r\n\r\n   \r\nb\r\n"))
        assert lines == ["a", "b"]
        assert execution.full_output == "a\nb\n"

    def test_partial_line_before_end_marker_is_flushed(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        lines = _start(execution, terminal)
        terminal.write(_framed(execution, "no newline"))
        assert lines == ["no newline"]
        assert execution.state is ExecutionState.COMPLETED

    def test_text_after_start_marker_on_same_line(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        lines = _start(execution, terminal)
        terminal.write(f"{execution.start_marker}tail\r\n{execution.end_marker}\r\n")
        assert lines == ["tail"]

    def test_data_after_completion_is_ignored(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        lines = _start(execution, terminal)
        terminal.write(_framed(execution, "one\r\n") + "exit\r\nlater\r\n")
        assert lines == ["one"]
        assert terminal.data_listeners == 0
        terminal.write("more\r\n")
        assert execution.full_output == "one\n"

    def test_completed_after_last_line(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        order: list[str] = []
        execution.on("line", lambda line: order.append(f"line:{line}"))
        execution.on("completed", lambda: order.append("completed"))
        execution.run(terminal, "cmd")
        terminal.write(_framed(execution, "a\r\nb"))
        assert order == ["line:a", "line:b", "completed"]


# ---------------------------------------------------------------------------
# Chunk boundaries never change what is emitted
# ---------------------------------------------------------------------------


class TestChunking:
    BODY = "first line\r\n\x1b[1;33mwarn\x1b[0m: 日本語\r\n\r\n  spaced  \r\nlast"

    def _run_chunks(self, chunks_of) -> list[str]:
        terminal = FakeTerminal()
        execution = CommandExecution()
        lines = _start(execution, terminal)
        stream = "prompt junk\r\n" + _framed(execution, self.BODY) + "exit\r\n"
        for chunk in chunks_of(stream):
            terminal.write(chunk)
        assert execution.state is ExecutionState.COMPLETED
        return lines

    def test_single_chunk(self) -> None:
        lines = self._run_chunks(lambda s: [s])
        assert lines == ["first line", "warn: 日本語", "spaced", "last"]

    def test_every_two_way_split(self) -> None:
        expected = self._run_chunks(lambda s: [s])
        # Past the end of the stream the second chunk is just empty.
        for i in range(len(self.BODY) + 120):
            got = self._run_chunks(lambda s, i=i: [s[:i], s[i:]])
            assert got == expected, f"split at {i}"

    def test_one_char_chunks(self) -> None:
        expected = self._run_chunks(lambda s: [s])
        assert self._run_chunks(lambda s: list(s)) == expected


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------


class TestUnretrievedOutput:
    def test_returns_new_output_once(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        _start(execution, terminal)
        terminal.write(f"{execution.start_marker}\r\na\r\nb\r\n")
        assert execution.get_unretrieved_output() == "a\nb"
        assert execution.get_unretrieved_output() == ""

        terminal.write("c\r\n")
        assert execution.get_unretrieved_output() == "c"
        assert execution.get_unretrieved_output() == ""

    def test_empty_before_output(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        _start(execution, terminal)
        assert execution.get_unretrieved_output() == ""

    def test_prompt_characters_are_trimmed(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        _start(execution, terminal)
        terminal.write(f"{execution.start_marker}\r\nuser@host:~$ \r\n")
        assert execution.get_unretrieved_output() == "user@host:~"


# ---------------------------------------------------------------------------
# Detach
# ---------------------------------------------------------------------------


class TestDetach:
    def test_flushes_partial_line_then_stops_emitting(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        lines = _start(execution, terminal)
        continued: list[bool] = []
        execution.on("continue", lambda: continued.append(True))

        terminal.write(f"{execution.start_marker}\r\none\r\ntwo-partial")
        execution.detach()

        assert lines == ["one", "two-partial"]
        assert execution.full_output == "one\ntwo-partial\n"
        assert continued == [True]
        assert execution.listening is False
        assert execution.listener_count("line") == 0

        terminal.write("\r\nthree\r\n")
        assert lines == ["one", "two-partial"]
        assert execution.full_output.endswith("three\n")
        assert execution.get_unretrieved_output() == "three"

    def test_accumulates_until_completion(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        _start(execution, terminal)
        terminal.write(f"{execution.start_marker}\r\n")
        execution.detach()
        assert execution.state is ExecutionState.CAPTURING

        completed: list[bool] = []
        execution.on("completed", lambda: completed.append(True))
        terminal.write(f"server ready\r\n{execution.end_marker}\r\n")
        assert completed == [True]
        assert execution.get_unretrieved_output() == "server ready"

    def test_second_detach_keeps_unretrieved_output(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        _start(execution, terminal)
        continued: list[bool] = []
        execution.on("continue", lambda: continued.append(True))

        terminal.write(f"{execution.start_marker}\r\nbefore\r\n")
        execution.detach()
        terminal.write("after one\r\nafter two\r\n")
        execution.detach()

        assert continued == [True]
        assert execution.get_unretrieved_output() == "after one\nafter two"

    def test_detach_after_completion_keeps_unretrieved_output(
        self, terminal: FakeTerminal
    ) -> None:
        execution = CommandExecution()
        _start(execution, terminal)
        terminal.write(f"{execution.start_marker}\r\n")
        execution.detach()
        terminal.write(f"late\r\n{execution.end_marker}\r\n")
        execution.detach()

        assert execution.state is ExecutionState.COMPLETED
        assert execution.get_unretrieved_output() == "late"

    def test_partial_end_marker_is_not_flushed(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        lines = _start(execution, terminal)
        terminal.write(f"{execution.start_marker}\r\nx\r\n{execution.end_marker[:6]}")
        execution.detach()
        assert lines == ["x"]

        terminal.write(f"{execution.end_marker[6:]}\r\n")
        assert execution.state is ExecutionState.COMPLETED
        assert execution.full_output == "x\n"

    def test_detach_inside_line_listener_keeps_order(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        lines: list[str] = []

        def _on_line(line: str) -> None:
            lines.append(line)
            if line == "b":
                execution.detach()

        execution.on("line", _on_line)
        execution.run(terminal, "cmd")
        terminal.write(f"{execution.start_marker}\r\na\r\nb\r\nc\r\nd")
        assert lines == ["a", "b", "c", "d"]
        assert execution.full_output == "a\nb\nc\nd\n"


# ---------------------------------------------------------------------------
# Hot state
# ---------------------------------------------------------------------------


class TestHotState:
    def test_not_hot_before_output(self, terminal: FakeTerminal, clock: FakeClock) -> None:
        execution = CommandExecution(clock=clock)
        _start(execution, terminal)
        assert execution.is_hot is False

    def test_normal_line_decays_after_two_seconds(
        self, terminal: FakeTerminal, clock: FakeClock
    ) -> None:
        execution = CommandExecution(clock=clock)
        _start(execution, terminal)
        terminal.write(f"{execution.start_marker}\r\nhello\r\n")
        assert execution.is_hot is True
        clock.advance(1.9)
        assert execution.is_hot is True
        clock.advance(0.2)
        assert execution.is_hot is False

    def test_compiling_extends_window(self, terminal: FakeTerminal, clock: FakeClock) -> None:
        execution = CommandExecution(clock=clock)
        _start(execution, terminal)
        terminal.write(f"{execution.start_marker}\r\ncompiling module A\r\n")
        assert execution.cooldown == 15.0
        clock.advance(14.9)
        assert execution.is_hot is True
        clock.advance(0.2)
        assert execution.is_hot is False

    def test_nullifier_resets_window(self, terminal: FakeTerminal, clock: FakeClock) -> None:
        execution = CommandExecution(clock=clock)
        _start(execution, terminal)
        terminal.write(f"{execution.start_marker}\r\ncompiling module A\r\n")
        clock.advance(5)
        terminal.write("build complete\r\n")
        assert execution.cooldown == 2.0
        clock.advance(2.1)
        assert execution.is_hot is False

    def test_tracks_activity_after_detach(
        self, terminal: FakeTerminal, clock: FakeClock
    ) -> None:
        execution = CommandExecution(clock=clock)
        _start(execution, terminal)
        terminal.write(f"{execution.start_marker}\r\n")
        execution.detach()
        clock.advance(100)
        terminal.write("Starting dev server\r\n")
        assert execution.is_hot is True
        assert execution.cooldown == 15.0


# ---------------------------------------------------------------------------
# Failure paths
# ---------------------------------------------------------------------------


class TestFailures:
    def test_abort_with_timeout(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        errors: list[Exception] = []
        execution.on("error", errors.append)
        lines = _start(execution, terminal, "sleep 100")

        error = CommandTimeoutError("sleep 100", 30.0)
        execution.abort(error)

        assert execution.state is ExecutionState.TIMED_OUT
        assert errors == [error]
        assert terminal.data_listeners == 0
        terminal.write(_framed(execution, "late\r\n"))
        assert lines == []

    def test_abort_is_final(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        errors: list[Exception] = []
        execution.on("error", errors.append)
        _start(execution, terminal)
        terminal.write(_framed(execution, "done\r\n"))
        execution.abort(CommandTimeoutError("cmd", 30.0))
        assert execution.state is ExecutionState.COMPLETED
        assert errors == []

    def test_send_failure_emits_error(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        errors: list[Exception] = []
        execution.on("error", errors.append)
        terminal.fail_with = TerminalClosedError("gone")
        execution.run(terminal, "ls")
        assert execution.state is ExecutionState.FAILED
        assert errors == [terminal.fail_with]
        assert terminal.data_listeners == 0

    def test_terminal_close_before_end_marker(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        errors: list[Exception] = []
        execution.on("error", errors.append)
        _start(execution, terminal, "cat big")
        terminal.write(f"{execution.start_marker}\r\npart\r\n")
        terminal.close(137)
        assert execution.state is ExecutionState.FAILED
        assert len(errors) == 1
        assert isinstance(errors[0], TerminalClosedError)
        assert "cat big" in str(errors[0])

    def test_close_after_completion_is_ignored(self, terminal: FakeTerminal) -> None:
        execution = CommandExecution()
        errors: list[Exception] = []
        execution.on("error", errors.append)
        _start(execution, terminal)
        terminal.write(_framed(execution, "ok\r\n"))
        terminal.close(0)
        assert execution.state is ExecutionState.COMPLETED
        assert errors == []

"""Command execution — one command's lifecycle inside one terminal.

The command is wrapped so the shell echoes a start marker, runs it with
stderr merged into stdout, echoes an end marker and exits with the
command's status. Everything between the two markers is captured line
by line.

Events:
    ``line``      (str)        a captured, sanitized, non-empty line
    ``completed`` ()           the end marker was seen
    ``continue``  ()           the caller may move on (completion or detach)
    ``error``     (Exception)  the command failed, timed out, or lost its terminal
"""

from __future__ import annotations

import enum
import logging
import re
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from shellpool.errors import CommandTimeoutError, TerminalClosedError
from shellpool.events import Disposable, EventEmitter
from shellpool.pool.hot import HotClassifier
from shellpool.sanitize import sanitize_lines, sanitize_output, strip_ansi

if TYPE_CHECKING:
    from shellpool.pty.terminal import Terminal

logger = logging.getLogger(__name__)


class ExecutionState(enum.Enum):
    CREATED = "created"
    AWAITING_START = "awaiting_start"
    CAPTURING = "capturing"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


TERMINAL_STATES = frozenset(
    {ExecutionState.COMPLETED, ExecutionState.TIMED_OUT, ExecutionState.FAILED}
)


def wrap_command(command: str, start_marker: str, end_marker: str) -> str:
    """Frame ``command`` between two echoed markers, preserving its exit code."""
    return (
        f'echo "{start_marker}";\n'
        f"{{ {command}; }} 2>&1;\n"
        f"EXIT_CODE=$?;\n"
        f'echo "{end_marker}";\n'
        f"exit $EXIT_CODE"
    )


def _marker_pattern(marker: str) -> re.Pattern[str]:
    # A quoted marker is the shell echoing the command itself, not its output.
    return re.compile(r"(?<![\"'])" + re.escape(marker) + r"(?!\d)")


class CommandExecution(EventEmitter):
    """Parses one command's output out of a terminal's raw data stream.

    Lines are split on ``\\n`` only once complete, so the way output is
    chunked never changes what is emitted. ``full_output`` keeps growing
    after a ``detach()``; callers drain it with ``get_unretrieved_output()``.
    """

    def __init__(
        self,
        classifier: HotClassifier | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__()
        self._classifier = classifier or HotClassifier()
        self._clock = clock

        stamp = time.time_ns()
        self.start_marker = f"START_CMD_{stamp}"
        self.end_marker = f"END_CMD_{stamp}"
        self._start_re = _marker_pattern(self.start_marker)
        self._end_re = _marker_pattern(self.end_marker)

        self.command = ""
        self.state = ExecutionState.CREATED
        self.full_output = ""
        self.last_retrieved_index = 0
        self.listening = True
        self.last_activity_time: float | None = None
        self.cooldown = self._classifier.normal_cooldown

        self._pending = ""
        self._subscriptions: list[Disposable] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self, terminal: Terminal, command: str) -> None:
        """Send the wrapped command and start listening to the terminal."""
        if self.state is not ExecutionState.CREATED:
            raise RuntimeError(f"Execution already started ({self.state.value})")

        self.command = command
        self.state = ExecutionState.AWAITING_START
        self._subscriptions = [
            terminal.on_did_write_data(self._on_data),
            terminal.on_did_close(self._on_close),
        ]

        wrapped = wrap_command(command, self.start_marker, self.end_marker)
        logger.debug("Running %r (marker %s)", command, self.start_marker)
        try:
            terminal.send_text(wrapped, True)
        except Exception as e:
            self.abort(e)

    def detach(self) -> None:
        """Stop emitting ``line`` events; keep accumulating output.

        The unterminated tail is flushed as a line first, and everything
        captured so far counts as retrieved. Only the first call has any
        effect; later output stays unretrieved until polled.
        """
        if not self.listening:
            return
        if self.state is ExecutionState.CAPTURING:
            self._drain(final=True)
        self.last_retrieved_index = len(self.full_output)
        self.listening = False
        self.remove_all_listeners("line")
        self.emit("continue")

    def abort(self, error: Exception) -> None:
        """Stop tracking the command and report ``error``.

        The shell itself is left alone; only the bookkeeping ends.
        """
        if self.finished:
            return
        if isinstance(error, CommandTimeoutError):
            self.state = ExecutionState.TIMED_OUT
        else:
            self.state = ExecutionState.FAILED
        self._release()
        self.emit("error", error)

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    # ------------------------------------------------------------------
    # Output polling
    # ------------------------------------------------------------------

    def get_unretrieved_output(self) -> str:
        """Return the output captured since the previous call."""
        unretrieved = self.full_output[self.last_retrieved_index :]
        self.last_retrieved_index = len(self.full_output)
        return "\n".join(sanitize_lines(unretrieved.split("\n"))).rstrip()

    @property
    def is_hot(self) -> bool:
        """True while the last output line is recent enough to suggest activity."""
        if self.last_activity_time is None:
            return False
        return self._clock() - self.last_activity_time < self.cooldown

    # ------------------------------------------------------------------
    # Stream parsing
    # ------------------------------------------------------------------

    def _on_data(self, data: str) -> None:
        if self.state not in (ExecutionState.AWAITING_START, ExecutionState.CAPTURING):
            return
        self._pending += data
        self._drain()

    def _drain(self, final: bool = False) -> None:
        """Consume complete lines from the pending buffer.

        With ``final`` the unterminated tail is consumed too, unless it
        could still grow into the end marker. ``_pending`` always holds
        exactly the unconsumed text, so a listener that detaches midway
        sees nothing twice.
        """
        while self.state in (ExecutionState.AWAITING_START, ExecutionState.CAPTURING):
            raw_line, sep, rest = self._pending.partition("\n")
            if not sep:
                if not final or self.state is ExecutionState.AWAITING_START:
                    return
                tail = strip_ansi(raw_line).strip()
                if not tail or self.end_marker.startswith(tail):
                    return
            self._pending = rest

            text = strip_ansi(raw_line)
            if self.state is ExecutionState.AWAITING_START:
                match = self._start_re.search(text)
                if match is None:
                    continue
                self.state = ExecutionState.CAPTURING
                text = text[match.end() :]

            match = self._end_re.search(text)
            if match is not None:
                self._process_line(text[: match.start()])
                self._complete()
                return
            self._process_line(text)
            if not sep:
                return

    def _on_close(self, exit_code: int | None) -> None:
        if self.finished:
            return
        self.abort(
            TerminalClosedError(
                f"Terminal closed (code={exit_code}) before command finished: "
                f"{self.command}"
            )
        )

    def _complete(self) -> None:
        self._pending = ""
        self.state = ExecutionState.COMPLETED
        self._release()
        logger.debug("Command %r completed", self.command)
        self.emit("completed")
        self.emit("continue")

    def _process_line(self, data: str) -> None:
        if not data.strip():
            return

        line = sanitize_output(data)
        if line:
            self.full_output += line + "\n"
            if self.listening:
                self.emit("line", line)

        self._update_hot_state(data)

    def _update_hot_state(self, data: str) -> None:
        self.last_activity_time = self._clock()
        self.cooldown = self._classifier.cooldown_for(data)

    def _release(self) -> None:
        for subscription in self._subscriptions:
            subscription.dispose()
        self._subscriptions = []

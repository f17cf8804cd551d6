"""PTY terminal — a shell in a managed pseudo-terminal."""

from __future__ import annotations

import asyncio
import codecs
import enum
import logging
import os
import pty
import signal
import subprocess
import termios
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from shellpool.errors import TerminalClosedError
from shellpool.events import Disposable, EventEmitter
from shellpool.sanitize import sanitize_binary_output, sanitize_terminal_output

logger = logging.getLogger(__name__)

DEFAULT_SHELL = ["bash", "--norc", "--noprofile", "--noediting", "-i"]

# Restarts the shell inside the same PTY whenever it exits, so input queued
# behind an `exit` is read by the next shell instead of being lost.
RESPAWN_LOOP = 'command -v "$1" >/dev/null || exit 127; while :; do "$@"; done'


@runtime_checkable
class Terminal(Protocol):
    """What the session pool needs from a terminal."""

    @property
    def cwd(self) -> str | None:
        """Current working directory of the shell, if known."""
        ...

    def on_did_write_data(self, listener: Callable[[str], None]) -> Disposable:
        """Subscribe to raw output chunks (unframed, may split lines)."""
        ...

    def on_did_close(self, listener: Callable[[int | None], None]) -> Disposable:
        """Subscribe to shell exit. The listener receives the exit code."""
        ...

    def send_text(self, text: str, add_newline: bool = True) -> None:
        """Write text to the shell's input."""
        ...


class TerminalStatus(enum.Enum):
    """Lifecycle states for a PTY terminal."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    KILLING = "killing"  # Kill requested, waiting for process to die
    KILLED = "killed"  # Killed by us (SIGKILL)
    EXITED = "exited"  # Shell exited on its own; respawned on next send


@dataclass
class PTYTerminal:
    """A shell running in a pseudo-terminal.

    - Process group isolation (start_new_session) for safe tree-killing
    - Terminal echo disabled, empty prompts, so output is just output
    - Incremental UTF-8 decoding: multibyte chars split across reads survive
    - Data and close events for subscribers
    - ``respawn``: the shell runs under a loop that restarts it in place
      when it exits (the command framing ends with ``exit``)
    - Fresh PTY on the next ``send_text`` if the whole process still exits

    Uses subprocess.Popen (not os.fork) to avoid deadlocks when
    spawned from within an asyncio event loop on macOS.
    """

    command: list[str] = field(default_factory=lambda: list(DEFAULT_SHELL))
    start_cwd: str = field(default_factory=os.getcwd)
    env: dict[str, str] = field(default_factory=dict)
    title: str = ""
    respawn: bool = True
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])

    # Internal state
    _events: EventEmitter = field(default_factory=EventEmitter, init=False)
    _scrollback: deque[str] = field(
        default_factory=lambda: deque(maxlen=64), init=False
    )
    _master_fd: int = field(default=-1, init=False)
    _proc: subprocess.Popen | None = field(default=None, init=False)
    _pid: int = field(default=0, init=False)
    _pgid: int = field(default=0, init=False)
    _reader_task: asyncio.Task | None = field(default=None, init=False)
    _status: TerminalStatus = field(default=TerminalStatus.NOT_STARTED, init=False)

    async def start(self) -> None:
        """Spawn the shell in a new PTY with its own process group."""
        self._spawn()

    def _spawn(self) -> None:
        master_fd, slave_fd = pty.openpty()
        self._master_fd = master_fd

        # No echo: the shell must not reflect the wrapped command back
        attrs = termios.tcgetattr(slave_fd)
        attrs[3] = attrs[3] & ~termios.ECHO
        termios.tcsetattr(slave_fd, termios.TCSANOW, attrs)

        env = {**os.environ, **self.env}
        env["TERM"] = "dumb"  # Minimize ANSI escape sequences
        env["PS1"] = ""
        env["PS2"] = ""
        env.pop("PROMPT_COMMAND", None)

        try:
            self._proc = subprocess.Popen(
                self._argv(),
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,  # Creates new process group
                env=env,
                cwd=self.start_cwd,
            )
        except OSError:
            os.close(master_fd)
            self._master_fd = -1
            raise
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        self._pid = self._proc.pid
        self._pgid = os.getpgid(self._pid)
        self._status = TerminalStatus.RUNNING
        self._reader_task = asyncio.get_running_loop().create_task(
            self._read_loop(self._master_fd)
        )

        logger.info(
            "Terminal %s (%s) started: pid=%d pgid=%d cwd=%s cmd=%s",
            self.id,
            self.title,
            self._pid,
            self._pgid,
            self.start_cwd,
            " ".join(self.command),
        )

    def _argv(self) -> list[str]:
        if not self.respawn:
            return list(self.command)
        return ["/bin/sh", "-c", RESPAWN_LOOP, "shellpool", *self.command]

    async def _read_loop(self, master_fd: int) -> None:
        """Read the PTY master fd and emit decoded chunks."""
        loop = asyncio.get_running_loop()
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while self._status == TerminalStatus.RUNNING:
                try:
                    data = await loop.run_in_executor(None, os.read, master_fd, 4096)
                except OSError:
                    break

                if not data:
                    break

                text = decoder.decode(data)
                if text:
                    self._scrollback.append(text)
                    self._events.emit("data", text)
        finally:
            tail = decoder.decode(b"", final=True)
            if tail:
                self._events.emit("data", tail)
            # Only transition to EXITED if we weren't already killing, and
            # this loop still belongs to the current shell
            if self._status == TerminalStatus.RUNNING and master_fd == self._master_fd:
                exit_code = self._proc.poll() if self._proc else None
                self._status = TerminalStatus.EXITED
                try:
                    os.close(master_fd)
                except OSError:
                    pass
                logger.debug(
                    "Terminal %s (%s) shell exited (code=%s), last output: %r",
                    self.id,
                    self.title,
                    exit_code,
                    self.read_tail()[-200:],
                )
                self._events.emit("close", exit_code)

    def on_did_write_data(self, listener: Callable[[str], None]) -> Disposable:
        return self._events.on("data", listener)

    def on_did_close(self, listener: Callable[[int | None], None]) -> Disposable:
        return self._events.on("close", listener)

    def send_text(self, text: str, add_newline: bool = True) -> None:
        """Write text to the shell, respawning it if it exited on its own."""
        if self._status in (TerminalStatus.KILLING, TerminalStatus.KILLED):
            raise TerminalClosedError(f"Terminal {self.id} was killed")
        if self._status in (TerminalStatus.NOT_STARTED, TerminalStatus.EXITED):
            self._spawn()

        if add_newline and not text.endswith("\n"):
            text += "\n"
        try:
            os.write(self._master_fd, text.encode("utf-8"))
        except OSError as e:
            raise TerminalClosedError(
                f"Terminal {self.id} rejected input: {e}"
            ) from e

    @property
    def cwd(self) -> str | None:
        """The shell's working directory, or where it starts if unknown."""
        if self._status == TerminalStatus.RUNNING and self._pid:
            pid = self._pid
            if self.respawn:
                # The shell is the respawn loop's child
                try:
                    with open(f"/proc/{pid}/task/{pid}/children") as f:
                        children = f.read().split()
                except OSError:
                    children = []
                if children:
                    pid = int(children[0])
            try:
                return os.readlink(f"/proc/{pid}/cwd")
            except OSError:
                pass
        return self.start_cwd

    def read_tail(self) -> str:
        """Recent output, cleaned for logs and error messages."""
        return sanitize_binary_output(
            sanitize_terminal_output("".join(self._scrollback))
        )

    def kill(self) -> None:
        """Kill the entire process tree."""
        if self._status not in (TerminalStatus.RUNNING, TerminalStatus.KILLING):
            self._status = TerminalStatus.KILLED
            return

        self._status = TerminalStatus.KILLING
        try:
            os.killpg(self._pgid, signal.SIGKILL)
            logger.info("Killed terminal %s (pgid=%d)", self.id, self._pgid)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)
        except OSError as e:
            logger.warning("Error killing terminal %s: %s", self.id, e)

        # Wait for process to be reaped (avoids zombies)
        if self._proc is not None:
            try:
                self._proc.wait(timeout=2)
            except subprocess.TimeoutExpired:
                logger.warning("Terminal %s did not exit after SIGKILL", self.id)

        try:
            os.close(self._master_fd)
        except OSError:
            pass

        self._status = TerminalStatus.KILLED
        self._events.emit("close", None)

    @property
    def alive(self) -> bool:
        return self._status == TerminalStatus.RUNNING

    @property
    def status(self) -> TerminalStatus:
        return self._status

    def __del__(self) -> None:
        """Ensure cleanup on garbage collection."""
        if self._status in (TerminalStatus.RUNNING, TerminalStatus.KILLING):
            self.kill()


async def spawn_terminal(
    cwd: str,
    command: list[str] | None = None,
    env: dict[str, str] | None = None,
) -> PTYTerminal:
    """Start a PTY shell bound to ``cwd``."""
    terminal = PTYTerminal(
        command=list(command or DEFAULT_SHELL),
        start_cwd=cwd,
        env=dict(env or {}),
        title=os.path.basename(os.path.normpath(cwd)) or cwd,
    )
    await terminal.start()
    return terminal

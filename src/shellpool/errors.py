"""Exception types raised by shellpool."""

from __future__ import annotations


class ShellPoolError(RuntimeError):
    """Base class for shellpool errors."""


class CommandTimeoutError(ShellPoolError, TimeoutError):
    """No end marker was seen within the command timeout.

    The shell is not signalled; only the tracking of the command stops.
    """

    def __init__(self, command: str, timeout: float) -> None:
        super().__init__(f"Command execution timeout: {command}")
        self.command = command
        self.timeout = timeout


class TerminalClosedError(ShellPoolError):
    """The terminal was killed, or exited before the command finished."""


class SessionCreationError(ShellPoolError):
    """The registry could not provision a new session."""


class SessionBusyError(ShellPoolError):
    """A command was submitted to a session that is already running one."""

    def __init__(self, session_id: int) -> None:
        super().__init__(f"Session {session_id} is busy")
        self.session_id = session_id

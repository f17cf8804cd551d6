"""shellpool — run commands in reusable shell sessions and stream their output."""

from shellpool.errors import (
    CommandTimeoutError,
    SessionBusyError,
    SessionCreationError,
    ShellPoolError,
    TerminalClosedError,
)
from shellpool.pool import ExecutionHandle, SessionPool, SessionRegistry

__version__ = "0.1.0"

__all__ = [
    "CommandTimeoutError",
    "ExecutionHandle",
    "SessionBusyError",
    "SessionCreationError",
    "SessionPool",
    "SessionRegistry",
    "ShellPoolError",
    "TerminalClosedError",
]

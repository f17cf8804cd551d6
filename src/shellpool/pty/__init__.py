"""PTY terminals — shells in managed pseudo-terminals.

Each terminal runs one shell with process group isolation, publishes its
raw output as data events, and answers where its shell currently is.
"""

from shellpool.pty.terminal import (
    DEFAULT_SHELL,
    PTYTerminal,
    Terminal,
    TerminalStatus,
    spawn_terminal,
)

__all__ = [
    "DEFAULT_SHELL",
    "PTYTerminal",
    "Terminal",
    "TerminalStatus",
    "spawn_terminal",
]

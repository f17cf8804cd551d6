"""Session pool — reusable shells, marker-framed commands, live output lines."""

from shellpool.pool.execution import CommandExecution, ExecutionState, wrap_command
from shellpool.pool.hot import HotClassifier
from shellpool.pool.manager import ExecutionHandle, SessionPool, paths_equal
from shellpool.pool.registry import Session, SessionRegistry

__all__ = [
    "CommandExecution",
    "ExecutionHandle",
    "ExecutionState",
    "HotClassifier",
    "Session",
    "SessionPool",
    "SessionRegistry",
    "paths_equal",
    "wrap_command",
]

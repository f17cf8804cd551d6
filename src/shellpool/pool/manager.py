"""Session pool — hands out idle sessions and runs commands in them."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Callable, Generator
from typing import Any

from shellpool.errors import CommandTimeoutError, SessionBusyError
from shellpool.events import Disposable, Listener
from shellpool.pool.execution import CommandExecution
from shellpool.pool.hot import HotClassifier
from shellpool.pool.registry import Session, SessionRegistry

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT = 30.0


def paths_equal(a: str | None, b: str | None) -> bool:
    """Compare two paths after resolving and normalizing them for this OS."""
    if not a or not b:
        return False

    def _normalize(path: str) -> str:
        return os.path.normcase(os.path.normpath(os.path.realpath(path)))

    return _normalize(a) == _normalize(b)


class ExecutionHandle:
    """A running command: subscribe to its events, or just ``await`` it.

    Awaiting resolves to ``None`` once the command finishes (or the caller
    detaches) and raises if it fails or times out. Events keep flowing
    either way, so both styles can be combined. A failed handle that is
    never awaited is not reported by asyncio; the pool logs the error.
    """

    def __init__(self, execution: CommandExecution, future: asyncio.Future[None]) -> None:
        self._execution = execution
        self._future = future

    @property
    def execution(self) -> CommandExecution:
        return self._execution

    def on(self, event: str, listener: Listener) -> Disposable:
        return self._execution.on(event, listener)

    def once(self, event: str, listener: Listener) -> Disposable:
        return self._execution.once(event, listener)

    def off(self, event: str, listener: Listener) -> None:
        self._execution.off(event, listener)

    def detach(self) -> None:
        """Stop streaming lines and resolve; the command keeps running."""
        self._execution.detach()

    def get_unretrieved_output(self) -> str:
        return self._execution.get_unretrieved_output()

    @property
    def is_hot(self) -> bool:
        return self._execution.is_hot

    def done(self) -> bool:
        return self._future.done()

    def __await__(self) -> Generator[Any, None, None]:
        return self._future.__await__()


class SessionPool:
    """Maps working directories to reusable sessions and tracks their commands.

    The pool only reports on sessions it has acquired itself, although the
    registry may be shared with other pools. At most one command runs per
    session; the session is busy until the command's end marker arrives or
    the command fails.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        command_timeout: float = COMMAND_TIMEOUT,
        classifier: HotClassifier | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._command_timeout = command_timeout
        self._classifier = classifier or HotClassifier()
        self._clock = clock
        self._session_ids: set[int] = set()
        self._executions: dict[int, CommandExecution] = {}

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    async def acquire_session(self, working_directory: str) -> Session:
        """Return an idle session already in ``working_directory``, or a new one."""
        for session in self._registry.list_all_sessions():
            if session.busy:
                continue
            # A command may have cd'ed the shell elsewhere; ask where it is now.
            if paths_equal(working_directory, session.cwd):
                self._session_ids.add(session.id)
                logger.debug("Reusing session %d for %s", session.id, working_directory)
                return session

        session = await self._registry.create_session(working_directory)
        self._session_ids.add(session.id)
        return session

    def list_sessions(self, busy: bool) -> list[dict[str, Any]]:
        """Owned sessions whose busy flag equals ``busy``."""
        result = []
        for session_id in sorted(self._session_ids):
            session = self._registry.get_session(session_id)
            if session is not None and session.busy == busy:
                result.append({"id": session.id, "last_command": session.last_command})
        return result

    def pending_output(self, session_id: int) -> str:
        """Output the session's running command produced since the last call."""
        if session_id not in self._session_ids:
            return ""
        execution = self._executions.get(session_id)
        return execution.get_unretrieved_output() if execution else ""

    def is_hot(self, session_id: int) -> bool:
        execution = self._executions.get(session_id)
        return execution.is_hot if execution else False

    def submit_command(self, session: Session, command: str) -> ExecutionHandle:
        """Start ``command`` in ``session`` and return its handle.

        Must be called from a running event loop. The command is sent before
        this returns.

        Raises:
            SessionBusyError: if the session is already running a command.
        """
        if session.busy:
            raise SessionBusyError(session.id)

        loop = asyncio.get_running_loop()
        session.busy = True
        session.last_command = command
        execution = CommandExecution(classifier=self._classifier, clock=self._clock)
        self._executions[session.id] = execution
        future: asyncio.Future[None] = loop.create_future()

        def _on_timeout() -> None:
            execution.abort(CommandTimeoutError(command, self._command_timeout))

        timer = loop.call_later(self._command_timeout, _on_timeout)

        def _release() -> None:
            session.busy = False
            if self._executions.get(session.id) is execution:
                del self._executions[session.id]

        def _settle(error: BaseException | None = None) -> None:
            timer.cancel()
            if future.done():
                return
            if error is None:
                future.set_result(None)
            else:
                future.set_exception(error)
                # Logged in _on_error; awaiting the handle still raises
                future.exception()

        def _on_error(error: BaseException) -> None:
            logger.error("Error in session %d: %s", session.id, error)
            _release()
            _settle(error)

        execution.once("completed", _release)
        execution.once("continue", _settle)
        execution.once("error", _on_error)

        execution.run(session.terminal, command)
        return ExecutionHandle(execution, future)

    def dispose_all(self) -> None:
        """Forget every owned session and tracked command."""
        self._session_ids.clear()
        self._executions.clear()

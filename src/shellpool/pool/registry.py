"""Session registry — the table of shell sessions, keyed by integer id."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shellpool.errors import SessionCreationError
from shellpool.pty.terminal import Terminal, spawn_terminal

logger = logging.getLogger(__name__)

TerminalFactory = Callable[[str], Awaitable[Terminal]]


@dataclass(eq=False)
class Session:
    """A reusable shell bound (initially) to a working directory."""

    id: int
    terminal: Terminal
    busy: bool = False
    last_command: str = ""

    @property
    def cwd(self) -> str | None:
        """Where the shell reports it is. ``None`` if it can't tell."""
        return self.terminal.cwd


class SessionRegistry:
    """Creates, tracks and disposes sessions.

    Shared by every pool that should see the same sessions. Sessions are
    listed in creation order; ids start at 1 and are never reused.
    """

    MAX_SESSIONS = 10

    def __init__(
        self,
        terminal_factory: TerminalFactory | None = None,
        max_sessions: int = MAX_SESSIONS,
    ) -> None:
        self._sessions: dict[int, Session] = {}
        self._ids = itertools.count(1)
        self._terminal_factory = terminal_factory or spawn_terminal
        self.max_sessions = max_sessions

    async def create_session(self, working_directory: str) -> Session:
        """Provision a new session whose shell starts in ``working_directory``.

        Raises:
            SessionCreationError: if the terminal could not be started, or
                the registry is full of busy sessions.
        """
        evict: Session | None = None
        if len(self._sessions) >= self.max_sessions:
            evict = next((s for s in self._sessions.values() if not s.busy), None)
            if evict is None:
                raise SessionCreationError(
                    f"All {len(self._sessions)} sessions are busy"
                )

        try:
            terminal = await self._spawn(working_directory)
        except Exception as e:
            raise SessionCreationError(
                f"Failed to start a shell in {working_directory}: {e}"
            ) from e

        # The victim may have been taken while the shell was starting
        if evict is not None and not evict.busy:
            logger.warning("Max sessions reached, removing oldest idle: %d", evict.id)
            await self.remove_session(evict.id)

        session = Session(id=next(self._ids), terminal=terminal)
        self._sessions[session.id] = session
        logger.info("Session %d created in %s", session.id, working_directory)
        return session

    @retry(
        retry=retry_if_exception_type(OSError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _spawn(self, working_directory: str) -> Terminal:
        """Start a terminal, retrying transient OS errors (e.g. no free PTYs)."""
        return await self._terminal_factory(working_directory)

    def get_session(self, session_id: int) -> Session | None:
        return self._sessions.get(session_id)

    def list_all_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    async def remove_session(self, session_id: int) -> None:
        """Kill a session's shell and forget it."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        kill = getattr(session.terminal, "kill", None)
        if kill is not None:
            kill()

    async def cleanup(self) -> None:
        """Remove all sessions. Called on shutdown."""
        for session_id in list(self._sessions):
            await self.remove_session(session_id)
        logger.info("All sessions cleaned up")

    def __len__(self) -> int:
        return len(self._sessions)

"""Shared fixtures: in-memory terminals and a controllable clock."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from shellpool.events import Disposable, EventEmitter
from shellpool.pool.registry import SessionRegistry


class FakeTerminal:
    """Terminal double: records sent text, lets tests push output."""

    def __init__(self, cwd: str | None = None) -> None:
        self._events = EventEmitter()
        self.reported_cwd = cwd
        self.sent: list[tuple[str, bool]] = []
        self.fail_with: Exception | None = None
        self.killed = False

    @property
    def cwd(self) -> str | None:
        return self.reported_cwd

    def on_did_write_data(self, listener: Callable[[str], None]) -> Disposable:
        return self._events.on("data", listener)

    def on_did_close(self, listener: Callable[[int | None], None]) -> Disposable:
        return self._events.on("close", listener)

    def send_text(self, text: str, add_newline: bool = True) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((text, add_newline))

    def write(self, data: str) -> None:
        self._events.emit("data", data)

    def close(self, exit_code: int | None = 0) -> None:
        self._events.emit("close", exit_code)

    def kill(self) -> None:
        self.killed = True

    @property
    def data_listeners(self) -> int:
        return self._events.listener_count("data")


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def terminal() -> FakeTerminal:
    return FakeTerminal(cwd="/tmp")


@pytest.fixture
def registry() -> SessionRegistry:
    async def _factory(cwd: str) -> FakeTerminal:
        return FakeTerminal(cwd=cwd)

    return SessionRegistry(terminal_factory=_factory)

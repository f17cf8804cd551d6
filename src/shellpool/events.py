"""Synchronous event emitter shared by terminals and command executions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class Disposable:
    """Handle returned by a subscription. ``dispose()`` unsubscribes.

    Safe to call more than once.
    """

    def __init__(self, on_dispose: Callable[[], None]) -> None:
        self._on_dispose: Callable[[], None] | None = on_dispose

    def dispose(self) -> None:
        if self._on_dispose is None:
            return
        on_dispose, self._on_dispose = self._on_dispose, None
        on_dispose()

    @property
    def disposed(self) -> bool:
        return self._on_dispose is None


class EventEmitter:
    """Named-event broadcast: emitter -> listeners, in subscription order.

    Listeners run synchronously inside ``emit()``. A listener that raises
    is logged and the remaining listeners still run.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[tuple[Listener, bool]]] = {}

    def on(self, event: str, listener: Listener) -> Disposable:
        """Subscribe ``listener`` to every future ``event``."""
        return self._add(event, listener, once=False)

    def once(self, event: str, listener: Listener) -> Disposable:
        """Subscribe ``listener`` to the next ``event`` only."""
        return self._add(event, listener, once=True)

    def off(self, event: str, listener: Listener) -> None:
        """Remove the first subscription of ``listener`` to ``event``."""
        entries = self._listeners.get(event)
        if not entries:
            return
        for i, (fn, _) in enumerate(entries):
            if fn == listener:
                del entries[i]
                break

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener of ``event``. Returns True if any ran."""
        entries = self._listeners.get(event)
        if not entries:
            return False
        # Snapshot: listeners may subscribe or unsubscribe while we iterate.
        snapshot = list(entries)
        for entry in snapshot:
            fn, once = entry
            if once:
                try:
                    entries.remove(entry)
                except ValueError:
                    continue  # already removed by an earlier listener
            try:
                fn(*args)
            except Exception:
                logger.exception("Error in %r listener %r", event, fn)
        return True

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def _add(self, event: str, listener: Listener, once: bool) -> Disposable:
        entry = (listener, once)
        self._listeners.setdefault(event, []).append(entry)

        def _remove() -> None:
            entries = self._listeners.get(event)
            if entries is None:
                return
            for i, existing in enumerate(entries):
                if existing is entry:
                    del entries[i]
                    break

        return Disposable(_remove)

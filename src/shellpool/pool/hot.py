"""Keyword heuristic for "is this command probably still working?"."""

from __future__ import annotations

from dataclasses import dataclass

COMPILING_MARKERS: tuple[str, ...] = (
    "compiling",
    "building",
    "bundling",
    "transpiling",
    "generating",
    "starting",
)
MARKER_NULLIFIERS: tuple[str, ...] = (
    "compiled",
    "success",
    "finish",
    "complete",
    "succeed",
    "done",
    "end",
    "stop",
    "exit",
    "terminate",
    "error",
    "fail",
)

HOT_TIMEOUT_NORMAL = 2.0
HOT_TIMEOUT_COMPILING = 15.0


@dataclass(frozen=True)
class HotClassifier:
    """Maps an output line to how long the command stays "hot" after it.

    A line that mentions a long-running phase (e.g. "compiling") and none
    of the nullifiers (e.g. "done", "error") buys ``active_cooldown``
    seconds; anything else buys ``normal_cooldown``.
    """

    phase_markers: tuple[str, ...] = COMPILING_MARKERS
    nullifiers: tuple[str, ...] = MARKER_NULLIFIERS
    active_cooldown: float = HOT_TIMEOUT_COMPILING
    normal_cooldown: float = HOT_TIMEOUT_NORMAL

    def is_long_running(self, line: str) -> bool:
        lowered = line.lower()
        return any(m.lower() in lowered for m in self.phase_markers) and not any(
            n.lower() in lowered for n in self.nullifiers
        )

    def cooldown_for(self, line: str) -> float:
        if self.is_long_running(line):
            return self.active_cooldown
        return self.normal_cooldown

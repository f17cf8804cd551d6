"""Tests for shellpool.pool.hot.HotClassifier."""

from __future__ import annotations

from shellpool.pool.hot import HotClassifier


class TestHotClassifier:
    def test_compiling_line_is_long_running(self) -> None:
        c = HotClassifier()
        assert c.is_long_running("Compiling module A")
        assert c.cooldown_for("compiling module A") == 15.0

    def test_nullifier_wins(self) -> None:
        c = HotClassifier()
        assert not c.is_long_running("Compiling... done")
        assert c.cooldown_for("build complete") == 2.0

    def test_plain_line(self) -> None:
        assert HotClassifier().cooldown_for("hello") == 2.0

    def test_case_insensitive(self) -> None:
        assert HotClassifier().is_long_running("BUNDLING assets")

    def test_custom_policy(self) -> None:
        c = HotClassifier(
            phase_markers=("indexing",),
            nullifiers=("indexed",),
            active_cooldown=60.0,
            normal_cooldown=1.0,
        )
        assert c.cooldown_for("Indexing repository") == 60.0
        assert c.cooldown_for("Indexed 10 files") == 1.0
        assert c.cooldown_for("compiling") == 1.0

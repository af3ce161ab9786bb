"""Marker store: create / update / hide / destroy from cycle results."""

from __future__ import annotations

import numpy as np

from desk_labels.core.config_loader import RenderingSettings
from desk_labels.rendering.marker_store import MarkerStore
from desk_labels.tracking.stabilizer import CycleResult, TrackSnapshot


def snapshot(track_id="cup_41_0", x=0.5, text="cup"):
    return TrackSnapshot(
        track_id=track_id,
        position=np.array([x, 0.5, 1.0]),
        rotation=np.array([0.0, 0.0, 0.0, 1.0]),
        scale=np.array([0.1, 0.1, 1.0]),
        display_text=text,
    )


class TestMarkerStore:
    def setup_method(self) -> None:
        self.store = MarkerStore(RenderingSettings(auto_hide_delay=2.0))

    def test_visible_creates_then_updates(self):
        self.store.apply(CycleResult(cycle=1, visible=[snapshot()]), now=0.0)
        self.store.apply(CycleResult(cycle=2, visible=[snapshot(x=0.7)]), now=0.5)

        marker = self.store.get("cup_41_0")
        assert marker.active
        assert marker.text == "cup"
        assert marker.position[0] == 0.7
        assert marker.last_update_time == 0.5
        assert len(self.store) == 1

    def test_hidden_and_removed(self):
        self.store.apply(CycleResult(cycle=1, visible=[snapshot(), snapshot("book_73_1")]), now=0.0)

        self.store.apply(CycleResult(cycle=2, hidden=["cup_41_0"], removed=["book_73_1"]), now=0.1)

        assert not self.store.get("cup_41_0").active
        assert self.store.get("book_73_1") is None
        assert self.store.active_markers() == []

    def test_skipped_cycle_changes_nothing(self):
        self.store.apply(CycleResult(cycle=1, visible=[snapshot()]), now=0.0)
        self.store.apply(CycleResult(cycle=2, removed=["cup_41_0"], skipped=True), now=0.1)
        assert self.store.get("cup_41_0").active

    def test_auto_hide_after_delay(self):
        self.store.apply(CycleResult(cycle=1, visible=[snapshot()]), now=0.0)

        self.store.tick(now=2.0)
        assert self.store.get("cup_41_0").active

        self.store.tick(now=2.01)
        assert not self.store.get("cup_41_0").active

        self.store.apply(CycleResult(cycle=2, visible=[snapshot()]), now=3.0)
        assert self.store.get("cup_41_0").active

    def test_auto_hide_disabled(self):
        store = MarkerStore(RenderingSettings(disable_auto_hide=True))
        store.apply(CycleResult(cycle=1, visible=[snapshot()]), now=0.0)
        store.tick(now=100.0)
        assert store.get("cup_41_0").active

    def test_remove_and_clear(self):
        self.store.apply(CycleResult(cycle=1, visible=[snapshot(), snapshot("book_73_1")]), now=0.0)
        self.store.remove(["book_73_1", "missing"])
        assert len(self.store) == 1
        self.store.clear()
        assert len(self.store) == 0

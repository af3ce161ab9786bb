"""Track stabilizer: matching, confirmation, locking, removal and anchoring."""

from __future__ import annotations

import numpy as np
import pytest

from conftest import MappedResolver, make_detection
from desk_labels.core.config_loader import StabilizerSettings
from desk_labels.tracking.stabilizer import TrackStabilizer
from desk_labels.tracking.track import TrackState


def run_cycles(stabilizer, detections, count, camera_position=None):
    result = None
    for _ in range(count):
        result = stabilizer.update(list(detections), camera_position)
    return result


class TestLifecycle:
    def setup_method(self) -> None:
        self.stabilizer = TrackStabilizer(StabilizerSettings(), MappedResolver())

    def test_visible_exactly_at_stability_count(self):
        det = make_detection(confidence=0.5)

        first = self.stabilizer.update([det])
        assert first.visible == []
        assert first.hidden == ["cup_41_0"]

        second = self.stabilizer.update([det])
        assert second.visible == []

        third = self.stabilizer.update([det])
        assert [s.track_id for s in third.visible] == ["cup_41_0"]
        assert third.visible[0].display_text == "cup"
        assert self.stabilizer.get_track("cup_41_0").state(3) == TrackState.STABLE

    def test_removed_exactly_at_removal_count(self):
        run_cycles(self.stabilizer, [make_detection()], 3)

        result = run_cycles(self.stabilizer, [], 4)
        assert result.removed == []
        assert len(self.stabilizer) == 1

        result = self.stabilizer.update([])
        assert result.removed == ["cup_41_0"]
        assert len(self.stabilizer) == 0

    def test_missing_track_stays_visible_until_removed(self):
        run_cycles(self.stabilizer, [make_detection()], 3)
        result = self.stabilizer.update(None)
        assert [s.track_id for s in result.visible] == ["cup_41_0"]

    def test_detection_count_survives_misses(self):
        det = make_detection()
        run_cycles(self.stabilizer, [det], 2)
        run_cycles(self.stabilizer, [], 2)

        result = self.stabilizer.update([det])
        assert [s.track_id for s in result.visible] == ["cup_41_0"]

    def test_ids_are_not_reused(self):
        det = make_detection()
        self.stabilizer.update([det])
        run_cycles(self.stabilizer, [], 5)
        assert len(self.stabilizer) == 0

        self.stabilizer.update([det])
        assert self.stabilizer.track_ids == ["cup_41_1"]

    def test_reset_discards_all_tracks(self):
        self.stabilizer.update([make_detection(), make_detection("book", 73, center=(0.1, 0.1))])

        assert self.stabilizer.reset() == ["cup_41_0", "book_73_1"]
        assert len(self.stabilizer) == 0

        self.stabilizer.update([make_detection()])
        assert self.stabilizer.track_ids == ["cup_41_2"]


class TestLocking:
    def setup_method(self) -> None:
        self.stabilizer = TrackStabilizer(StabilizerSettings(), MappedResolver())

    def feed(self, *confidences):
        for confidence in confidences:
            self.stabilizer.update([make_detection(confidence=confidence)])
        return self.stabilizer.get_track("cup_41_0")

    def test_locks_on_third_high_confidence_cycle(self):
        track = self.feed(0.8, 0.8)
        assert not track.is_locked

        track = self.feed(0.8)
        assert track.is_locked
        assert track.locked_label_text == "cup"
        assert track.state(3) == TrackState.LOCKED

    def test_lock_survives_low_confidence(self):
        self.feed(0.8, 0.8, 0.8)
        track = self.feed(0.1, 0.1)
        assert track.is_locked
        assert track.display_text == "cup"

    def test_low_confidence_cycle_resets_streak(self):
        track = self.feed(0.8, 0.8, 0.5, 0.8, 0.8)
        assert not track.is_locked
        assert track.consecutive_high_confidence_frames == 2

        track = self.feed(0.8)
        assert track.is_locked

    def test_missed_cycle_resets_streak(self):
        self.feed(0.8, 0.8)
        self.stabilizer.update([])
        track = self.stabilizer.get_track("cup_41_0")
        assert track.consecutive_high_confidence_frames == 0

        track = self.feed(0.8, 0.8)
        assert not track.is_locked
        track = self.feed(0.8)
        assert track.is_locked

    def test_running_average_confidence(self):
        track = self.feed(0.6, 0.8, 1.0)
        assert track.avg_confidence == pytest.approx(0.8)
        assert track.last_confidence == pytest.approx(1.0)


class TestMatching:
    def test_class_must_match(self):
        stabilizer = TrackStabilizer(StabilizerSettings(), MappedResolver())
        stabilizer.update([make_detection()])
        stabilizer.update([make_detection("bottle", 39)])

        assert stabilizer.track_ids == ["cup_41_0", "bottle_39_1"]

    def test_distance_must_be_within_threshold(self):
        stabilizer = TrackStabilizer(StabilizerSettings(), MappedResolver())
        stabilizer.update([make_detection(center=(0.2, 0.5))])
        stabilizer.update([make_detection(center=(0.5, 0.5))])

        assert len(stabilizer) == 2

    def test_each_track_claimed_once_per_cycle(self):
        stabilizer = TrackStabilizer(StabilizerSettings(), MappedResolver())
        stabilizer.update([make_detection(center=(0.5, 0.5))])

        stabilizer.update([
            make_detection(center=(0.5, 0.5)),
            make_detection(center=(0.52, 0.5)),
        ])

        assert stabilizer.track_ids == ["cup_41_0", "cup_41_1"]
        assert stabilizer.get_track("cup_41_0").consecutive_detections == 2
        assert stabilizer.get_track("cup_41_1").consecutive_detections == 1

    def _two_tracks_then_one_detection(self, strategy):
        stabilizer = TrackStabilizer(StabilizerSettings(match_strategy=strategy), MappedResolver())
        stabilizer.update([
            make_detection(center=(0.30, 0.5)),
            make_detection(center=(0.45, 0.5)),
        ])
        stabilizer.update([make_detection(center=(0.44, 0.5))])
        return stabilizer

    def test_first_fit_takes_first_created_track(self):
        stabilizer = self._two_tracks_then_one_detection("first_fit")
        assert stabilizer.get_track("cup_41_0").consecutive_misses == 0
        assert stabilizer.get_track("cup_41_1").consecutive_misses == 1

    def test_nearest_takes_closest_track(self):
        stabilizer = self._two_tracks_then_one_detection("nearest")
        assert stabilizer.get_track("cup_41_0").consecutive_misses == 1
        assert stabilizer.get_track("cup_41_1").consecutive_misses == 0


class TestFiltersAndResolver:
    def test_min_confidence_and_label_filters(self):
        settings = StabilizerSettings(min_confidence=0.15, label_filters=("cup",))
        stabilizer = TrackStabilizer(settings, MappedResolver())

        stabilizer.update([
            make_detection(confidence=0.1),
            make_detection("train", 6, center=(0.1, 0.1)),
            make_detection(confidence=0.15, center=(0.8, 0.8)),
        ])

        assert stabilizer.track_ids == ["cup_41_0"]

    def test_unresolved_detection_is_skipped(self):
        resolver = MappedResolver(miss_labels={"cup"})
        stabilizer = TrackStabilizer(StabilizerSettings(), resolver)

        result = stabilizer.update([make_detection(), make_detection("book", 73)])

        assert not result.skipped
        assert stabilizer.track_ids == ["book_73_0"]

    def test_resolver_exception_is_skipped(self):
        class BrokenResolver:
            def resolve(self, detection):
                raise RuntimeError("raycast failed")

        stabilizer = TrackStabilizer(StabilizerSettings(), BrokenResolver())
        result = stabilizer.update([make_detection()])
        assert not result.skipped
        assert len(stabilizer) == 0

    def test_cycle_skipped_without_resolver(self):
        stabilizer = TrackStabilizer(StabilizerSettings(), MappedResolver())
        stabilizer.update([make_detection()])
        stabilizer.resolver = None

        result = stabilizer.update([make_detection()])

        assert result.skipped
        track = stabilizer.get_track("cup_41_0")
        assert track.consecutive_misses == 0
        assert track.consecutive_detections == 1

    def test_empty_cycle_without_resolver_counts_misses(self):
        stabilizer = TrackStabilizer(StabilizerSettings(), MappedResolver())
        stabilizer.update([make_detection()])
        stabilizer.resolver = None

        result = stabilizer.update([])

        assert not result.skipped
        assert stabilizer.get_track("cup_41_0").consecutive_misses == 1


class TestDisplayPose:
    def setup_method(self) -> None:
        self.stabilizer = TrackStabilizer(StabilizerSettings(), MappedResolver())

    def position_after(self, x):
        result = self.stabilizer.update([make_detection(center=(x, 0.5))])
        return result.visible[0].position

    def test_anchor_holds_small_movement(self):
        run_cycles(self.stabilizer, [make_detection(center=(0.5, 0.5))], 3)

        position = self.position_after(0.55)
        np.testing.assert_allclose(position, [0.5, 0.5, 1.0])
        np.testing.assert_allclose(self.stabilizer.get_track("cup_41_0").last_position, [0.55, 0.5, 1.0])

    def test_anchor_jumps_on_large_movement(self):
        run_cycles(self.stabilizer, [make_detection(center=(0.5, 0.5))], 3)
        self.position_after(0.55)

        position = self.position_after(0.66)
        np.testing.assert_allclose(position, [0.66, 0.5, 1.0])

        position = self.position_after(0.70)
        np.testing.assert_allclose(position, [0.66, 0.5, 1.0])

    def test_billboard_faces_camera(self):
        run_cycles(self.stabilizer, [make_detection()], 2)
        result = self.stabilizer.update([make_detection()], camera_position=(0.5, 0.5, -1.0))

        np.testing.assert_allclose(result.visible[0].rotation, [0.0, 0.0, 0.0, 1.0], atol=1e-9)

    def test_resolved_rotation_without_camera(self):
        rotation = (0.0, 0.0, np.sqrt(0.5), np.sqrt(0.5))
        stabilizer = TrackStabilizer(StabilizerSettings(), MappedResolver(rotation=rotation))

        result = run_cycles(stabilizer, [make_detection()], 3)

        np.testing.assert_allclose(result.visible[0].rotation, rotation)

    def test_camera_on_marker_gives_identity(self):
        result = run_cycles(self.stabilizer, [make_detection()], 3, camera_position=(0.5, 0.5, 1.0))
        np.testing.assert_allclose(result.visible[0].rotation, [0.0, 0.0, 0.0, 1.0])

    def test_snapshots_are_copies(self):
        result = run_cycles(self.stabilizer, [make_detection()], 3)
        result.visible[0].position[0] = 99.0
        assert self.stabilizer.get_track("cup_41_0").anchor_position[0] == pytest.approx(0.5)

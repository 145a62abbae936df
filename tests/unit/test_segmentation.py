"""Tests for the segmentation policy."""
from dataclasses import FrozenInstanceError
from types import SimpleNamespace

import pytest

from trackgen.analysis.segmentation import (
    Thresholds,
    should_start_new_segment,
    split_points_into_segments,
)

T0 = 1_704_096_000


def _pt(minute, lat=52.0, lon=13.0, pid=None):
    return SimpleNamespace(id=pid, timestamp=T0 + minute * 60, latitude=lat, longitude=lon)


class TestThresholds:
    def test_defaults(self):
        t = Thresholds()
        assert t.time_threshold_minutes == 60
        assert t.distance_threshold_meters == 500

    def test_seconds(self):
        assert Thresholds(time_threshold_minutes=30).time_threshold_seconds == 1800

    def test_as_dict_round_trips_through_constructor(self):
        t = Thresholds(15, 250)
        assert Thresholds(**t.as_dict()) == t

    def test_immutable(self):
        with pytest.raises(FrozenInstanceError):
            Thresholds().time_threshold_minutes = 5


class TestShouldStartNewSegment:
    def test_no_previous_point_starts_segment(self):
        assert should_start_new_segment(_pt(0), None, Thresholds())

    def test_small_gap_continues(self):
        assert not should_start_new_segment(_pt(5), _pt(0), Thresholds())

    def test_gap_exactly_at_threshold_continues(self):
        """Only a gap strictly greater than the threshold splits."""
        assert not should_start_new_segment(_pt(60), _pt(0), Thresholds(time_threshold_minutes=60))

    def test_gap_over_threshold_splits(self):
        assert should_start_new_segment(_pt(61), _pt(0), Thresholds(time_threshold_minutes=60))

    def test_distance_over_threshold_splits(self):
        # ~1.1 km north within one minute
        assert should_start_new_segment(_pt(1, lat=52.01), _pt(0), Thresholds())

    def test_distance_under_threshold_continues(self):
        assert not should_start_new_segment(_pt(1, lat=52.003), _pt(0), Thresholds())


class TestSplitPointsIntoSegments:
    def test_empty_input(self):
        assert split_points_into_segments([], Thresholds()) == []

    def test_time_gap_splits_and_drops_singletons(self):
        """Points at 0, 5 and 65 minutes: the 60-minute gap isolates the last point."""
        points = [_pt(0, pid=1), _pt(5, pid=2), _pt(65, pid=3)]
        segments = split_points_into_segments(points, Thresholds(time_threshold_minutes=30))
        assert [[p.id for p in seg] for seg in segments] == [[1, 2]]

    def test_two_segments(self):
        points = [_pt(0, pid=1), _pt(1, pid=2), _pt(120, pid=3), _pt(121, pid=4)]
        segments = split_points_into_segments(points, Thresholds())
        assert [[p.id for p in seg] for seg in segments] == [[1, 2], [3, 4]]

    def test_distance_jump_splits(self):
        points = [_pt(0, pid=1), _pt(1, pid=2), _pt(2, lat=52.5, pid=3), _pt(3, lat=52.5, pid=4)]
        segments = split_points_into_segments(points, Thresholds())
        assert [[p.id for p in seg] for seg in segments] == [[1, 2], [3, 4]]

    def test_single_point_yields_nothing(self):
        assert split_points_into_segments([_pt(0)], Thresholds()) == []

    def test_every_segment_has_two_points(self):
        points = [_pt(m * 90, pid=m) for m in range(5)] + [_pt(500, pid=10), _pt(501, pid=11)]
        segments = split_points_into_segments(points, Thresholds())
        assert all(len(seg) >= 2 for seg in segments)
        assert [[p.id for p in seg] for seg in segments] == [[10, 11]]

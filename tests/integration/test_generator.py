"""Integration tests for the synchronous Generator and its modes."""
from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from trackgen.analysis.segmentation import Thresholds
from trackgen.models.point import Point
from trackgen.models.track import Track
from trackgen.tracks import builder as builder_module
from trackgen.tracks.generator import UnknownModeError, build_generator

BASE_TS = 1_704_096_000  # 2024-01-01 08:00 UTC
MIDNIGHT = 1_704_153_600  # 2024-01-02 00:00 UTC


def _tracks(engine, user_id=1):
    with Session(engine) as s:
        return s.exec(select(Track).where(Track.user_id == user_id).order_by(Track.start_at)).all()


def _assignments(engine, user_id=1):
    with Session(engine) as s:
        return {p.id: p.track_id for p in s.exec(select(Point).where(Point.user_id == user_id))}


class TestBulkGeneration:
    def test_creates_track_per_segment(self, engine, add_points):
        first = add_points(offsets=[0, 60, 120])
        second = add_points(offsets=[3 * 3600, 3 * 3600 + 60], lat=52.01)

        created = build_generator(engine, 1, Thresholds(), "bulk").call()

        assert created == 2
        tracks = _tracks(engine)
        assert [t.start_at for t in tracks] == [datetime(2024, 1, 1, 8, 0), datetime(2024, 1, 1, 11, 0)]
        assignments = _assignments(engine)
        assert {assignments[i] for i in first} == {tracks[0].id}
        assert {assignments[i] for i in second} == {tracks[1].id}

    def test_track_statistics(self, engine, add_points):
        add_points(offsets=[0, 60, 120], altitudes=[100.0, 110.0, 105.0])
        build_generator(engine, 1, Thresholds(), "bulk").call()

        (track,) = _tracks(engine)
        assert track.end_at == datetime(2024, 1, 1, 8, 2)
        assert track.duration == 120
        assert track.distance == pytest.approx(200, abs=1)
        assert track.elevation_gain == 10
        assert track.elevation_loss == 5
        assert track.original_path.startswith("LINESTRING(13.0 52.0,")

    def test_no_points_creates_nothing(self, engine):
        assert build_generator(engine, 1, Thresholds(), "bulk").call() == 0

    def test_isolated_points_stay_unassigned(self, engine, add_points):
        ids = add_points(offsets=[0, 2 * 3600, 4 * 3600])
        assert build_generator(engine, 1, Thresholds(), "bulk").call() == 0
        assert all(_assignments(engine)[i] is None for i in ids)

    def test_rerun_is_idempotent(self, engine, add_points):
        add_points(offsets=[0, 60, 120])
        add_points(offsets=[3 * 3600, 3 * 3600 + 60], lat=52.01)

        build_generator(engine, 1, Thresholds(), "bulk").call()
        first_run = [(t.start_at, t.end_at, t.distance) for t in _tracks(engine)]
        build_generator(engine, 1, Thresholds(), "bulk").call()
        second_run = [(t.start_at, t.end_at, t.distance) for t in _tracks(engine)]

        assert first_run == second_run

    def test_range_only_replaces_tracks_inside_it(self, engine, add_points):
        add_points(offsets=[0, 60])
        add_points(offsets=[86400, 86400 + 60])
        build_generator(engine, 1, Thresholds(), "bulk").call()
        day_one = _tracks(engine)[0].id

        build_generator(
            engine, 1, Thresholds(), "bulk",
            start_at=datetime(2024, 1, 2), end_at=datetime(2024, 1, 2, 23, 59),
        ).call()

        tracks = _tracks(engine)
        assert len(tracks) == 2
        assert tracks[0].id == day_one

    def test_user_thresholds_change_segmentation(self, engine, add_points):
        add_points(offsets=[0, 60, 20 * 60, 20 * 60 + 60])
        assert build_generator(engine, 1, Thresholds(time_threshold_minutes=10), "bulk").call() == 2

    def test_other_users_untouched(self, engine, add_points):
        other = add_points(user_id=2)
        build_generator(engine, 1, Thresholds(), "bulk").call()
        assert all(v is None for v in _assignments(engine, 2).values())
        assert len(other) == 3

    def test_failed_build_is_skipped(self, engine, add_points, caplog):
        """A failing segment is rolled back to its savepoint; later segments still build."""
        first = add_points(offsets=[0, 60, 120])
        second = add_points(offsets=[3 * 3600, 3 * 3600 + 60], lat=52.01)
        real_claim = builder_module.claim_points
        calls = []

        def flaky_claim(session, point_ids, track_id):
            calls.append(track_id)
            if len(calls) == 1:
                raise OperationalError("UPDATE point", {}, Exception("disk I/O error"))
            return real_claim(session, point_ids, track_id)

        with patch("trackgen.tracks.builder.claim_points", side_effect=flaky_claim):
            created = build_generator(engine, 1, Thresholds(), "bulk").call()

        assert created == 1
        tracks = _tracks(engine)
        assert len(tracks) == 1
        assignments = _assignments(engine)
        assert all(assignments[i] is None for i in first)
        assert {assignments[i] for i in second} == {tracks[0].id}
        assert "Failed to create track" in caplog.text


class TestDailyGeneration:
    def test_splits_cross_day_track_at_midnight(self, engine, add_points):
        ids = add_points(start=MIDNIGHT - 600, offsets=[0, 300, 900, 1200])
        build_generator(engine, 1, Thresholds(), "bulk").call()
        assert len(_tracks(engine)) == 1

        created = build_generator(engine, 1, Thresholds(), "daily", start_at=datetime(2024, 1, 2, 12)).call()

        assert created == 1
        before, after = _tracks(engine)
        assert before.start_at == datetime(2024, 1, 1, 23, 50)
        assert before.end_at == datetime(2024, 1, 1, 23, 55)
        assert after.start_at == datetime(2024, 1, 2, 0, 5)
        assignments = _assignments(engine)
        assert [assignments[i] for i in ids] == [before.id, before.id, after.id, after.id]

    def test_track_left_with_one_point_is_destroyed(self, engine, add_points):
        ids = add_points(start=MIDNIGHT - 300, offsets=[0, 600, 900])
        build_generator(engine, 1, Thresholds(), "bulk").call()

        build_generator(engine, 1, Thresholds(), "daily", start_at=datetime(2024, 1, 2)).call()

        tracks = _tracks(engine)
        assert len(tracks) == 1
        assert tracks[0].start_at == datetime(2024, 1, 2, 0, 5)
        assignments = _assignments(engine)
        assert assignments[ids[0]] is None
        assert {assignments[i] for i in ids[1:]} == {tracks[0].id}

    def test_daily_rerun_is_idempotent(self, engine, add_points):
        add_points(offsets=[0, 60, 120])
        build_generator(engine, 1, Thresholds(), "daily", start_at=datetime(2024, 1, 1)).call()
        first = [(t.start_at, t.end_at) for t in _tracks(engine)]
        build_generator(engine, 1, Thresholds(), "daily", start_at=datetime(2024, 1, 1)).call()
        assert [(t.start_at, t.end_at) for t in _tracks(engine)] == first


class TestBuildGenerator:
    def test_unknown_mode(self, engine):
        with pytest.raises(UnknownModeError):
            build_generator(engine, 1, Thresholds(), "weekly")

    def test_unknown_mode_is_value_error(self):
        assert issubclass(UnknownModeError, ValueError)


class TestReclaimedPoints:
    def test_previous_owner_is_recomputed(self, engine, add_points, build_track):
        ids = add_points(offsets=[0, 60, 120, 180, 240])
        old_id = build_track(ids[:4])

        new_id = build_track(ids[2:])

        with Session(engine) as s:
            old = s.get(Track, old_id)
            assert old.start_at == datetime(2024, 1, 1, 8, 0)
            assert old.end_at == datetime(2024, 1, 1, 8, 1)
            assert old.duration == 60
        assignments = _assignments(engine)
        assert [assignments[i] for i in ids] == [old_id, old_id, new_id, new_id, new_id]

    def test_previous_owner_left_with_one_point_is_destroyed(self, engine, add_points, build_track):
        ids = add_points(offsets=[0, 60, 120])
        old_id = build_track(ids)

        new_id = build_track(ids[1:])

        with Session(engine) as s:
            assert s.get(Track, old_id) is None
        assignments = _assignments(engine)
        assert [assignments[i] for i in ids] == [None, new_id, new_id]

    def test_previous_owner_fully_reclaimed_is_destroyed(self, engine, add_points, build_track):
        ids = add_points(offsets=[0, 60, 120])
        old_id = build_track(ids[:2])

        new_id = build_track(ids)

        assert [t.id for t in _tracks(engine)] == [new_id]

"""Shared test fixtures."""
from datetime import datetime
from typing import Generator, List, Optional

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, select

from trackgen.db.cache import Cache
from trackgen.db.engine import create_db_engine, init_db
from trackgen.models.point import Point
from trackgen.models.track import Track
from trackgen.timeutils import from_timestamp, utcnow
from trackgen.tracks.builder import TrackBuilder

# 2024-01-01 08:00:00 UTC
BASE_TS = 1_704_096_000
# ~100 m of latitude
STEP_LAT = 0.0009


class FakeClock:
    """Controllable replacement for time.time in cache tests."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine with the full schema. Fresh for each test."""
    engine = create_db_engine("sqlite:///:memory:", poolclass=StaticPool)
    init_db(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """A DB session for direct setup/inspection. Close it before calling services."""
    with Session(engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock()


@pytest.fixture(name="cache")
def cache_fixture(engine, clock) -> Cache:
    return Cache(engine, clock=clock)


@pytest.fixture(name="add_points")
def add_points_fixture(engine):
    """
    Factory: insert a walk of points and return their ids.

    ``offsets`` are seconds after ``start``; each point moves ~100 m north of
    the previous one unless explicit ``coords`` are given.
    """

    def _add(
        user_id: int = 1,
        offsets: Optional[List[int]] = None,
        start: int = BASE_TS,
        lat: float = 52.0,
        lon: float = 13.0,
        coords: Optional[List[tuple]] = None,
        track_id: Optional[int] = None,
        import_id: Optional[int] = None,
        altitudes: Optional[List[float]] = None,
    ) -> List[int]:
        offsets = offsets if offsets is not None else [0, 60, 120]
        with Session(engine, expire_on_commit=False) as s:
            points = []
            for i, offset in enumerate(offsets):
                p_lat, p_lon = coords[i] if coords else (lat + i * STEP_LAT, lon)
                points.append(
                    Point(
                        user_id=user_id,
                        timestamp=start + offset,
                        latitude=p_lat,
                        longitude=p_lon,
                        altitude=altitudes[i] if altitudes else None,
                        track_id=track_id,
                        import_id=import_id,
                    )
                )
            s.add_all(points)
            s.commit()
            return [p.id for p in points]

    return _add


@pytest.fixture(name="add_track")
def add_track_fixture(engine):
    """Factory: insert a bare Track row spanning [start_ts, end_ts] and return its id."""

    def _add(
        user_id: int = 1,
        start_ts: int = BASE_TS,
        end_ts: int = BASE_TS + 600,
        created_at: Optional[datetime] = None,
    ) -> int:
        with Session(engine) as s:
            track = Track(
                user_id=user_id,
                start_at=from_timestamp(start_ts),
                end_at=from_timestamp(end_ts),
                created_at=created_at or utcnow(),
            )
            s.add(track)
            s.commit()
            s.refresh(track)
            return track.id

    return _add


@pytest.fixture(name="build_track")
def build_track_fixture(engine):
    """Factory: build a real track (stats, path, claimed points) from point ids."""

    def _build(point_ids: List[int], user_id: int = 1) -> int:
        with Session(engine, expire_on_commit=False) as s:
            with s.begin():
                points = s.exec(
                    select(Point).where(Point.id.in_(point_ids)).order_by(Point.timestamp, Point.id)
                ).all()
                track = TrackBuilder(s).create_track_from_points(user_id, points)
            return track.id

    return _build

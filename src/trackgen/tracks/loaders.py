"""
Point loaders: where a generation run gets its points.

Every loader returns an ascending-timestamp list with no repeated ids. An
empty list is a valid result (the run creates zero tracks).
"""
import time
from typing import List, Optional

from sqlmodel import Session, select

from trackgen.models.point import Point


def _dedupe(points) -> List[Point]:
    seen = set()
    unique = []
    for p in points:
        if p.id not in seen:
            seen.add(p.id)
            unique.append(p)
    return unique


class BulkLoader:
    """All untracked points of a user, optionally within [start_at, end_at] (unix seconds)."""

    def __init__(self, user_id: int, start_at: Optional[int] = None, end_at: Optional[int] = None):
        self.user_id = user_id
        self.start_at = start_at
        self.end_at = end_at

    def load_points(self, session: Session) -> List[Point]:
        query = select(Point).where(Point.user_id == self.user_id, Point.track_id.is_(None))
        if self.start_at is not None:
            query = query.where(Point.timestamp >= self.start_at)
        if self.end_at is not None:
            query = query.where(Point.timestamp <= self.end_at)
        return _dedupe(session.exec(query.order_by(Point.timestamp, Point.id)).all())


class ChunkLoader:
    """
    Every point in a chunk's buffered window, assigned or not, so tracks
    crossing the chunk edge can be recomputed from their full extent.
    """

    def __init__(self, user_id: int, chunk):
        self.user_id = user_id
        self.chunk = chunk

    def load_points(self, session: Session) -> List[Point]:
        query = (
            select(Point)
            .where(
                Point.user_id == self.user_id,
                Point.timestamp >= self.chunk.buffer_start_timestamp,
                Point.timestamp <= self.chunk.buffer_end_timestamp,
            )
            .order_by(Point.timestamp, Point.id)
        )
        return _dedupe(session.exec(query).all())


class UntrackedLoader:
    """Untracked points from the last ``lookback_hours`` (realtime path)."""

    def __init__(self, user_id: int, lookback_hours: int = 6, now: Optional[float] = None):
        self.user_id = user_id
        self.lookback_hours = lookback_hours
        self.now = now

    def load_points(self, session: Session) -> List[Point]:
        now = int(self.now if self.now is not None else time.time())
        since = now - self.lookback_hours * 3600
        query = (
            select(Point)
            .where(
                Point.user_id == self.user_id,
                Point.track_id.is_(None),
                Point.timestamp >= since,
                Point.timestamp <= now,
            )
            .order_by(Point.timestamp, Point.id)
        )
        return _dedupe(session.exec(query).all())

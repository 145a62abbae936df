"""
Track cleaners: remove tracks that a regeneration run is about to replace.

Cleaners run inside the Generator's transaction, before points are loaded,
so a replace run never sees its own stale tracks as already assigned.
"""
import logging
from typing import Optional

from sqlalchemy import update
from sqlmodel import Session, select

from trackgen.models.point import Point
from trackgen.models.track import Track
from trackgen.timeutils import from_timestamp
from trackgen.tracks.store import destroy_tracks, track_points

logger = logging.getLogger(__name__)


class NoOpCleaner:
    def cleanup(self, session: Session) -> None:
        pass


class ReplaceCleaner:
    """Destroys tracks starting within [start_at, end_at] (unix seconds; either end open)."""

    def __init__(self, user_id: int, start_at: Optional[int] = None, end_at: Optional[int] = None):
        self.user_id = user_id
        self.start_at = start_at
        self.end_at = end_at

    def cleanup(self, session: Session) -> None:
        query = select(Track.id).where(Track.user_id == self.user_id)
        if self.start_at is not None:
            query = query.where(Track.start_at >= from_timestamp(self.start_at))
        if self.end_at is not None:
            query = query.where(Track.start_at <= from_timestamp(self.end_at))
        track_ids = list(session.exec(query).all())
        if track_ids:
            logger.info(
                "Cleaning %d existing tracks for regeneration (user: %s)",
                len(track_ids), self.user_id,
            )
            destroy_tracks(session, track_ids)


class DailyCleaner:
    """
    Releases the part of every track that overlaps [start_at, end_at].

    Unlike ReplaceCleaner this keeps the portion of a cross-day track that
    lies outside the window: points inside the window are unassigned, tracks
    left with fewer than two points are destroyed, and survivors get their
    start/end trimmed to their remaining points.
    """

    def __init__(self, user_id: int, start_at: Optional[int] = None, end_at: Optional[int] = None):
        self.user_id = user_id
        self.start_at = start_at
        self.end_at = end_at

    def cleanup(self, session: Session) -> None:
        if self.start_at is None or self.end_at is None:
            return

        overlapping = session.exec(
            select(Track).where(
                Track.user_id == self.user_id,
                Track.start_at <= from_timestamp(self.end_at),
                Track.end_at >= from_timestamp(self.start_at),
            )
        ).all()
        if not overlapping:
            return

        logger.info(
            "Processing %d overlapping tracks for user %s in window %s..%s",
            len(overlapping), self.user_id, self.start_at, self.end_at,
        )
        for track in overlapping:
            self._release_window(session, track)

    def _release_window(self, session: Session, track: Track) -> None:
        session.exec(
            update(Point)
            .where(
                Point.track_id == track.id,
                Point.timestamp >= self.start_at,
                Point.timestamp <= self.end_at,
            )
            .values(track_id=None)
        )
        remaining = track_points(session, track.id)

        if len(remaining) < 2:
            logger.debug("Track %s has %d points left, deleting", track.id, len(remaining))
            destroy_tracks(session, [track.id])
            return

        logger.debug("Track %s keeps %d points, updating boundaries", track.id, len(remaining))
        track.start_at = from_timestamp(remaining[0].timestamp)
        track.end_at = from_timestamp(remaining[-1].timestamp)
        session.add(track)

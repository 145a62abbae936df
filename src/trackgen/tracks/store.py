"""Shared track/point queries used by the generation services."""
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import delete, update
from sqlmodel import Session, select

from trackgen.models.point import Point
from trackgen.models.track import Track, TrackSegment


def track_points(session: Session, track_id: int) -> List[Point]:
    """Member points of a track, ascending timestamp."""
    return list(
        session.exec(
            select(Point)
            .where(Point.track_id == track_id)
            .order_by(Point.timestamp, Point.id)
        ).all()
    )


def owning_track_ids(session: Session, point_ids: Iterable[int]) -> List[int]:
    """Distinct tracks that currently own any of the given points."""
    ids = list(point_ids)
    if not ids:
        return []
    return list(
        session.exec(
            select(Point.track_id)
            .where(Point.id.in_(ids), Point.track_id.is_not(None))
            .distinct()
        ).all()
    )


def track_endpoints(session: Session, track_id: int) -> Tuple[Optional[Point], Optional[Point]]:
    """(first, last) member point of a track, or (None, None) if it has none."""
    first = session.exec(
        select(Point).where(Point.track_id == track_id).order_by(Point.timestamp, Point.id)
    ).first()
    last = session.exec(
        select(Point)
        .where(Point.track_id == track_id)
        .order_by(Point.timestamp.desc(), Point.id.desc())
    ).first()
    return first, last


def claim_points(session: Session, point_ids: Iterable[int], track_id: int) -> None:
    """Assign points to a track in one batch UPDATE."""
    ids = list(point_ids)
    if ids:
        session.exec(update(Point).where(Point.id.in_(ids)).values(track_id=track_id))


def destroy_tracks(session: Session, track_ids: Iterable[int]) -> int:
    """
    Delete tracks, their mode segments, and release their points.

    Points are unassigned (track_id = NULL), never deleted. Does not commit.

    Returns:
        Number of tracks deleted.
    """
    ids = list(track_ids)
    if not ids:
        return 0
    session.exec(update(Point).where(Point.track_id.in_(ids)).values(track_id=None))
    session.exec(delete(TrackSegment).where(TrackSegment.track_id.in_(ids)))
    result = session.exec(delete(Track).where(Track.id.in_(ids)))
    return result.rowcount

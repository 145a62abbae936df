"""
Turn a validated point run into a persisted Track.

The batch UPDATE that assigns member points is the commit point of a track:
until it succeeds no point is claimed. Each build runs inside a SAVEPOINT of
the caller's session so a failed build leaves the rest of the run intact.
"""
import logging
from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from trackgen.analysis.segmentation import MIN_SEGMENT_POINTS
from trackgen.analysis.track_stats import TrackStats, compute_track_stats
from trackgen.models.track import Track
from trackgen.timeutils import from_timestamp
from trackgen.tracks.store import claim_points, destroy_tracks, owning_track_ids, track_points

logger = logging.getLogger(__name__)


def apply_stats(track: Track, stats: TrackStats) -> Track:
    """Copy computed statistics onto a Track (new or existing)."""
    track.start_at = from_timestamp(stats.start_timestamp)
    track.end_at = from_timestamp(stats.end_timestamp)
    track.distance = stats.distance
    track.duration = stats.duration
    track.avg_speed = stats.avg_speed
    track.elevation_gain = stats.elevation_gain
    track.elevation_loss = stats.elevation_loss
    track.elevation_max = stats.elevation_max
    track.elevation_min = stats.elevation_min
    track.original_path = stats.original_path
    return track


class TrackBuilder:
    """Creates Track rows inside an existing session (does not commit)."""

    def __init__(self, session: Session):
        self.session = session

    def create_track_from_points(self, user_id: int, points: Sequence) -> Optional[Track]:
        """
        Persist a track for ``points`` and claim them.

        Args:
            user_id: Owner of the points.
            points: Ascending-timestamp run of Point rows.

        Returns:
            The flushed Track, or None if the run was rejected or could not
            be written. None is not fatal; the caller moves on.
        """
        if len(points) < MIN_SEGMENT_POINTS:
            return None

        try:
            stats = compute_track_stats(points)
        except ValueError as exc:
            logger.error("Rejected track for user %s: %s", user_id, exc)
            return None

        try:
            with self.session.begin_nested():
                point_ids = [p.id for p in points]
                previous_owners = owning_track_ids(self.session, point_ids)
                track = apply_stats(Track(user_id=user_id), stats)
                self.session.add(track)
                self.session.flush()
                claim_points(self.session, point_ids, track.id)
                self._repair_previous_owners(previous_owners)
        except SQLAlchemyError as exc:
            logger.error(
                "Failed to create track for user %s from %d points: %s",
                user_id, len(points), exc,
            )
            return None

        logger.debug("Created track %s with %d points", track.id, len(points))
        return track

    def _repair_previous_owners(self, track_ids: Sequence[int]) -> None:
        """
        Overlapping chunk windows can re-claim points another track owns.
        Recompute what is left of such a track, or drop it below two points.
        """
        for track_id in track_ids:
            remaining = track_points(self.session, track_id)
            stats = None
            if len(remaining) >= MIN_SEGMENT_POINTS:
                try:
                    stats = compute_track_stats(remaining)
                except ValueError as exc:
                    logger.warning("Track %s cannot be recomputed: %s", track_id, exc)
            if stats is None:
                destroy_tracks(self.session, [track_id])
                logger.info("Destroyed track %s after its points were re-claimed", track_id)
                continue
            previous = self.session.get(Track, track_id)
            if previous is not None:
                apply_stats(previous, stats)
                self.session.add(previous)
                logger.info("Recomputed track %s with %d remaining points", track_id, len(remaining))

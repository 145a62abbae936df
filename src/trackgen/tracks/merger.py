"""
TrackMerger — fold a newer track into the older one it continues.

Used by the realtime path when a freshly generated track starts shortly
after an existing track ended. The older track keeps its id: it absorbs the
newer track's points, has its path and statistics recomputed from the
combined ordered points, and the newer track is destroyed. All of that is
one transaction; mode re-detection runs afterwards and is best-effort.
"""
import logging
from typing import Optional

from sqlalchemy import update
from sqlmodel import Session

from trackgen.analysis.track_stats import compute_track_stats
from trackgen.models.point import Point
from trackgen.models.track import Track
from trackgen.tracks.builder import apply_stats
from trackgen.tracks.modes import ModeClassifier, redetect_modes
from trackgen.tracks.store import destroy_tracks, track_points

logger = logging.getLogger(__name__)


class MergeError(Exception):
    """Raised inside a merge transaction to abort it."""


class TrackMerger:
    def __init__(
        self,
        engine,
        older_track_id: Optional[int],
        newer_track_id: Optional[int],
        classifier: Optional[ModeClassifier] = None,
    ):
        self.engine = engine
        self.older_track_id = older_track_id
        self.newer_track_id = newer_track_id
        self.classifier = classifier

    def call(self) -> bool:
        """Returns True if the tracks were merged."""
        if self.older_track_id is None or self.newer_track_id is None:
            return False
        if self.older_track_id == self.newer_track_id:
            return False

        try:
            with Session(self.engine) as s:
                with s.begin():
                    older = s.get(Track, self.older_track_id)
                    newer = s.get(Track, self.newer_track_id)
                    if older is None or newer is None:
                        raise MergeError("track not found")

                    s.exec(
                        update(Point)
                        .where(Point.track_id == newer.id)
                        .values(track_id=older.id)
                    )
                    self.recalculate_path_and_distance(s, older)
                    destroy_tracks(s, [newer.id])
        except Exception as exc:
            logger.error(
                "Failed to merge tracks %s and %s: %s",
                self.older_track_id, self.newer_track_id, exc,
            )
            return False

        logger.info("Merged track %s into track %s", self.newer_track_id, self.older_track_id)
        redetect_modes(self.engine, self.older_track_id, self.classifier)
        return True

    def recalculate_path_and_distance(self, session: Session, track: Track) -> Track:
        """Recompute a track's stats from its current member points."""
        points = track_points(session, track.id)
        if len(points) < 2:
            raise MergeError(f"track {track.id} has {len(points)} points")
        apply_stats(track, compute_track_stats(points))
        session.add(track)
        return track

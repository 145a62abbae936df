"""
Converge on one track per (user, start_at, end_at).

Daily regeneration, boundary merging and the realtime path are not mutually
exclusive, so racing runs can leave identical tracks behind. This pass keeps
the most recently created row (highest id) of every duplicate key, moves any
member points of the other rows onto it, and deletes the rest together with
their mode segments. Running it twice is a no-op the second time.
"""
import logging

from sqlalchemy import func, update
from sqlmodel import Session, select

from trackgen.models.point import Point
from trackgen.models.track import Track
from trackgen.tracks.store import destroy_tracks

logger = logging.getLogger(__name__)


class Deduplicator:
    def __init__(self, engine, user_id: int):
        self.engine = engine
        self.user_id = user_id

    def call(self) -> int:
        """Returns the number of duplicate tracks removed."""
        removed = 0
        with Session(self.engine) as s:
            with s.begin():
                duplicate_keys = s.exec(
                    select(Track.start_at, Track.end_at)
                    .where(Track.user_id == self.user_id)
                    .group_by(Track.start_at, Track.end_at)
                    .having(func.count(Track.id) > 1)
                ).all()

                for start_at, end_at in duplicate_keys:
                    ids = s.exec(
                        select(Track.id)
                        .where(
                            Track.user_id == self.user_id,
                            Track.start_at == start_at,
                            Track.end_at == end_at,
                        )
                        .order_by(Track.id.desc())
                    ).all()
                    keep, extra = ids[0], list(ids[1:])
                    s.exec(
                        update(Point).where(Point.track_id.in_(extra)).values(track_id=keep)
                    )
                    removed += destroy_tracks(s, extra)

        if removed:
            logger.info("Removed %d duplicate tracks for user %s", removed, self.user_id)
        return removed

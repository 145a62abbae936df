"""
Incomplete-segment handlers: finalize a segment now, or hold it back.

Bulk and chunk runs work on closed ranges and finalize everything
(IgnoreHandler). Streaming runs may see a segment that is still growing;
BufferingHandler holds such a segment until its last point is older than a
grace period.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Dict, Optional, Sequence, Set

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

BUFFER_KEY_PREFIX = "track_buffer"
BUFFER_TTL_SECONDS = 24 * 3600


class IgnoreHandler:
    """Finalizes every segment; there is nothing to buffer."""

    def should_finalize_segment(self, points: Sequence) -> bool:
        return True

    def handle_incomplete_segment(self, points: Sequence) -> None:
        pass

    def cleanup_processed_data(self) -> None:
        pass


class BufferingHandler:
    """
    Holds segments whose last point is within the grace period of "now".

    Held segments are recorded in the shared cache as point id lists under
    one key per (user, UTC day of the segment's first point); re-storing
    overwrites, so repeated passes are idempotent. The points themselves
    stay unassigned and are picked up again by the next run.

    Cache writes happen in cleanup_processed_data, after the Generator has
    committed. Cache errors are logged and never fail the run.
    """

    def __init__(self, user_id: int, cache, grace_period_minutes: int = 5, now: Optional[float] = None):
        self.user_id = user_id
        self.cache = cache
        self.grace_period_minutes = grace_period_minutes
        self.now = now
        self._finalized_days: Set[str] = set()
        self._pending: Dict[str, dict] = {}

    def should_finalize_segment(self, points: Sequence) -> bool:
        if len(points) < 2:
            return False
        now = self.now if self.now is not None else time.time()
        finalize = now - points[-1].timestamp > self.grace_period_minutes * 60
        if finalize:
            self._finalized_days.add(_day_of(points[0].timestamp))
        return finalize

    def handle_incomplete_segment(self, points: Sequence) -> None:
        day = _day_of(points[0].timestamp)
        self._pending[day] = {
            "point_ids": [p.id for p in points],
            "last_timestamp": points[-1].timestamp,
        }
        logger.debug("Holding %d points for user %s, day %s", len(points), self.user_id, day)

    def cleanup_processed_data(self) -> None:
        """Store held segments and drop buffers consumed by finalized tracks."""
        consumed = self._finalized_days - set(self._pending)
        try:
            for day, data in self._pending.items():
                self.cache.write(self.buffer_key(day), data, BUFFER_TTL_SECONDS)
            if consumed:
                self.cache.delete(*(self.buffer_key(day) for day in sorted(consumed)))
        except SQLAlchemyError as exc:
            logger.warning("Segment buffer unavailable for user %s: %s", self.user_id, exc)
        finally:
            self._finalized_days.clear()
            self._pending.clear()

    def buffer_key(self, day: str) -> str:
        return f"{BUFFER_KEY_PREFIX}:user:{self.user_id}:day:{day}"


def _day_of(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")

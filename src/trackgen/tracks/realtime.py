"""
Realtime path: debounce point inserts, then generate tracks incrementally.

    new point → RealtimeDebouncer.trigger → (45s) → generate_incremental job
              → IncrementalGenerator → TrackMerger (continue preceding track)

The debouncer coalesces bursts: the first trigger for a user sets a cache
key (only if absent, 2 minute TTL) and schedules one job 45 seconds out;
later triggers only refresh the key's TTL. The job clears the key when it
starts, so points arriving during or after a run schedule the next one.
"""
import logging
import time
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from trackgen.analysis.geo import haversine_m
from trackgen.analysis.segmentation import Thresholds
from trackgen.models.track import Track
from trackgen.tracks.generator import Generator
from trackgen.tracks.cleaners import NoOpCleaner
from trackgen.tracks.handlers import BufferingHandler, IgnoreHandler
from trackgen.tracks.loaders import UntrackedLoader
from trackgen.tracks.merger import TrackMerger
from trackgen.tracks.modes import ModeClassifier
from trackgen.tracks.store import track_endpoints

logger = logging.getLogger(__name__)

DEBOUNCE_KEY_PREFIX = "track_debounce"


def debounce_key(user_id: int) -> str:
    return f"{DEBOUNCE_KEY_PREFIX}:user:{user_id}"


class RealtimeDebouncer:
    def __init__(self, cache, queue, delay_seconds: int = 45, ttl_seconds: int = 120):
        """
        Args:
            cache: Shared Cache.
            queue: Object with ``enqueue_incremental(user_id, delay_seconds)``.
        """
        self.cache = cache
        self.queue = queue
        self.delay_seconds = delay_seconds
        self.ttl_seconds = ttl_seconds

    def trigger(self, user_id: int) -> bool:
        """Returns True if this trigger scheduled a job."""
        key = debounce_key(user_id)
        try:
            if self.cache.add(key, {"first_trigger_at": time.time()}, self.ttl_seconds):
                self.queue.enqueue_incremental(user_id, self.delay_seconds)
                logger.debug("Scheduled incremental generation for user %s", user_id)
                return True
            self.cache.touch(key, self.ttl_seconds)
            return False
        except SQLAlchemyError as exc:
            logger.warning(
                "Debounce cache unavailable for user %s, scheduling directly: %s", user_id, exc
            )
            self.queue.enqueue_incremental(user_id, self.delay_seconds)
            return True


def on_point_created(point, debouncer: RealtimeDebouncer) -> bool:
    """Inbound trigger for a persisted point. Imported points are ignored."""
    if point.import_id is not None:
        return False
    return debouncer.trigger(point.user_id)


class IncrementalGenerator:
    """Generates tracks from recent untracked points and joins them to the preceding track."""

    def __init__(
        self,
        engine,
        user_id: int,
        thresholds: Thresholds,
        lookback_hours: int = 6,
        grace_period_minutes: Optional[int] = None,
        cache=None,
        classifier: Optional[ModeClassifier] = None,
        now: Optional[float] = None,
    ):
        """
        Args:
            grace_period_minutes: When set (requires ``cache``), segments
                whose last point is newer than this are held back instead of
                finalized.
        """
        self.engine = engine
        self.user_id = user_id
        self.thresholds = thresholds
        self.lookback_hours = lookback_hours
        self.grace_period_minutes = grace_period_minutes
        self.cache = cache
        self.classifier = classifier
        self.now = now

    def call(self) -> int:
        """Returns the number of tracks created (before merging)."""
        if self.grace_period_minutes is not None and self.cache is not None:
            handler = BufferingHandler(self.user_id, self.cache, self.grace_period_minutes, self.now)
        else:
            handler = IgnoreHandler()

        generator = Generator(
            self.engine,
            self.user_id,
            self.thresholds,
            point_loader=UntrackedLoader(self.user_id, self.lookback_hours, self.now),
            incomplete_segment_handler=handler,
            track_cleaner=NoOpCleaner(),
        )
        created = generator.call()

        merged = 0
        for track in sorted(generator.created_tracks, key=lambda t: t.start_at):
            if self.merge_with_preceding(track.id):
                merged += 1

        if created:
            logger.info(
                "Incremental generation for user %s: %d tracks created, %d merged",
                self.user_id, created, merged,
            )
        return created

    def merge_with_preceding(self, track_id: int) -> bool:
        """Merge a track into the track that ended just before it, if they connect."""
        with Session(self.engine) as s:
            track = s.get(Track, track_id)
            if track is None:
                return False
            window_start = track.start_at - timedelta(minutes=self.thresholds.time_threshold_minutes)
            preceding = s.exec(
                select(Track)
                .where(
                    Track.user_id == self.user_id,
                    Track.id != track.id,
                    Track.end_at <= track.start_at,
                    Track.end_at >= window_start,
                )
                .order_by(Track.end_at.desc(), Track.id.desc())
            ).first()
            if preceding is None:
                return False

            preceding_id = preceding.id
            _, preceding_last = track_endpoints(s, preceding.id)
            track_first, _ = track_endpoints(s, track.id)
            if preceding_last is None or track_first is None:
                return False
            gap_m = haversine_m(
                preceding_last.latitude, preceding_last.longitude,
                track_first.latitude, track_first.longitude,
            )

        if gap_m > self.thresholds.distance_threshold_meters:
            return False
        return TrackMerger(self.engine, preceding_id, track_id, self.classifier).call()

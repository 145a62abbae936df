"""
Generator — one synchronous track generation run.

Flow:
  1. Clean superseded tracks (TrackCleaner strategy)
  2. Load points (PointLoader strategy) → empty? return 0
  3. Split into segments (segmentation policy)
  4. For each segment: finalize → build a Track, else buffer it
     (IncompleteSegmentHandler strategy)
  5. Commit, then persist held segments and drop consumed buffers

Steps 1–4 share one transaction: a crash mid-run leaves the run's point and
track changes all-or-nothing. Individual segment failures are rolled back to
a savepoint by the TrackBuilder and do not abort the run.

Modes are compositions of strategies rather than subclasses:

    bulk         BulkLoader(range)      + IgnoreHandler    + ReplaceCleaner(range)
    daily        BulkLoader(day)        + IgnoreHandler    + DailyCleaner(day)
    incremental  UntrackedLoader(6h)    + BufferingHandler + NoOpCleaner
    chunk        ChunkLoader(chunk)     + IgnoreHandler    + NoOpCleaner
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from sqlmodel import Session

from trackgen.analysis.segmentation import Thresholds, split_points_into_segments
from trackgen.config import get_settings
from trackgen.models.track import Track
from trackgen.timeutils import day_bounds, to_timestamp, utcnow
from trackgen.tracks.builder import TrackBuilder
from trackgen.tracks.cleaners import DailyCleaner, NoOpCleaner, ReplaceCleaner
from trackgen.tracks.handlers import BufferingHandler, IgnoreHandler
from trackgen.tracks.loaders import BulkLoader, UntrackedLoader

logger = logging.getLogger(__name__)

MODES = ("bulk", "daily", "incremental")


class UnknownModeError(ValueError):
    """Raised for a generation mode other than bulk, daily or incremental."""


class Generator:
    """Runs loader → segmentation → handler → builder → cleaner for one user."""

    def __init__(
        self,
        engine,
        user_id: int,
        thresholds: Thresholds,
        *,
        point_loader,
        incomplete_segment_handler,
        track_cleaner,
        segment_filter: Optional[Callable[[Sequence], bool]] = None,
    ):
        """
        Args:
            engine: SQLAlchemy engine.
            user_id: Owner of the points.
            thresholds: Segmentation thresholds resolved for this run.
            point_loader: Object with ``load_points(session)``.
            incomplete_segment_handler: Object with ``should_finalize_segment``,
                ``handle_incomplete_segment`` and ``cleanup_processed_data``.
            track_cleaner: Object with ``cleanup(session)``.
            segment_filter: Optional predicate; segments it rejects are
                skipped entirely (used by chunk jobs to ignore segments that
                live only in the buffer zone).
        """
        self.engine = engine
        self.user_id = user_id
        self.thresholds = thresholds
        self.point_loader = point_loader
        self.incomplete_segment_handler = incomplete_segment_handler
        self.track_cleaner = track_cleaner
        self.segment_filter = segment_filter
        self.created_tracks: List[Track] = []

    def call(self) -> int:
        """Run generation. Returns the number of tracks created."""
        logger.info("Starting track generation for user %s", self.user_id)
        self.created_tracks = []

        with Session(self.engine, expire_on_commit=False) as session:
            with session.begin():
                self.track_cleaner.cleanup(session)

                points = self.point_loader.load_points(session)
                if not points:
                    logger.info("No points to process for user %s", self.user_id)
                    return 0

                logger.info("Processing %d points for user %s", len(points), self.user_id)
                segments = split_points_into_segments(points, self.thresholds)
                if self.segment_filter is not None:
                    segments = [seg for seg in segments if self.segment_filter(seg)]
                logger.info("Created %d segments for user %s", len(segments), self.user_id)

                builder = TrackBuilder(session)
                handler = self.incomplete_segment_handler
                for segment in segments:
                    if handler.should_finalize_segment(segment):
                        track = builder.create_track_from_points(self.user_id, segment)
                        if track is not None:
                            self.created_tracks.append(track)
                    else:
                        handler.handle_incomplete_segment(segment)

        # Buffered state is written after commit so the cache never competes
        # with the run's own transaction.
        handler.cleanup_processed_data()

        logger.info(
            "Completed track generation for user %s: %d tracks created",
            self.user_id, len(self.created_tracks),
        )
        return len(self.created_tracks)


def build_generator(
    engine,
    user_id: int,
    thresholds: Thresholds,
    mode: str = "bulk",
    start_at: Optional[datetime] = None,
    end_at: Optional[datetime] = None,
    cache=None,
) -> Generator:
    """
    Compose a Generator for ``mode``.

    Args:
        start_at / end_at: Optional range (naive UTC). For ``daily`` only the
            day of ``start_at`` matters (default: today).
        cache: Shared Cache; ``incremental`` buffers growing segments in it
            when given, otherwise finalizes them.

    Raises:
        UnknownModeError: for any other mode.
    """
    start_ts = to_timestamp(start_at) if start_at else None
    end_ts = to_timestamp(end_at) if end_at else None

    if mode == "bulk":
        return Generator(
            engine, user_id, thresholds,
            point_loader=BulkLoader(user_id, start_ts, end_ts),
            incomplete_segment_handler=IgnoreHandler(),
            track_cleaner=ReplaceCleaner(user_id, start_ts, end_ts),
        )
    if mode == "daily":
        day_start, day_end = day_bounds(start_at or utcnow())
        return Generator(
            engine, user_id, thresholds,
            point_loader=BulkLoader(user_id, day_start, day_end),
            incomplete_segment_handler=IgnoreHandler(),
            track_cleaner=DailyCleaner(user_id, day_start, day_end),
        )
    if mode == "incremental":
        settings = get_settings()
        handler = (
            BufferingHandler(user_id, cache, settings.incomplete_grace_period_minutes)
            if cache is not None
            else IgnoreHandler()
        )
        return Generator(
            engine, user_id, thresholds,
            point_loader=UntrackedLoader(user_id, settings.realtime_lookback_hours),
            incomplete_segment_handler=handler,
            track_cleaner=NoOpCleaner(),
        )
    raise UnknownModeError(f"Unknown mode: {mode}")

"""
Fan a historical (re)generation out over chunk jobs.

Flow:
  1. Split the range into buffered TimeChunks → none? return None
  2. Create a GenerationSession with total_chunks
  3. Clean existing tracks in the target range (bulk/daily only)
  4. Enqueue one chunk job per chunk
  5. Enqueue one boundary-resolution job after max(chunks × 30s, 5 min)

Chunk jobs may run in any order and overlap in time. Their buffered windows
overlap too, so a point can be considered by two chunk jobs; the boundary
job (BoundaryDetector + Deduplicator) reconciles the result afterwards.
The delay in step 5 is a heuristic wait, not a completion barrier.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from trackgen.analysis.segmentation import Thresholds
from trackgen.config import get_settings
from trackgen.timeutils import day_bounds, from_timestamp, to_timestamp, utcnow
from trackgen.tracks.chunker import TimeChunk, TimeChunker
from trackgen.tracks.cleaners import DailyCleaner, ReplaceCleaner
from trackgen.tracks.generator import UnknownModeError
from trackgen.tracks.session import GenerationSession

logger = logging.getLogger(__name__)

PARALLEL_MODES = ("bulk", "daily", "incremental")


def boundary_delay(chunk_count: int, per_chunk_seconds: int = 30, min_seconds: int = 300) -> int:
    """Seconds to wait before boundary resolution: max(chunks × 30s, 5 min)."""
    return max(chunk_count * per_chunk_seconds, min_seconds)


class ParallelGenerator:
    def __init__(
        self,
        engine,
        cache,
        queue,
        user_id: int,
        thresholds: Thresholds,
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
        mode: str = "bulk",
        chunk_size: Optional[timedelta] = None,
    ):
        """
        Args:
            engine: SQLAlchemy engine.
            cache: Shared Cache holding the session.
            queue: TrackJobQueue (or any object with enqueue_chunk and
                enqueue_boundary_resolver).
            user_id: Owner of the points.
            thresholds: Resolved once here and handed to every job.
            start_at / end_at: Optional naive-UTC range.
            mode: "bulk" and "daily" clean first; "incremental" never does.
            chunk_size: Defaults to Settings.chunk_size_hours.
        """
        if mode not in PARALLEL_MODES:
            raise UnknownModeError(f"Unknown mode: {mode}")
        settings = get_settings()
        self.engine = engine
        self.cache = cache
        self.queue = queue
        self.user_id = user_id
        self.thresholds = thresholds
        self.start_at = start_at
        self.end_at = end_at
        self.mode = mode
        self.chunk_size = chunk_size or timedelta(hours=settings.chunk_size_hours)
        self.buffer_size = timedelta(hours=settings.chunk_buffer_hours)

    def call(self) -> Optional[GenerationSession]:
        """
        Start the run. Returns the session, or None when there is nothing to do.

        The session is written before any track is cleaned. If the cache
        cannot store it the run still goes ahead untracked: the returned
        session has ``tracked`` False and the jobs get no session id.
        """
        chunks = self._generate_time_chunks()
        if not chunks:
            logger.info("No chunks to process for user %s", self.user_id)
            return None

        session = self._create_generation_session(len(chunks))
        session_id = session.session_id if session.tracked else None

        if self.mode in ("bulk", "daily"):
            self._clean_existing_tracks()

        for chunk in chunks:
            self.queue.enqueue_chunk(self.user_id, session_id, chunk, self.thresholds)

        settings = get_settings()
        delay = boundary_delay(
            len(chunks),
            settings.boundary_delay_per_chunk_seconds,
            settings.boundary_min_delay_seconds,
        )
        self.queue.enqueue_boundary_resolver(self.user_id, session_id, self.thresholds, delay)

        logger.info(
            "Started parallel track generation for user %s with %d chunks (session: %s)",
            self.user_id, len(chunks), session_id or "untracked",
        )
        return session

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _clean_existing_tracks(self) -> None:
        if self.mode == "bulk":
            start_ts = to_timestamp(self.start_at) if self.start_at else None
            end_ts = to_timestamp(self.end_at) if self.end_at else None
            cleaner = ReplaceCleaner(self.user_id, start_ts, end_ts)
        else:
            day_start, day_end = day_bounds(self.start_at or utcnow())
            cleaner = DailyCleaner(self.user_id, day_start, day_end)

        with Session(self.engine) as s:
            with s.begin():
                cleaner.cleanup(s)

    def _generate_time_chunks(self) -> List[TimeChunk]:
        start_at, end_at = self.start_at, self.end_at
        if self.mode == "daily":
            day_start, day_end = day_bounds(self.start_at or utcnow())
            start_at = from_timestamp(day_start)
            end_at = from_timestamp(day_end)
        return TimeChunker(
            self.engine,
            self.user_id,
            start_at=start_at,
            end_at=end_at,
            chunk_size=self.chunk_size,
            buffer_size=self.buffer_size,
        ).call()

    def _create_generation_session(self, total_chunks: int) -> GenerationSession:
        settings = get_settings()
        metadata = {
            "mode": self.mode,
            "chunk_size": humanize_duration(self.chunk_size),
            "start_at": self.start_at.isoformat() if self.start_at else None,
            "end_at": self.end_at.isoformat() if self.end_at else None,
            "user_settings": self.thresholds.as_dict(),
        }
        session = GenerationSession(self.cache, self.user_id, ttl=settings.session_ttl_seconds)
        try:
            session.create_session(metadata)
            session.mark_started(total_chunks)
        except SQLAlchemyError as exc:
            logger.warning(
                "Generation session for user %s unavailable, running untracked: %s", self.user_id, exc
            )
            session.tracked = False
        return session


def humanize_duration(duration: timedelta) -> str:
    """'1 day', '6 hours', '90 minutes'... for session metadata."""
    seconds = int(duration.total_seconds())
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size and seconds % size == 0:
            n = seconds // size
            return f"{n} {unit}{'s' if n != 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"

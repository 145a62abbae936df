"""
APScheduler jobs for track generation.

The scheduler runs inside the API process (started from the app lifespan).
Job bodies are plain functions, so AsyncIOScheduler runs them on its thread
pool executor and chunk jobs of one session proceed concurrently.

Jobs:
  daily_generation      cron, nightly: regenerate yesterday for active users
  process_time_chunk    one per TimeChunk of a parallel run
  resolve_boundaries    once per parallel run, after a delay
  generate_incremental  debounced realtime generation for one user
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import distinct
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from trackgen.analysis.segmentation import Thresholds
from trackgen.config import get_settings
from trackgen.db.cache import Cache
from trackgen.models.point import Point
from trackgen.timeutils import day_bounds, utcnow
from trackgen.tracks.boundary import BoundaryDetector
from trackgen.tracks.chunker import TimeChunk
from trackgen.tracks.cleaners import NoOpCleaner
from trackgen.tracks.deduplicator import Deduplicator
from trackgen.tracks.generator import Generator
from trackgen.tracks.handlers import IgnoreHandler
from trackgen.tracks.loaders import ChunkLoader
from trackgen.tracks.parallel import ParallelGenerator
from trackgen.tracks.realtime import IncrementalGenerator, debounce_key
from trackgen.tracks.session import GenerationSession
from trackgen.tracks.thresholds import resolve_thresholds

logger = logging.getLogger(__name__)


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine passed to every job.

    Returns:
        Configured AsyncIOScheduler (not yet started). The job queue for
        on-demand jobs is a TrackJobQueue over the same scheduler.
    """
    settings = get_settings()
    # Delayed jobs must still run if the loop was busy when they came due
    scheduler = AsyncIOScheduler(job_defaults={"misfire_grace_time": None})
    queue = TrackJobQueue(scheduler, engine)

    scheduler.add_job(
        daily_generation,
        trigger="cron",
        hour=settings.daily_generation_hour,
        minute=0,
        id="daily_generation",
        replace_existing=True,
        kwargs={"engine": engine, "queue": queue},
    )

    return scheduler


class TrackJobQueue:
    """Enqueues track jobs as one-off ``date`` jobs on the scheduler."""

    def __init__(self, scheduler: AsyncIOScheduler, engine):
        self.scheduler = scheduler
        self.engine = engine

    def enqueue_chunk(self, user_id: int, session_id: Optional[str], chunk: TimeChunk, thresholds: Thresholds):
        return self._enqueue(
            process_time_chunk,
            job_id=f"track_chunk:{session_id or 'untracked'}:{chunk.chunk_id}",
            kwargs={
                "user_id": user_id,
                "session_id": session_id,
                "chunk": chunk.to_dict(),
                "thresholds": thresholds.as_dict(),
            },
        )

    def enqueue_boundary_resolver(
        self, user_id: int, session_id: Optional[str], thresholds: Thresholds, delay_seconds: int
    ):
        return self._enqueue(
            resolve_boundaries,
            job_id=f"track_boundaries:{session_id or f'user:{user_id}'}",
            delay_seconds=delay_seconds,
            kwargs={
                "user_id": user_id,
                "session_id": session_id,
                "thresholds": thresholds.as_dict(),
            },
        )

    def enqueue_incremental(self, user_id: int, delay_seconds: int):
        return self._enqueue(
            generate_incremental,
            job_id=f"track_incremental:user:{user_id}",
            delay_seconds=delay_seconds,
            kwargs={"user_id": user_id},
        )

    def _enqueue(self, func, job_id: str, kwargs: dict, delay_seconds: int = 0):
        run_date = datetime.now().astimezone() + timedelta(seconds=delay_seconds)
        logger.debug("Enqueuing %s at %s", job_id, run_date.isoformat())
        return self.scheduler.add_job(
            func,
            trigger="date",
            run_date=run_date,
            id=job_id,
            replace_existing=True,
            kwargs=dict(kwargs, engine=self.engine),
        )


# ─── Job bodies ────────────────────────────────────────────────────────────────

def _lookup_session(cache, user_id: int, session_id: Optional[str]):
    """
    Find a run's session.

    Returns (session, known): ``known`` is False when the run is untracked or
    the cache could not be read, in which case the work proceeds without
    progress tracking.
    """
    if session_id is None:
        return None, False
    try:
        return GenerationSession.find_session(cache, user_id, session_id), True
    except SQLAlchemyError as exc:
        logger.warning("Generation session %s unavailable, continuing untracked: %s", session_id, exc)
        return None, False


def _record(session, action: str, *args, **kwargs) -> None:
    if session is None:
        return
    try:
        getattr(session, action)(*args, **kwargs)
    except SQLAlchemyError as exc:
        logger.warning("Session %s %s skipped: %s", session.session_id, action, exc)


def process_time_chunk(engine, user_id: int, session_id: Optional[str], chunk: dict, thresholds: dict) -> None:
    """
    Generate tracks for one chunk of a parallel run.

    Sees every point in the buffered window but only keeps segments that
    overlap the chunk's true window. Never raises.
    """
    settings = get_settings()
    cache = Cache(engine)
    session, known = _lookup_session(cache, user_id, session_id)
    if known and session is None:
        logger.warning("Generation session %s for user %s not found, skipping chunk", session_id, user_id)
        return
    if session is not None:
        session.ttl = settings.session_ttl_seconds

    time_chunk = TimeChunk.from_dict(chunk)
    try:
        created = Generator(
            engine,
            user_id,
            Thresholds(**thresholds),
            point_loader=ChunkLoader(user_id, time_chunk),
            incomplete_segment_handler=IgnoreHandler(),
            track_cleaner=NoOpCleaner(),
            segment_filter=time_chunk.overlaps,
        ).call()
    except Exception as exc:
        logger.error("Chunk %s of session %s failed: %s", time_chunk.chunk_id, session_id, exc)
        _record(session, "mark_failed", str(exc))
        return

    _record(session, "increment_completed_chunks")
    if created:
        _record(session, "increment_tracks_created", created)

    logger.info(
        "Chunk %s of session %s done: %d tracks created", time_chunk.chunk_id, session_id, created
    )


def resolve_boundaries(engine, user_id: int, session_id: Optional[str], thresholds: dict) -> None:
    """Stitch chunk-split tracks, remove duplicates, and close the session. Never raises."""
    cache = Cache(engine)
    session, known = _lookup_session(cache, user_id, session_id)
    if known and session is None:
        logger.warning("Generation session %s for user %s not found, resolving anyway", session_id, user_id)
    elif session is not None:
        try:
            if not session.all_chunks_completed():
                data = session.get_session_data() or {}
                logger.warning(
                    "Resolving boundaries for session %s with %s of %s chunks reported",
                    session_id, data.get("completed_chunks"), data.get("total_chunks"),
                )
        except SQLAlchemyError as exc:
            logger.warning("Progress of session %s unavailable: %s", session_id, exc)

    try:
        resolved = BoundaryDetector(engine, user_id, Thresholds(**thresholds)).resolve_cross_chunk_tracks()
        removed = Deduplicator(engine, user_id).call()
    except Exception as exc:
        logger.error("Boundary resolution for session %s failed: %s", session_id, exc)
        _record(session, "mark_failed", str(exc))
        return

    _record(session, "mark_completed", boundary_tracks_resolved=resolved, duplicates_removed=removed)
    logger.info(
        "Session %s completed: %d boundary groups merged, %d duplicates removed",
        session_id, resolved, removed,
    )


def generate_incremental(engine, user_id: int) -> None:
    """Debounced realtime generation for one user. Never raises."""
    settings = get_settings()
    cache = Cache(engine)
    # Cleared first so points arriving during this run schedule the next one
    try:
        cache.delete(debounce_key(user_id))
    except SQLAlchemyError as exc:
        logger.warning("Could not clear debounce key for user %s: %s", user_id, exc)

    try:
        IncrementalGenerator(
            engine,
            user_id,
            resolve_thresholds(engine, user_id),
            lookback_hours=settings.realtime_lookback_hours,
            grace_period_minutes=settings.realtime_grace_period_minutes,
            cache=cache,
        ).call()
    except Exception as exc:
        logger.error("Incremental generation for user %s failed: %s", user_id, exc)


def daily_generation(engine, queue, now: Optional[datetime] = None) -> int:
    """
    Nightly job: regenerate the previous UTC day for every user with points in it.

    Returns:
        Number of users a parallel run was started for.
    """
    day = (now or utcnow()) - timedelta(days=1)
    day_start, day_end = day_bounds(day)
    logger.info("Daily generation for %s starting", day.date().isoformat())

    with Session(engine) as s:
        user_ids = s.exec(
            select(distinct(Point.user_id)).where(
                Point.timestamp >= day_start, Point.timestamp <= day_end
            )
        ).all()

    cache = Cache(engine)
    started = 0
    for user_id in user_ids:
        try:
            result = ParallelGenerator(
                engine,
                cache,
                queue,
                user_id,
                resolve_thresholds(engine, user_id),
                start_at=day,
                mode="daily",
            ).call()
        except Exception as exc:
            logger.error("Daily generation for user %s failed: %s", user_id, exc)
            continue
        if result is not None:
            started += 1

    logger.info("Daily generation started for %d of %d users", started, len(user_ids))
    return started

"""
Regenerate a user's tracks from the command line.

Usage:
    python -m trackgen.scripts.regenerate --user-id 1 --mode bulk
    python -m trackgen.scripts.regenerate --user-id 1 --mode daily --start 2025-01-15
    python -m trackgen.scripts.regenerate --user-id 1 --mode bulk --start 2025-01-01 --end 2025-02-01 --sync

Without --sync, bulk and daily runs fan out over chunk jobs on an in-process
scheduler and the script waits until the boundary job has finished (at least
five minutes). With --sync the plain Generator runs in one pass instead.
Incremental runs are always in-process.
"""
import argparse
import asyncio
import logging
from datetime import datetime

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)

POLL_SECONDS = 5.0


async def _regenerate_parallel(user_id: int, mode: str, start_at, end_at) -> None:
    from trackgen.db.cache import Cache
    from trackgen.db.engine import get_engine
    from trackgen.scheduler.jobs import TrackJobQueue, build_scheduler
    from trackgen.tracks.parallel import ParallelGenerator
    from trackgen.tracks.thresholds import resolve_thresholds

    engine = get_engine()
    scheduler = build_scheduler(engine)
    scheduler.start()
    queue = TrackJobQueue(scheduler, engine)

    session = ParallelGenerator(
        engine,
        Cache(engine),
        queue,
        user_id,
        resolve_thresholds(engine, user_id),
        start_at=start_at,
        end_at=end_at,
        mode=mode,
    ).call()
    if session is None:
        logger.info("Nothing to regenerate for user %s", user_id)
        scheduler.shutdown()
        return

    logger.info(
        "Session %s started, waiting for jobs...", session.session_id if session.tracked else "(untracked)"
    )
    while any(job.id.startswith("track_") for job in scheduler.get_jobs()):
        progress = session.progress() if session.tracked else None
        if progress:
            logger.info(
                "%s: %d/%d chunks, %d tracks",
                progress["status"], progress["completed_chunks"],
                progress["total_chunks"], progress["tracks_created"],
            )
        await asyncio.sleep(POLL_SECONDS)

    # Waits for jobs already handed to the executor
    scheduler.shutdown(wait=True)
    logger.info("Regeneration finished: %s", session.progress() if session.tracked else "untracked run")


def _regenerate_sync(user_id: int, mode: str, start_at, end_at) -> None:
    from trackgen.config import get_settings
    from trackgen.db.cache import Cache
    from trackgen.db.engine import get_engine
    from trackgen.tracks.generator import build_generator
    from trackgen.tracks.realtime import IncrementalGenerator
    from trackgen.tracks.thresholds import resolve_thresholds

    engine = get_engine()
    thresholds = resolve_thresholds(engine, user_id)
    cache = Cache(engine)

    if mode == "incremental":
        settings = get_settings()
        created = IncrementalGenerator(
            engine,
            user_id,
            thresholds,
            lookback_hours=settings.realtime_lookback_hours,
            grace_period_minutes=settings.realtime_grace_period_minutes,
            cache=cache,
        ).call()
    else:
        created = build_generator(engine, user_id, thresholds, mode, start_at, end_at, cache).call()
    logger.info("Regeneration finished: %d tracks created", created)


def main() -> None:
    parser = argparse.ArgumentParser(description="Regenerate GPS tracks for a user")
    parser.add_argument("--user-id", type=int, required=True)
    parser.add_argument(
        "--mode",
        choices=["bulk", "daily", "incremental"],
        default="bulk",
        help="Generation mode (default: bulk)",
    )
    parser.add_argument("--start", type=datetime.fromisoformat, default=None, help="UTC, ISO 8601")
    parser.add_argument("--end", type=datetime.fromisoformat, default=None, help="UTC, ISO 8601")
    parser.add_argument(
        "--sync",
        action="store_true",
        help="Run in a single pass instead of parallel chunk jobs",
    )
    args = parser.parse_args()

    if args.sync or args.mode == "incremental":
        _regenerate_sync(args.user_id, args.mode, args.start, args.end)
    else:
        asyncio.run(_regenerate_parallel(args.user_id, args.mode, args.start, args.end))


if __name__ == "__main__":
    main()

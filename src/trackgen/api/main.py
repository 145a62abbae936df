"""FastAPI application factory."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from trackgen.api.routes import points, tracks
from trackgen.db.engine import get_engine, init_db
from trackgen.scheduler.jobs import TrackJobQueue, build_scheduler

logger = logging.getLogger(__name__)


def create_app(engine=None) -> FastAPI:
    """
    Build and return the FastAPI app.

    Args:
        engine: Engine to serve from; defaults to the module-level engine.
    """

    engine = engine or get_engine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables and apply migrations on startup (idempotent)
        init_db(engine)
        scheduler = build_scheduler(engine)
        scheduler.start()
        app.state.scheduler = scheduler
        app.state.queue = TrackJobQueue(scheduler, engine)
        logger.info("Scheduler started")
        try:
            yield
        finally:
            scheduler.shutdown(wait=False)

    app = FastAPI(
        title="Trackgen API",
        description="GPS track generation backend",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.include_router(points.router, prefix="/points", tags=["points"])
    app.include_router(tracks.router, prefix="/tracks", tags=["tracks"])

    return app

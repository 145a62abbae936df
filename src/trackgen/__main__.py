"""
Main entrypoint: serves the FastAPI app under uvicorn.

The app's lifespan starts the APScheduler (nightly daily generation plus
on-demand chunk, boundary and incremental jobs) in the same process.

Usage:
    python -m trackgen                                    # API + scheduler
    python -m trackgen.scripts.regenerate --user-id 1     # CLI regeneration
"""
import logging

import uvicorn

from trackgen.config import get_settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info("Starting trackgen API on %s:%d", settings.api_host, settings.api_port)
    uvicorn.run(
        "trackgen.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()

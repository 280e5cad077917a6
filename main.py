"""
TIER SIGNAL — Main Entry Point
Serves the consumer API; the scheduler runs inside it when SCHEDULER_ENABLED is set.
"""
import uvicorn
from tier_signal.config.settings import get_settings
from tier_signal.utils.logger import setup_logging, get_logger

logger = get_logger("main")


def run_api():
    """Run the FastAPI application."""
    settings = get_settings()
    setup_logging()
    logger.info("starting_tier_signal", version=settings.version, port=settings.port,
                scheduler=settings.scheduler.enabled)
    uvicorn.run(
        "tier_signal.api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run_api()

import asyncio
import sys

import structlog
import uvicorn

from voapi_relay.config.logging import configure_logging
from voapi_relay.config.settings import get_settings
from voapi_relay.database.connection import create_schema

logger = structlog.get_logger()


def prepare_database() -> bool:
    """Create the tables before serving; False if the database is unusable."""
    settings = get_settings()
    try:
        asyncio.run(create_schema(settings))
    except Exception as e:
        logger.error("Error initializing database tables", error=str(e), error_type=type(e).__name__)
        return False
    logger.info("Database tables are ready")
    return True


def main():
    settings = get_settings()
    configure_logging(settings)

    if not prepare_database():
        sys.exit(1)

    logger.info("App is running", url=f"http://localhost:{settings.port}")
    uvicorn.run(
        "voapi_relay.api.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="info"
    )


if __name__ == "__main__":
    main()

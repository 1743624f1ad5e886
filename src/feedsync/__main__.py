"""Entry point for feedsync: python -m feedsync"""

import asyncio
import logging

from feedsync.config import Settings
from feedsync.database import Database
from feedsync.poller import start_polling

logger = logging.getLogger("feedsync")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quiet noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


async def main() -> None:
    """Initialize storage and run the feed poller until interrupted."""
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    db = Database(settings.db_path, pool_size=settings.pool_size)
    db.connect()

    try:
        await start_polling(db, settings)
    finally:
        db.close()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    run()

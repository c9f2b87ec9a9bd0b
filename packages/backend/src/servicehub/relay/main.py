"""Relay entry point — run as a separate process.

Usage:
    python -m servicehub.relay.main

Or via the console script:
    servicehub-relay
"""

import asyncio
import logging
import signal
import sys

from servicehub.config import settings
from servicehub.relay.change_relay import ChangeRelay, RelayConfig, RelayConnectionError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("servicehub.relay")


async def run():
    # asyncpg wants a plain postgresql:// URL, not the SQLAlchemy dialect form
    db_url = settings.database_url.replace("+asyncpg", "")
    relay = ChangeRelay(RelayConfig(database_url=db_url, redis_url=settings.redis_url))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(relay.stop()))

    logger.info("Relay starting (DB: %s)", db_url.split("@")[1] if "@" in db_url else db_url)
    try:
        await relay.start()
    finally:
        logger.info("Relay stopped. Stats: %s", relay.get_stats())


def main():
    """CLI entry point. Exits 1 when Postgres can't be reached for LISTEN."""
    try:
        asyncio.run(run())
    except RelayConnectionError as e:
        logger.critical("Relay giving up: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()

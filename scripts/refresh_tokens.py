"""
Token refresh sweep, run daily from cron: refreshes every account expiring within the window
"""

import asyncio
import os
import sys

# Add the parent directory to the path so we can import our modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from api.deps import build_services
from utils.config import get_config
from utils.database import dispose_engine, get_session_factory
from utils.http_client import get_async_client
from utils.logging import setup_logging, get_logger


async def main() -> int:
    config = get_config()
    setup_logging(config.log_level)
    logger = get_logger(__name__)

    async with get_async_client(timeout=config.http_timeout) as http_client:
        services = build_services(config, http_client, get_session_factory())
        summary = await services.connections.refresh_expiring_tokens()
    await dispose_engine()

    logger.info("Refresh sweep complete", **summary)
    return 1 if summary["failed"] else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))

"""
Database initialization script for production deployment
"""

import asyncio
import os
import sys

# Add the parent directory to the path so we can import our modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from utils.config import get_config
from utils.database import dispose_engine, init_db
from utils.exceptions import SocialFlowException
from utils.logging import setup_logging, get_logger


async def main():
    """Main initialization function"""
    setup_logging(get_config().log_level)
    logger = get_logger(__name__)

    try:
        logger.info("Starting database initialization...")
        await init_db()
        logger.info("Database initialization completed successfully!")
    except (SocialFlowException, OSError) as e:
        logger.error("Database initialization failed", error=str(e))
        sys.exit(1)
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())

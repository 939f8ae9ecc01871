"""
Background sweep worker for EduTrack online tests.
Periodically force-completes attempts left open past their duration or end time.
"""

import asyncio
import logging

from motor.motor_asyncio import AsyncIOMotorClient

from app.config.settings import settings
from app.services.sweeper import SweeperService

# Setup logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger('sweep_worker')


async def worker_loop(sweeper: SweeperService, interval: int):
    """Main worker loop - sweeps every deployed test on an interval"""
    logger.info(f"Sweep worker started. Sweeping every {interval}s...")

    while True:
        try:
            completed = await sweeper.sweep_all_deployed()
            if completed:
                logger.info(f"Auto-completed {completed} expired attempt(s)")
            await asyncio.sleep(interval)

        except Exception as e:
            logger.error(f"Worker loop error: {str(e)}", exc_info=True)
            await asyncio.sleep(interval)


async def main():
    """Entry point"""
    settings.validate()
    client = AsyncIOMotorClient(settings.MONGODB_URL)
    db = client[settings.DATABASE_NAME]

    logger.info("=" * 50)
    logger.info("EduTrack Sweep Worker")
    logger.info(f"MongoDB: {settings.DATABASE_NAME}")
    logger.info("=" * 50)

    try:
        await worker_loop(SweeperService(db), settings.SWEEP_INTERVAL_SECONDS)
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
    finally:
        client.close()


if __name__ == "__main__":
    asyncio.run(main())

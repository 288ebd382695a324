# scheduler/scheduler.py
import asyncio
import os

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from dotenv import load_dotenv

from scraper.db import STUCK_JOB_MINUTES, MongoGateway
from scraper.utils import get_logger

load_dotenv()
SWEEP_INTERVAL_MINUTES = int(os.getenv("SWEEP_INTERVAL_MINUTES", "5"))

logger = get_logger("scheduler")


async def sweep_stuck_jobs(gateway=None, older_than_minutes=STUCK_JOB_MINUTES):
    """
    Fail scraping jobs that have sat in ``processing`` for too long.

    A worker that died mid-batch leaves its job in ``processing`` forever;
    this moves such jobs to ``failed`` so they stop showing as running.

    Args:
        gateway (MongoGateway, optional): Store to sweep. Defaults to a new
            MongoGateway on the process-wide database
        older_than_minutes (int): Age threshold on ``created_at``

    Returns:
        int: Number of jobs marked as failed
    """
    gateway = gateway or MongoGateway()
    updated = await gateway.fail_stuck_jobs(older_than_minutes)
    if updated:
        logger.info(f"Marked {updated} stuck job(s) as failed")
    return updated


async def async_main():
    """
    Run the stuck-job sweep on an interval until the process is stopped.

    Configuration:
        - SWEEP_INTERVAL_MINUTES: minutes between sweeps (default 5)
        - STUCK_JOB_MINUTES: age after which a processing job is stuck (default 10)
    """
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        sweep_stuck_jobs,
        "interval",
        minutes=SWEEP_INTERVAL_MINUTES,
        id="sweep_stuck_jobs",
    )

    scheduler.start()
    logger.info(f"Scheduler started (stuck-job sweep every {SWEEP_INTERVAL_MINUTES} min)")
    # Keep program running forever
    await asyncio.Event().wait()


if __name__ == "__main__":
    asyncio.run(async_main())

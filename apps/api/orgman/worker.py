"""
Background worker for processing scheduled jobs.

Usage:
    python -m orgman.worker

The worker polls the jobs table for due jobs and dispatches them through the
job registry. Run it as a separate process next to the API.
"""

import asyncio
import logging
import os

from orgman.core.config import settings
from orgman.db.session import SessionLocal
from orgman.jobs.runner import run_due_jobs

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Worker configuration
POLL_INTERVAL_SECONDS = int(os.getenv("WORKER_POLL_INTERVAL", "2"))
BATCH_SIZE = int(os.getenv("WORKER_BATCH_SIZE", "10"))


async def worker_loop() -> None:
    """Main worker loop - polls for and processes pending jobs."""
    logger.info(
        "Worker starting (poll interval: %ss, batch size: %s)", POLL_INTERVAL_SECONDS, BATCH_SIZE
    )

    while True:
        with SessionLocal() as db:
            try:
                counts = await run_due_jobs(db, limit=BATCH_SIZE)
                if counts["completed"] or counts["failed"]:
                    logger.info(
                        "Worker tick: %d completed, %d failed",
                        counts["completed"],
                        counts["failed"],
                    )
            except Exception as e:
                logger.error("Error in worker loop: %s", type(e).__name__)

        await asyncio.sleep(POLL_INTERVAL_SECONDS)


def main() -> None:
    asyncio.run(worker_loop())


if __name__ == "__main__":
    main()

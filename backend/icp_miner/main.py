"""
ICP mining worker process.

    python -m icp_miner.main            # run the scheduler until interrupted
    python -m icp_miner.main --once     # one scheduled pass, then exit
"""

import argparse
import asyncio
import logging

from icp_miner.config import settings
from icp_miner.database import create_tables, engine
from icp_miner.scheduler import run_scheduled_mining, start_scheduler, stop_scheduler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def serve():
    if settings.ENVIRONMENT == "development":
        await create_tables()

    if not settings.ENABLE_SCHEDULER:
        logger.warning("Scheduler disabled (ENABLE_SCHEDULER=false); nothing to do")
        return

    start_scheduler()
    try:
        await asyncio.Event().wait()
    finally:
        stop_scheduler()
        await engine.dispose()


async def run_once():
    try:
        await run_scheduled_mining()
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="ICP mining worker")
    parser.add_argument("--once", action="store_true", help="run a single mining pass and exit")
    args = parser.parse_args()

    logger.info(f"🚀 Starting ICP miner ({settings.ENVIRONMENT})")
    try:
        asyncio.run(run_once() if args.once else serve())
    except KeyboardInterrupt:
        logger.info("👋 Shutting down")


if __name__ == "__main__":
    main()

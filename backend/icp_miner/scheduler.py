"""APScheduler configuration for periodic ICP mining."""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
import asyncio
import logging

from icp_miner.config import settings
from icp_miner.schemas.mining import MiningRequest

logger = logging.getLogger(__name__)

# Create scheduler instance
scheduler = AsyncIOScheduler()


async def run_scheduled_mining(orchestrator=None, tracker=None):
    """
    Advance one mining job per site that has active jobs.
    Called by APScheduler.

    Each site gets one batch invocation; sites run concurrently and share
    the process-wide page pool.
    """
    from icp_miner.services.mining_orchestrator import create_mining_orchestrator
    from icp_miner.services.progress_tracker import SqlProgressTracker

    orchestrator = orchestrator or create_mining_orchestrator()
    tracker = tracker or SqlProgressTracker()

    logger.info("Running scheduled ICP mining...")

    try:
        site_ids = await tracker.list_sites_with_active_jobs()
    except Exception as e:
        logger.error(f"Error listing sites with active mining jobs: {e}")
        return []

    logger.info(f"Found {len(site_ids)} site(s) with active mining jobs")

    responses = await asyncio.gather(
        *(orchestrator.run(MiningRequest(site_id=site_id, batch=True)) for site_id in site_ids)
    )

    for site_id, response in zip(site_ids, responses):
        if response.success:
            logger.info(
                f"Site {site_id}: job {response.job_id} processed={response.processed}, "
                f"found={response.found_matches}"
            )
        else:
            logger.error(f"Site {site_id}: job {response.job_id} failed: {response.errors}")

    return responses


def start_scheduler():
    """
    Initialize and start the APScheduler.

    Jobs:
    - ICP mining: every MINING_INTERVAL_MINUTES
    """
    if scheduler.running:
        logger.info("Scheduler already running")
        return

    try:
        scheduler.add_job(
            run_scheduled_mining,
            trigger=IntervalTrigger(minutes=settings.MINING_INTERVAL_MINUTES),
            id='icp_mining',
            name='ICP Mining',
            replace_existing=True,
            max_instances=1
        )
        logger.info(f"✅ Scheduled: ICP Mining (every {settings.MINING_INTERVAL_MINUTES} min)")

        scheduler.start()
        logger.info("✅ APScheduler started successfully!")

        for job in scheduler.get_jobs():
            logger.info(f"   • {job.name}: Next run at {job.next_run_time}")

    except Exception as e:
        logger.error(f"❌ Error starting scheduler: {e}")


def stop_scheduler():
    """Stop the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")

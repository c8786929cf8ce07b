# backend/icp_miner/services/progress_tracker.py
"""
Persisted progress for ICP mining jobs.

Counters are applied as deltas inside a single row-locked transaction so a
crash between pages loses nothing that was already reported. ``current_page``
is the next page to fetch.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import distinct, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from icp_miner.database import AsyncSessionLocal
from icp_miner.exceptions import InvalidStatusTransitionError, MiningJobNotFoundError
from icp_miner.models import ACTIVE_MINING_STATUSES, MiningJob

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    "pending": {"running"},
    "running": {"completed", "failed"},
    "completed": set(),
    "failed": set(),
}


def check_transition(job_id, from_status: str, to_status: str) -> None:
    """Raise unless ``from_status -> to_status`` is a legal move."""
    if to_status not in ALLOWED_TRANSITIONS.get(from_status, set()):
        raise InvalidStatusTransitionError(job_id, from_status, to_status)


def error_entry(message: str) -> dict:
    return {"timestamp": datetime.now(timezone.utc).isoformat(), "message": message}


def apply_progress(
    job: MiningJob,
    delta_processed: int = 0,
    delta_found: int = 0,
    status: Optional[str] = None,
    total_targets: Optional[int] = None,
    current_page: Optional[int] = None,
    last_error: Optional[str] = None,
    append_error: Optional[str] = None,
) -> MiningJob:
    """
    Apply one progress update to ``job`` in place.

    Shared by the SQL tracker and in-memory fakes so both enforce the same
    rules: no negative deltas, processed never exceeds a known total unless
    that would lower it, current page never moves backwards.

    Deltas sent with a ``current_page`` the job has already reached are a
    replay of a page that was committed before (a retried update whose
    acknowledgement was lost) and are ignored.
    """
    if delta_processed < 0 or delta_found < 0:
        raise ValueError(f"Progress deltas must be non-negative (got {delta_processed}, {delta_found})")

    if status and status != job.status:
        check_transition(job.id, job.status, status)
        job.status = status

    replayed = current_page is not None and current_page <= (job.current_page or 0)
    if replayed and (delta_processed or delta_found):
        logger.warning(
            f"⚠️  icp_mining {job.id} page {current_page - 1} already recorded "
            f"(current_page={job.current_page}), ignoring repeated deltas"
        )

    if not replayed:
        if total_targets is not None:
            job.total_targets = total_targets

        previous = job.processed_targets or 0
        processed = previous + delta_processed
        if job.total_targets is not None and processed > job.total_targets:
            processed = max(job.total_targets, previous)
        job.processed_targets = processed
        job.found_targets = (job.found_targets or 0) + delta_found

    if current_page is not None:
        job.current_page = max(job.current_page or 0, current_page)

    if last_error:
        job.last_error = last_error
    if append_error:
        # New list so the JSON column is flagged dirty
        job.errors = list(job.errors or []) + [error_entry(append_error)]

    job.last_progress_at = datetime.now(timezone.utc)
    return job


class ProgressTracker(ABC):
    """Job status and progress persistence used by the orchestrator."""

    @abstractmethod
    async def get_job(self, job_id) -> Optional[MiningJob]:
        pass

    @abstractmethod
    async def list_active_jobs(self, site_id, limit: int = 50) -> List[MiningJob]:
        """Pending or running jobs for a site, oldest first."""
        pass

    @abstractmethod
    async def list_sites_with_active_jobs(self) -> List[UUID]:
        pass

    @abstractmethod
    async def mark_started(self, job_id) -> MiningJob:
        pass

    @abstractmethod
    async def update_progress(
        self,
        job_id,
        delta_processed: int = 0,
        delta_found: int = 0,
        status: Optional[str] = None,
        total_targets: Optional[int] = None,
        current_page: Optional[int] = None,
        last_error: Optional[str] = None,
        append_error: Optional[str] = None,
    ) -> MiningJob:
        pass

    @abstractmethod
    async def mark_completed(self, job_id, failed: bool = False, last_error: Optional[str] = None) -> MiningJob:
        pass


class SqlProgressTracker(ProgressTracker):

    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal):
        self.session_factory = session_factory

    async def _locked(self, session: AsyncSession, job_id) -> MiningJob:
        job_uuid = job_id if isinstance(job_id, UUID) else UUID(str(job_id))
        result = await session.execute(
            select(MiningJob).where(MiningJob.id == job_uuid).with_for_update()
        )
        job = result.scalars().first()
        if job is None:
            raise MiningJobNotFoundError(job_id)
        return job

    async def get_job(self, job_id) -> Optional[MiningJob]:
        job_uuid = job_id if isinstance(job_id, UUID) else UUID(str(job_id))
        async with self.session_factory() as session:
            return await session.get(MiningJob, job_uuid)

    async def list_active_jobs(self, site_id, limit: int = 50) -> List[MiningJob]:
        site_uuid = site_id if isinstance(site_id, UUID) else UUID(str(site_id))
        async with self.session_factory() as session:
            result = await session.execute(
                select(MiningJob)
                .where(
                    MiningJob.site_id == site_uuid,
                    MiningJob.status.in_(ACTIVE_MINING_STATUSES),
                )
                .order_by(MiningJob.created_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_sites_with_active_jobs(self) -> List[UUID]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(distinct(MiningJob.site_id)).where(MiningJob.status.in_(ACTIVE_MINING_STATUSES))
            )
            return list(result.scalars().all())

    async def mark_started(self, job_id) -> MiningJob:
        async with self.session_factory() as session:
            job = await self._locked(session, job_id)
            if job.status == "running":
                return job

            check_transition(job.id, job.status, "running")
            job.status = "running"
            job.started_at = datetime.now(timezone.utc)
            await session.commit()

            logger.info(f"▶️  icp_mining {job.id} started (page {job.current_page})")
            return job

    async def update_progress(
        self,
        job_id,
        delta_processed: int = 0,
        delta_found: int = 0,
        status: Optional[str] = None,
        total_targets: Optional[int] = None,
        current_page: Optional[int] = None,
        last_error: Optional[str] = None,
        append_error: Optional[str] = None,
    ) -> MiningJob:
        async with self.session_factory() as session:
            job = await self._locked(session, job_id)
            apply_progress(
                job,
                delta_processed=delta_processed,
                delta_found=delta_found,
                status=status,
                total_targets=total_targets,
                current_page=current_page,
                last_error=last_error,
                append_error=append_error,
            )
            await session.commit()

            logger.debug(
                f"icp_mining {job.id} progress: processed={job.processed_targets}/"
                f"{job.total_targets}, found={job.found_targets}, page={job.current_page}"
            )
            return job

    async def mark_completed(self, job_id, failed: bool = False, last_error: Optional[str] = None) -> MiningJob:
        status = "failed" if failed else "completed"
        async with self.session_factory() as session:
            job = await self._locked(session, job_id)
            check_transition(job.id, job.status, status)
            job.status = status
            job.finished_at = datetime.now(timezone.utc)
            if last_error:
                job.last_error = last_error
            await session.commit()

            logger.info(f"🏁 icp_mining {job.id} {status}" + (f": {last_error}" if last_error else ""))
            return job

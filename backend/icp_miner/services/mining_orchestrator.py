# backend/icp_miner/services/mining_orchestrator.py
"""
Mining orchestrator - advances ICP mining jobs page by page.

Modes:
- Single: ``job_id`` -> advance that job
- Batch: ``site_id`` + ``batch`` -> pick one active job of the site and advance it

One invocation advances at most one job. Progress (counters and next page) is
persisted after every page, so the next invocation resumes where this one
stopped. Stop conditions: page ceiling, found target, all known targets
processed, or the finder reporting no more results (all finalize the job as
completed). A page-level failure finalizes it as failed.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from icp_miner.config import settings
from icp_miner.exceptions import MiningJobNotFoundError, SiteNotFoundError
from icp_miner.models import TERMINAL_MINING_STATUSES, MiningJob
from icp_miner.schemas.mining import MiningRequest, MiningResponse, PageResult
from icp_miner.services.email_generation_service import create_email_generation_service
from icp_miner.services.email_verification_service import create_verification_service
from icp_miner.services.finder_service import create_finder_service
from icp_miner.services.job_selector import select_next_job
from icp_miner.services.page_processor import PageProcessor
from icp_miner.services.person_enrichment import PersonEnrichmentService
from icp_miner.services.progress_tracker import ProgressTracker, SqlProgressTracker
from icp_miner.services.repositories import (
    SiteRepository,
    SqlCompanyRepository,
    SqlLeadRepository,
    SqlPersonRepository,
    SqlRoleQueryRepository,
    SqlSiteRepository,
)
from icp_miner.services.retry import RetryPolicy
from icp_miner.services.task_pool import PageTaskPool, create_page_task_pool

logger = logging.getLogger(__name__)


class MiningOrchestrator:

    def __init__(
        self,
        tracker: ProgressTracker,
        sites: SiteRepository,
        page_processor: PageProcessor,
        task_pool: Optional[PageTaskPool] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.tracker = tracker
        self.sites = sites
        self.page_processor = page_processor
        self.task_pool = task_pool or create_page_task_pool()
        self.retry = retry_policy or RetryPolicy.from_settings()

    async def run(self, request: MiningRequest) -> MiningResponse:
        """Run one invocation; always returns a response, never raises."""
        try:
            if request.is_batch:
                return await self._run_batch(request)
            return await self._run_single(request)
        except Exception as e:
            logger.error(f"❌ ICP mining invocation failed: {e}", exc_info=True)
            return MiningResponse(
                success=False,
                job_id=str(request.job_id) if request.job_id else None,
                errors=[str(e)],
            )

    # ========================================================================
    # JOB RESOLUTION
    # ========================================================================

    async def _run_single(self, request: MiningRequest) -> MiningResponse:
        job = await self.retry.call(self.tracker.get_job, request.job_id)
        if job is None:
            error = str(MiningJobNotFoundError(request.job_id))
            logger.error(f"❌ {error}")
            return MiningResponse(success=False, job_id=str(request.job_id), errors=[error])

        if job.status in TERMINAL_MINING_STATUSES:
            logger.info(f"⏭️  icp_mining {job.id} already {job.status}, nothing to do")
            return MiningResponse(success=True, job_id=str(job.id), total_targets=job.total_targets)

        return await self._advance(job, request)

    async def _run_batch(self, request: MiningRequest) -> MiningResponse:
        jobs = await self.retry.call(
            self.tracker.list_active_jobs, request.site_id, settings.ICP_MINING_PENDING_LIMIT
        )
        job = select_next_job(jobs)
        if job is None:
            logger.info(f"📭 No active icp_mining jobs for site {request.site_id}")
            return MiningResponse(success=True)

        logger.info(
            f"🎯 Selected icp_mining {job.id} ({job.status}, "
            f"{job.processed_targets}/{job.total_targets}) out of {len(jobs)} active job(s)"
        )
        return await self._advance(job, request)

    async def _resolve_user_id(self, request: MiningRequest, site_id):
        if request.user_id:
            return request.user_id
        user_id = await self.retry.call(self.sites.get_owner_id, site_id)
        if user_id is None:
            raise SiteNotFoundError(site_id)
        return user_id

    # ========================================================================
    # PAGE LOOP
    # ========================================================================

    @staticmethod
    def _stop_reason(job: MiningJob, page: int, max_pages: int, target: int) -> Optional[str]:
        if page >= max_pages:
            return "page_ceiling"
        if (job.found_targets or 0) >= target:
            return "target_reached"
        if job.total_targets is not None and (job.processed_targets or 0) >= job.total_targets:
            return "all_targets_processed"
        return None

    async def _advance(self, job: MiningJob, request: MiningRequest) -> MiningResponse:
        max_pages = request.max_pages or settings.ICP_MINING_MAX_PAGES
        page_size = request.page_size or settings.ICP_MINING_PAGE_SIZE
        target = request.target_leads_with_email or settings.ICP_MINING_TARGET_LEADS

        try:
            user_id = await self._resolve_user_id(request, job.site_id)
        except SiteNotFoundError as e:
            logger.error(f"❌ {e}")
            return MiningResponse(success=False, job_id=str(job.id), errors=[str(e)])

        job = await self.retry.call(self.tracker.mark_started, job.id)

        processed = 0
        found = 0
        errors: List[str] = []
        failure: Optional[str] = None
        stop_reason: Optional[str] = None
        page = job.current_page or 0

        logger.info(
            f"🚀 Advancing icp_mining {job.id} from page {page} "
            f"(max_pages={max_pages}, page_size={page_size}, target={target})"
        )

        while True:
            stop_reason = self._stop_reason(job, page, max_pages, target)
            if stop_reason:
                break

            result = await self._run_page(job, page, page_size, user_id)
            errors.extend(result.errors)

            if not result.success:
                failure = result.errors[0] if result.errors else f"Page {page} failed"
                break

            processed += result.processed
            found += result.found_matches

            total_targets = None
            if result.total is not None and (page == 0 or job.total_targets is None):
                total_targets = result.total

            try:
                job = await self.retry.call(
                    self.tracker.update_progress,
                    job.id,
                    delta_processed=result.processed,
                    delta_found=result.found_matches,
                    total_targets=total_targets,
                    current_page=page + 1,
                )
            except Exception as e:
                failure = f"Progress update failed after page {page}: {e}"
                errors.append(failure)
                break

            page += 1

            if not result.has_more:
                stop_reason = "exhausted"
                break

        success = await self._finalize(job, failure, stop_reason, errors)

        return MiningResponse(
            success=success,
            job_id=str(job.id),
            processed=processed,
            found_matches=found,
            total_targets=job.total_targets,
            errors=errors,
        )

    async def _run_page(self, job: MiningJob, page: int, page_size: int, user_id) -> PageResult:
        try:
            return await self.task_pool.run(
                self.page_processor.process_page,
                job.role_query_id,
                page,
                page_size,
                job.site_id,
                user_id=user_id,
                job_id=job.id,
            )
        except asyncio.TimeoutError:
            return PageResult(
                success=False,
                errors=[f"Page {page} timed out after {self.task_pool.timeout_seconds}s"],
            )
        except Exception as e:
            return PageResult(success=False, errors=[f"Page {page} failed: {e}"])

    async def _finalize(
        self,
        job: MiningJob,
        failure: Optional[str],
        stop_reason: Optional[str],
        errors: List[str],
    ) -> bool:
        """Mark the job completed or failed; returns the invocation's success flag."""
        try:
            if failure:
                await self.retry.call(
                    self.tracker.update_progress, job.id, last_error=failure, append_error=failure
                )
                await self.retry.call(self.tracker.mark_completed, job.id, failed=True, last_error=failure)
                logger.error(f"❌ icp_mining {job.id} failed: {failure}")
                return False

            await self.retry.call(self.tracker.mark_completed, job.id, failed=False)
            logger.info(
                f"🏁 icp_mining {job.id} completed ({stop_reason}): "
                f"processed={job.processed_targets}/{job.total_targets}, found={job.found_targets}"
            )
            return True
        except Exception as e:
            logger.error(f"❌ Could not finalize icp_mining {job.id}: {e}", exc_info=True)
            errors.append(f"Finalization failed: {e}")
            return False


# ============================================================================
# ENTRY POINT
# ============================================================================

_page_pool: Optional[PageTaskPool] = None


def get_page_task_pool() -> PageTaskPool:
    """Process-wide pool shared by every invocation."""
    global _page_pool
    if _page_pool is None:
        _page_pool = create_page_task_pool()
    return _page_pool


def create_mining_orchestrator(task_pool: Optional[PageTaskPool] = None) -> MiningOrchestrator:
    """Factory function wiring the SQL stores and HTTP collaborators."""
    retry_policy = RetryPolicy.from_settings()
    finder = create_finder_service()

    enrichment = PersonEnrichmentService(
        persons=SqlPersonRepository(),
        leads=SqlLeadRepository(),
        companies=SqlCompanyRepository(),
        finder=finder,
        generator=create_email_generation_service(),
        validator=create_verification_service(),
        retry_policy=retry_policy,
    )
    page_processor = PageProcessor(
        role_queries=SqlRoleQueryRepository(),
        finder=finder,
        enrichment=enrichment,
        retry_policy=retry_policy,
    )
    return MiningOrchestrator(
        tracker=SqlProgressTracker(),
        sites=SqlSiteRepository(),
        page_processor=page_processor,
        task_pool=task_pool or get_page_task_pool(),
        retry_policy=retry_policy,
    )


async def run_icp_mining(
    request: Union[MiningRequest, Dict[str, Any]],
    orchestrator: Optional[MiningOrchestrator] = None,
) -> MiningResponse:
    """
    Exposed entry point.

    Accepts ``{"job_id": ...}`` or ``{"site_id": ..., "batch": True,
    "max_pages"?, "page_size"?, "target_leads_with_email"?}``.
    """
    if not isinstance(request, MiningRequest):
        try:
            request = MiningRequest.model_validate(request)
        except ValidationError as e:
            logger.error(f"❌ Invalid ICP mining request: {e}")
            return MiningResponse(success=False, errors=[str(e)])

    orchestrator = orchestrator or create_mining_orchestrator()
    return await orchestrator.run(request)

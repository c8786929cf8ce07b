# backend/icp_miner/services/page_processor.py
"""
Page Processor - fetch one page of a job's search and enrich every candidate.

Candidates are enriched sequentially; each one counts as processed whatever
its outcome. Page-level failures (role query missing, search fetch) return
``success=False`` with the error; candidate failures never abort the page.
"""

import logging
from typing import Optional

from icp_miner.exceptions import PageFetchError, RoleQueryNotFoundError
from icp_miner.schemas.mining import PageResult
from icp_miner.services.finder_service import FinderService
from icp_miner.services.person_enrichment import PersonEnrichmentService
from icp_miner.services.repositories import RoleQueryRepository
from icp_miner.services.retry import RetryPolicy

logger = logging.getLogger(__name__)


class PageProcessor:

    def __init__(
        self,
        role_queries: RoleQueryRepository,
        finder: FinderService,
        enrichment: PersonEnrichmentService,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.role_queries = role_queries
        self.finder = finder
        self.enrichment = enrichment
        self.retry = retry_policy or RetryPolicy.from_settings()

    async def process_page(
        self,
        role_query_id,
        page: int,
        page_size: int,
        site_id,
        user_id=None,
        job_id=None,
    ) -> PageResult:
        """
        Process page ``page`` of the role query's search.

        Returns:
            PageResult with per-page counts, created lead ids, ``has_more``
            and ``total`` (when the finder reported one)
        """
        try:
            role_query = await self.retry.call(self.role_queries.get_role_query, role_query_id)
            if role_query is None:
                raise RoleQueryNotFoundError(role_query_id)

            try:
                search_page = await self.retry.call(
                    self.finder.search_person_roles, role_query.query or {}, page, page_size
                )
            except Exception as e:
                raise PageFetchError(page, str(e) or type(e).__name__) from e
        except (RoleQueryNotFoundError, PageFetchError) as e:
            logger.error(f"❌ {e}")
            return PageResult(success=False, errors=[str(e)])
        except Exception as e:
            logger.error(f"❌ Role query lookup failed for page {page}: {e}")
            return PageResult(success=False, errors=[f"Role query lookup failed: {e}"])

        segment_id = await self._segment_id(role_query_id)

        result = PageResult(
            success=True,
            has_more=search_page.has_more,
            total=search_page.total,
        )

        logger.info(
            f"📄 Page {page}: {len(search_page.candidates)} candidate(s) "
            f"for role query {role_query_id}"
        )

        for candidate in search_page.candidates:
            try:
                outcome = await self.enrichment.enrich(
                    candidate,
                    site_id=site_id,
                    user_id=user_id,
                    segment_id=segment_id,
                    role_query_id=role_query_id,
                    job_id=job_id,
                )
            except Exception as e:
                logger.error(f"❌ Candidate {candidate.display_name} failed: {e}", exc_info=True)
                result.errors.append(f"{candidate.display_name}: {e}")
                result.processed += 1
                continue

            result.processed += 1
            result.errors.extend(outcome.errors)
            if outcome.matched and outcome.lead_id:
                result.found_matches += 1
                result.leads_created.append(outcome.lead_id)

        logger.info(
            f"✅ Page {page} done: processed={result.processed}, "
            f"found={result.found_matches}, has_more={result.has_more}"
        )
        return result

    async def _segment_id(self, role_query_id):
        try:
            return await self.retry.call(self.role_queries.get_segment_id, role_query_id)
        except Exception as e:
            logger.warning(f"⚠️  Segment lookup failed for role query {role_query_id}: {e}")
            return None

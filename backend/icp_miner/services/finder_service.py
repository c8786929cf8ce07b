# backend/icp_miner/services/finder_service.py
"""
Finder API integration
1. Person role search - paginated prospect discovery (LEAD SOURCE)
2. Work email lookup - secondary email source for the waterfall
3. Phone number lookup - phone channel for people without one
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from icp_miner.config import settings
from icp_miner.exceptions import FinderAPIError
from icp_miner.schemas.mining import SearchPage
from icp_miner.services.api_client import ApiClient
from icp_miner.services.candidate_adapter import normalize_search_response

logger = logging.getLogger(__name__)


class FinderService(ApiClient):
    """Finder person/organization search client"""

    collaborator = "finder"

    SEARCH_PATH = "/api/finder/person_role_search"
    WORK_EMAILS_PATH = "/api/finder/person_contacts_lookup/work_emails"
    PHONE_NUMBERS_PATH = "/api/finder/person_contacts_lookup/phone_numbers"

    def _error(self, message: str) -> FinderAPIError:
        return FinderAPIError(message)

    # ========================================================================
    # LEAD SOURCE - Search for people by role query
    # ========================================================================

    async def search_person_roles(
        self,
        query: Dict[str, Any],
        page: int,
        page_size: int = 10
    ) -> SearchPage:
        """
        Fetch exactly one page of people matching a role query.

        Args:
            query: Structured search criteria from the role query
            page: 0-based page index
            page_size: Results per page

        Returns:
            SearchPage with normalized candidates, ``has_more`` and (when the
            finder reports it) ``total``
        """
        payload = {**(query or {}), "page": page, "page_size": page_size}

        logger.info(f"🔍 Finder person role search: page={page}, page_size={page_size}")

        body = await self.post(self.SEARCH_PATH, payload)
        search_page = normalize_search_response(body, page=page, page_size=page_size)

        logger.info(
            f"✅ Finder returned {len(search_page.candidates)} people on page {page} "
            f"(total: {search_page.total}, has_more: {search_page.has_more})"
        )
        return search_page

    # ========================================================================
    # ENRICHMENT - Work email lookup
    # ========================================================================

    async def lookup_work_emails(
        self,
        external_person_id: Optional[str] = None,
        full_name: Optional[str] = None,
        company_name: Optional[str] = None
    ) -> List[str]:
        """Work emails for a person, keyed by external id or name + company."""
        payload = self._contact_lookup_payload(external_person_id, full_name, company_name)
        if not payload:
            return []

        body = await self.post(self.WORK_EMAILS_PATH, payload)
        if not isinstance(body, dict):
            return []

        raw = body.get("emails") or body.get("work_emails") or []
        emails = []
        for item in raw:
            email = item.get("email") if isinstance(item, dict) else item
            if isinstance(email, str) and email.strip():
                emails.append(email.strip())

        logger.info(f"📧 Work email lookup returned {len(emails)} address(es)")
        return emails

    # ========================================================================
    # ENRICHMENT - Phone number lookup
    # ========================================================================

    async def lookup_phone_numbers(
        self,
        external_person_id: Optional[str] = None,
        full_name: Optional[str] = None,
        company_name: Optional[str] = None
    ) -> List[str]:
        """Phone numbers for a person, same keys as the work email lookup."""
        payload = self._contact_lookup_payload(external_person_id, full_name, company_name)
        if not payload:
            return []

        body = await self.post(self.PHONE_NUMBERS_PATH, payload)
        if not isinstance(body, dict):
            return []

        raw = body.get("phone_numbers") or body.get("phoneNumbers") or body.get("phones") or []
        phones = []
        for item in raw:
            phone = item.get("phone_number") if isinstance(item, dict) else item
            if isinstance(phone, str) and phone.strip():
                phones.append(phone.strip())

        logger.info(f"📞 Phone number lookup returned {len(phones)} number(s)")
        return phones

    @staticmethod
    def _contact_lookup_payload(
        external_person_id: Optional[str],
        full_name: Optional[str],
        company_name: Optional[str]
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if external_person_id:
            payload["external_person_id"] = external_person_id
        if full_name:
            payload["full_name"] = full_name
        if company_name:
            payload["company_name"] = company_name
        return payload


def create_finder_service(transport: Optional[httpx.AsyncBaseTransport] = None) -> FinderService:
    """Factory function"""
    return FinderService(
        base_url=settings.FINDER_API_URL,
        api_key=settings.FINDER_API_KEY,
        timeout=settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
        transport=transport,
    )

# backend/icp_miner/services/email_generation_service.py
"""
Client for the AI-assisted email-candidate generator.

Given a name and a company domain, the generator returns likely addresses in
three buckets (model analysis, basic patterns, fallbacks). They are merged in
that order and de-duplicated case-insensitively.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from icp_miner.config import settings
from icp_miner.exceptions import EmailGenerationError
from icp_miner.services.api_client import ApiClient

logger = logging.getLogger(__name__)


def _collect(values: Any) -> List[str]:
    if not isinstance(values, list):
        return []
    return [v.strip() for v in values if isinstance(v, str) and v.strip()]


def merge_generated_emails(body: Dict[str, Any]) -> List[str]:
    """Merge generator buckets preserving priority order, without duplicates."""
    data = body.get("data") if isinstance(body.get("data"), dict) else body

    ordered = (
        _collect(body.get("email_generation_analysis") or data.get("email_generation_analysis"))
        + _collect(data.get("basic_patterns_generated"))
        + _collect(data.get("fallback_emails"))
    )

    seen = set()
    unique = []
    for email in ordered:
        key = email.lower()
        if key not in seen:
            seen.add(key)
            unique.append(email)
    return unique


class EmailGenerationService(ApiClient):
    """Candidate email generation"""

    collaborator = "email_generation"

    def _error(self, message: str) -> EmailGenerationError:
        return EmailGenerationError(message)

    async def generate(
        self,
        name: str,
        domain: str,
        context: str,
        site_id: Optional[str] = None
    ) -> List[str]:
        """
        Generate candidate addresses for ``name`` at ``domain``.

        Returns an empty list when the generator has nothing to offer.
        """
        payload = {
            "name": name,
            "domain": domain,
            "context": context,
            "site_id": str(site_id) if site_id else None,
        }

        logger.info(f"🤖 Generating emails for {name} @ {domain}")

        body = await self.post("", payload, unwrap=False)
        if not isinstance(body, dict):
            return []

        emails = merge_generated_emails(body)
        logger.info(f"✅ Generated {len(emails)} candidate email(s) for {name}")
        return emails


def create_email_generation_service(
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> EmailGenerationService:
    """Factory function"""
    return EmailGenerationService(
        base_url=settings.EMAIL_GENERATION_URL,
        api_key=settings.SERVICE_API_KEY,
        timeout=settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
        transport=transport,
    )

# backend/icp_miner/services/email_verification_service.py
"""
Two-Pass Email Deliverability Validation

Architecture:
- Pass 1: Syntax + disposable-domain screen (FREE, local, instant)
- Pass 2: Remote deliverability validator (SMTP / provider checks)

An address is usable only when the remote validator reports it both valid
and deliverable. Pass 1 rejections never reach the remote validator.
"""

import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from disposable_email_domains import blocklist as disposable_domains

from icp_miner.config import settings
from icp_miner.exceptions import EmailValidationError
from icp_miner.schemas.mining import EmailValidationResult
from icp_miner.services.api_client import ApiClient

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+'-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")


def syntax_check(email: str) -> Optional[EmailValidationResult]:
    """
    Pass 1. Returns a rejection result, or None when the address may be
    sent to the remote validator.
    """
    candidate = (email or "").strip()

    if not EMAIL_PATTERN.match(candidate) or ".." in candidate:
        return EmailValidationResult(
            email=candidate, is_valid=False, deliverable=False,
            result="invalid_syntax", flags=["syntax"]
        )

    domain = candidate.rsplit("@", 1)[1].lower()
    if domain in disposable_domains:
        return EmailValidationResult(
            email=candidate, is_valid=False, deliverable=False,
            result="disposable", flags=["disposable"]
        )

    return None


def _flags(data: Dict[str, Any]) -> List[str]:
    flags = data.get("flags") or []
    if isinstance(flags, dict):
        return [name for name, enabled in flags.items() if enabled]
    return [str(f) for f in flags]


class EmailVerificationService(ApiClient):
    """Deliverability validation orchestrator"""

    collaborator = "email_validation"

    def _error(self, message: str) -> EmailValidationError:
        return EmailValidationError(message)

    async def validate(self, email: str) -> EmailValidationResult:
        rejected = syntax_check(email)
        if rejected:
            logger.info(f"❌ PASS 1 FAILED: {email} ({rejected.result})")
            return rejected

        body = await self.post("", {"email": email.strip(), "aggressiveMode": False})
        if not isinstance(body, dict):
            raise EmailValidationError(f"unexpected response for {email}")

        result = EmailValidationResult(
            email=email.strip(),
            is_valid=bool(body.get("isValid", body.get("is_valid", False))),
            deliverable=bool(body.get("deliverable", False)),
            result=str(body.get("result") or "unknown"),
            flags=_flags(body),
        )

        logger.info(
            f"{'✅' if result.is_usable else '❌'} PASS 2: {email} "
            f"(valid={result.is_valid}, deliverable={result.deliverable}, result={result.result})"
        )
        return result


def create_verification_service(
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> EmailVerificationService:
    """Factory function"""
    return EmailVerificationService(
        base_url=settings.EMAIL_VALIDATION_URL,
        api_key=settings.SERVICE_API_KEY,
        timeout=settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
        transport=transport,
    )

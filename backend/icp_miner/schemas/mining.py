"""
Data shapes for ICP mining.

Dataclasses for values passed between pipeline stages; Pydantic models for
the exposed entry point (request / response).
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


# ============================================================================
# PIPELINE VALUES
# ============================================================================

@dataclass
class Candidate:
    """One normalized search-result entry."""
    external_person_id: Optional[str] = None
    external_role_id: Optional[str] = None
    external_organization_id: Optional[str] = None
    full_name: Optional[str] = None
    company_name: Optional[str] = None
    organization_domain: Optional[str] = None
    organization_website: Optional[str] = None
    role_title: Optional[str] = None
    location: Optional[str] = None
    linkedin_url: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    is_current: Optional[bool] = None
    industry: Optional[str] = None
    company_size: Optional[str] = None
    emails: List[str] = field(default_factory=list)
    phones: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.full_name or self.external_person_id or "unknown"

    @property
    def is_identifiable(self) -> bool:
        """External id, or the name + company fallback key."""
        return bool(self.external_person_id or (self.full_name and self.company_name))


@dataclass
class SearchPage:
    """One normalized page from the search collaborator."""
    candidates: List[Candidate]
    has_more: bool
    page: int
    page_size: int
    total: Optional[int] = None


@dataclass
class EmailValidationResult:
    """Deliverability verdict for one address."""
    email: str
    is_valid: bool
    deliverable: bool
    result: str = "unknown"
    flags: List[str] = field(default_factory=list)

    @property
    def is_usable(self) -> bool:
        return self.is_valid and self.deliverable


@dataclass
class EnrichmentOutcome:
    """Result of enriching one candidate; never raised, always returned."""
    matched: bool = False
    lead_id: Optional[str] = None
    person_id: Optional[str] = None
    email: Optional[str] = None
    email_source: Optional[str] = None
    existing_lead_id: Optional[str] = None
    skipped_reason: Optional[str] = None
    errors: List[str] = field(default_factory=list)


@dataclass
class PageResult:
    """
    Result of processing one page.

    ``success`` is False only for page-level failures (role query missing,
    fetch failure); candidate errors are reported in ``errors`` alone.
    """
    success: bool
    processed: int = 0
    found_matches: int = 0
    leads_created: List[str] = field(default_factory=list)
    has_more: bool = False
    total: Optional[int] = None
    errors: List[str] = field(default_factory=list)


# ============================================================================
# ENTRY POINT SCHEMAS
# ============================================================================

class MiningRequest(BaseModel):
    """Single-job mode: ``job_id``. Batch mode: ``site_id`` + ``batch=True``."""
    job_id: Optional[UUID] = None
    site_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    batch: bool = False

    max_pages: Optional[int] = Field(None, ge=1)
    page_size: Optional[int] = Field(None, ge=1, le=100)
    target_leads_with_email: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def check_mode(self):
        if self.job_id is None and not (self.batch and self.site_id):
            raise ValueError("Provide job_id, or site_id with batch=true")
        return self

    @property
    def is_batch(self) -> bool:
        return self.job_id is None


class MiningResponse(BaseModel):
    """Result of one orchestrator invocation."""
    success: bool
    job_id: Optional[str] = None
    processed: int = 0
    found_matches: int = 0
    total_targets: Optional[int] = None
    errors: List[str] = Field(default_factory=list)

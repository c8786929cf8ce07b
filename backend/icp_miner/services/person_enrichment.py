# backend/icp_miner/services/person_enrichment.py
"""
Person Enrichment - one candidate in, at most one lead out.

Waterfall:
1. Identity: existing person by external ids or name + company, else upsert
2. Email: search result / person record -> AI generation -> work email lookup,
   each source validated, stopping at the first usable address;
   phone number lookup when neither the candidate nor the person has a phone
3. Contact gate: no usable email and no phone -> processed, not a match
4. Existing lead for (person, site) -> stop
5. Company upsert (best-effort)
6. Lead creation

``enrich`` never raises; every failure lands in ``EnrichmentOutcome.errors``.
"""

import logging
import re
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from urllib.parse import urlparse

from icp_miner.models import Person
from icp_miner.schemas.mining import Candidate, EnrichmentOutcome
from icp_miner.services.email_generation_service import EmailGenerationService
from icp_miner.services.email_verification_service import EmailVerificationService
from icp_miner.services.finder_service import FinderService
from icp_miner.services.repositories import (
    CompanyRepository,
    LeadDraft,
    LeadRepository,
    PersonRepository,
    merge_unique,
)
from icp_miner.services.retry import RetryPolicy

logger = logging.getLogger(__name__)


def get_domain_from_url(url: Optional[str]) -> Optional[str]:
    """'https://www.Acme.io/about' -> 'acme.io'"""
    if not url or not isinstance(url, str):
        return None
    value = url.strip()
    if "://" not in value:
        value = f"http://{value}"
    host = urlparse(value).hostname
    if not host:
        return None
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    return host or None


def resolve_domain(candidate: Candidate) -> Optional[str]:
    """Organization domain, then organization website, then ``<company>.com``."""
    domain = get_domain_from_url(candidate.organization_domain)
    if domain:
        return domain

    domain = get_domain_from_url(candidate.organization_website)
    if domain:
        return domain

    if candidate.company_name:
        guess = re.sub(r"\s+", "", candidate.company_name.lower())
        return f"{guess}.com" if guess else None

    return None


def build_context(candidate: Candidate) -> str:
    return (
        f"Name: {candidate.full_name or ''}\n"
        f"Company: {candidate.company_name or ''}\n"
        f"Position: {candidate.role_title or ''}"
    )


class PersonEnrichmentService:
    """Resolves identity and a contact channel for one candidate, then creates the lead."""

    def __init__(
        self,
        persons: PersonRepository,
        leads: LeadRepository,
        companies: CompanyRepository,
        finder: FinderService,
        generator: EmailGenerationService,
        validator: EmailVerificationService,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.persons = persons
        self.leads = leads
        self.companies = companies
        self.finder = finder
        self.generator = generator
        self.validator = validator
        self.retry = retry_policy or RetryPolicy.from_settings()

    async def enrich(
        self,
        candidate: Candidate,
        site_id,
        user_id=None,
        segment_id=None,
        role_query_id=None,
        job_id=None,
    ) -> EnrichmentOutcome:
        outcome = EnrichmentOutcome()
        name = candidate.display_name

        try:
            await self._enrich(candidate, site_id, user_id, segment_id, role_query_id, job_id, outcome)
        except Exception as e:
            logger.error(f"❌ Enrichment failed for {name}: {e}", exc_info=True)
            outcome.matched = False
            outcome.lead_id = None
            outcome.errors.append(f"{name}: {e}")

        return outcome

    async def _enrich(self, candidate, site_id, user_id, segment_id, role_query_id, job_id, outcome):
        name = candidate.display_name

        # STEP 1: Identity
        if not candidate.is_identifiable:
            logger.info(f"⏭️  Skipping {name}: no external id and no name + company")
            outcome.skipped_reason = "unidentifiable"
            return

        try:
            person = await self._resolve_person(candidate, role_query_id)
        except Exception as e:
            logger.error(f"❌ Person upsert failed for {name}: {e}")
            outcome.errors.append(f"{name}: person upsert failed: {e}")
            outcome.skipped_reason = "identity_failed"
            return
        outcome.person_id = str(person.id)

        # STEP 2: Email waterfall
        email, source, discovered = await self._find_email(candidate, person, site_id, outcome)
        outcome.email = email
        outcome.email_source = source

        # STEP 2e: Phone lookup when no phone is known
        phones = merge_unique(candidate.phones, [])
        if not merge_unique(person.phones, phones):
            phones = await self._lookup_phones(candidate, outcome)

        new_emails = ([email] if email else []) + discovered
        if self._has_new_contacts(person, new_emails, phones):
            try:
                person = await self.retry.call(
                    self.persons.merge_contacts, person.id, emails=new_emails, phones=phones
                )
            except Exception as e:
                logger.warning(f"⚠️  Could not merge contacts onto person {person.id}: {e}")
                outcome.errors.append(f"{name}: contact merge failed: {e}")

        # STEP 3: Contact gate
        phones = merge_unique(person.phones, phones)
        if not email and not phones:
            logger.info(f"📭 {name}: no validated email and no phone")
            outcome.skipped_reason = "no_contact_channel"
            return

        # STEP 4: Existing lead
        try:
            existing = await self.retry.call(self.leads.find_for_person, person.id, site_id)
        except Exception as e:
            logger.error(f"❌ Lead lookup failed for {name}: {e}")
            outcome.errors.append(f"{name}: lead lookup failed: {e}")
            outcome.skipped_reason = "lead_lookup_failed"
            return
        if existing is not None:
            logger.info(f"♻️  Lead already exists for {name} (lead {existing.id})")
            outcome.existing_lead_id = str(existing.id)
            outcome.skipped_reason = "lead_exists"
            return

        # STEP 5: Company (best-effort)
        company_id = await self._upsert_company(candidate, site_id, user_id)

        # STEP 6: Lead
        draft = self._build_lead(
            candidate, person, email, source, phones,
            site_id, user_id, company_id, segment_id, role_query_id, job_id,
        )
        try:
            lead, created = await self.retry.call(self.leads.create_for_person, draft)
        except Exception as e:
            logger.error(f"❌ Lead creation failed for {name}: {e}")
            outcome.errors.append(f"{name}: lead creation failed: {e}")
            outcome.skipped_reason = "lead_creation_failed"
            return

        if not created:
            outcome.existing_lead_id = str(lead.id)
            outcome.skipped_reason = "lead_exists"
            return

        outcome.matched = True
        outcome.lead_id = str(lead.id)
        logger.info(f"✅ Lead {lead.id} created for {name} ({email or 'phone only'})")

    # ========================================================================
    # IDENTITY
    # ========================================================================

    async def _resolve_person(self, candidate: Candidate, role_query_id) -> Person:
        person = await self.retry.call(
            self.persons.find_existing,
            external_person_id=candidate.external_person_id,
            external_role_id=candidate.external_role_id,
            full_name=candidate.full_name,
            company_name=candidate.company_name,
        )
        if person is not None:
            logger.debug(f"Found existing person {person.id} for {candidate.display_name}")
            return person

        return await self.retry.call(self.persons.upsert_from_candidate, candidate, role_query_id)

    @staticmethod
    def _has_new_contacts(person: Person, emails: List[str], phones: List[str]) -> bool:
        known_emails = merge_unique(person.emails, [])
        known_phones = merge_unique(person.phones, [])
        return (
            len(merge_unique(known_emails, emails)) > len(known_emails)
            or len(merge_unique(known_phones, phones)) > len(known_phones)
        )

    # ========================================================================
    # EMAIL WATERFALL
    # ========================================================================

    async def _find_email(
        self,
        candidate: Candidate,
        person: Person,
        site_id,
        outcome: EnrichmentOutcome,
    ) -> Tuple[Optional[str], Optional[str], List[str]]:
        """Returns (validated email, source, addresses discovered by work email lookup)."""
        name = candidate.display_name

        # 2a. Addresses already known
        record_emails = [
            e for e in merge_unique(person.emails, [])
            if e.lower() not in {c.lower() for c in candidate.emails}
        ]
        for source, emails in (("search_result", candidate.emails), ("person_record", record_emails)):
            email = await self._first_usable(emails, name, outcome)
            if email:
                return email, source, []

        # 2b. AI generation
        if candidate.full_name and candidate.company_name:
            domain = resolve_domain(candidate)
            generated: List[str] = []
            try:
                generated = await self.retry.call(
                    self.generator.generate,
                    candidate.full_name,
                    domain,
                    build_context(candidate),
                    site_id=site_id,
                )
            except Exception as e:
                logger.warning(f"⚠️  Email generation failed for {name} @ {domain}: {e}")
                outcome.errors.append(f"{name}: email generation failed: {e}")

            # 2c. Validation
            email = await self._first_usable(generated, name, outcome)
            if email:
                return email, "generated", []
        else:
            logger.debug(f"Skipping email generation for {name}: name or company missing")

        # 2d. Work email lookup
        discovered: List[str] = []
        try:
            discovered = await self.retry.call(
                self.finder.lookup_work_emails,
                external_person_id=candidate.external_person_id,
                full_name=candidate.full_name,
                company_name=candidate.company_name,
            )
        except Exception as e:
            logger.warning(f"⚠️  Work email lookup failed for {name}: {e}")
            outcome.errors.append(f"{name}: work email lookup failed: {e}")

        email = await self._first_usable(discovered, name, outcome)
        if email:
            return email, "work_email_lookup", discovered

        return None, None, discovered

    async def _first_usable(self, emails: List[str], name: str, outcome: EnrichmentOutcome) -> Optional[str]:
        for email in emails or []:
            try:
                result = await self.retry.call(self.validator.validate, email)
            except Exception as e:
                logger.warning(f"⚠️  Validation failed for {email}: {e}")
                outcome.errors.append(f"{name}: validation of {email} failed: {e}")
                continue
            if result.is_usable:
                return result.email or email
        return None

    async def _lookup_phones(self, candidate: Candidate, outcome: EnrichmentOutcome) -> List[str]:
        name = candidate.display_name
        try:
            return await self.retry.call(
                self.finder.lookup_phone_numbers,
                external_person_id=candidate.external_person_id,
                full_name=candidate.full_name,
                company_name=candidate.company_name,
            )
        except Exception as e:
            logger.warning(f"⚠️  Phone number lookup failed for {name}: {e}")
            outcome.errors.append(f"{name}: phone number lookup failed: {e}")
            return []

    # ========================================================================
    # COMPANY & LEAD
    # ========================================================================

    async def _upsert_company(self, candidate: Candidate, site_id, user_id):
        if not candidate.company_name:
            return None
        try:
            company = await self.retry.call(
                self.companies.upsert_by_name,
                site_id,
                candidate.company_name,
                user_id=user_id,
                external_organization_id=candidate.external_organization_id,
                website=candidate.organization_website,
                domain=get_domain_from_url(candidate.organization_domain),
                industry=candidate.industry,
                size=candidate.company_size,
            )
            return company.id
        except Exception as e:
            logger.warning(f"⚠️  Company upsert failed for {candidate.company_name}: {e}")
            return None

    @staticmethod
    def _build_lead(
        candidate: Candidate,
        person: Person,
        email: Optional[str],
        email_source: Optional[str],
        phones: List[str],
        site_id,
        user_id,
        company_id,
        segment_id,
        role_query_id,
        job_id,
    ) -> LeadDraft:
        domain = get_domain_from_url(candidate.organization_domain) or get_domain_from_url(
            candidate.organization_website
        )
        web = candidate.organization_website or (f"https://{domain}" if domain else None)

        return LeadDraft(
            person_id=person.id,
            site_id=site_id,
            user_id=user_id,
            company_id=company_id,
            segment_id=segment_id,
            name=candidate.full_name or person.full_name or candidate.display_name,
            email=email,
            phone=phones[0] if phones else None,
            position=candidate.role_title,
            company_name=candidate.company_name,
            web=web,
            location=candidate.location,
            social_networks={"linkedin": candidate.linkedin_url} if candidate.linkedin_url else {},
            company={
                k: v for k, v in {
                    "name": candidate.company_name,
                    "domain": domain,
                    "website": candidate.organization_website,
                    "industry": candidate.industry,
                    "size": candidate.company_size,
                }.items() if v
            },
            metadata={
                "source": "icp_mining",
                "role_query_id": str(role_query_id) if role_query_id else None,
                "icp_mining_id": str(job_id) if job_id else None,
                "external_person_id": candidate.external_person_id,
                "external_role_id": candidate.external_role_id,
                "email_source": email_source,
                "enriched_at": datetime.now(timezone.utc).isoformat(),
            },
        )

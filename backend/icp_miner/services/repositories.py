# backend/icp_miner/services/repositories.py
"""
Stores for role queries, sites, persons, companies and leads.

Each repository has an abstract interface (what the pipeline depends on) and
a SQLAlchemy implementation that opens one short transaction per call.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from icp_miner.database import AsyncSessionLocal
from icp_miner.models import Company, Lead, Person, RoleQuery, RoleQuerySegment, Site
from icp_miner.schemas.mining import Candidate

logger = logging.getLogger(__name__)


def merge_unique(existing: Optional[Iterable[str]], new: Optional[Iterable[str]]) -> List[str]:
    """Order-preserving, case-insensitive union of two address lists."""
    merged: List[str] = []
    seen = set()
    for value in list(existing or []) + list(new or []):
        if not isinstance(value, str) or not value.strip():
            continue
        key = value.strip().lower()
        if key not in seen:
            seen.add(key)
            merged.append(value.strip())
    return merged


@dataclass
class LeadDraft:
    """Fields for a new lead."""
    person_id: UUID
    site_id: UUID
    name: str
    user_id: Optional[UUID] = None
    company_id: Optional[UUID] = None
    segment_id: Optional[UUID] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    position: Optional[str] = None
    company_name: Optional[str] = None
    web: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    social_networks: Dict[str, Any] = field(default_factory=dict)
    company: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    origin: str = "icp_mining"
    status: str = "new"


# ============================================================================
# INTERFACES
# ============================================================================

class RoleQueryRepository(ABC):

    @abstractmethod
    async def get_role_query(self, role_query_id) -> Optional[RoleQuery]:
        pass

    @abstractmethod
    async def get_segment_id(self, role_query_id) -> Optional[UUID]:
        pass


class SiteRepository(ABC):

    @abstractmethod
    async def get_owner_id(self, site_id) -> Optional[UUID]:
        """User id owning the site, or None when the site does not exist."""
        pass


class PersonRepository(ABC):

    @abstractmethod
    async def find_existing(
        self,
        external_person_id: Optional[str] = None,
        external_role_id: Optional[str] = None,
        full_name: Optional[str] = None,
        company_name: Optional[str] = None
    ) -> Optional[Person]:
        pass

    @abstractmethod
    async def upsert_from_candidate(self, candidate: Candidate, role_query_id=None) -> Person:
        pass

    @abstractmethod
    async def merge_contacts(
        self,
        person_id,
        emails: Optional[List[str]] = None,
        phones: Optional[List[str]] = None
    ) -> Person:
        pass


class LeadRepository(ABC):

    @abstractmethod
    async def find_for_person(self, person_id, site_id) -> Optional[Lead]:
        pass

    @abstractmethod
    async def create_for_person(self, draft: LeadDraft) -> Tuple[Lead, bool]:
        """Create the lead for (person, site); returns (lead, created)."""
        pass


class CompanyRepository(ABC):

    @abstractmethod
    async def upsert_by_name(self, site_id, name: str, user_id=None, **fields) -> Company:
        pass


# ============================================================================
# SQLALCHEMY IMPLEMENTATIONS
# ============================================================================

class _SqlRepository:

    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal):
        self.session_factory = session_factory


class SqlRoleQueryRepository(_SqlRepository, RoleQueryRepository):

    async def get_role_query(self, role_query_id) -> Optional[RoleQuery]:
        async with self.session_factory() as session:
            return await session.get(RoleQuery, _uuid(role_query_id))

    async def get_segment_id(self, role_query_id) -> Optional[UUID]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(RoleQuerySegment.segment_id)
                .where(RoleQuerySegment.role_query_id == _uuid(role_query_id))
                .limit(1)
            )
            return result.scalars().first()


class SqlSiteRepository(_SqlRepository, SiteRepository):

    async def get_owner_id(self, site_id) -> Optional[UUID]:
        async with self.session_factory() as session:
            result = await session.execute(select(Site.user_id).where(Site.id == _uuid(site_id)))
            return result.scalars().first()


class SqlPersonRepository(_SqlRepository, PersonRepository):
    """Lookup precedes creation; the external-id unique constraint catches races."""

    @staticmethod
    def _identity_filter(external_person_id, external_role_id, full_name, company_name):
        if external_person_id and external_role_id:
            return and_(
                Person.external_person_id == str(external_person_id),
                Person.external_role_id == str(external_role_id),
            )
        if external_person_id:
            return Person.external_person_id == str(external_person_id)
        if full_name and company_name:
            return and_(Person.full_name == full_name, Person.company_name == company_name)
        return None

    async def _find(self, session: AsyncSession, **keys) -> Optional[Person]:
        condition = self._identity_filter(
            keys.get("external_person_id"),
            keys.get("external_role_id"),
            keys.get("full_name"),
            keys.get("company_name"),
        )
        if condition is None:
            return None
        result = await session.execute(
            select(Person).where(condition).order_by(Person.created_at).limit(1)
        )
        return result.scalars().first()

    async def find_existing(
        self,
        external_person_id: Optional[str] = None,
        external_role_id: Optional[str] = None,
        full_name: Optional[str] = None,
        company_name: Optional[str] = None
    ) -> Optional[Person]:
        async with self.session_factory() as session:
            return await self._find(
                session,
                external_person_id=external_person_id,
                external_role_id=external_role_id,
                full_name=full_name,
                company_name=company_name,
            )

    @staticmethod
    def _apply_candidate(person: Person, candidate: Candidate, role_query_id) -> None:
        person.external_person_id = candidate.external_person_id or person.external_person_id
        person.external_role_id = candidate.external_role_id or person.external_role_id
        person.external_organization_id = candidate.external_organization_id or person.external_organization_id
        person.full_name = candidate.full_name or person.full_name
        person.role_title = candidate.role_title or person.role_title
        person.company_name = candidate.company_name or person.company_name
        person.location = candidate.location or person.location
        person.start_date = candidate.start_date or person.start_date
        person.end_date = candidate.end_date or person.end_date
        if candidate.is_current is not None:
            person.is_current = candidate.is_current
        person.role_query_id = _uuid(role_query_id) if role_query_id else person.role_query_id
        person.emails = merge_unique(person.emails, candidate.emails)
        person.phones = merge_unique(person.phones, candidate.phones)
        person.raw_result = candidate.raw or person.raw_result

    async def upsert_from_candidate(self, candidate: Candidate, role_query_id=None) -> Person:
        keys = dict(
            external_person_id=candidate.external_person_id,
            external_role_id=candidate.external_role_id,
            full_name=candidate.full_name,
            company_name=candidate.company_name,
        )
        async with self.session_factory() as session:
            person = await self._find(session, **keys)
            if person is None:
                person = Person(emails=[], phones=[])
                session.add(person)
            self._apply_candidate(person, candidate, role_query_id)
            try:
                await session.commit()
            except IntegrityError:
                # Concurrent insert of the same external identity
                await session.rollback()
                person = await self._find(session, **keys)
                if person is None:
                    raise
                self._apply_candidate(person, candidate, role_query_id)
                await session.commit()

            logger.debug(f"Upserted person {person.id} ({person.full_name})")
            return person

    async def merge_contacts(
        self,
        person_id,
        emails: Optional[List[str]] = None,
        phones: Optional[List[str]] = None
    ) -> Person:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Person).where(Person.id == _uuid(person_id)).with_for_update()
            )
            person = result.scalars().first()
            if person is None:
                raise LookupError(f"Person {person_id} not found")

            person.emails = merge_unique(person.emails, emails)
            person.phones = merge_unique(person.phones, phones)
            await session.commit()
            return person


class SqlLeadRepository(_SqlRepository, LeadRepository):
    """At most one lead per (person, site), backed by ``uq_leads_person_site``."""

    async def _find(self, session: AsyncSession, person_id, site_id) -> Optional[Lead]:
        result = await session.execute(
            select(Lead).where(
                Lead.person_id == _uuid(person_id),
                Lead.site_id == _uuid(site_id),
            ).limit(1)
        )
        return result.scalars().first()

    async def find_for_person(self, person_id, site_id) -> Optional[Lead]:
        async with self.session_factory() as session:
            return await self._find(session, person_id, site_id)

    async def create_for_person(self, draft: LeadDraft) -> Tuple[Lead, bool]:
        async with self.session_factory() as session:
            lead = Lead(
                person_id=_uuid(draft.person_id),
                site_id=_uuid(draft.site_id),
                user_id=_uuid(draft.user_id) if draft.user_id else None,
                company_id=_uuid(draft.company_id) if draft.company_id else None,
                segment_id=_uuid(draft.segment_id) if draft.segment_id else None,
                name=draft.name,
                email=draft.email,
                phone=draft.phone,
                position=draft.position,
                company_name=draft.company_name,
                web=draft.web,
                location=draft.location,
                notes=draft.notes,
                social_networks=draft.social_networks,
                company=draft.company,
                lead_metadata=draft.metadata,
                origin=draft.origin,
                status=draft.status,
            )
            session.add(lead)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing = await self._find(session, draft.person_id, draft.site_id)
                if existing is None:
                    raise
                logger.info(f"Lead for person {draft.person_id} on site {draft.site_id} already exists")
                return existing, False

            logger.info(f"Created lead {lead.id} for person {draft.person_id}")
            return lead, True


class SqlCompanyRepository(_SqlRepository, CompanyRepository):

    UPDATABLE_FIELDS = (
        "external_organization_id", "website", "domain", "industry",
        "size", "description", "linkedin_url",
    )

    async def _find(self, session: AsyncSession, site_id, name: str) -> Optional[Company]:
        result = await session.execute(
            select(Company).where(Company.site_id == _uuid(site_id), Company.name == name).limit(1)
        )
        return result.scalars().first()

    def _apply(self, company: Company, fields: Dict[str, Any]) -> None:
        for key in self.UPDATABLE_FIELDS:
            value = fields.get(key)
            if value:
                setattr(company, key, value)

    async def upsert_by_name(self, site_id, name: str, user_id=None, **fields) -> Company:
        async with self.session_factory() as session:
            company = await self._find(session, site_id, name)
            if company is None:
                company = Company(
                    site_id=_uuid(site_id),
                    user_id=_uuid(user_id) if user_id else None,
                    name=name,
                )
                session.add(company)
            self._apply(company, fields)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                company = await self._find(session, site_id, name)
                if company is None:
                    raise
                self._apply(company, fields)
                await session.commit()
            return company


def _uuid(value) -> UUID:
    """Accept UUIDs or their string form."""
    if isinstance(value, UUID):
        return value
    return UUID(str(value))

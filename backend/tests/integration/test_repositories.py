# tests/integration/test_repositories.py
"""
SQL repositories against a real database

Coverage:
- Person lookup precedence and contact merging
- Lead uniqueness per (person, site) via the storage constraint
- Company upsert by name
- Role query, segment and site owner lookups

Run with: pytest tests/integration/test_repositories.py -v
"""

import pytest
from uuid import uuid4

from icp_miner.schemas.mining import Candidate
from icp_miner.services.repositories import (
    LeadDraft,
    SqlCompanyRepository,
    SqlLeadRepository,
    SqlPersonRepository,
    SqlRoleQueryRepository,
    SqlSiteRepository,
)

pytestmark = pytest.mark.integration


@pytest.fixture
def persons(session_factory):
    return SqlPersonRepository(session_factory)


@pytest.fixture
def leads(session_factory):
    return SqlLeadRepository(session_factory)


@pytest.fixture
def companies(session_factory):
    return SqlCompanyRepository(session_factory)


def candidate(**fields):
    values = dict(
        external_person_id="11",
        external_role_id="901",
        full_name="Ada Lovelace",
        company_name="Analytical Engines",
        role_title="CTO",
        emails=["ada@analytical.io"],
        raw={"id": 901},
    )
    values.update(fields)
    return Candidate(**values)


# ============================================================================
# PERSONS
# ============================================================================

class TestPersons:

    @pytest.mark.asyncio
    async def test_upsert_then_find_by_external_ids(self, persons, seeded):
        created = await persons.upsert_from_candidate(candidate(), role_query_id=seeded["role_query"].id)

        found = await persons.find_existing(external_person_id="11", external_role_id="901")

        assert found.id == created.id
        assert found.emails == ["ada@analytical.io"]
        assert found.role_query_id == seeded["role_query"].id

    @pytest.mark.asyncio
    async def test_find_by_person_id_only(self, persons, seeded):
        created = await persons.upsert_from_candidate(candidate())

        assert (await persons.find_existing(external_person_id="11")).id == created.id

    @pytest.mark.asyncio
    async def test_find_by_name_and_company(self, persons, seeded):
        created = await persons.upsert_from_candidate(
            candidate(external_person_id=None, external_role_id=None)
        )

        found = await persons.find_existing(full_name="Ada Lovelace", company_name="Analytical Engines")

        assert found.id == created.id

    @pytest.mark.asyncio
    async def test_upsert_twice_keeps_one_row(self, persons, seeded):
        first = await persons.upsert_from_candidate(candidate())
        second = await persons.upsert_from_candidate(candidate(emails=["a.lovelace@analytical.io"]))

        assert second.id == first.id
        assert second.emails == ["ada@analytical.io", "a.lovelace@analytical.io"]

    @pytest.mark.asyncio
    async def test_not_found(self, persons, seeded):
        assert await persons.find_existing(external_person_id="nope") is None
        assert await persons.find_existing() is None

    @pytest.mark.asyncio
    async def test_merge_contacts(self, persons, seeded):
        person = await persons.upsert_from_candidate(candidate())

        merged = await persons.merge_contacts(
            person.id, emails=["ADA@analytical.io", "work@analytical.io"], phones=["+44 20 0000"]
        )

        assert merged.emails == ["ada@analytical.io", "work@analytical.io"]
        assert merged.phones == ["+44 20 0000"]


# ============================================================================
# LEADS
# ============================================================================

class TestLeads:

    @pytest.mark.asyncio
    async def test_one_lead_per_person_and_site(self, persons, leads, seeded):
        person = await persons.upsert_from_candidate(candidate())
        site_id = seeded["site"].id
        draft = LeadDraft(
            person_id=person.id,
            site_id=site_id,
            name="Ada Lovelace",
            email="ada@analytical.io",
            metadata={"source": "icp_mining"},
        )

        first, created_first = await leads.create_for_person(draft)
        second, created_second = await leads.create_for_person(draft)

        assert created_first is True
        assert created_second is False
        assert second.id == first.id
        assert (await leads.find_for_person(person.id, site_id)).id == first.id

    @pytest.mark.asyncio
    async def test_lead_fields_persisted(self, persons, leads, seeded):
        person = await persons.upsert_from_candidate(candidate())
        segment_id = seeded["segment_id"]

        lead, _ = await leads.create_for_person(LeadDraft(
            person_id=person.id,
            site_id=seeded["site"].id,
            user_id=seeded["site"].user_id,
            segment_id=segment_id,
            name="Ada Lovelace",
            email="ada@analytical.io",
            social_networks={"linkedin": "https://linkedin.com/in/ada"},
            metadata={"source": "icp_mining", "email_source": "search_result"},
        ))

        stored = await leads.find_for_person(person.id, seeded["site"].id)
        assert stored.origin == "icp_mining"
        assert stored.status == "new"
        assert stored.segment_id == segment_id
        assert stored.lead_metadata["email_source"] == "search_result"
        assert stored.social_networks == {"linkedin": "https://linkedin.com/in/ada"}

    @pytest.mark.asyncio
    async def test_no_lead(self, leads, seeded):
        assert await leads.find_for_person(uuid4(), seeded["site"].id) is None


# ============================================================================
# COMPANIES, ROLE QUERIES, SITES
# ============================================================================

class TestLookups:

    @pytest.mark.asyncio
    async def test_company_upsert_by_name(self, companies, seeded):
        site_id = seeded["site"].id

        first = await companies.upsert_by_name(site_id, "Analytical Engines", domain="analytical.io")
        second = await companies.upsert_by_name(site_id, "Analytical Engines", industry="Computing", domain=None)

        assert second.id == first.id
        assert second.domain == "analytical.io"
        assert second.industry == "Computing"

    @pytest.mark.asyncio
    async def test_role_query_and_segment(self, session_factory, seeded):
        repo = SqlRoleQueryRepository(session_factory)
        rq_id = seeded["role_query"].id

        role_query = await repo.get_role_query(rq_id)

        assert role_query.query == {"role_titles": ["VP Sales"]}
        assert await repo.get_segment_id(rq_id) == seeded["segment_id"]
        assert await repo.get_role_query(uuid4()) is None
        assert await repo.get_segment_id(uuid4()) is None

    @pytest.mark.asyncio
    async def test_site_owner(self, session_factory, seeded):
        repo = SqlSiteRepository(session_factory)

        assert await repo.get_owner_id(seeded["site"].id) == seeded["site"].user_id
        assert await repo.get_owner_id(uuid4()) is None

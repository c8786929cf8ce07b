# tests/conftest.py

import os

# Point the engine at SQLite before icp_miner.database is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENABLE_SCHEDULER", "false")

import pytest
from types import SimpleNamespace
from typing import Dict, List, Optional
from uuid import uuid4
from unittest.mock import AsyncMock, Mock

from sqlalchemy.exc import OperationalError

from icp_miner.models import Lead, MiningJob, Person
from icp_miner.exceptions import MiningJobNotFoundError
from icp_miner.schemas.mining import Candidate, EmailValidationResult, SearchPage
from icp_miner.services.progress_tracker import ProgressTracker, apply_progress, check_transition
from icp_miner.services.repositories import (
    CompanyRepository,
    LeadDraft,
    LeadRepository,
    PersonRepository,
    RoleQueryRepository,
    SiteRepository,
    merge_unique,
)
from icp_miner.services.retry import NO_RETRY


# ============================================================================
# IN-MEMORY STORES
# ============================================================================

class FakeProgressTracker(ProgressTracker):
    """Same transition and counter rules as SqlProgressTracker, kept in a dict."""

    def __init__(self):
        self.jobs: Dict = {}
        self.updates: List[dict] = []
        self.fail_update_on_call: Optional[int] = None
        self.lose_ack_on_call: Optional[int] = None

    def add_job(self, **fields) -> MiningJob:
        values = dict(
            id=uuid4(),
            site_id=uuid4(),
            role_query_id=uuid4(),
            status="pending",
            total_targets=None,
            processed_targets=0,
            found_targets=0,
            current_page=0,
            errors=[],
        )
        values.update(fields)
        job = MiningJob(**values)
        self.jobs[job.id] = job
        return job

    def _get(self, job_id) -> MiningJob:
        job = self.jobs.get(job_id)
        if job is None:
            raise MiningJobNotFoundError(job_id)
        return job

    async def get_job(self, job_id):
        return self.jobs.get(job_id)

    async def list_active_jobs(self, site_id, limit: int = 50):
        return [
            j for j in self.jobs.values()
            if j.site_id == site_id and j.status in ("pending", "running")
        ][:limit]

    async def list_sites_with_active_jobs(self):
        return list(dict.fromkeys(
            j.site_id for j in self.jobs.values() if j.status in ("pending", "running")
        ))

    async def mark_started(self, job_id):
        job = self._get(job_id)
        if job.status != "running":
            check_transition(job.id, job.status, "running")
            job.status = "running"
        return job

    async def update_progress(self, job_id, **kwargs):
        self.updates.append(dict(job_id=job_id, **kwargs))
        if self.fail_update_on_call == len(self.updates):
            raise RuntimeError("database unavailable")
        job = apply_progress(self._get(job_id), **kwargs)
        if self.lose_ack_on_call == len(self.updates):
            # Committed, but the caller never hears back
            raise OperationalError("COMMIT", {}, ConnectionResetError("connection reset"))
        return job

    async def mark_completed(self, job_id, failed: bool = False, last_error: Optional[str] = None):
        job = self._get(job_id)
        status = "failed" if failed else "completed"
        check_transition(job.id, job.status, status)
        job.status = status
        if last_error:
            job.last_error = last_error
        return job


class FakeSiteRepository(SiteRepository):

    def __init__(self):
        self.owners: Dict = {}

    async def get_owner_id(self, site_id):
        return self.owners.get(site_id)


class FakeRoleQueryRepository(RoleQueryRepository):

    def __init__(self):
        self.role_queries: Dict = {}
        self.segments: Dict = {}

    def add(self, role_query_id, query=None, segment_id=None):
        self.role_queries[role_query_id] = SimpleNamespace(id=role_query_id, query=query or {"role_titles": ["CTO"]})
        if segment_id:
            self.segments[role_query_id] = segment_id

    async def get_role_query(self, role_query_id):
        return self.role_queries.get(role_query_id)

    async def get_segment_id(self, role_query_id):
        return self.segments.get(role_query_id)


class FakePersonRepository(PersonRepository):

    def __init__(self):
        self.persons: List[Person] = []
        self.fail_upsert = False

    def add(self, **fields) -> Person:
        values = dict(id=uuid4(), emails=[], phones=[])
        values.update(fields)
        person = Person(**values)
        self.persons.append(person)
        return person

    async def find_existing(self, external_person_id=None, external_role_id=None, full_name=None, company_name=None):
        for p in self.persons:
            if external_person_id and external_role_id:
                if p.external_person_id == external_person_id and p.external_role_id == external_role_id:
                    return p
            elif external_person_id:
                if p.external_person_id == external_person_id:
                    return p
            elif full_name and company_name:
                if p.full_name == full_name and p.company_name == company_name:
                    return p
        return None

    async def upsert_from_candidate(self, candidate: Candidate, role_query_id=None):
        if self.fail_upsert:
            raise RuntimeError("persons table locked")
        return self.add(
            external_person_id=candidate.external_person_id,
            external_role_id=candidate.external_role_id,
            full_name=candidate.full_name,
            company_name=candidate.company_name,
            emails=list(candidate.emails),
            phones=list(candidate.phones),
        )

    async def merge_contacts(self, person_id, emails=None, phones=None):
        person = next(p for p in self.persons if p.id == person_id)
        person.emails = merge_unique(person.emails, emails)
        person.phones = merge_unique(person.phones, phones)
        return person


class FakeLeadRepository(LeadRepository):

    def __init__(self):
        self.leads: Dict = {}
        self.drafts: List[LeadDraft] = []

    async def find_for_person(self, person_id, site_id):
        return self.leads.get((person_id, site_id))

    async def create_for_person(self, draft: LeadDraft):
        key = (draft.person_id, draft.site_id)
        if key in self.leads:
            return self.leads[key], False
        self.drafts.append(draft)
        lead = Lead(id=uuid4(), person_id=draft.person_id, site_id=draft.site_id, name=draft.name, email=draft.email)
        self.leads[key] = lead
        return lead, True


class FakeCompanyRepository(CompanyRepository):

    def __init__(self):
        self.companies: Dict = {}
        self.fail = False

    async def upsert_by_name(self, site_id, name, user_id=None, **fields):
        if self.fail:
            raise RuntimeError("companies table locked")
        key = (site_id, name)
        if key not in self.companies:
            self.companies[key] = SimpleNamespace(id=uuid4(), site_id=site_id, name=name, **fields)
        return self.companies[key]


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def retry_policy():
    """Single attempt, no backoff"""
    return NO_RETRY


@pytest.fixture
def tracker():
    return FakeProgressTracker()


@pytest.fixture
def sites():
    return FakeSiteRepository()


@pytest.fixture
def role_queries():
    return FakeRoleQueryRepository()


@pytest.fixture
def persons():
    return FakePersonRepository()


@pytest.fixture
def leads():
    return FakeLeadRepository()


@pytest.fixture
def companies():
    return FakeCompanyRepository()


@pytest.fixture
def valid_emails():
    """Addresses the fake validator reports valid and deliverable"""
    return set()


@pytest.fixture
def validator(valid_emails):
    async def validate(email):
        ok = email.lower() in {e.lower() for e in valid_emails}
        return EmailValidationResult(
            email=email, is_valid=ok, deliverable=ok, result="valid" if ok else "invalid"
        )

    mock = Mock()
    mock.validate = AsyncMock(side_effect=validate)
    return mock


@pytest.fixture
def generator():
    mock = Mock()
    mock.generate = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def finder():
    mock = Mock()
    mock.search_person_roles = AsyncMock(return_value=SearchPage(candidates=[], has_more=False, page=0, page_size=10))
    mock.lookup_work_emails = AsyncMock(return_value=[])
    mock.lookup_phone_numbers = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def make_candidate():
    counter = {"n": 0}

    def _make(**fields) -> Candidate:
        counter["n"] += 1
        values = dict(
            external_person_id=f"p-{counter['n']}",
            external_role_id=f"r-{counter['n']}",
            full_name=f"Person {counter['n']}",
            company_name="Acme Corp",
            role_title="VP Sales",
        )
        values.update(fields)
        return Candidate(**values)

    return _make


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: unit tests")
    config.addinivalue_line("markers", "integration: integration tests")
    config.addinivalue_line("markers", "slow: slow running tests")

# tests/integration/conftest.py
"""Integration test fixtures - real SQLAlchemy stores on a throwaway SQLite file"""

import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from icp_miner.database import Base
from icp_miner.models import MiningJob, RoleQuery, RoleQuerySegment, Site


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh schema per test"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'icp_miner_test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def seeded(session_factory):
    """One site with an owner, a role query linked to a segment, and no jobs"""
    site = Site(id=uuid4(), name="Acme Sales", user_id=uuid4())
    role_query = RoleQuery(id=uuid4(), site_id=site.id, name="VP Sales US", query={"role_titles": ["VP Sales"]})
    segment = RoleQuerySegment(role_query_id=role_query.id, segment_id=uuid4())

    async with session_factory() as session:
        session.add(site)
        await session.flush()
        session.add(role_query)
        await session.flush()
        session.add(segment)
        await session.commit()

    return {"site": site, "role_query": role_query, "segment_id": segment.segment_id}


@pytest.fixture
def add_job(session_factory, seeded):
    """Insert a mining job; created_at is spaced so ordering is deterministic"""
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    counter = {"n": 0}

    async def _add(**fields) -> MiningJob:
        counter["n"] += 1
        values = dict(
            id=uuid4(),
            site_id=seeded["site"].id,
            role_query_id=seeded["role_query"].id,
            name=f"job {counter['n']}",
            status="pending",
            processed_targets=0,
            found_targets=0,
            current_page=0,
            errors=[],
            created_at=base + timedelta(minutes=counter["n"]),
        )
        values.update(fields)
        job = MiningJob(**values)
        async with session_factory() as session:
            session.add(job)
            await session.commit()
        return job

    return _add

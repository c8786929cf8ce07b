# backend/icp_miner/models.py
"""
SQLAlchemy ORM models for ICP mining.

Tables:
- sites / role_queries / role_query_segments: read-only configuration owned elsewhere
- icp_mining: one mining job per ICP definition, with persisted progress
- persons: identity rows keyed by external ids (or name + company)
- companies: site-scoped, upserted by name
- leads: site-scoped, at most one per (person, site)
"""

from sqlalchemy import (
    Column, String, Boolean, Integer, Text, DateTime, JSON, Index, Uuid,
    ForeignKey, CheckConstraint, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from icp_miner.database import Base
import uuid


# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

ACTIVE_MINING_STATUSES = ("pending", "running")
TERMINAL_MINING_STATUSES = ("completed", "failed")


# ============================================================================
# SITE & ROLE QUERY MODELS
# ============================================================================

class Site(Base):
    """Customer site; owner is used as the acting user for created leads."""
    __tablename__ = "sites"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255))
    user_id = Column(Uuid, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RoleQuery(Base):
    """Structured search criteria for the person/organization search."""
    __tablename__ = "role_queries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    site_id = Column(Uuid, ForeignKey("sites.id", ondelete="CASCADE"), index=True)
    name = Column(String(255))
    query = Column(JSONType, nullable=False, default=dict)
    # Example: {
    #   "role_titles": ["VP Sales", "Head of Growth"],
    #   "organization_locations": ["United States"],
    #   "organization_industries": ["Software"]
    # }
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RoleQuerySegment(Base):
    """Links a role query to the audience segment its leads belong to."""
    __tablename__ = "role_query_segments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    role_query_id = Column(Uuid, ForeignKey("role_queries.id", ondelete="CASCADE"), nullable=False, index=True)
    segment_id = Column(Uuid, nullable=False)


# ============================================================================
# MINING JOB
# ============================================================================

class MiningJob(Base):
    """ICP mining job with crash-safe progress."""
    __tablename__ = "icp_mining"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    site_id = Column(Uuid, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    role_query_id = Column(Uuid, ForeignKey("role_queries.id"), nullable=False)
    name = Column(String(255))

    status = Column(String(20), nullable=False, default="pending")

    # Progress
    total_targets = Column(Integer)  # Unknown until page 0 is fetched
    processed_targets = Column(Integer, nullable=False, default=0)
    found_targets = Column(Integer, nullable=False, default=0)
    current_page = Column(Integer, nullable=False, default=0)  # Next page to fetch (0-based)

    # Errors
    last_error = Column(Text)
    errors = Column(JSONType, nullable=False, default=list)
    # Example: [{"timestamp": "2025-01-01T10:00:00+00:00", "message": "Page 3 fetch failed: ..."}]

    # Timestamps
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))
    last_progress_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed')",
            name="chk_icp_mining_status"
        ),
        CheckConstraint("processed_targets >= 0", name="chk_icp_mining_processed"),
        Index("idx_icp_mining_site_status", "site_id", "status"),
    )

    def __repr__(self):
        return (
            f"<MiningJob(id={self.id}, status='{self.status}', "
            f"processed={self.processed_targets}/{self.total_targets}, page={self.current_page})>"
        )


# ============================================================================
# PERSON / COMPANY / LEAD
# ============================================================================

class Person(Base):
    """Durable identity row; emails and phones accumulate over time."""
    __tablename__ = "persons"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    role_query_id = Column(Uuid)
    external_person_id = Column(String(64), index=True)
    external_role_id = Column(String(64))
    external_organization_id = Column(String(64))

    full_name = Column(String(255))
    role_title = Column(String(255))
    company_name = Column(String(255))
    location = Column(String(255))
    start_date = Column(String(32))
    end_date = Column(String(32))
    is_current = Column(Boolean)

    emails = Column(JSONType, nullable=False, default=list)
    phones = Column(JSONType, nullable=False, default=list)
    raw_result = Column(JSONType)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("external_person_id", "external_role_id", name="uq_persons_external_ids"),
        Index("idx_persons_name_company", "full_name", "company_name"),
    )


class Company(Base):
    """Site-scoped company; best-effort, never blocks lead creation."""
    __tablename__ = "companies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    site_id = Column(Uuid, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid)
    name = Column(String(255), nullable=False)
    external_organization_id = Column(String(64))
    website = Column(String(500))
    domain = Column(String(255))
    industry = Column(String(255))
    size = Column(String(64))
    description = Column(Text)
    linkedin_url = Column(String(500))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("site_id", "name", name="uq_companies_site_name"),
    )


class Lead(Base):
    """Sales lead materialized from a matched candidate."""
    __tablename__ = "leads"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    site_id = Column(Uuid, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid)
    person_id = Column(Uuid, ForeignKey("persons.id"), nullable=False)
    company_id = Column(Uuid, ForeignKey("companies.id", ondelete="SET NULL"))
    segment_id = Column(Uuid)

    # Denormalized contact fields
    name = Column(String(255), nullable=False)
    email = Column(String(255))
    phone = Column(String(64))
    position = Column(String(255))
    company_name = Column(String(255))
    web = Column(String(500))
    location = Column(String(255))
    social_networks = Column(JSONType, default=dict)
    company = Column(JSONType, default=dict)
    notes = Column(Text)

    status = Column(String(50), nullable=False, default="new")
    origin = Column(String(50), nullable=False, default="icp_mining")
    # "metadata" is reserved on declarative classes
    lead_metadata = Column("metadata", JSONType, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("person_id", "site_id", name="uq_leads_person_site"),
        Index("idx_leads_site_status", "site_id", "status"),
    )

    def __repr__(self):
        return f"<Lead(id={self.id}, name='{self.name}', email='{self.email}')>"

"""
regtrack.db
===========

SQLModel persistence layer.

This module exposes:

* ``engine`` – a global SQLModel engine pointing at *regtrack.db*
* ``SessionLocal`` – a session factory used via ``with SessionLocal() as s:``
* ``create_all()`` – helper to create tables at first run
* the table models mirroring the hosted schema (``startups``,
  ``subsidiaries``, ``international_ops``, ``compliance_rules_comprehensive``,
  ``compliance_checks``, ``compliance_uploads``)
"""

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine

from regtrack.models import (
    AggregateStatus,
    ComplianceRule,
    InternationalOp,
    Subsidiary,
    Upload,
    VerificationRequirement,
    VerificationStatus,
)
from regtrack.settings import DB_ECHO, DB_URL


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
engine = create_engine(DB_URL, echo=DB_ECHO, connect_args={"check_same_thread": False})


def memory_engine():
    """In-memory SQLite engine shared across threads (tests, demos)."""
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


# ---------------------------------------------------------------------------
# Session factory
# ---------------------------------------------------------------------------
def SessionLocal() -> Session:  # noqa: N802 (factory camel‑case for consistency with FastAPI docs)
    """Return a new Session bound to the global engine."""
    return Session(engine)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


STATUS_VALUES = tuple(s.value for s in VerificationStatus)
_STATUS_SQL = ", ".join(f"'{v}'" for v in STATUS_VALUES)


# ---------------------------------------------------------------------------
# Profile tables
# ---------------------------------------------------------------------------
class StartupDB(SQLModel, table=True):
    __tablename__ = "startups"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = ""
    country_of_registration: Optional[str] = None
    company_type: Optional[str] = None
    registration_date: Optional[date] = None
    ca_service_code: Optional[str] = None
    cs_service_code: Optional[str] = None
    compliance_status: str = AggregateStatus.PENDING.value


class SubsidiaryDB(SQLModel, table=True):
    __tablename__ = "subsidiaries"

    id: Optional[int] = Field(default=None, primary_key=True)
    startup_id: int = Field(index=True, foreign_key="startups.id")
    country: str
    company_type: Optional[str] = None
    registration_date: Optional[date] = None
    ca_service_code: Optional[str] = None
    cs_service_code: Optional[str] = None

    def to_subsidiary(self) -> Subsidiary:
        return Subsidiary(
            id=self.id,
            country=self.country,
            company_type=self.company_type,
            registration_date=self.registration_date,
            ca_code=self.ca_service_code,
            cs_code=self.cs_service_code,
        )


class InternationalOpDB(SQLModel, table=True):
    __tablename__ = "international_ops"

    id: Optional[int] = Field(default=None, primary_key=True)
    startup_id: int = Field(index=True, foreign_key="startups.id")
    country: str
    company_type: Optional[str] = None
    start_date: Optional[date] = None

    def to_op(self) -> InternationalOp:
        return InternationalOp(
            id=self.id,
            country=self.country,
            company_type=self.company_type,
            start_date=self.start_date,
        )


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------
class ComplianceRuleDB(SQLModel, table=True):
    """One row of the administrator-maintained rule table."""
    __tablename__ = "compliance_rules_comprehensive"

    id: Optional[int] = Field(default=None, primary_key=True)
    country_code: str = Field(index=True)
    company_type: str = Field(index=True)
    compliance_name: str
    compliance_description: str = ""
    frequency: str = "annual"
    verification_required: str = VerificationRequirement.NONE.value
    ca_type: Optional[str] = None
    cs_type: Optional[str] = None

    def to_rule(self) -> ComplianceRule:
        return ComplianceRule(
            id=self.id,
            name=self.compliance_name,
            description=self.compliance_description or "",
            frequency=self.frequency,
            verification_required=VerificationRequirement.parse(self.verification_required),
            ca_type=self.ca_type,
            cs_type=self.cs_type,
            country_code=self.country_code,
            company_type=self.company_type,
        )


# ---------------------------------------------------------------------------
# Status and upload tables
# ---------------------------------------------------------------------------
class ComplianceCheckDB(SQLModel, table=True):
    """
    Persisted verification state of one task instance.

    Unique on (startup_id, task_id); every write is an upsert on that key.
    ``is_applicable`` is nullable on purpose: rows written before the
    column existed read back as ``None`` and are treated as applicable.
    """
    __tablename__ = "compliance_checks"
    __table_args__ = (
        UniqueConstraint("startup_id", "task_id", name="uq_compliance_checks_startup_task"),
        CheckConstraint(f"ca_status IN ({_STATUS_SQL})", name="ck_compliance_checks_ca_status"),
        CheckConstraint(f"cs_status IN ({_STATUS_SQL})", name="ck_compliance_checks_cs_status"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    startup_id: int = Field(index=True)
    task_id: str = Field(index=True)
    entity_identifier: str
    entity_display_name: str
    year: int
    task_name: str
    ca_required: bool = False
    cs_required: bool = False
    ca_status: str = VerificationStatus.PENDING.value
    cs_status: str = VerificationStatus.PENDING.value
    is_applicable: Optional[bool] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class ComplianceUploadDB(SQLModel, table=True):
    __tablename__ = "compliance_uploads"

    id: Optional[int] = Field(default=None, primary_key=True)
    startup_id: int = Field(index=True)
    task_id: str = Field(index=True)
    file_name: str
    file_url: str
    uploaded_by: str
    file_size: int = 0
    file_type: str = "application/octet-stream"
    created_at: datetime = Field(default_factory=_utcnow)

    def to_upload(self) -> Upload:
        return Upload(
            id=self.id,
            startup_id=self.startup_id,
            task_id=self.task_id,
            file_name=self.file_name,
            file_url=self.file_url,
            uploaded_by=self.uploaded_by,
            file_size=self.file_size,
            file_type=self.file_type,
            created_at=self.created_at,
        )


# ---------------------------------------------------------------------------
# Utility: create tables
# ---------------------------------------------------------------------------
def create_all(bind=None) -> None:
    """Create all tables (safe if they already exist)."""
    SQLModel.metadata.create_all(bind or engine)

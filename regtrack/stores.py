"""
regtrack.stores
===============

SQLModel-backed stores for the four collaborators the engine talks to:
the rule table, the per-task status rows, the upload rows and the
startup record (profile + aggregate status).

Each store takes a *session factory* rather than a live session and opens
a short session per call, so one store instance can be shared by every
request thread.  Reads let SQLAlchemy errors propagate (loading paths
catch them); writes translate them into :mod:`regtrack.errors` classes.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from regtrack.db import (
    ComplianceCheckDB,
    ComplianceRuleDB,
    ComplianceUploadDB,
    InternationalOpDB,
    SessionLocal,
    StartupDB,
    SubsidiaryDB,
)
from regtrack.errors import classify_write_error
from regtrack.models import AggregateStatus, ComplianceRule, StartupProfile, Upload

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Store:
    def __init__(self, session_factory: Optional[SessionFactory] = None) -> None:
        self._session_factory: SessionFactory = session_factory or SessionLocal

    def _session(self) -> Session:
        return self._session_factory()

    @staticmethod
    def _raise_write_error(s: Session, exc: SQLAlchemyError) -> None:
        s.rollback()
        error_cls = classify_write_error(exc)
        raise error_cls(str(exc.orig) if getattr(exc, "orig", None) else str(exc)) from exc


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------
class RuleStore(_Store):
    """Read access to ``compliance_rules_comprehensive``."""

    def rules_for(self, country_code: str, company_type: str) -> List[ComplianceRule]:
        with self._session() as s:
            rows = s.exec(
                select(ComplianceRuleDB)
                .where(ComplianceRuleDB.country_code == country_code)
                .where(ComplianceRuleDB.company_type == company_type)
                .order_by(ComplianceRuleDB.id)
            ).all()
            return [row.to_rule() for row in rows]

    def add(self, row: ComplianceRuleDB) -> ComplianceRule:
        with self._session() as s:
            s.add(row)
            s.commit()
            s.refresh(row)
            return row.to_rule()


# ---------------------------------------------------------------------------
# Status rows
# ---------------------------------------------------------------------------
class StatusStore(_Store):
    """Per-task verification rows keyed by (startup_id, task_id)."""

    def get(self, startup_id: int, task_id: str) -> Optional[ComplianceCheckDB]:
        with self._session() as s:
            return s.exec(
                select(ComplianceCheckDB)
                .where(ComplianceCheckDB.startup_id == startup_id)
                .where(ComplianceCheckDB.task_id == task_id)
            ).first()

    def get_many(self, startup_id: int, task_ids: Optional[Iterable[str]] = None) -> Dict[str, ComplianceCheckDB]:
        """Rows of *startup_id* keyed by task id, optionally limited to *task_ids*."""
        with self._session() as s:
            query = select(ComplianceCheckDB).where(ComplianceCheckDB.startup_id == startup_id)
            if task_ids is not None:
                ids = list(task_ids)
                if not ids:
                    return {}
                query = query.where(ComplianceCheckDB.task_id.in_(ids))
            return {row.task_id: row for row in s.exec(query).all()}

    def upsert(self, startup_id: int, task_id: str, **values) -> ComplianceCheckDB:
        """
        Insert or update the row for (startup_id, task_id).

        A unique-key collision with a concurrent insert is retried once as
        an update (last write wins).
        """
        for attempt in range(2):
            with self._session() as s:
                row = s.exec(
                    select(ComplianceCheckDB)
                    .where(ComplianceCheckDB.startup_id == startup_id)
                    .where(ComplianceCheckDB.task_id == task_id)
                ).first()
                if row is None:
                    row = ComplianceCheckDB(startup_id=startup_id, task_id=task_id, **values)
                else:
                    for key, value in values.items():
                        setattr(row, key, value)
                    row.updated_at = _now()
                s.add(row)
                try:
                    s.commit()
                except IntegrityError as exc:
                    if attempt == 0 and "unique" in str(exc).lower():
                        s.rollback()
                        logger.info("Concurrent insert of %s/%s, retrying as update", startup_id, task_id)
                        continue
                    self._raise_write_error(s, exc)
                except SQLAlchemyError as exc:
                    self._raise_write_error(s, exc)
                s.refresh(row)
                return row
        raise AssertionError("unreachable")

    def update(self, startup_id: int, task_id: str, **values) -> bool:
        """Update an existing row only; return False when it does not exist."""
        with self._session() as s:
            row = s.exec(
                select(ComplianceCheckDB)
                .where(ComplianceCheckDB.startup_id == startup_id)
                .where(ComplianceCheckDB.task_id == task_id)
            ).first()
            if row is None:
                return False
            for key, value in values.items():
                setattr(row, key, value)
            row.updated_at = _now()
            s.add(row)
            try:
                s.commit()
            except SQLAlchemyError as exc:
                self._raise_write_error(s, exc)
            return True

    def delete_for_startup(self, startup_id: int) -> int:
        with self._session() as s:
            rows = s.exec(select(ComplianceCheckDB).where(ComplianceCheckDB.startup_id == startup_id)).all()
            for row in rows:
                s.delete(row)
            try:
                s.commit()
            except SQLAlchemyError as exc:
                self._raise_write_error(s, exc)
            return len(rows)


# ---------------------------------------------------------------------------
# Uploads
# ---------------------------------------------------------------------------
class UploadStore(_Store):
    """Rows of ``compliance_uploads``."""

    def insert(
        self,
        startup_id: int,
        task_id: str,
        file_name: str,
        file_url: str,
        uploaded_by: str,
        file_size: int = 0,
        file_type: str = "application/octet-stream",
    ) -> Upload:
        row = ComplianceUploadDB(
            startup_id=startup_id,
            task_id=task_id,
            file_name=file_name,
            file_url=file_url,
            uploaded_by=uploaded_by,
            file_size=file_size,
            file_type=file_type,
        )
        with self._session() as s:
            s.add(row)
            try:
                s.commit()
            except SQLAlchemyError as exc:
                self._raise_write_error(s, exc)
            s.refresh(row)
            return row.to_upload()

    def get(self, upload_id: int) -> Optional[Upload]:
        with self._session() as s:
            row = s.get(ComplianceUploadDB, upload_id)
            return row.to_upload() if row else None

    def delete(self, upload_id: int) -> bool:
        with self._session() as s:
            row = s.get(ComplianceUploadDB, upload_id)
            if row is None:
                return False
            s.delete(row)
            try:
                s.commit()
            except SQLAlchemyError as exc:
                self._raise_write_error(s, exc)
            return True

    def for_task(self, startup_id: int, task_id: str) -> List[Upload]:
        with self._session() as s:
            rows = s.exec(
                select(ComplianceUploadDB)
                .where(ComplianceUploadDB.startup_id == startup_id)
                .where(ComplianceUploadDB.task_id == task_id)
                .order_by(ComplianceUploadDB.created_at, ComplianceUploadDB.id)
            ).all()
            return [row.to_upload() for row in rows]

    def by_task(self, startup_id: int) -> Dict[str, List[Upload]]:
        """Every upload of *startup_id*, grouped by task id."""
        grouped: Dict[str, List[Upload]] = defaultdict(list)
        with self._session() as s:
            rows = s.exec(
                select(ComplianceUploadDB)
                .where(ComplianceUploadDB.startup_id == startup_id)
                .order_by(ComplianceUploadDB.created_at, ComplianceUploadDB.id)
            ).all()
            for row in rows:
                grouped[row.task_id].append(row.to_upload())
        return dict(grouped)


# ---------------------------------------------------------------------------
# Startup record + profile
# ---------------------------------------------------------------------------
class StartupStore(_Store):
    """Profile lookup and the aggregate ``compliance_status`` column."""

    def profile(self, startup_id: int) -> Optional[StartupProfile]:
        with self._session() as s:
            startup = s.get(StartupDB, startup_id)
            if startup is None:
                return None
            subs = s.exec(
                select(SubsidiaryDB).where(SubsidiaryDB.startup_id == startup_id).order_by(SubsidiaryDB.id)
            ).all()
            ops = s.exec(
                select(InternationalOpDB)
                .where(InternationalOpDB.startup_id == startup_id)
                .order_by(InternationalOpDB.id)
            ).all()
            return StartupProfile(
                startup_id=startup.id,
                name=startup.name,
                country=startup.country_of_registration,
                company_type=startup.company_type,
                registration_date=startup.registration_date,
                ca_service_code=startup.ca_service_code,
                cs_service_code=startup.cs_service_code,
                subsidiaries=[sub.to_subsidiary() for sub in subs],
                international_ops=[op.to_op() for op in ops],
                compliance_status=AggregateStatus.coerce(startup.compliance_status),
            )

    def compliance_status(self, startup_id: int) -> AggregateStatus:
        with self._session() as s:
            startup = s.get(StartupDB, startup_id)
            if startup is None:
                raise KeyError(startup_id)
            return AggregateStatus.coerce(startup.compliance_status)

    def set_compliance_status(self, startup_id: int, status: AggregateStatus) -> None:
        with self._session() as s:
            startup = s.get(StartupDB, startup_id)
            if startup is None:
                raise KeyError(startup_id)
            startup.compliance_status = status.value
            s.add(startup)
            try:
                s.commit()
            except SQLAlchemyError as exc:
                self._raise_write_error(s, exc)

    # ------------------------------------------------------------ seeding
    def add(self, startup: StartupDB) -> int:
        with self._session() as s:
            s.add(startup)
            s.commit()
            s.refresh(startup)
            return startup.id

    def add_subsidiary(self, sub: SubsidiaryDB) -> int:
        with self._session() as s:
            s.add(sub)
            s.commit()
            s.refresh(sub)
            return sub.id

    def add_international_op(self, op: InternationalOpDB) -> int:
        with self._session() as s:
            s.add(op)
            s.commit()
            s.refresh(op)
            return op.id

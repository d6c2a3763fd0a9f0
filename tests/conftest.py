"""
Pytest configuration: make sure `import regtrack` works regardless of
where pytest is invoked, and provide an in-memory database per test.

It prepends the project root (one directory above *tests/*) to
``sys.path`` **before** any tests are collected.
"""

import sys
from datetime import date
from pathlib import Path

import pytest

# /path/to/project/tests -> project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from sqlmodel import Session  # noqa: E402

from regtrack.db import ComplianceRuleDB, StartupDB, SubsidiaryDB, create_all, memory_engine  # noqa: E402
from regtrack.service import build_service  # noqa: E402
from regtrack.settings import Settings  # noqa: E402

TODAY = date(2025, 6, 1)


@pytest.fixture
def engine():
    eng = memory_engine()
    create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return lambda: Session(engine)


@pytest.fixture
def svc(session_factory, tmp_path):
    """Fully wired service: no remote generator, local storage under tmp_path."""
    return build_service(
        session_factory,
        cfg=Settings(supabase_url="", supabase_key=""),
        today=TODAY,
        storage_dir=tmp_path / "storage",
    )


def _add_rule(svc, name, frequency, verification="both", country="IN", company_type="Private Limited"):
    return svc.rules.add(ComplianceRuleDB(
        country_code=country,
        company_type=company_type,
        compliance_name=name,
        frequency=frequency,
        verification_required=verification,
    ))


@pytest.fixture
def add_rule(svc):
    """Factory adding one rule row to the test database."""
    return lambda *args, **kw: _add_rule(svc, *args, **kw)


@pytest.fixture
def startup_id(svc):
    """
    Indian private limited company registered in 2023 with three rules:

    * first-year, CS only   → 1 task  (2023)
    * annual, CA + CS       → 3 tasks (2023–2025)
    * quarterly, CA only    → 12 tasks
    """
    _add_rule(svc, "Commencement of Business", "first-year", "CS")
    _add_rule(svc, "Annual Return", "annual", "both")
    _add_rule(svc, "GST Return", "quarterly", "CA")
    sid = svc.startups.add(StartupDB(
        name="Acme Fintech",
        country_of_registration="India",
        company_type="Private Limited",
        registration_date=date(2023, 4, 12),
        ca_service_code="CA-001",
        cs_service_code="CS-001",
    ))
    svc.startups.add_subsidiary(SubsidiaryDB(startup_id=sid, country="United States", company_type="C-Corporation"))
    return sid

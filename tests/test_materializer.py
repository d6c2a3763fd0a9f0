"""
tests/test_materializer.py
==========================

Rule expansion, remote generation fallback, status-row joins and
ordering of regtrack.materializer.TaskMaterializer.
"""

import logging
from datetime import date
from unittest.mock import MagicMock

import pytest

from regtrack.db import StartupDB
from regtrack.generator import GeneratedTaskRow
from regtrack.materializer import Period, TaskMaterializer, periods_for, task_name_for
from regtrack.models import Frequency, VerificationStatus

TODAY = date(2025, 6, 1)


def _startup(svc, country="India", company_type="Private Limited", registered=date(2022, 3, 1)):
    return svc.startups.add(StartupDB(
        name="Scenario Co",
        country_of_registration=country,
        company_type=company_type,
        registration_date=registered,
    ))


def _materializer(svc, generator=None):
    return TaskMaterializer(svc.startups, svc.rules, svc.statuses, svc.uploads,
                            generator=generator, today=TODAY)


# ---------------------------------------------------------------------------
# Periods and names
# ---------------------------------------------------------------------------
def test_periods_per_frequency():
    assert len(periods_for(Frequency.ANNUAL, 2022, 2025)) == 4
    assert len(periods_for(Frequency.QUARTERLY, 2024, 2025)) == 8
    assert len(periods_for(Frequency.MONTHLY, 2025, 2025)) == 12
    assert periods_for(Frequency.FIRST_YEAR, 2022, 2025) == [Period(2022)]
    assert periods_for(None, 2022, 2025) == [Period(2025)]


def test_task_names():
    assert task_name_for("GST Return", Period(2024, "Q2")) == "GST Return (Q2 2024)"
    assert task_name_for("TDS", Period(2024, "M3")) == "TDS (Mar 2024)"
    assert task_name_for("Annual Return", Period(2024)) == "Annual Return"


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------
def test_annual_ca_only_rule_scenario(svc, add_rule):
    """India / Private Limited / 2022, annual CA-only rule → four parent tasks."""
    rule = add_rule("Statutory Audit", "annual", "CA")
    sid = _startup(svc)
    tasks = svc.materializer.materialize(sid)

    assert len(tasks) == 4
    assert sorted(t.year for t in tasks) == [2022, 2023, 2024, 2025]
    assert all(t.entity_display_name == "Parent Company (IN)" for t in tasks)
    assert all(t.entity_identifier == "parent" for t in tasks)
    assert all(t.ca_required and not t.cs_required for t in tasks)
    assert {t.task_id for t in tasks} == {f"rule_{rule.id}_{sid}_{y}" for y in range(2022, 2026)}


def test_first_year_rule_scenario(svc, add_rule):
    add_rule("Commencement of Business", "first-year", "both")
    sid = _startup(svc)
    tasks = svc.materializer.materialize(sid)

    assert len(tasks) == 1
    assert tasks[0].year == 2022
    assert tasks[0].ca_required and tasks[0].cs_required


def test_task_ids_are_stable_across_runs(svc, startup_id):
    first = [t.task_id for t in svc.materializer.materialize(startup_id)]
    second = [t.task_id for t in _materializer(svc).materialize(startup_id)]
    assert first == second
    assert len(first) == len(set(first)) == 16


def test_sort_order(svc, startup_id):
    tasks = svc.materializer.materialize(startup_id)
    assert tasks[0].is_first_year
    rest = tasks[1:]
    years = [t.year for t in rest]
    assert years == sorted(years, reverse=True)
    same_year = [t.task for t in rest if t.year == 2025]
    assert same_year == sorted(same_year)


def test_new_tasks_default_to_pending(svc, startup_id):
    for task in svc.materializer.materialize(startup_id):
        assert task.ca_status is VerificationStatus.PENDING
        assert task.cs_status is VerificationStatus.PENDING
        assert task.is_applicable is True


def test_persisted_statuses_are_reused(svc, startup_id):
    task = svc.materializer.materialize(startup_id)[1]
    svc.statuses.upsert(
        startup_id, task.task_id,
        entity_identifier="parent", entity_display_name=task.entity_display_name,
        year=task.year, task_name=task.task, ca_required=task.ca_required, cs_required=task.cs_required,
        ca_status="Verified", cs_status="Rejected", is_applicable=False,
    )
    again = svc.materializer.find(startup_id, task.task_id)
    assert again.ca_status is VerificationStatus.VERIFIED
    assert again.cs_status is VerificationStatus.REJECTED
    assert again.is_applicable is False


def test_orphan_rows_are_kept(svc, startup_id):
    svc.statuses.upsert(
        startup_id, "legacy_task_1",
        entity_identifier="parent", entity_display_name="Parent Company (IN)",
        year=2021, task_name="Old Filing", ca_required=True, cs_required=False,
    )
    tasks = svc.materializer.materialize(startup_id)
    assert len(tasks) == 17
    orphan = next(t for t in tasks if t.task_id == "legacy_task_1")
    assert orphan.task == "Old Filing"
    assert tasks[-1] is orphan


def test_missing_registration_date_uses_current_year(svc, add_rule):
    add_rule("Annual Return", "annual", "CS")
    sid = _startup(svc, registered=None)
    tasks = svc.materializer.materialize(sid)
    assert [t.year for t in tasks] == [TODAY.year]


# ---------------------------------------------------------------------------
# Degraded inputs
# ---------------------------------------------------------------------------
def test_missing_startup_or_profile_fields(svc):
    assert svc.materializer.materialize(9999) == []
    sid = _startup(svc, company_type=None)
    assert svc.materializer.materialize(sid) == []


def test_unknown_country_uses_raw_value(svc, add_rule, caplog):
    add_rule("Local Filing", "annual", "CA", country="Atlantis")
    sid = _startup(svc, country="Atlantis", registered=date(2025, 1, 1))
    with caplog.at_level(logging.WARNING, logger="regtrack.materializer"):
        tasks = svc.materializer.materialize(sid)
    assert len(tasks) == 1
    assert tasks[0].entity_display_name == "Parent Company (Atlantis)"
    assert "Atlantis" in caplog.text


def test_store_failure_yields_empty_list(svc, startup_id):
    broken = MagicMock()
    broken.profile.side_effect = RuntimeError("database is locked")
    m = TaskMaterializer(broken, svc.rules, svc.statuses, svc.uploads, today=TODAY)
    assert m.materialize(startup_id) == []


# ---------------------------------------------------------------------------
# Remote generation
# ---------------------------------------------------------------------------
def _generated(task_id, task_type="annual", year=2024, **kw):
    data = dict(task_id=task_id, entity_identifier="sub-0", entity_display_name="Subsidiary 0 (US)",
                year=year, task_name="Franchise Tax", ca_required=True, cs_required=False,
                task_type=task_type)
    data.update(kw)
    return GeneratedTaskRow.from_json(data)


def test_generator_rows_are_authoritative(svc, startup_id):
    generator = MagicMock()
    generator.generate.return_value = [
        _generated("rule_9_x_2024"),
        _generated("rule_8_x_2030", task_type="firstYear", year=2030),
        _generated("rule_7_x_2024", task_type="weird"),
    ]
    svc.statuses.upsert(
        startup_id, "rule_9_x_2024",
        entity_identifier="sub-0", entity_display_name="Subsidiary 0 (US)",
        year=2024, task_name="Franchise Tax", ca_required=True, ca_status="Submitted",
    )
    tasks = _materializer(svc, generator).materialize(startup_id)

    generator.generate.assert_called_once_with(startup_id)
    assert len(tasks) == 3
    first_year = tasks[0]
    assert first_year.task_id == "rule_8_x_2030"
    assert first_year.frequency is Frequency.FIRST_YEAR
    assert first_year.year == 2023          # re-dated to the registration year
    joined = next(t for t in tasks if t.task_id == "rule_9_x_2024")
    assert joined.ca_status is VerificationStatus.SUBMITTED
    unknown = next(t for t in tasks if t.task_id == "rule_7_x_2024")
    assert unknown.frequency is Frequency.ANNUAL


@pytest.mark.parametrize("behaviour", [
    {"side_effect": ConnectionError("backend down")},
    {"return_value": []},
])
def test_generator_failure_falls_back_to_rules(svc, startup_id, behaviour):
    generator = MagicMock()
    generator.generate.configure_mock(**behaviour)
    tasks = _materializer(svc, generator).materialize(startup_id)
    assert len(tasks) == 16
    assert all(t.entity_identifier == "parent" for t in tasks)


# ---------------------------------------------------------------------------
# First-year completion
# ---------------------------------------------------------------------------
def test_first_year_tasks_completed(svc, startup_id):
    assert svc.materializer.first_year_tasks_completed(startup_id) is False

    task = svc.materializer.materialize(startup_id)[0]
    assert task.is_first_year
    svc.statuses.upsert(
        startup_id, task.task_id,
        entity_identifier="parent", entity_display_name=task.entity_display_name,
        year=task.year, task_name=task.task, cs_required=True,
        ca_status="Not Required", cs_status="Verified",
    )
    assert svc.materializer.first_year_tasks_completed(startup_id) is True


def test_first_year_completed_without_first_year_rules(svc, add_rule):
    add_rule("Annual Return", "annual", "CS")
    sid = _startup(svc)
    assert svc.materializer.first_year_tasks_completed(sid) is True

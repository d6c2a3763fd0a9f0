"""
tests/test_reconciliation.py
============================

Per-startup sessions: loading, signature-driven resync, busy guards,
optimistic edits with rollback, and grouping by entity.
"""

from dataclasses import replace
from datetime import date
from unittest.mock import MagicMock, patch

import pytest

from regtrack.db import SubsidiaryDB
from regtrack.errors import BackendError, SessionBusyError, TaskMetadataMissingError
from regtrack.models import (
    AggregateStatus,
    ComplianceTask,
    Party,
    StartupProfile,
    Subsidiary,
    VerificationStatus,
    ViewerRole,
)
from regtrack.reconciliation import (
    EntitySignature,
    ReconciliationSession,
    SessionState,
    group_by_entity,
    normalize_tasks,
)


def _task(task_id, entity, year=2025, name="Annual Return", **kw):
    return ComplianceTask(task_id=task_id, entity_identifier="x", entity_display_name=entity,
                          year=year, task=name, **kw)


# ---------------------------------------------------------------------------
# Normalization and signatures
# ---------------------------------------------------------------------------
def test_normalized_applicability_is_always_bool():
    raw = [_task("a", "P"), _task("b", "P", is_applicable=None), _task("c", "P", is_applicable=False)]
    tasks = normalize_tasks(raw)
    assert [t.is_applicable for t in tasks] == [True, True, False]
    assert all(isinstance(t.is_applicable, bool) for t in tasks)


def test_signature_ignores_status_and_name():
    profile = StartupProfile(1, name="Acme", country="India", company_type="Private Limited",
                             registration_date=date(2023, 4, 12))
    same = replace(profile, name="Acme 2", compliance_status=AggregateStatus.COMPLIANT)
    moved = replace(profile, subsidiaries=[Subsidiary("Singapore")])
    assert EntitySignature.from_profile(profile) == EntitySignature.from_profile(same)
    assert EntitySignature.from_profile(profile) != EntitySignature.from_profile(moved)


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------
def test_group_by_entity_drops_stale_entities_and_sorts():
    profile = StartupProfile(1, country="India", company_type="Private Limited",
                             subsidiaries=[Subsidiary("United States")])
    tasks = [
        _task("a", "Parent Company (India)", 2024, "B"),
        _task("b", "Parent Company (IN)", 2025, "Z"),
        _task("c", "Parent Company (IN)", 2025, "A"),
        _task("d", "Subsidiary 0 (United States)"),
        _task("e", "Subsidiary 1 (GB)"),
    ]
    groups = group_by_entity(tasks, profile)

    assert list(groups) == ["Parent Company (IN)", "Subsidiary 0 (US)"]
    assert [t.task_id for t in groups["Parent Company (IN)"]] == ["c", "b", "a"]


def test_group_by_entity_keeps_bare_parent_company_rows():
    profile = StartupProfile(1, country="India", company_type="Private Limited")
    tasks = [_task("a", "Parent Company"), _task("b", "Parent Company (IN)")]
    groups = group_by_entity(tasks, profile)

    assert list(groups) == ["Parent Company (IN)"]
    assert {t.task_id for t in groups["Parent Company (IN)"]} == {"a", "b"}


def test_group_by_entity_without_expected_entities_keeps_all():
    tasks = [_task("a", "Parent Company (IN)"), _task("b", "Subsidiary 1 (GB)")]
    assert len(group_by_entity(tasks, StartupProfile(1))) == 2
    assert len(group_by_entity(tasks)) == 2


# ---------------------------------------------------------------------------
# Loading and resync
# ---------------------------------------------------------------------------
def test_load_populates_snapshot_and_aggregate(svc, startup_id):
    session = svc.sessions.get(startup_id)
    tasks = session.load(ViewerRole.CA)
    assert len(tasks) == 16
    assert session.aggregate_status is AggregateStatus.PENDING
    assert session.state is SessionState.IDLE
    assert svc.sessions.get(startup_id) is session


def test_load_regenerates_once_when_empty():
    materializer = MagicMock()
    materializer.materialize.return_value = []
    statuses = MagicMock()
    aggregate = MagicMock()
    aggregate.sync.return_value = AggregateStatus.PENDING
    session = ReconciliationSession(1, materializer, statuses, aggregate)

    assert session.load(ViewerRole.ADMIN) == []
    statuses.force_regenerate.assert_called_once_with(1)
    assert materializer.materialize.call_count == 2


def test_load_while_busy_returns_current_snapshot():
    materializer = MagicMock()
    session = ReconciliationSession(1, materializer, MagicMock(), MagicMock())
    assert session._enter(SessionState.SYNCING)

    assert session.load(ViewerRole.CA) == []
    materializer.materialize.assert_not_called()


def test_resync_only_when_signature_changes(svc, startup_id):
    session = svc.sessions.get(startup_id)
    profile = svc.startups.profile(startup_id)

    assert session.resync_if_changed(profile, ViewerRole.CA) is True
    assert len(svc.statuses.get_many(startup_id)) == 16

    task = session.tasks[1]
    session.set_status(task.task_id, Party.CA, VerificationStatus.VERIFIED, ViewerRole.CA)
    assert session.resync_if_changed(svc.startups.profile(startup_id), ViewerRole.CA) is False

    svc.startups.add_subsidiary(SubsidiaryDB(startup_id=startup_id, country="Singapore"))
    assert session.resync_if_changed(svc.startups.profile(startup_id), ViewerRole.CA) is True


def test_explicit_sync_while_busy_raises(svc, startup_id):
    session = svc.sessions.get(startup_id)
    session._enter(SessionState.LOADING)
    with pytest.raises(SessionBusyError):
        session.sync(ViewerRole.CA)
    session._leave()
    assert session.sync(ViewerRole.CA) == 16


# ---------------------------------------------------------------------------
# Optimistic edits
# ---------------------------------------------------------------------------
def test_set_status_confirms_and_recomputes_aggregate(svc, startup_id):
    session = svc.sessions.get(startup_id)
    session.load(ViewerRole.CA)
    task = session.tasks[1]

    updated = session.set_status(task.task_id, Party.CA, "Rejected", ViewerRole.CA)
    assert updated.ca_status is VerificationStatus.REJECTED
    assert session.aggregate_status is AggregateStatus.NON_COMPLIANT
    assert svc.startups.compliance_status(startup_id) is AggregateStatus.NON_COMPLIANT


def test_set_status_rolls_back_on_write_failure(svc, startup_id):
    statuses = MagicMock()
    statuses.update_status.side_effect = BackendError("timeout")
    session = ReconciliationSession(startup_id, svc.materializer, statuses, svc.aggregate)
    session.load(ViewerRole.CA)
    task = session.tasks[1]

    with pytest.raises(BackendError):
        session.set_status(task.task_id, Party.CA, "Verified", ViewerRole.CA)
    assert session.task(task.task_id).ca_status is VerificationStatus.PENDING


def test_failed_aggregate_write_is_retried_on_next_edit(svc, startup_id):
    session = svc.sessions.get(startup_id)
    session.load(ViewerRole.CA)
    first, second = [t for t in session.tasks if t.ca_required][:2]

    real_write = svc.startups.set_compliance_status
    calls = []

    def flaky(sid, status):
        calls.append(status)
        if len(calls) == 1:
            raise RuntimeError("connection reset")
        real_write(sid, status)

    with patch.object(svc.startups, "set_compliance_status", side_effect=flaky):
        session.set_status(first.task_id, Party.CA, "Rejected", ViewerRole.CA)
        assert svc.startups.compliance_status(startup_id) is AggregateStatus.PENDING

        session.set_status(second.task_id, Party.CA, "Rejected", ViewerRole.CA)

    assert len(calls) == 2
    assert svc.startups.compliance_status(startup_id) is AggregateStatus.NON_COMPLIANT


def test_set_status_rolls_back_on_illegal_transition(svc, startup_id):
    session = svc.sessions.get(startup_id)
    session.load(ViewerRole.CA)
    task = session.tasks[1]
    session.set_status(task.task_id, Party.CA, "Rejected", ViewerRole.CA)

    with pytest.raises(ValueError):
        session.set_status(task.task_id, Party.CA, "Verified", ViewerRole.CA)
    assert session.task(task.task_id).ca_status is VerificationStatus.REJECTED


def test_applicability_toggle_removes_only_failing_task(svc, startup_id):
    session = svc.sessions.get(startup_id)
    session.load(ViewerRole.CA)
    task = session.tasks[1]
    session.set_status(task.task_id, Party.CA, "Rejected", ViewerRole.CA)
    assert session.aggregate_status is AggregateStatus.NON_COMPLIANT

    session.set_applicability(task.task_id, False, ViewerRole.CA)
    assert session.aggregate_status is AggregateStatus.PENDING
    assert session.task(task.task_id).is_applicable is False
    assert svc.statuses.get(startup_id, task.task_id).is_applicable is False


def test_applicability_of_unknown_task(svc, startup_id):
    session = svc.sessions.get(startup_id)
    with pytest.raises(TaskMetadataMissingError):
        session.set_applicability("nope", False, ViewerRole.STARTUP)

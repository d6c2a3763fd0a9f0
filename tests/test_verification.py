"""
tests/test_verification.py
==========================

Status writes through regtrack.verification.StatusService against the
in-memory database.
"""

import sqlite3
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from regtrack.errors import BackendError, StatusConstraintError, TaskMetadataMissingError, classify_write_error
from regtrack.models import Party, VerificationStatus
from regtrack.verification import StatusService


def test_update_creates_row_from_materialized_task(svc, startup_id):
    task = svc.materializer.materialize(startup_id)[1]
    svc.status_service.update_status(startup_id, task.task_id, VerificationStatus.VERIFIED, Party.CA)

    row = svc.statuses.get(startup_id, task.task_id)
    assert row.ca_status == "Verified"
    assert row.cs_status == "Pending"
    assert row.task_name == task.task
    assert row.entity_display_name == "Parent Company (IN)"


def test_update_keeps_other_party(svc, startup_id):
    task = svc.materializer.materialize(startup_id)[1]
    svc.status_service.update_status(startup_id, task.task_id, "Rejected", Party.CS)
    svc.status_service.update_status(startup_id, task.task_id, "Verified", Party.CA)

    row = svc.statuses.get(startup_id, task.task_id)
    assert (row.ca_status, row.cs_status) == ("Verified", "Rejected")


def test_update_unknown_task_is_a_hard_error(svc, startup_id):
    with pytest.raises(TaskMetadataMissingError):
        svc.status_service.update_status(startup_id, "rule_404_1_2025", "Verified", Party.CA)


def test_illegal_transition_raises(svc, startup_id):
    task = svc.materializer.materialize(startup_id)[1]
    svc.status_service.update_status(startup_id, task.task_id, "Rejected", Party.CA)
    with pytest.raises(ValueError):
        svc.status_service.update_status(startup_id, task.task_id, "Verified", Party.CA)


def test_write_failures_propagate(svc, startup_id):
    statuses = MagicMock()
    statuses.get.return_value = None
    statuses.upsert.side_effect = BackendError("connection reset")
    service = StatusService(statuses, svc.materializer)
    task = svc.materializer.materialize(startup_id)[1]
    with pytest.raises(BackendError):
        service.update_status(startup_id, task.task_id, "Verified", Party.CA)


def test_sync_creates_only_missing_rows(svc, startup_id):
    assert svc.status_service.sync_status_rows(startup_id) == 16
    assert svc.status_service.sync_status_rows(startup_id) == 0


def test_sync_never_overwrites(svc, startup_id):
    task = svc.materializer.materialize(startup_id)[1]
    svc.status_service.update_status(startup_id, task.task_id, "Verified", Party.CA)
    svc.status_service.sync_status_rows(startup_id)
    assert svc.statuses.get(startup_id, task.task_id).ca_status == "Verified"


def test_force_regenerate_resets_rows(svc, startup_id):
    task = svc.materializer.materialize(startup_id)[1]
    svc.status_service.update_status(startup_id, task.task_id, "Verified", Party.CA)
    assert svc.status_service.force_regenerate(startup_id) == 16
    assert svc.statuses.get(startup_id, task.task_id).ca_status == "Pending"


def test_set_applicability_persists_flag(svc, startup_id):
    task = svc.materializer.materialize(startup_id)[1]
    svc.status_service.set_applicability(startup_id, task, False)
    assert svc.statuses.get(startup_id, task.task_id).is_applicable is False
    assert svc.materializer.find(startup_id, task.task_id).is_applicable is False


@pytest.mark.parametrize("message, expected", [
    ('new row violates check constraint "ck_compliance_checks_ca_status"', StatusConstraintError),
    ("CHECK constraint failed: ck_compliance_checks_cs_status", StatusConstraintError),
    ('invalid input value for enum verification_status: "Submitted"', StatusConstraintError),
    ("connection reset by peer", BackendError),
])
def test_classify_write_error(message, expected):
    assert classify_write_error(RuntimeError(message)) is expected


def test_classify_write_error_ignores_echoed_parameters():
    exc = OperationalError(
        "UPDATE compliance_checks SET ca_status=? WHERE task_id=?",
        ("Submitted", "rule_1_1_2025"),
        sqlite3.OperationalError("database is locked"),
    )
    assert "submitted" in str(exc).lower()
    assert classify_write_error(exc) is BackendError

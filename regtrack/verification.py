"""
regtrack.verification
=====================

Writes against the status rows: verifier decisions, applicability
toggles, and (re)creation of rows for rule-derived tasks.

Unlike the loading paths these raise, so callers can roll back whatever
they showed optimistically.
"""

from __future__ import annotations

import logging
from typing import Optional

from regtrack.errors import BackendError, TaskMetadataMissingError
from regtrack.lifecycle import Actor, advance_status
from regtrack.materializer import TaskMaterializer
from regtrack.models import ComplianceTask, Party, VerificationStatus
from regtrack.stores import StatusStore

logger = logging.getLogger(__name__)


def row_values(task: ComplianceTask) -> dict:
    """Columns needed to create a status row for *task*."""
    return {
        "entity_identifier": task.entity_identifier,
        "entity_display_name": task.entity_display_name,
        "year": task.year,
        "task_name": task.task,
        "ca_required": task.ca_required,
        "cs_required": task.cs_required,
    }


class StatusService:
    """Verifier and owner writes against ``compliance_checks``."""

    def __init__(self, statuses: StatusStore, materializer: TaskMaterializer) -> None:
        self._statuses = statuses
        self._materializer = materializer

    def update_status(self, startup_id: int, task_id: str, status: VerificationStatus,
                      party: Party, task: Optional[ComplianceTask] = None) -> None:
        """
        Set *party*'s status on one task.

        The other party's status is kept.  When no row exists yet its
        metadata comes from *task* or, failing that, from a fresh
        materialization.

        Raises
        ------
        TaskMetadataMissingError
            Neither a row nor a task definition exists for *task_id*.
        ValueError
            The verifier transition is not allowed.
        BackendError / StatusConstraintError
            The write failed.
        """
        status = VerificationStatus.coerce(status)
        other = Party.CS if party is Party.CA else Party.CA
        existing = self._statuses.get(startup_id, task_id)

        if existing is not None:
            advance_status(getattr(existing, party.status_field), status, Actor.VERIFIER)
            values = {
                "entity_identifier": existing.entity_identifier,
                "entity_display_name": existing.entity_display_name,
                "year": existing.year,
                "task_name": existing.task_name,
                "ca_required": existing.ca_required,
                "cs_required": existing.cs_required,
                other.status_field: getattr(existing, other.status_field),
            }
        else:
            task = task or self._materializer.find(startup_id, task_id)
            if task is None:
                logger.error("Task %s not found for startup %s; cannot create status row", task_id, startup_id)
                raise TaskMetadataMissingError(task_id)
            advance_status(task.status_of(party), status, Actor.VERIFIER)
            values = row_values(task)
            values[other.status_field] = VerificationStatus.PENDING.value

        values[party.status_field] = status.value
        logger.info("Setting %s status of %s (startup %s) to %s", party.value, task_id, startup_id, status)
        self._statuses.upsert(startup_id, task_id, **values)

    def set_applicability(self, startup_id: int, task: ComplianceTask, is_applicable: bool) -> None:
        """Persist the owner's applicability toggle for *task*."""
        values = row_values(task)
        values.update(
            ca_status=task.ca_status.value,
            cs_status=task.cs_status.value,
            is_applicable=bool(is_applicable),
        )
        self._statuses.upsert(startup_id, task.task_id, **values)

    def sync_status_rows(self, startup_id: int) -> int:
        """
        Create rows for rule-derived tasks that have none yet.

        Existing rows are never overwritten.  Returns the number created.
        """
        tasks = self._materializer.materialize(startup_id)
        try:
            existing = self._statuses.get_many(startup_id, [t.task_id for t in tasks])
        except Exception:
            logger.exception("Could not read status rows for startup %s", startup_id)
            return 0

        created = 0
        for task in tasks:
            if not task.task_id.startswith("rule_") or task.task_id in existing:
                continue
            values = row_values(task)
            values.update(ca_status=task.ca_status.value, cs_status=task.cs_status.value)
            try:
                self._statuses.upsert(startup_id, task.task_id, **values)
                created += 1
            except BackendError as exc:
                logger.warning("Could not create status row %s: %s", task.task_id, exc)
        logger.info("Created %d status rows for startup %s", created, startup_id)
        return created

    def force_regenerate(self, startup_id: int) -> int:
        """Drop every status row of *startup_id* and recreate them from the rules."""
        logger.info("Force regenerating compliance tasks for startup %s", startup_id)
        try:
            self._statuses.delete_for_startup(startup_id)
        except BackendError as exc:
            logger.error("Could not clear status rows for startup %s: %s", startup_id, exc)
            return 0
        return self.sync_status_rows(startup_id)

"""
regtrack.errors
===============

Exception taxonomy shared by the services.

Loading paths never raise these past their own boundary; write paths
(status updates, applicability toggles) do, so the caller can roll back
optimistic state.
"""

from __future__ import annotations

from typing import Type


class ComplianceError(Exception):
    """Base class for every error raised by regtrack."""


class UnknownCountryError(ComplianceError, KeyError):
    """A country name has no entry in the country-code table."""

    def __init__(self, country: str) -> None:
        super().__init__(country)
        self.country = country

    def __str__(self) -> str:
        return f"no country code known for {self.country!r}"


class TaskMetadataMissingError(ComplianceError):
    """No persisted row and no materialized task to build an upsert from."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"task {task_id} not found")
        self.task_id = task_id


class BackendError(ComplianceError):
    """A write against the backing store failed."""


class StatusConstraintError(BackendError):
    """The store rejected a status value (schema lacks the status)."""

    HINT = (
        "The database does not accept this status value yet. "
        "Apply the migration that adds 'Submitted' to the allowed compliance_checks statuses."
    )

    def __str__(self) -> str:
        return f"{self.HINT} ({super().__str__()})"


class SessionBusyError(ComplianceError):
    """A load or resync is already running for this startup."""


_CONSTRAINT_MARKERS = ("check constraint", "invalid input value for enum")


def classify_write_error(exc: BaseException) -> Type[BackendError]:
    """
    Return the error class a failed status write should be reported as.

    Only the driver message is inspected, so bound parameters echoed in
    the statement text never look like a constraint failure.
    """
    message = str(getattr(exc, "orig", None) or exc).lower()
    if any(marker in message for marker in _CONSTRAINT_MARKERS):
        return StatusConstraintError
    return BackendError

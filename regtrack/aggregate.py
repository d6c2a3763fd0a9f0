"""
regtrack.aggregate
==================

Role-scoped roll-up of task statuses into the startup's single
``compliance_status``.

A CA viewer only cares about CA-required verifications, a CS viewer only
about CS-required ones, everybody else about both.  Tasks switched off
by the owner are ignored entirely.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Iterable, Optional

from regtrack.models import AggregateStatus, ComplianceTask, Party, VerificationStatus, ViewerRole
from regtrack.stores import StartupStore

logger = logging.getLogger(__name__)


def _parties_for(role: ViewerRole) -> tuple:
    role = ViewerRole.parse(role)
    if role is ViewerRole.CA:
        return (Party.CA,)
    if role is ViewerRole.CS:
        return (Party.CS,)
    return (Party.CA, Party.CS)


def is_satisfied(task: ComplianceTask, role: ViewerRole) -> bool:
    """Every role-relevant required party has Verified."""
    return all(
        not task.is_required(p) or task.status_of(p) is VerificationStatus.VERIFIED
        for p in _parties_for(role)
    )


def is_rejected(task: ComplianceTask, role: ViewerRole) -> bool:
    """Some role-relevant required party has Rejected."""
    return any(
        task.is_required(p) and task.status_of(p) is VerificationStatus.REJECTED
        for p in _parties_for(role)
    )


def compute_aggregate_status(tasks: Iterable[ComplianceTask], role: ViewerRole) -> AggregateStatus:
    """
    Aggregate status of *tasks* as seen by *role*.

    Non-Compliant if any applicable task is rejected for the role,
    Compliant if every applicable task is satisfied, else Pending (also
    when nothing is applicable).
    """
    applicable = [t for t in tasks if t.is_applicable is not False]
    if not applicable:
        return AggregateStatus.PENDING
    if any(is_rejected(t, role) for t in applicable):
        return AggregateStatus.NON_COMPLIANT
    if all(is_satisfied(t, role) for t in applicable):
        return AggregateStatus.COMPLIANT
    return AggregateStatus.PENDING


@dataclass
class ComplianceStats:
    total: int = 0
    pending: int = 0
    compliant: int = 0
    non_compliant: int = 0
    not_applicable: int = 0
    first_year_complete: Optional[bool] = None

    def to_dict(self) -> dict:
        return asdict(self)


def compliance_stats(tasks: Iterable[ComplianceTask]) -> ComplianceStats:
    """Per-task counts (both parties considered, not-applicable tasks counted apart)."""
    stats = ComplianceStats()
    for task in tasks:
        stats.total += 1
        if not task.is_applicable:
            stats.not_applicable += 1
        elif is_rejected(task, ViewerRole.OTHER):
            stats.non_compliant += 1
        elif is_satisfied(task, ViewerRole.OTHER):
            stats.compliant += 1
        else:
            stats.pending += 1
    return stats


class AggregateStatusCalculator:
    """Computes the aggregate and writes it back only when it changed."""

    def __init__(self, startups: StartupStore) -> None:
        self._startups = startups
        self.writes = 0

    def sync(self, startup_id: int, tasks: Iterable[ComplianceTask], role: ViewerRole,
             current: Optional[AggregateStatus] = None) -> AggregateStatus:
        """
        Recompute and persist the aggregate for *startup_id*.

        *current* is the value the caller believes is stored; when omitted
        it is read from the startup record.  Write failures are logged and
        swallowed; the computed status is returned either way.
        """
        target = compute_aggregate_status(tasks, role)
        try:
            stored = current if current is not None else self._startups.compliance_status(startup_id)
        except Exception as exc:
            logger.warning("Could not read compliance status of startup %s: %s", startup_id, exc)
            stored = AggregateStatus.PENDING

        if stored == target:
            return target
        try:
            self._startups.set_compliance_status(startup_id, target)
            self.writes += 1
            logger.info("Startup %s compliance status %s → %s", startup_id, stored, target)
        except Exception as exc:
            logger.warning("Failed to update compliance status of startup %s (non-blocking): %s",
                           startup_id, exc)
        return target

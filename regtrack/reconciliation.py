"""
regtrack.reconciliation
=======================

Per-startup reconciliation of the materialized task list with persisted
status rows and the startup-wide aggregate.

A :class:`ReconciliationSession` owns the task snapshot of one startup.
Loads and resyncs are guarded so that only one runs at a time; status
and applicability edits are applied optimistically to the snapshot and
rolled back if the write fails.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterable, List, Optional

from regtrack.aggregate import AggregateStatusCalculator
from regtrack.countries import canonical_entity_name
from regtrack.entities import EntityGraph
from regtrack.errors import SessionBusyError, TaskMetadataMissingError
from regtrack.materializer import TaskMaterializer
from regtrack.models import (
    AggregateStatus,
    ComplianceTask,
    Party,
    StartupProfile,
    VerificationStatus,
    ViewerRole,
)
from regtrack.verification import StatusService

logger = logging.getLogger(__name__)


def normalize_tasks(tasks: Iterable[ComplianceTask]) -> List[ComplianceTask]:
    """Copies of *tasks* passed through the task normalization again."""
    return [replace(t) for t in tasks]


@dataclass(frozen=True)
class EntitySignature:
    """Profile fields whose change means the task set must be rebuilt."""
    country: Optional[str]
    company_type: Optional[str]
    registration_date: Optional[str]
    subsidiaries: str

    @classmethod
    def from_profile(cls, profile: StartupProfile) -> "EntitySignature":
        return cls(
            country=profile.country,
            company_type=profile.company_type,
            registration_date=profile.registration_date.isoformat() if profile.registration_date else None,
            subsidiaries=json.dumps([s.to_signature() for s in profile.subsidiaries], sort_keys=True),
        )


class SessionState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    SYNCING = "syncing"


@dataclass
class PendingChange:
    """An optimistic edit: the task before and after, keyed by id."""
    task_id: str
    before: ComplianceTask
    after: ComplianceTask


def group_by_entity(tasks: Iterable[ComplianceTask],
                    profile: Optional[StartupProfile] = None) -> Dict[str, List[ComplianceTask]]:
    """
    Tasks grouped by canonical entity display name.

    Groups for entities no longer in *profile* are dropped.  When the
    profile yields no entities at all nothing is filtered.  Each group is
    sorted newest year first, then by task name.
    """
    expected = EntityGraph.from_profile(profile).expected_display_names() if profile else set()
    parent_country = profile.country if profile else None
    groups: Dict[str, List[ComplianceTask]] = {}
    for task in tasks:
        name = canonical_entity_name(task.entity_display_name, parent_country)
        groups.setdefault(name, []).append(task)

    if expected:
        stale = [name for name in groups if name not in expected]
        for name in stale:
            logger.info("Dropping %d tasks of stale entity %r", len(groups[name]), name)
            del groups[name]

    return {name: sorted(group, key=lambda t: (-t.year, t.task)) for name, group in groups.items()}


class ReconciliationSession:
    """
    Task snapshot and lifecycle of one startup.

    Parameters
    ----------
    startup_id : int
    materializer : TaskMaterializer
    statuses : StatusService
    aggregate : AggregateStatusCalculator
    """

    def __init__(self, startup_id: int, materializer: TaskMaterializer,
                 statuses: StatusService, aggregate: AggregateStatusCalculator) -> None:
        self.startup_id = startup_id
        self._materializer = materializer
        self._statuses = statuses
        self._aggregate = aggregate
        self._lock = threading.Lock()
        self._state = SessionState.IDLE
        self._tasks: List[ComplianceTask] = []
        self._signature: Optional[EntitySignature] = None
        self.aggregate_status: Optional[AggregateStatus] = None

    # ------------------------------------------------------------------
    # State guard
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    def _enter(self, state: SessionState) -> bool:
        with self._lock:
            if self._state is not SessionState.IDLE:
                return False
            self._state = state
            return True

    def _leave(self) -> None:
        with self._lock:
            self._state = SessionState.IDLE

    @property
    def tasks(self) -> List[ComplianceTask]:
        with self._lock:
            return list(self._tasks)

    def task(self, task_id: str) -> Optional[ComplianceTask]:
        with self._lock:
            return next((t for t in self._tasks if t.task_id == task_id), None)

    def _put(self, task: ComplianceTask) -> None:
        with self._lock:
            self._tasks = [task if t.task_id == task.task_id else t for t in self._tasks]

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def load(self, role: ViewerRole) -> List[ComplianceTask]:
        """
        Materialize the task list and recompute the aggregate.

        While another load or resync is running the current snapshot is
        returned unchanged.
        """
        if not self._enter(SessionState.LOADING):
            logger.info("Startup %s is busy (%s), returning current tasks", self.startup_id, self._state.value)
            return self.tasks
        try:
            tasks = self._materializer.materialize(self.startup_id)
            if not tasks:
                logger.info("No tasks for startup %s, regenerating once", self.startup_id)
                self._statuses.force_regenerate(self.startup_id)
                tasks = self._materializer.materialize(self.startup_id)
            tasks = normalize_tasks(tasks)
            with self._lock:
                self._tasks = tasks
            self.aggregate_status = self._aggregate.sync(self.startup_id, tasks, role)
        except Exception:
            logger.exception("Loading compliance tasks for startup %s failed", self.startup_id)
        finally:
            self._leave()
        return self.tasks

    def resync_if_changed(self, profile: StartupProfile, role: ViewerRole) -> bool:
        """
        Recreate status rows and reload when the entity-defining profile
        fields changed since the last sync.  Returns whether a resync ran.
        """
        signature = EntitySignature.from_profile(profile)
        if signature == self._signature:
            return False
        if not self._enter(SessionState.SYNCING):
            logger.info("Startup %s is busy, skipping resync", self.startup_id)
            return False
        try:
            logger.info("Entity profile of startup %s changed, syncing status rows", self.startup_id)
            self._statuses.sync_status_rows(self.startup_id)
            self._signature = signature
        finally:
            self._leave()
        self.load(role)
        return True

    def sync(self, role: ViewerRole, regenerate: bool = False) -> int:
        """
        Explicit sync (or full regeneration) followed by a reload.

        Raises
        ------
        SessionBusyError
            A load or sync is already running.
        """
        if not self._enter(SessionState.SYNCING):
            raise SessionBusyError(f"startup {self.startup_id} is already {self._state.value}")
        try:
            if regenerate:
                created = self._statuses.force_regenerate(self.startup_id)
            else:
                created = self._statuses.sync_status_rows(self.startup_id)
        finally:
            self._leave()
        self.load(role)
        return created

    # ------------------------------------------------------------------
    # Optimistic edits
    # ------------------------------------------------------------------
    def _commit(self, change: Optional[PendingChange], write, role: ViewerRole) -> None:
        if change is not None:
            self._put(change.after)
        try:
            write()
        except Exception as exc:
            if change is not None:
                logger.warning("Write for %s failed, rolling back: %s", change.task_id, exc)
                self._put(change.before)
            raise
        self.aggregate_status = self._aggregate.sync(self.startup_id, self.tasks, role)

    def set_status(self, task_id: str, party: Party, status: VerificationStatus,
                   role: ViewerRole) -> Optional[ComplianceTask]:
        """
        Set one party's status, optimistically.

        Errors from the write propagate after the snapshot is restored.
        """
        status = VerificationStatus.coerce(status)
        if not self._tasks:
            self.load(role)
        before = self.task(task_id)
        change = None
        if before is not None:
            change = PendingChange(task_id, before, replace(before, **{party.status_field: status}))

        self._commit(
            change,
            lambda: self._statuses.update_status(self.startup_id, task_id, status, party, task=before),
            role,
        )
        return self.task(task_id)

    def set_applicability(self, task_id: str, is_applicable: bool, role: ViewerRole) -> ComplianceTask:
        """Switch a task on or off, optimistically."""
        if not self._tasks:
            self.load(role)
        before = self.task(task_id)
        if before is None:
            raise TaskMetadataMissingError(task_id)
        change = PendingChange(task_id, before, replace(before, is_applicable=bool(is_applicable)))
        self._commit(
            change,
            lambda: self._statuses.set_applicability(self.startup_id, change.after, change.after.is_applicable),
            role,
        )
        return change.after

    def grouped(self, profile: Optional[StartupProfile] = None) -> Dict[str, List[ComplianceTask]]:
        return group_by_entity(self.tasks, profile)


class SessionRegistry:
    """One :class:`ReconciliationSession` per startup id."""

    def __init__(self, materializer: TaskMaterializer, statuses: StatusService,
                 aggregate: AggregateStatusCalculator) -> None:
        self._materializer = materializer
        self._statuses = statuses
        self._aggregate = aggregate
        self._sessions: Dict[int, ReconciliationSession] = {}
        self._lock = threading.Lock()

    def get(self, startup_id: int) -> ReconciliationSession:
        with self._lock:
            session = self._sessions.get(startup_id)
            if session is None:
                session = ReconciliationSession(startup_id, self._materializer, self._statuses, self._aggregate)
                self._sessions[startup_id] = session
            return session

    def __len__(self) -> int:
        return len(self._sessions)

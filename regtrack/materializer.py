"""
regtrack.materializer
=====================

Expands compliance rules into dated task instances.

Two sources, tried in order:

1. the server-side generation function (knows every legal entity of the
   startup); if it returns rows they are used as-is, joined with the
   persisted status rows;
2. local expansion of the rule table for the parent company only.

Loading never raises: any failure degrades to the next source and, in
the end, to an empty list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional

from regtrack.countries import country_code
from regtrack.db import ComplianceCheckDB
from regtrack.entities import PARENT, parent_display_name
from regtrack.errors import UnknownCountryError
from regtrack.generator import GeneratedTaskRow, RemoteTaskGenerator
from regtrack.models import (
    ComplianceRule,
    ComplianceTask,
    Frequency,
    StartupProfile,
    Upload,
    VerificationRequirement,
    VerificationStatus,
    task_id_for,
)
from regtrack.stores import RuleStore, StartupStore, StatusStore, UploadStore

logger = logging.getLogger(__name__)

MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


@dataclass(frozen=True)
class Period:
    year: int
    sub_period: Optional[str] = None    # "Q1".."Q4" or "M1".."M12"


def periods_for(frequency: Optional[Frequency], registration_year: int, current_year: int) -> List[Period]:
    """
    Periods a rule applies to between registration and today.

    >>> [p.year for p in periods_for(Frequency.ANNUAL, 2022, 2025)]
    [2022, 2023, 2024, 2025]
    >>> periods_for(Frequency.FIRST_YEAR, 2022, 2025)
    [Period(year=2022, sub_period=None)]
    """
    years = range(registration_year, current_year + 1)
    if frequency is Frequency.FIRST_YEAR:
        return [Period(registration_year)]
    if frequency is Frequency.ANNUAL:
        return [Period(y) for y in years]
    if frequency is Frequency.QUARTERLY:
        return [Period(y, f"Q{q}") for y in years for q in range(1, 5)]
    if frequency is Frequency.MONTHLY:
        return [Period(y, f"M{m}") for y in years for m in range(1, 13)]
    return [Period(current_year)]


def task_name_for(rule_name: str, period: Period) -> str:
    """Period-qualified display name: ``"GST Return (Q2 2024)"``, ``"TDS (Mar 2024)"``."""
    sub = period.sub_period
    if not sub:
        return rule_name
    if sub.startswith("Q"):
        return f"{rule_name} ({sub} {period.year})"
    if sub.startswith("M"):
        return f"{rule_name} ({MONTH_NAMES[int(sub[1:]) - 1]} {period.year})"
    return rule_name


def sort_tasks(tasks: Iterable[ComplianceTask]) -> List[ComplianceTask]:
    """First-year tasks first, then newest year first, then by name."""
    return sorted(tasks, key=lambda t: (not t.is_first_year, -t.year, t.task))


def task_from_row(row: ComplianceCheckDB, uploads: Optional[List[Upload]] = None) -> ComplianceTask:
    """Task built from a persisted status row alone (no rule attached)."""
    return ComplianceTask(
        task_id=row.task_id,
        entity_identifier=row.entity_identifier,
        entity_display_name=row.entity_display_name,
        year=row.year,
        task=row.task_name,
        ca_required=row.ca_required,
        cs_required=row.cs_required,
        ca_status=row.ca_status,
        cs_status=row.cs_status,
        is_applicable=row.is_applicable,
        uploads=uploads or [],
    )


class TaskMaterializer:
    """
    Builds the task list of one startup.

    Parameters
    ----------
    startups, rules, statuses, uploads
        Backing stores.
    generator : RemoteTaskGenerator | None
        Server-side generation function; ``None`` skips straight to rule
        expansion.
    today : datetime.date | None
        Fixed "today" for deterministic expansion (tests).
    """

    def __init__(
        self,
        startups: StartupStore,
        rules: RuleStore,
        statuses: StatusStore,
        uploads: UploadStore,
        generator: Optional[RemoteTaskGenerator] = None,
        today: Optional[date] = None,
    ) -> None:
        self._startups = startups
        self._rules = rules
        self._statuses = statuses
        self._uploads = uploads
        self._generator = generator
        self._today = today

    @property
    def current_year(self) -> int:
        return (self._today or date.today()).year

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def materialize(self, startup_id: int) -> List[ComplianceTask]:
        """Sorted task list for *startup_id*; ``[]`` on any failure."""
        try:
            return self._materialize(startup_id)
        except Exception:
            logger.exception("Could not materialize compliance tasks for startup %s", startup_id)
            return []

    def find(self, startup_id: int, task_id: str) -> Optional[ComplianceTask]:
        return next((t for t in self.materialize(startup_id) if t.task_id == task_id), None)

    def first_year_tasks_completed(self, startup_id: int) -> bool:
        """
        True when every first-year obligation has a persisted row verified
        by each party (or there are no first-year rules at all).
        """
        try:
            profile = self._startups.profile(startup_id)
            if profile is None or not profile.country or not profile.company_type:
                return False
            registration_year = profile.registration_year or self.current_year
            rules = [
                r for r in self._rules_for(profile)
                if Frequency.parse(r.frequency) is Frequency.FIRST_YEAR
            ]
            if not rules:
                return True
            ids = [task_id_for(r.id, startup_id, registration_year) for r in rules]
            rows = self._statuses.get_many(startup_id, ids)
            if len(rows) != len(ids):
                return False
            done = (VerificationStatus.VERIFIED, VerificationStatus.NOT_REQUIRED)
            return all(
                VerificationStatus.coerce(row.ca_status) in done and VerificationStatus.coerce(row.cs_status) in done
                for row in rows.values()
            )
        except Exception:
            logger.exception("Could not check first-year tasks for startup %s", startup_id)
            return False

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _materialize(self, startup_id: int) -> List[ComplianceTask]:
        profile = self._startups.profile(startup_id)
        if profile is None:
            logger.warning("Startup %s not found", startup_id)
            return []
        if not profile.country or not profile.company_type:
            logger.info("Startup %s has no country or company type; no rules apply", startup_id)
            return []

        registration_year = profile.registration_year or self.current_year
        uploads = self._uploads.by_task(startup_id)

        tasks = self._from_generator(profile, registration_year, uploads)
        if not tasks:
            tasks = self._from_rules(profile, registration_year, uploads)
        logger.debug("Materialized %d tasks for startup %s", len(tasks), startup_id)
        return sort_tasks(tasks)

    def _from_generator(self, profile: StartupProfile, registration_year: int,
                        uploads: Dict[str, List[Upload]]) -> List[ComplianceTask]:
        if self._generator is None:
            return []
        try:
            rows = self._generator.generate(profile.startup_id)
        except Exception as exc:
            logger.warning("Task generation function failed for startup %s, using rule table: %s",
                           profile.startup_id, exc)
            return []
        if not rows:
            logger.info("Task generation function returned nothing for startup %s, using rule table",
                        profile.startup_id)
            return []

        statuses = self._statuses.get_many(profile.startup_id, [r.task_id for r in rows])
        return [self._task_from_generated(r, statuses.get(r.task_id), registration_year, uploads) for r in rows]

    @staticmethod
    def _task_from_generated(row: GeneratedTaskRow, status: Optional[ComplianceCheckDB],
                             registration_year: int, uploads: Dict[str, List[Upload]]) -> ComplianceTask:
        frequency = row.frequency
        if row.verification_required:
            requirement = VerificationRequirement.parse(row.verification_required)
        else:
            requirement = VerificationRequirement.from_flags(row.ca_required, row.cs_required)
        return ComplianceTask(
            task_id=row.task_id,
            entity_identifier=row.entity_identifier,
            entity_display_name=row.entity_display_name,
            year=registration_year if frequency is Frequency.FIRST_YEAR else row.year,
            task=row.task_name,
            ca_required=row.ca_required,
            cs_required=row.cs_required,
            ca_status=status.ca_status if status else None,
            cs_status=status.cs_status if status else None,
            is_applicable=status.is_applicable if status else None,
            uploads=uploads.get(row.task_id, []),
            frequency=frequency,
            description=row.description,
            verification_required=requirement,
            ca_type=row.ca_type or ("CA" if row.ca_required else None),
            cs_type=row.cs_type or ("CS" if row.cs_required else None),
        )

    def _rules_for(self, profile: StartupProfile) -> List[ComplianceRule]:
        try:
            code = country_code(profile.country)
        except UnknownCountryError as exc:
            logger.warning("%s; looking up rules with the unmapped value", exc)
            code = profile.country.strip()
        return self._rules.rules_for(code, profile.company_type)

    def _from_rules(self, profile: StartupProfile, registration_year: int,
                    uploads: Dict[str, List[Upload]]) -> List[ComplianceTask]:
        startup_id = profile.startup_id
        rules = self._rules_for(profile)
        logger.info("Expanding %d rules for startup %s (%s / %s)",
                    len(rules), startup_id, profile.country, profile.company_type)

        existing = self._statuses.get_many(startup_id)
        display_name = parent_display_name(profile.country)
        tasks: List[ComplianceTask] = []
        generated = set()

        for rule in rules:
            frequency = Frequency.parse(rule.frequency)
            for period in periods_for(frequency, registration_year, self.current_year):
                task_id = task_id_for(rule.id, startup_id, period.year, period.sub_period)
                row = existing.get(task_id)
                tasks.append(ComplianceTask(
                    task_id=task_id,
                    entity_identifier=row.entity_identifier if row else PARENT,
                    entity_display_name=row.entity_display_name if row else display_name,
                    year=period.year,
                    task=task_name_for(rule.name, period),
                    ca_required=rule.ca_required,
                    cs_required=rule.cs_required,
                    ca_status=row.ca_status if row else None,
                    cs_status=row.cs_status if row else None,
                    is_applicable=row.is_applicable if row else None,
                    uploads=uploads.get(task_id, []),
                    frequency=frequency,
                    description=rule.description,
                    verification_required=rule.verification_required,
                    ca_type=rule.ca_type,
                    cs_type=rule.cs_type,
                    rule_id=rule.id,
                ))
                generated.add(task_id)

        # rows no rule produced any more (rule removed, legacy ids)
        for task_id, row in existing.items():
            if task_id not in generated:
                tasks.append(task_from_row(row, uploads.get(task_id)))
        return tasks

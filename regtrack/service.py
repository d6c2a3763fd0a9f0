"""
regtrack.service
================

Wires stores, materializer, status service, upload linkage, aggregate
calculator and session registry into one object.

Nothing here is a module-level singleton: the API keeps one instance per
process (see :mod:`api.deps`), tests build their own against an
in-memory engine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional

from regtrack.aggregate import AggregateStatusCalculator, ComplianceStats, compliance_stats
from regtrack.generator import RemoteTaskGenerator
from regtrack.materializer import TaskMaterializer
from regtrack.reconciliation import SessionRegistry
from regtrack.settings import Settings, settings as default_settings
from regtrack.storage import storage_from_settings
from regtrack.stores import RuleStore, SessionFactory, StartupStore, StatusStore, UploadStore
from regtrack.uploads import UploadLinkage
from regtrack.verification import StatusService

logger = logging.getLogger(__name__)


@dataclass
class ComplianceService:
    startups: StartupStore
    rules: RuleStore
    statuses: StatusStore
    uploads: UploadStore
    materializer: TaskMaterializer
    status_service: StatusService
    linkage: UploadLinkage
    aggregate: AggregateStatusCalculator
    sessions: SessionRegistry
    settings: Settings

    def stats(self, startup_id: int) -> ComplianceStats:
        """Task counts plus the first-year completion flag."""
        stats = compliance_stats(self.materializer.materialize(startup_id))
        stats.first_year_complete = self.materializer.first_year_tasks_completed(startup_id)
        return stats


def build_service(
    session_factory: Optional[SessionFactory] = None,
    cfg: Optional[Settings] = None,
    today: Optional[date] = None,
    storage=None,
    storage_dir: Optional[Path] = None,
    generator: Optional[RemoteTaskGenerator] = None,
) -> ComplianceService:
    """
    Assemble a :class:`ComplianceService`.

    *generator* and *storage* default to what *cfg* configures: the hosted
    RPC and bucket when a backend URL is set, otherwise no generator and
    local disk storage under *storage_dir*.
    """
    cfg = cfg or default_settings
    startups = StartupStore(session_factory)
    rules = RuleStore(session_factory)
    statuses = StatusStore(session_factory)
    uploads = UploadStore(session_factory)

    materializer = TaskMaterializer(
        startups, rules, statuses, uploads,
        generator=generator if generator is not None else RemoteTaskGenerator.from_settings(cfg),
        today=today,
    )
    status_service = StatusService(statuses, materializer)
    aggregate = AggregateStatusCalculator(startups)
    storage = storage if storage is not None else storage_from_settings(cfg, storage_dir)
    logger.debug("Using %s for evidence storage", type(storage).__name__)

    return ComplianceService(
        startups=startups,
        rules=rules,
        statuses=statuses,
        uploads=uploads,
        materializer=materializer,
        status_service=status_service,
        linkage=UploadLinkage(uploads, statuses, materializer, storage),
        aggregate=aggregate,
        sessions=SessionRegistry(materializer, status_service, aggregate),
        settings=cfg,
    )

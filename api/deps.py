"""
api.deps
========

FastAPI dependency providers.

`get_service` returns one process-wide **ComplianceService** wired to the
persistent SQLite store (tables are created on first use).  Tests swap
it out through ``app.dependency_overrides``.
"""

from functools import lru_cache

from regtrack.db import create_all
from regtrack.service import ComplianceService, build_service
from regtrack.settings import settings


@lru_cache
def get_settings():
    """Return application settings."""
    return settings


@lru_cache
def get_service() -> ComplianceService:
    """Singleton service (sessions and their guards persist across requests)."""
    create_all()
    return build_service(cfg=get_settings())

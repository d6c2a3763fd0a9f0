"""
regtrack.settings
=================

Configuration settings for the regtrack application.

Module-level constants cover the local runtime (database file, API host,
storage directory, log level) and are overridable via environment
variables.  Integrations with the hosted backend (REST RPC endpoint and
object storage) live on the pydantic :class:`Settings` model.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings

# ---------------------------------------------------------------------------
# Base directories
# ---------------------------------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent

# Database settings
# ---------------------------------------------------------------------------
DB_FILE = os.environ.get("REGTRACK_DB_FILE", BASE_DIR / "regtrack.db")
DB_URL = f"sqlite:///{DB_FILE}"
DB_ECHO = os.environ.get("REGTRACK_DB_ECHO", "False").lower() == "true"

# API settings
# ---------------------------------------------------------------------------
API_HOST = os.environ.get("REGTRACK_API_HOST", "127.0.0.1")
API_PORT = int(os.environ.get("REGTRACK_API_PORT", "8000"))
API_DEBUG = os.environ.get("REGTRACK_API_DEBUG", "False").lower() == "true"

# Local object storage (used when no hosted bucket is configured)
# ---------------------------------------------------------------------------
STORAGE_DIR = Path(os.environ.get("REGTRACK_STORAGE_DIR", BASE_DIR / "storage"))

# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL = os.environ.get("REGTRACK_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Apply the configured log level to the root logger."""
    logging.basicConfig(level=(level or LOG_LEVEL), format=LOG_FORMAT)


# ---------------------------------------------------------------------------
# Pydantic settings model for backend integrations
# ---------------------------------------------------------------------------
class Settings(BaseSettings):
    """Pydantic model for application settings, loaded from environment variables."""

    # Hosted backend (REST + storage).  Empty URL means "not configured":
    # the remote task generator is skipped and uploads go to STORAGE_DIR.
    supabase_url: str = Field(default="", description="Base URL of the hosted backend")
    supabase_key: str = Field(default="", description="Service key sent as apikey / bearer token")

    storage_bucket: str = Field("compliance-documents", description="Object storage bucket for evidence files")
    generate_tasks_rpc: str = Field(
        "generate_compliance_tasks_for_startup",
        description="Name of the server-side task generation function",
    )
    http_timeout: float = Field(30.0, description="Timeout in seconds for backend HTTP calls")

    # Roles allowed to attach or delete evidence
    upload_roles: List[str] = Field(default_factory=lambda: ["Startup", "Admin"])

    class Config:
        """Configuration for the settings model."""
        env_prefix = "REGTRACK_"
        env_file = ".env"
        case_sensitive = False


# Initialize settings
settings = Settings()

"""
regtrack.generator
==================

Client for the server-side task generation function.

The hosted backend exposes ``generate_compliance_tasks_for_startup`` as a
REST RPC.  Unlike the local rule expansion it already knows about
subsidiaries and international operations, so when it answers with at
least one row those rows are authoritative.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from regtrack.models import Frequency
from regtrack.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


@dataclass
class GeneratedTaskRow:
    """One row returned by the generation function."""
    task_id: str
    entity_identifier: str
    entity_display_name: str
    year: int
    task_name: str
    ca_required: bool = False
    cs_required: bool = False
    task_type: Optional[str] = None
    description: str = ""
    verification_required: Optional[str] = None
    ca_type: Optional[str] = None
    cs_type: Optional[str] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "GeneratedTaskRow":
        return cls(
            task_id=str(data["task_id"]),
            entity_identifier=data.get("entity_identifier") or "parent",
            entity_display_name=data.get("entity_display_name") or "",
            year=int(data.get("year") or 0),
            task_name=data.get("task_name") or "",
            ca_required=bool(data.get("ca_required")),
            cs_required=bool(data.get("cs_required")),
            task_type=data.get("task_type"),
            description=data.get("description") or "",
            verification_required=data.get("verification_required"),
            ca_type=data.get("ca_type"),
            cs_type=data.get("cs_type"),
        )

    @property
    def frequency(self) -> Frequency:
        """Normalized frequency; unknown task types count as annual."""
        return Frequency.parse(self.task_type) or Frequency.ANNUAL


class RemoteTaskGenerator:
    """
    Calls the generation RPC over HTTP.

    Errors are raised to the caller (the materializer), which logs them
    and falls back to local rule expansion.
    """

    def __init__(self, base_url: str, api_key: str = "", function: Optional[str] = None,
                 timeout: Optional[float] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.function = function or default_settings.generate_tasks_rpc
        self.timeout = timeout or default_settings.http_timeout

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> Optional["RemoteTaskGenerator"]:
        """Return a generator, or ``None`` when no backend URL is configured."""
        cfg = cfg or default_settings
        if not cfg.supabase_url:
            return None
        return cls(cfg.supabase_url, cfg.supabase_key, cfg.generate_tasks_rpc, cfg.http_timeout)

    @property
    def url(self) -> str:
        return f"{self.base_url}/rest/v1/rpc/{self.function}"

    def generate(self, startup_id: int) -> List[GeneratedTaskRow]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        logger.info("Calling %s for startup %s", self.function, startup_id)
        response = requests.post(
            self.url,
            json={"startup_id_param": startup_id},
            headers=headers,
            timeout=self.timeout,
        )
        response.raise_for_status()
        payload = response.json() or []
        if not isinstance(payload, list):
            raise ValueError(f"unexpected {self.function} payload: {type(payload).__name__}")
        return [GeneratedTaskRow.from_json(item) for item in payload]

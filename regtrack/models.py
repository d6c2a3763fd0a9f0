"""
regtrack.models
===============

Dataclasses and enums for compliance rules, legal entities, materialized
task instances and evidence uploads.  These objects carry **no**
external‑library dependencies so that importing them stays cheap and they
can be unit‑tested without a database.

:class:`ComplianceTask` is the single place where task state is
normalized: every way of building a task (remote rows, rule expansion,
status rows, optimistic updates through :func:`dataclasses.replace`) runs
``__post_init__``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, List, Optional


class VerificationStatus(str, Enum):
    """Per-party verification state of one task."""
    PENDING = "Pending"
    SUBMITTED = "Submitted"
    VERIFIED = "Verified"
    REJECTED = "Rejected"
    NOT_REQUIRED = "Not Required"      # display only, never a workflow state

    def __str__(self) -> str:
        return self.value

    @classmethod
    def coerce(cls, value: Any) -> "VerificationStatus":
        """Map stored strings (any case) to a member; blank → PENDING."""
        if isinstance(value, cls):
            return value
        if value is None or str(value).strip() == "":
            return cls.PENDING
        text = str(value).strip().lower().replace("_", " ")
        for member in cls:
            if member.value.lower() == text:
                return member
        legacy = _LEGACY_STATUSES.get(text.replace(" ", "").replace("-", ""))
        if legacy is not None:
            return cls(legacy)
        raise ValueError(f"unknown verification status {value!r}")


# Older rows used the aggregate vocabulary for per-task columns
_LEGACY_STATUSES = {
    "notrequired": "Not Required",
    "compliant": "Verified",
    "noncompliant": "Rejected",
}


class AggregateStatus(str, Enum):
    """Startup-wide compliance status stored on the startup record."""
    PENDING = "Pending"
    COMPLIANT = "Compliant"
    NON_COMPLIANT = "Non-Compliant"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def coerce(cls, value: Any) -> "AggregateStatus":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower().replace(" ", "").replace("-", "").replace("_", "")
        for member in cls:
            if member.value.lower().replace("-", "") == text:
                return member
        return cls.PENDING


class Frequency(str, Enum):
    """Recurrence of a compliance rule."""
    FIRST_YEAR = "first-year"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"

    @classmethod
    def parse(cls, value: Any) -> Optional["Frequency"]:
        """Return the member for *value* or ``None`` if unrecognized."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip()
        if text == "firstYear":
            return cls.FIRST_YEAR
        try:
            return cls(text)
        except ValueError:
            return None


class VerificationRequirement(str, Enum):
    """Which verifying parties a rule requires."""
    NONE = "none"
    CA = "CA"
    CS = "CS"
    BOTH = "both"

    @property
    def ca_required(self) -> bool:
        return self in (VerificationRequirement.CA, VerificationRequirement.BOTH)

    @property
    def cs_required(self) -> bool:
        return self in (VerificationRequirement.CS, VerificationRequirement.BOTH)

    @classmethod
    def parse(cls, value: Any) -> "VerificationRequirement":
        text = str(value or "").strip()
        for member in cls:
            if member.value.lower() == text.lower():
                return member
        return cls.NONE

    @classmethod
    def from_flags(cls, ca_required: bool, cs_required: bool) -> "VerificationRequirement":
        if ca_required and cs_required:
            return cls.BOTH
        if ca_required:
            return cls.CA
        if cs_required:
            return cls.CS
        return cls.NONE


class Party(str, Enum):
    """A verifying party: one column of the checklist."""
    CA = "CA"
    CS = "CS"

    @property
    def status_field(self) -> str:
        return "ca_status" if self is Party.CA else "cs_status"

    @property
    def required_field(self) -> str:
        return "ca_required" if self is Party.CA else "cs_required"


class ViewerRole(str, Enum):
    """Role of whoever is looking at (or editing) the checklist."""
    CA = "CA"
    CS = "CS"
    STARTUP = "Startup"
    ADMIN = "Admin"
    INVESTOR = "Investor"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: Any) -> "ViewerRole":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        return cls.OTHER


# ---------------------------------------------------------------------------
# Rules and entities
# ---------------------------------------------------------------------------
@dataclass
class ComplianceRule:
    """
    An obligation type for a (country, company type) pair.

    ``frequency`` keeps the raw string from the rule table so that an
    unrecognized value can still be expanded (to a single current-year
    task) instead of being rejected.
    """
    id: int
    name: str
    frequency: str
    verification_required: VerificationRequirement = VerificationRequirement.NONE
    description: str = ""
    ca_type: Optional[str] = None
    cs_type: Optional[str] = None
    country_code: Optional[str] = None
    company_type: Optional[str] = None

    @property
    def ca_required(self) -> bool:
        return self.verification_required.ca_required

    @property
    def cs_required(self) -> bool:
        return self.verification_required.cs_required


@dataclass
class Subsidiary:
    country: str
    company_type: Optional[str] = None
    registration_date: Optional[date] = None
    ca_code: Optional[str] = None
    cs_code: Optional[str] = None
    id: Optional[int] = None

    def to_signature(self) -> dict:
        return {
            "country": self.country,
            "companyType": self.company_type,
            "registrationDate": self.registration_date.isoformat() if self.registration_date else None,
            "caCode": self.ca_code,
            "csCode": self.cs_code,
        }


@dataclass
class InternationalOp:
    country: str
    company_type: Optional[str] = None
    start_date: Optional[date] = None
    id: Optional[int] = None


@dataclass
class StartupProfile:
    """
    Entity-defining fields of a startup, as read from the profile tables.

    Parameters
    ----------
    startup_id : int
        Primary key of the startup.
    country : str | None
        Country of registration (full name or ISO code).
    company_type : str | None
        Legal form, e.g. "Private Limited".
    registration_date : datetime.date | None
        Incorporation date of the parent company.
    subsidiaries, international_ops : list
        Additional legal entities.
    compliance_status : AggregateStatus
        Currently stored startup-wide status.
    """
    startup_id: int
    name: str = ""
    country: Optional[str] = None
    company_type: Optional[str] = None
    registration_date: Optional[date] = None
    ca_service_code: Optional[str] = None
    cs_service_code: Optional[str] = None
    subsidiaries: List[Subsidiary] = field(default_factory=list)
    international_ops: List[InternationalOp] = field(default_factory=list)
    compliance_status: AggregateStatus = AggregateStatus.PENDING

    @property
    def registration_year(self) -> Optional[int]:
        return self.registration_date.year if self.registration_date else None

    def entity_signature(self) -> str:
        """Stable serialization of the fields whose change requires a resync."""
        return json.dumps(
            {
                "country": self.country,
                "companyType": self.company_type,
                "registrationDate": self.registration_date.isoformat() if self.registration_date else None,
                "subsidiaries": [s.to_signature() for s in self.subsidiaries],
            },
            sort_keys=True,
        )


@dataclass
class LegalEntity:
    """A parent company, subsidiary or international operation."""
    identifier: str
    kind: str                       # "parent" | "subsidiary" | "international"
    country: Optional[str]
    display_name: str
    company_type: Optional[str] = None
    registration_date: Optional[date] = None
    ca_code: Optional[str] = None
    cs_code: Optional[str] = None


# ---------------------------------------------------------------------------
# Uploads and tasks
# ---------------------------------------------------------------------------
@dataclass
class Upload:
    """Evidence document attached to one task."""
    id: int
    startup_id: int
    task_id: str
    file_name: str
    file_url: str
    uploaded_by: str
    file_size: int = 0
    file_type: str = "application/octet-stream"
    created_at: Optional[datetime] = None


def task_id_for(rule_id: Any, startup_id: Any, year: int, sub_period: Optional[str] = None) -> str:
    """
    Deterministic task identifier: ``rule_<ruleId>_<startupId>_<year>[_<sub>]``.

    The Status Store upserts on this value, so it must never change for
    the same (rule, startup, year, sub-period).
    """
    suffix = f"_{sub_period}" if sub_period else ""
    return f"rule_{rule_id}_{startup_id}_{year}{suffix}"


def _resolve_applicable(value: Any) -> bool:
    return value is not False


@dataclass
class ComplianceTask:
    """
    One materialized, dated obligation for one legal entity.

    ``is_applicable`` accepts ``True``/``False``/``None`` on input and is
    always a ``bool`` afterwards: only a boolean ``False`` switches a
    task off.
    """
    task_id: str
    entity_identifier: str
    entity_display_name: str
    year: int
    task: str
    ca_required: bool = False
    cs_required: bool = False
    ca_status: VerificationStatus = VerificationStatus.PENDING
    cs_status: VerificationStatus = VerificationStatus.PENDING
    is_applicable: Optional[bool] = True
    uploads: List[Upload] = field(default_factory=list)
    frequency: Optional[Frequency] = None
    description: str = ""
    verification_required: Optional[VerificationRequirement] = None
    ca_type: Optional[str] = None
    cs_type: Optional[str] = None
    rule_id: Optional[Any] = None

    def __post_init__(self) -> None:
        self.is_applicable = _resolve_applicable(self.is_applicable)
        self.ca_required = bool(self.ca_required)
        self.cs_required = bool(self.cs_required)
        self.ca_status = VerificationStatus.coerce(self.ca_status)
        self.cs_status = VerificationStatus.coerce(self.cs_status)
        self.year = int(self.year)
        if self.frequency is not None and not isinstance(self.frequency, Frequency):
            self.frequency = Frequency.parse(self.frequency)
        if self.verification_required is None:
            self.verification_required = VerificationRequirement.from_flags(self.ca_required, self.cs_required)
        self.uploads = list(self.uploads or [])

    # Convenience helpers -------------------------------------------------
    @property
    def is_first_year(self) -> bool:
        return self.frequency is Frequency.FIRST_YEAR

    def is_required(self, party: Party) -> bool:
        return self.ca_required if party is Party.CA else self.cs_required

    def status_of(self, party: Party) -> VerificationStatus:
        return self.ca_status if party is Party.CA else self.cs_status

    def display_status(self, party: Party) -> VerificationStatus:
        """What the column shows: ``Not Required`` when the party is not required."""
        if not self.is_required(party):
            return VerificationStatus.NOT_REQUIRED
        return self.status_of(party)

    @property
    def can_upload(self) -> bool:
        return self.is_applicable

    @property
    def latest_upload(self) -> Optional[Upload]:
        if not self.uploads:
            return None
        return max(self.uploads, key=lambda u: (u.created_at or datetime.min, u.id))

"""
regtrack
========

Compliance task engine for startups: turns a jurisdiction's rule table
into a dated checklist of obligations for every legal entity a startup
owns, tracks CA/CS verification per task, and rolls the result up into
a single startup-wide compliance status.

Import structure
----------------
`import regtrack` is intentionally cheap: nothing is imported eagerly.
Heavy dependencies such as *matplotlib* are only imported when you
explicitly access :pymod:`regtrack.viz`.

Sub‑modules
~~~~~~~~~~~
- :pymod:`regtrack.models`          – task / rule / profile dataclasses + status enums
- :pymod:`regtrack.countries`       – country name ↔ code lookup, entity-name canonicalizer
- :pymod:`regtrack.entities`        – parent → subsidiary entity graph (NetworkX)
- :pymod:`regtrack.db`              – SQLModel tables and engine
- :pymod:`regtrack.settings`        – env-driven constants, pydantic Settings, logging setup
- :pymod:`regtrack.errors`          – exception taxonomy and write-error classification
- :pymod:`regtrack.stores`          – rule / status / upload / startup stores
- :pymod:`regtrack.generator`       – REST client for the server-side task generation function
- :pymod:`regtrack.materializer`    – rule expansion into task instances
- :pymod:`regtrack.reconciliation`  – per-startup session, grouping, optimistic updates
- :pymod:`regtrack.uploads`         – evidence uploads and Pending → Submitted linkage
- :pymod:`regtrack.storage`         – local-disk and hosted-bucket evidence storage
- :pymod:`regtrack.aggregate`       – role-scoped startup compliance status
- :pymod:`regtrack.lifecycle`       – per-party status state machine
- :pymod:`regtrack.verification`    – verifier status writes, row sync and regeneration
- :pymod:`regtrack.service`         – wiring of all of the above
- :pymod:`regtrack.cli`             – `python -m regtrack.cli`
- :pymod:`regtrack.viz`             – plotting helpers

Quick start
-----------
>>> from regtrack.db import create_all
>>> from regtrack.service import build_service
>>> create_all()
>>> svc = build_service()
>>> tasks = svc.materializer.materialize(1)
"""

__all__ = [
    "models",
    "countries",
    "entities",
    "db",
    "stores",
    "materializer",
    "reconciliation",
    "uploads",
    "aggregate",
    "lifecycle",
    "verification",
    "generator",
    "storage",
    "service",
    "settings",
    "errors",
    "cli",
    "viz",
]

__version__ = "0.1.0"

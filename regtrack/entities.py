"""
regtrack.entities
=================

Parent → subsidiary / international-operation graph of one startup,
built on NetworkX.

Node keys are the stable entity identifiers (``parent``, ``sub-<i>``,
``intl-<i>``) so that task ids and status rows keyed on them survive
profile edits that do not add or remove entities.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Set

import networkx as nx

from .countries import PARENT_COMPANY, canonical_entity_name, normalize_country_for_display
from .models import LegalEntity, StartupProfile

PARENT = "parent"


def parent_display_name(country: Optional[str]) -> str:
    return f"{PARENT_COMPANY} ({normalize_country_for_display(country)})"


class EntityGraph:
    """
    Lightweight wrapper around a DiGraph holding :class:`LegalEntity` data.

    Example
    -------
    >>> g = EntityGraph.from_profile(profile)
    >>> [e.identifier for e in g.entities()]
    ['parent', 'sub-0', 'intl-0']
    >>> g.assigned_codes("intl-0")      # inherits the parent's CA/CS
    ('CA-001', 'CS-001')
    """

    def __init__(self) -> None:
        self.g = nx.DiGraph()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_profile(cls, profile: StartupProfile) -> "EntityGraph":
        graph = cls()
        if not profile.country:
            return graph
        graph.add(LegalEntity(
            identifier=PARENT,
            kind="parent",
            country=profile.country,
            display_name=parent_display_name(profile.country),
            company_type=profile.company_type,
            registration_date=profile.registration_date,
            ca_code=profile.ca_service_code,
            cs_code=profile.cs_service_code,
        ))
        for index, sub in enumerate(profile.subsidiaries):
            if not sub.country:
                continue
            graph.add(LegalEntity(
                identifier=f"sub-{index}",
                kind="subsidiary",
                country=sub.country,
                display_name=f"Subsidiary {index} ({normalize_country_for_display(sub.country)})",
                company_type=sub.company_type,
                registration_date=sub.registration_date or profile.registration_date,
                ca_code=sub.ca_code,
                cs_code=sub.cs_code,
            ), parent=PARENT)
        for index, op in enumerate(profile.international_ops):
            if not op.country:
                continue
            graph.add(LegalEntity(
                identifier=f"intl-{index}",
                kind="international",
                country=op.country,
                display_name=f"International Operation {index} ({normalize_country_for_display(op.country)})",
                company_type=op.company_type,
                registration_date=op.start_date or profile.registration_date,
            ), parent=PARENT)
        return graph

    def add(self, entity: LegalEntity, parent: Optional[str] = None) -> None:
        """Add *entity*; link it under *parent* when given."""
        self.g.add_node(entity.identifier, entity=entity)
        if parent is not None:
            if parent not in self.g:
                raise KeyError(parent)
            self.g.add_edge(parent, entity.identifier)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get(self, identifier: str) -> LegalEntity:
        """Return the entity or raise KeyError."""
        return self.g.nodes[identifier]["entity"]

    def entities(self) -> List[LegalEntity]:
        return [data["entity"] for _, data in self.g.nodes(data=True)]

    def children(self, identifier: str = PARENT) -> List[LegalEntity]:
        if identifier not in self.g:
            return []
        return [self.get(child) for child in self.g.successors(identifier)]

    def expected_display_names(self) -> Set[str]:
        """Canonical display names of every entity currently in the profile."""
        return {canonical_entity_name(e.display_name) for e in self.entities()}

    def assigned_codes(self, identifier: str) -> tuple:
        """
        (CA code, CS code) responsible for *identifier*.

        International operations carry no assignment of their own and
        inherit from their parent; unknown identifiers yield ``(None, None)``.
        """
        if identifier not in self.g:
            return (None, None)
        entity = self.get(identifier)
        if entity.kind == "international":
            for parent in self.g.predecessors(identifier):
                return self.assigned_codes(parent)
        return (entity.ca_code, entity.cs_code)

    def to_json(self) -> Dict[str, list]:
        """Nodes and links for clients that draw the structure."""
        nodes = [
            {
                "id": e.identifier,
                "name": e.display_name,
                "kind": e.kind,
                "country": e.country,
            }
            for e in self.entities()
        ]
        links = [{"source": s, "target": t} for s, t in self.g.edges()]
        return {"nodes": nodes, "links": links}

    def __len__(self) -> int:
        return self.g.number_of_nodes()

"""EntityGraph: DiGraph-based relationship map over the known entities.

Node keys are the entities' exact names (the same keys used by
``GameState.known_entities``).  Edge targets may be plain strings such as a
location or skill name that has no entity record of its own.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Set

import networkx as nx

from config import Settings, settings as default_settings
from loreweaver.engine.state import Entity

logger = logging.getLogger(__name__)


class EntityGraph:
    """Relationship graph backed by ``nx.DiGraph``; rebuilt for every prompt."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or default_settings
        self.graph: nx.DiGraph = nx.DiGraph()

    # ── construction ──────────────────────────────────────
    def build(self, entities: Optional[Mapping[str, Entity]]) -> "EntityGraph":
        """Rebuild edges from explicit fields and description co-mentions.

        The co-mention scan is O(n²) over entity count.
        """
        self.graph.clear()
        if not entities or not isinstance(entities, Mapping):
            return self

        if len(entities) > self.settings.GRAPH_SCALE_WARNING:
            logger.warning(
                "Entity graph over %d entities (%d); description scan is quadratic.",
                self.settings.GRAPH_SCALE_WARNING, len(entities),
            )

        lowered_names = {name: name.lower() for name in entities}
        for name, entity in entities.items():
            if not isinstance(entity, Entity):
                logger.debug("Skipping non-entity value under %r", name)
                continue
            self.graph.add_node(name, entity_type=_type_value(entity))

            if entity.owner:
                self.add_relation(name, entity.owner, "owned_by")
            if entity.location:
                self.add_relation(name, entity.location, "located_at")

            description = (entity.description or "").lower()
            if description:
                for other, other_lower in lowered_names.items():
                    if other != name and other_lower and other_lower in description:
                        self.add_relation(name, other, "mentions")

            for skill in entity.skills:
                self.add_relation(name, skill, "has_skill")

        logger.debug("Entity graph: %d nodes, %d edges", self.num_nodes, self.num_edges)
        return self

    def add_relation(self, source: str, target: str, relation: str) -> None:
        """Add an edge; an existing (source, target) pair keeps its first relation."""
        if not source or not target or self.graph.has_edge(source, target):
            return
        self.graph.add_edge(source, target, relation=relation)

    # ── queries ───────────────────────────────────────────
    def related(self, name: str) -> Set[str]:
        if name not in self.graph:
            return set()
        return set(self.graph.successors(name))

    def get_relations(self, name: str) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        if name not in self.graph:
            return results
        for _, tgt, data in self.graph.out_edges(name, data=True):
            results.append({"target": tgt, **data})
        return results

    def to_adjacency(self) -> Dict[str, Set[str]]:
        return {node: set(self.graph.successors(node)) for node in self.graph.nodes}

    # ── stats ─────────────────────────────────────────────
    @property
    def num_nodes(self) -> int:
        return self.graph.number_of_nodes()

    @property
    def num_edges(self) -> int:
        return self.graph.number_of_edges()


def _type_value(entity: Entity) -> str:
    return getattr(entity.type, "value", entity.type)

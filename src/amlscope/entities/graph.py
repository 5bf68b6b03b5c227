"""
Entity graph built from entity relationships.

Provides:
- Undirected adjacency for component analysis
- Per-entity relationship counts (outgoing, incoming, degree)
- Directed NetworkX views for ownership analysis and export

The graph is computed once per analysis call and shared read-only by the
network detectors.
"""

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import networkx as nx

from amlscope.fincrime.models import (
    Entity,
    EntityRelationship,
    coerce_entity,
    coerce_relationship,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityGraph:
    """Read-only relationship graph over an entity snapshot."""

    entities: dict[str, Entity]
    relationships: tuple[EntityRelationship, ...]
    adjacency: dict[str, frozenset[str]]
    outgoing_count: Counter
    incoming_count: Counter
    degree: Counter
    skipped_entities: int = 0
    skipped_relationships: int = 0

    @classmethod
    def build(
        cls,
        entities: Iterable[Any],
        relationships: Iterable[Any],
    ) -> "EntityGraph":
        """
        Build the graph.

        Entities that cannot be coerced or repeat an id are skipped.
        Relationships are kept only when both endpoints are known entities.

        Args:
            entities: Entity dataclasses or mappings
            relationships: EntityRelationship dataclasses or mappings

        Returns:
            EntityGraph
        """
        by_id: dict[str, Entity] = {}
        skipped_entities = 0
        for raw in entities:
            entity = coerce_entity(raw)
            if entity is None or entity.id in by_id:
                skipped_entities += 1
                logger.debug("Skipping entity record: %r", raw)
                continue
            by_id[entity.id] = entity

        kept: list[EntityRelationship] = []
        skipped_relationships = 0
        adjacency: dict[str, set[str]] = defaultdict(set)
        outgoing: Counter = Counter()
        incoming: Counter = Counter()
        degree: Counter = Counter()

        for raw in relationships:
            rel = coerce_relationship(raw)
            if (
                rel is None
                or rel.source_entity_id not in by_id
                or rel.target_entity_id not in by_id
            ):
                skipped_relationships += 1
                logger.debug("Skipping relationship record: %r", raw)
                continue

            kept.append(rel)
            adjacency[rel.source_entity_id].add(rel.target_entity_id)
            adjacency[rel.target_entity_id].add(rel.source_entity_id)
            outgoing[rel.source_entity_id] += 1
            incoming[rel.target_entity_id] += 1
            degree[rel.source_entity_id] += 1
            degree[rel.target_entity_id] += 1

        if skipped_entities or skipped_relationships:
            logger.info(
                "Excluded %d entity and %d relationship records from analysis",
                skipped_entities,
                skipped_relationships,
            )

        return cls(
            entities=by_id,
            relationships=tuple(kept),
            adjacency={k: frozenset(v) for k, v in adjacency.items()},
            outgoing_count=outgoing,
            incoming_count=incoming,
            degree=degree,
            skipped_entities=skipped_entities,
            skipped_relationships=skipped_relationships,
        )

    def __len__(self) -> int:
        return len(self.entities)

    def get(self, entity_id: str) -> Optional[Entity]:
        return self.entities.get(entity_id)

    def neighbors(self, entity_id: str) -> frozenset[str]:
        return self.adjacency.get(entity_id, frozenset())

    def to_networkx(self) -> nx.MultiDiGraph:
        """
        Convert to a NetworkX multigraph for export or advanced analysis.

        Nodes carry the entity fields, edges the relationship type and
        strength.
        """
        G = nx.MultiDiGraph()

        for entity_id, entity in self.entities.items():
            G.add_node(
                entity_id,
                name=entity.name,
                entity_type=entity.entity_type,
                jurisdiction=entity.jurisdiction,
                risk_level=entity.risk_level.value,
                risk_score=entity.risk_score,
            )

        for rel in self.relationships:
            G.add_edge(
                rel.source_entity_id,
                rel.target_entity_id,
                relationship_type=rel.relationship_type,
                strength=rel.strength,
            )

        return G

    def ownership_graph(self, ownership_types: Iterable[str]) -> nx.DiGraph:
        """Directed graph of ownership relationships only."""
        types = {t.strip().lower() for t in ownership_types}
        G = nx.DiGraph()
        G.add_nodes_from(self.entities)
        for rel in self.relationships:
            if rel.relationship_type.strip().lower() in types:
                G.add_edge(rel.source_entity_id, rel.target_entity_id)
        return G

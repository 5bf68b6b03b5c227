"""
Entity network analysis.

Works on a prebuilt EntityGraph and provides:
- Shell company scoring (jurisdiction, registration age, relationship
  asymmetry, existing risk level)
- Connected sub-networks ranked by aggregate risk
- Degree centrality ranking
- Circular ownership structures
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

import networkx as nx

from amlscope.config import ConfigurationError, Settings, get_settings
from amlscope.entities.graph import EntityGraph
from amlscope.fincrime.models import Entity, utcnow

logger = logging.getLogger(__name__)


def _aware(instant: Optional[datetime]) -> datetime:
    if instant is None:
        return utcnow()
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant


@dataclass
class ShellCompanyAssessment:
    """Shell company score for one entity."""

    entity: Entity
    score: int
    indicators: list[str] = field(default_factory=list)
    is_shell_company: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity.id,
            "name": self.entity.name,
            "score": self.score,
            "indicators": self.indicators,
            "is_shell_company": self.is_shell_company,
        }


@dataclass
class NetworkRisk:
    """A connected sub-network and its aggregate risk."""

    members: tuple[Entity, ...]
    average_risk_score: float
    high_risk_count: int
    high_risk_percentage: float
    network_risk: float

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def member_ids(self) -> list[str]:
        return [e.id for e in self.members]

    def to_dict(self) -> dict[str, Any]:
        return {
            "member_ids": self.member_ids,
            "size": self.size,
            "average_risk_score": self.average_risk_score,
            "high_risk_count": self.high_risk_count,
            "high_risk_percentage": self.high_risk_percentage,
            "network_risk": self.network_risk,
        }


@dataclass
class CentralityScore:
    entity: Entity
    score: int

    def to_dict(self) -> dict[str, Any]:
        return {"entity_id": self.entity.id, "name": self.entity.name, "score": self.score}


@dataclass
class OwnershipCycle:
    """Entities that own each other in a loop, starting at the smallest id."""

    entity_ids: tuple[str, ...]
    entities: tuple[Entity, ...]

    @property
    def length(self) -> int:
        return len(self.entity_ids)

    def to_dict(self) -> dict[str, Any]:
        return {"entity_ids": list(self.entity_ids), "length": self.length}


class ShellCompanyScorer:
    """
    Heuristic shell company scoring.

    Points (additive, capped at 100):
    - 30 if the jurisdiction is on the high-risk list
    - 20 if registered within the recent period
    - 25 if outgoing relationships exceed three times the incoming ones
      and number more than two
    - 15 if the entity is already rated high or critical

    Entities without a usable registration date are not scored.
    """

    JURISDICTION_POINTS = 30
    RECENT_REGISTRATION_POINTS = 20
    RELATIONSHIP_IMBALANCE_POINTS = 25
    RISK_LEVEL_POINTS = 15
    MAX_SCORE = 100

    SHELL_THRESHOLD = 50
    RECENT_PERIOD = timedelta(days=365)

    def __init__(
        self,
        high_risk_jurisdictions: Optional[Iterable[str]] = None,
        recent_period: timedelta = RECENT_PERIOD,
        threshold: int = SHELL_THRESHOLD,
    ):
        if high_risk_jurisdictions is None:
            high_risk_jurisdictions = get_settings().high_risk_jurisdictions
        if not isinstance(recent_period, timedelta) or recent_period <= timedelta(0):
            raise ConfigurationError(
                f"recent_period must be a positive timedelta, got {recent_period!r}"
            )
        if not 0 < threshold <= self.MAX_SCORE:
            raise ConfigurationError(f"threshold must be in (0, {self.MAX_SCORE}], got {threshold}")

        self.high_risk_jurisdictions = {
            j.strip().casefold() for j in high_risk_jurisdictions if j.strip()
        }
        self.recent_period = recent_period
        self.threshold = threshold

    @classmethod
    def from_settings(cls, settings: Settings) -> "ShellCompanyScorer":
        return cls(
            high_risk_jurisdictions=settings.high_risk_jurisdictions,
            recent_period=timedelta(days=settings.shell_recent_days),
            threshold=settings.shell_score_threshold,
        )

    def score(
        self,
        entity: Entity,
        graph: EntityGraph,
        as_of: Optional[datetime] = None,
    ) -> Optional[ShellCompanyAssessment]:
        """Score one entity, None when it has no registration date."""
        if entity.registration_date is None:
            return None

        as_of = _aware(as_of)
        points = 0
        indicators = []

        if entity.jurisdiction.strip().casefold() in self.high_risk_jurisdictions:
            points += self.JURISDICTION_POINTS
            indicators.append("high_risk_jurisdiction")

        if entity.registration_date > as_of - self.recent_period:
            points += self.RECENT_REGISTRATION_POINTS
            indicators.append("recently_registered")

        outgoing = graph.outgoing_count[entity.id]
        incoming = graph.incoming_count[entity.id]
        if outgoing > incoming * 3 and outgoing > 2:
            points += self.RELATIONSHIP_IMBALANCE_POINTS
            indicators.append("relationship_imbalance")

        if entity.risk_level.is_elevated:
            points += self.RISK_LEVEL_POINTS
            indicators.append("elevated_risk_level")

        points = min(points, self.MAX_SCORE)
        return ShellCompanyAssessment(
            entity=entity,
            score=points,
            indicators=indicators,
            is_shell_company=points >= self.threshold,
        )

    def score_all(
        self,
        graph: EntityGraph,
        as_of: Optional[datetime] = None,
    ) -> list[ShellCompanyAssessment]:
        """Score every entity with a registration date, in graph order."""
        as_of = _aware(as_of)
        assessments = []
        for entity in graph.entities.values():
            assessment = self.score(entity, graph, as_of)
            if assessment is not None:
                assessments.append(assessment)
        return assessments

    def identify(
        self,
        graph: EntityGraph,
        as_of: Optional[datetime] = None,
    ) -> list[ShellCompanyAssessment]:
        """
        Identify shell company candidates.

        Returns:
            Assessments at or above the threshold, highest score first
        """
        flagged = [a for a in self.score_all(graph, as_of) if a.is_shell_company]
        flagged.sort(key=lambda a: (-a.score, a.entity.id))
        logger.debug("shell_company: %d entities flagged", len(flagged))
        return flagged


class NetworkComponentFinder:
    """
    Find connected sub-networks and rank them by risk.

    network risk = average member risk score * (1 + high-risk percentage / 100)
    """

    MIN_COMPONENT_SIZE = 3

    def __init__(self, min_component_size: int = MIN_COMPONENT_SIZE):
        if min_component_size < 1:
            raise ConfigurationError(
                f"min_component_size must be at least 1, got {min_component_size}"
            )
        self.min_component_size = min_component_size

    def find_components(self, graph: EntityGraph) -> list[list[str]]:
        """Connected components with at least min_component_size members."""
        visited: set[str] = set()
        components: list[list[str]] = []

        for start_node in graph.entities:
            if start_node in visited:
                continue

            # BFS to find component
            component: list[str] = []
            queue = deque([start_node])
            visited.add(start_node)

            while queue:
                node = queue.popleft()
                component.append(node)

                for neighbor in sorted(graph.neighbors(node)):
                    if neighbor not in visited:
                        visited.add(neighbor)
                        queue.append(neighbor)

            if len(component) >= self.min_component_size:
                components.append(component)

        return components

    def rank(self, graph: EntityGraph) -> list[NetworkRisk]:
        """
        Score retained components.

        Returns:
            NetworkRisk list sorted by network risk descending
        """
        ranked = []
        for component in self.find_components(graph):
            members = tuple(graph.entities[eid] for eid in component)
            average = sum(e.risk_score for e in members) / len(members)
            high_risk = sum(1 for e in members if e.risk_level.is_elevated)
            percentage = high_risk / len(members) * 100

            ranked.append(NetworkRisk(
                members=members,
                average_risk_score=average,
                high_risk_count=high_risk,
                high_risk_percentage=percentage,
                network_risk=average * (1 + percentage / 100),
            ))

        ranked.sort(key=lambda n: (-n.network_risk, -n.size, n.members[0].id))
        logger.debug("network: %d components ranked", len(ranked))
        return ranked


class CentralityRanker:
    """
    Rank entities by raw relationship count.

    Every relationship adds one to both of its endpoints. Callers needing
    betweenness or eigenvector centrality should swap in another ranker
    returning the same CentralityScore list.
    """

    def rank(self, graph: EntityGraph, limit: Optional[int] = None) -> list[CentralityScore]:
        scores = [
            CentralityScore(entity=entity, score=graph.degree[entity_id])
            for entity_id, entity in graph.entities.items()
        ]
        scores.sort(key=lambda s: (-s.score, s.entity.id))
        return scores if limit is None else scores[:limit]


class CircularOwnershipDetector:
    """
    Detect circular ownership structures.

    Entities that (indirectly) own themselves are a common way of hiding
    beneficial ownership. Cycles are searched in the directed ownership
    graph up to max_cycle_length entities.
    """

    MAX_CYCLE_LENGTH = 6

    def __init__(
        self,
        ownership_types: Iterable[str] = ("owner",),
        max_cycle_length: int = MAX_CYCLE_LENGTH,
    ):
        if max_cycle_length < 2:
            raise ConfigurationError(
                f"max_cycle_length must be at least 2, got {max_cycle_length}"
            )
        self.ownership_types = tuple(ownership_types)
        self.max_cycle_length = max_cycle_length

    def detect(self, graph: EntityGraph) -> list[OwnershipCycle]:
        G = graph.ownership_graph(self.ownership_types)
        cycles = []

        for cycle in nx.simple_cycles(G, length_bound=self.max_cycle_length):
            if len(cycle) < 2:
                continue
            pivot = cycle.index(min(cycle))
            ordered = tuple(cycle[pivot:] + cycle[:pivot])
            cycles.append(OwnershipCycle(
                entity_ids=ordered,
                entities=tuple(graph.entities[eid] for eid in ordered),
            ))

        cycles.sort(key=lambda c: (c.length, c.entity_ids))
        logger.debug("circular_ownership: %d cycles found", len(cycles))
        return cycles


@dataclass
class EntityNetworkAnalysis:
    shell_companies: list[ShellCompanyAssessment]
    risky_networks: list[NetworkRisk]
    centrality: list[CentralityScore]
    circular_ownership: list[OwnershipCycle]


class EntityNetworkAnalyzer:
    """
    Runs all entity network analyses over one shared graph.

    Usage:
        analyzer = EntityNetworkAnalyzer()
        result = analyzer.analyze(EntityGraph.build(entities, relationships))
    """

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.shell_scorer = ShellCompanyScorer.from_settings(settings)
        self.component_finder = NetworkComponentFinder(settings.min_component_size)
        self.centrality_ranker = CentralityRanker()
        self.ownership_detector = CircularOwnershipDetector(
            ownership_types=settings.ownership_types,
            max_cycle_length=settings.max_ownership_cycle_length,
        )

    def analyze(
        self,
        graph: EntityGraph,
        as_of: Optional[datetime] = None,
    ) -> EntityNetworkAnalysis:
        return EntityNetworkAnalysis(
            shell_companies=self.shell_scorer.identify(graph, as_of),
            risky_networks=self.component_finder.rank(graph),
            centrality=self.centrality_ranker.rank(graph),
            circular_ownership=self.ownership_detector.detect(graph),
        )

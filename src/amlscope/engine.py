"""
AML analysis engine.

Single entry point over an already-fetched snapshot:

    engine = AnalysisEngine()
    report = engine.analyze(transactions, entities, relationships)

The transaction index and entity graph are built once and shared read-only
by every detector. Detectors are independent except entity risk scoring,
which uses the transaction risk scores.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from amlscope.anomaly.entity_anomalies import EntityAnomalyDetector, EntityAnomalyScore
from amlscope.config import Settings, get_settings
from amlscope.entities.graph import EntityGraph
from amlscope.entities.network import (
    CentralityScore,
    EntityNetworkAnalyzer,
    NetworkRisk,
    OwnershipCycle,
    ShellCompanyAssessment,
)
from amlscope.fincrime.aml_patterns import AMLPatternDetector
from amlscope.fincrime.index import TransactionIndex
from amlscope.fincrime.models import DetectedPattern, utcnow
from amlscope.fincrime.risk_scoring import EntityRiskScorer, RiskScore, TransactionRiskScorer

logger = logging.getLogger(__name__)


def _elevated(scores: list[RiskScore]) -> int:
    return sum(1 for s in scores if s.risk_level.is_elevated)


@dataclass
class AnalysisReport:
    """Results of one analysis call."""

    structuring: DetectedPattern
    round_trips: DetectedPattern
    layering: DetectedPattern
    shell_companies: list[ShellCompanyAssessment] = field(default_factory=list)
    risky_networks: list[NetworkRisk] = field(default_factory=list)
    centrality: list[CentralityScore] = field(default_factory=list)
    circular_ownership: list[OwnershipCycle] = field(default_factory=list)
    transaction_risk: list[RiskScore] = field(default_factory=list)
    entity_risk: list[RiskScore] = field(default_factory=list)
    anomalies: list[EntityAnomalyScore] = field(default_factory=list)

    skipped_transactions: int = 0
    skipped_entities: int = 0
    skipped_relationships: int = 0
    generated_at: datetime = field(default_factory=utcnow)

    @property
    def patterns(self) -> list[DetectedPattern]:
        """Non-empty transaction patterns, highest risk level first."""
        found = [
            p for p in (self.structuring, self.round_trips, self.layering)
            if not p.is_empty
        ]
        found.sort(key=lambda p: (-p.risk_level.rank, -len(p.transactions)))
        return found

    def summary(self) -> dict[str, int]:
        return {
            "structuring_transactions": len(self.structuring.transactions),
            "round_trip_transactions": len(self.round_trips.transactions),
            "layering_transactions": len(self.layering.transactions),
            "shell_companies": len(self.shell_companies),
            "risky_networks": len(self.risky_networks),
            "circular_ownership_structures": len(self.circular_ownership),
            "high_risk_transactions": _elevated(self.transaction_risk),
            "high_risk_entities": _elevated(self.entity_risk),
            "anomalous_entities": len(self.anomalies),
            "skipped_transactions": self.skipped_transactions,
            "skipped_entities": self.skipped_entities,
            "skipped_relationships": self.skipped_relationships,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for the reporting layer."""
        return {
            "generated_at": self.generated_at.isoformat(),
            "summary": self.summary(),
            "patterns": [p.to_dict() for p in self.patterns],
            "shell_companies": [a.to_dict() for a in self.shell_companies],
            "risky_networks": [n.to_dict() for n in self.risky_networks],
            "centrality": [c.to_dict() for c in self.centrality],
            "circular_ownership": [c.to_dict() for c in self.circular_ownership],
            "transaction_risk": [s.to_dict() for s in self.transaction_risk],
            "entity_risk": [s.to_dict() for s in self.entity_risk],
            "anomalies": [a.to_dict() for a in self.anomalies],
        }


class AnalysisEngine:
    """
    Runs every AML detector over one snapshot.

    Configuration errors surface when the engine is constructed; malformed
    records are excluded and counted in the report.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.pattern_detector = AMLPatternDetector(settings=self.settings)
        self.network_analyzer = EntityNetworkAnalyzer(settings=self.settings)
        self.transaction_scorer = TransactionRiskScorer.from_settings(self.settings)
        self.entity_scorer = EntityRiskScorer.from_settings(self.settings)
        self.anomaly_detector = EntityAnomalyDetector.from_settings(self.settings)

    def analyze(
        self,
        transactions: Iterable[Any],
        entities: Iterable[Any],
        relationships: Iterable[Any],
        as_of: Optional[datetime] = None,
    ) -> AnalysisReport:
        """
        Analyze a snapshot.

        Args:
            transactions: Transaction dataclasses or mappings
            entities: Entity dataclasses or mappings
            relationships: EntityRelationship dataclasses or mappings
            as_of: Reference instant for registration recency (now if None)

        Returns:
            AnalysisReport
        """
        index = TransactionIndex.build(transactions)
        graph = EntityGraph.build(entities, relationships)

        by_type = {p.pattern_type: p for p in self.pattern_detector.run(index)}
        network = self.network_analyzer.analyze(graph, as_of)
        transaction_risk = self.transaction_scorer.score_all(index, graph)
        entity_risk = self.entity_scorer.score_all(
            graph, index, {s.subject_id: s.score for s in transaction_risk}, as_of
        )

        report = AnalysisReport(
            structuring=by_type["structuring"],
            round_trips=by_type["round_trip"],
            layering=by_type["layering"],
            shell_companies=network.shell_companies,
            risky_networks=network.risky_networks,
            centrality=network.centrality,
            circular_ownership=network.circular_ownership,
            transaction_risk=transaction_risk,
            entity_risk=entity_risk,
            anomalies=self.anomaly_detector.detect(index, graph),
            skipped_transactions=index.skipped,
            skipped_entities=graph.skipped_entities,
            skipped_relationships=graph.skipped_relationships,
        )

        logger.info(
            "Analyzed %d transactions and %d entities: %d patterns, "
            "%d shell companies, %d risky networks, %d anomalous entities",
            len(index),
            len(graph),
            len(report.patterns),
            len(report.shell_companies),
            len(report.risky_networks),
            len(report.anomalies),
        )
        return report

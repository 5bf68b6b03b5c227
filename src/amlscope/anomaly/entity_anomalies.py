"""
Per-entity behaviour anomalies.

Detects, for every entity that appears in the transactions:
- Velocity spikes: days with far more transfers than the entity's average
- Volume outliers: transfers far above the entity's mean amount
- Fan-in / fan-out: many transfers consolidated into, or split from, one
- Round amounts: large transfers in multiples of 1,000
- Connections: transfers with high or critical risk counterparties

Each anomaly carries a severity between 0 and 1. An entity's anomaly score
is the weighted mean severity of its anomalies, scaled to 0-100.
"""

import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union

from amlscope.config import ConfigurationError, Settings
from amlscope.entities.graph import EntityGraph
from amlscope.fincrime.index import TransactionIndex
from amlscope.fincrime.models import Entity, Transaction

logger = logging.getLogger(__name__)


class AnomalyType(str, Enum):
    """Types of behaviour anomalies."""

    VELOCITY = "velocity"
    VOLUME = "volume"
    PATTERN = "pattern"
    CONNECTION = "connection"

    @property
    def weight(self) -> float:
        return _ANOMALY_WEIGHTS[self]


_ANOMALY_WEIGHTS = {
    AnomalyType.VELOCITY: 0.8,
    AnomalyType.VOLUME: 0.7,
    AnomalyType.PATTERN: 1.0,
    AnomalyType.CONNECTION: 0.9,
}


@dataclass
class Anomaly:
    """A single anomaly observed for one entity."""

    anomaly_type: AnomalyType
    description: str
    severity: float  # 0.0 to 1.0
    transaction_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.anomaly_type.value,
            "description": self.description,
            "severity": self.severity,
            "transaction_ids": self.transaction_ids,
        }


@dataclass
class EntityAnomalyScore:
    """Anomalies and combined score for one entity."""

    entity: Entity
    anomaly_score: float
    anomalies: list[Anomaly] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity.id,
            "name": self.entity.name,
            "anomaly_score": self.anomaly_score,
            "anomalies": [a.to_dict() for a in self.anomalies],
        }


def ratio_severity(ratio: float) -> float:
    """Map how far a value exceeds its norm to a severity in [0.3, 1]."""
    return min(max(0.3, ratio / 5), 1.0)


def anomaly_score(anomalies: list[Anomaly]) -> float:
    """Weighted mean severity scaled to 0-100, 0 without anomalies."""
    if not anomalies:
        return 0.0
    total = sum(a.severity * a.anomaly_type.weight for a in anomalies)
    weights = sum(a.anomaly_type.weight for a in anomalies)
    return total / max(weights, 1) * 100


def _day(txn: Transaction) -> date:
    return txn.timestamp.astimezone(timezone.utc).date()


class EntityAnomalyDetector:
    """
    Detects behaviour anomalies per entity.

    Only entities present in the entity graph are analyzed; transactions
    with unknown counterparties still count towards their known side.
    """

    ROUND_UNIT = Decimal(1000)
    ROUND_AMOUNT_SEVERITY = 0.5

    def __init__(
        self,
        velocity_multiplier: float = 3.0,
        min_daily_count: int = 3,
        zscore_threshold: float = 3.0,
        fan_min_count: int = 5,
        fan_window: timedelta = timedelta(hours=72),
        fan_tolerance: Union[Decimal, float, str] = Decimal("0.10"),
        round_amount_minimum: Union[Decimal, int, float, str] = 10000,
    ):
        """
        Initialize the anomaly detector.

        Args:
            velocity_multiplier: Daily count over this multiple of the average is a spike
            min_daily_count: Fewest transfers on a day that can be a spike
            zscore_threshold: Standard deviations above the mean for a volume outlier
            fan_min_count: Fewest transfers in a fan-in or fan-out
            fan_window: Window before a consolidation or after a distribution
            fan_tolerance: Allowed relative gap between the single transfer and the total
            round_amount_minimum: Smallest round amount flagged
        """
        if velocity_multiplier <= 0 or zscore_threshold <= 0:
            raise ConfigurationError("velocity_multiplier and zscore_threshold must be positive")
        if min_daily_count < 1 or fan_min_count < 1:
            raise ConfigurationError("min_daily_count and fan_min_count must be at least 1")
        if not isinstance(fan_window, timedelta) or fan_window <= timedelta(0):
            raise ConfigurationError(f"fan_window must be a positive timedelta, got {fan_window!r}")

        self.velocity_multiplier = velocity_multiplier
        self.min_daily_count = min_daily_count
        self.zscore_threshold = zscore_threshold
        self.fan_min_count = fan_min_count
        self.fan_window = fan_window
        self.fan_tolerance = Decimal(str(fan_tolerance))
        self.round_amount_minimum = Decimal(str(round_amount_minimum))

        if not 0 <= self.fan_tolerance <= 1:
            raise ConfigurationError(f"fan_tolerance must be between 0 and 1, got {fan_tolerance}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "EntityAnomalyDetector":
        return cls(
            velocity_multiplier=settings.anomaly_velocity_multiplier,
            min_daily_count=settings.anomaly_min_daily_count,
            zscore_threshold=settings.anomaly_zscore_threshold,
            fan_min_count=settings.anomaly_fan_min_count,
            fan_window=timedelta(hours=settings.anomaly_fan_window_hours),
            fan_tolerance=settings.anomaly_fan_tolerance,
            round_amount_minimum=settings.anomaly_round_amount_minimum,
        )

    def detect(
        self,
        index: TransactionIndex,
        graph: EntityGraph,
    ) -> list[EntityAnomalyScore]:
        """
        Detect anomalies for every known entity with transactions.

        Returns:
            Entities with at least one anomaly, highest score first
        """
        results = []
        for entity_id in sorted(index.entity_ids):
            entity = graph.get(entity_id)
            if entity is None:
                continue
            result = self.analyze_entity(entity, index, graph)
            if result.anomalies:
                results.append(result)

        results.sort(key=lambda r: (-r.anomaly_score, r.entity.id))
        logger.debug("anomaly: %d entities with anomalies", len(results))
        return results

    def analyze_entity(
        self,
        entity: Entity,
        index: TransactionIndex,
        graph: EntityGraph,
    ) -> EntityAnomalyScore:
        incoming = index.incoming(entity.id)
        outgoing = index.outgoing(entity.id)

        anomalies = []
        anomalies.extend(self.detect_velocity(incoming, "incoming"))
        anomalies.extend(self.detect_velocity(outgoing, "outgoing"))
        anomalies.extend(self.detect_volume(incoming, "incoming"))
        anomalies.extend(self.detect_volume(outgoing, "outgoing"))
        anomalies.extend(self.detect_fan_in(incoming, outgoing))
        anomalies.extend(self.detect_fan_out(incoming, outgoing))
        anomalies.extend(self.detect_round_amounts(incoming + outgoing))
        anomalies.extend(self.detect_risky_connections(incoming, outgoing, graph))

        return EntityAnomalyScore(
            entity=entity,
            anomaly_score=anomaly_score(anomalies),
            anomalies=anomalies,
        )

    def detect_velocity(
        self,
        transactions: tuple[Transaction, ...],
        direction: str,
    ) -> list[Anomaly]:
        """Days with more than velocity_multiplier times the average daily count."""
        by_day: dict[date, list[Transaction]] = defaultdict(list)
        for txn in transactions:
            by_day[_day(txn)].append(txn)
        if not by_day:
            return []

        average = len(transactions) / len(by_day)
        anomalies = []
        for day, txns in sorted(by_day.items()):
            if len(txns) > average * self.velocity_multiplier and len(txns) >= self.min_daily_count:
                anomalies.append(Anomaly(
                    anomaly_type=AnomalyType.VELOCITY,
                    description=(
                        f"Unusual spike in {direction} transactions on {day.isoformat()} "
                        f"({len(txns)} vs avg {average:.1f})"
                    ),
                    severity=ratio_severity(len(txns) / average),
                    transaction_ids=[t.id for t in txns],
                ))
        return anomalies

    def detect_volume(
        self,
        transactions: tuple[Transaction, ...],
        direction: str,
    ) -> list[Anomaly]:
        """Transfers more than zscore_threshold standard deviations above the mean."""
        if not transactions:
            return []

        amounts = [float(t.amount) for t in transactions]
        mean = statistics.fmean(amounts)
        stdev = statistics.pstdev(amounts) or 1.0

        anomalies = []
        for txn, amount in zip(transactions, amounts):
            zscore = (amount - mean) / stdev
            if zscore > self.zscore_threshold:
                anomalies.append(Anomaly(
                    anomaly_type=AnomalyType.VOLUME,
                    description=(
                        f"Unusually large {direction} transaction of {txn.amount} {txn.currency} "
                        f"({zscore:.1f} std devs above mean)"
                    ),
                    severity=ratio_severity(zscore / self.zscore_threshold),
                    transaction_ids=[txn.id],
                ))
        return anomalies

    def detect_fan_in(
        self,
        incoming: tuple[Transaction, ...],
        outgoing: tuple[Transaction, ...],
    ) -> list[Anomaly]:
        """Many incoming transfers consolidated into one outgoing transfer."""
        if len(incoming) < self.fan_min_count or not outgoing:
            return []

        anomalies = []
        for out_txn in outgoing:
            preceding = [
                t for t in incoming
                if timedelta(0) <= out_txn.timestamp - t.timestamp <= self.fan_window
            ]
            if len(preceding) < self.fan_min_count:
                continue
            total = sum((t.amount for t in preceding), Decimal(0))
            if total > 0 and abs(out_txn.amount - total) / total < self.fan_tolerance:
                anomalies.append(Anomaly(
                    anomaly_type=AnomalyType.PATTERN,
                    description=(
                        f"Fan-in pattern: {len(preceding)} incoming transactions consolidated "
                        f"into one outgoing transaction of {out_txn.amount} {out_txn.currency}"
                    ),
                    severity=min(0.7 + len(preceding) / 20, 1.0),
                    transaction_ids=[t.id for t in preceding] + [out_txn.id],
                ))
        return anomalies

    def detect_fan_out(
        self,
        incoming: tuple[Transaction, ...],
        outgoing: tuple[Transaction, ...],
    ) -> list[Anomaly]:
        """One incoming transfer distributed into many outgoing transfers."""
        if not incoming or len(outgoing) < self.fan_min_count:
            return []

        anomalies = []
        for in_txn in incoming:
            following = [
                t for t in outgoing
                if timedelta(0) <= t.timestamp - in_txn.timestamp <= self.fan_window
            ]
            if len(following) < self.fan_min_count:
                continue
            total = sum((t.amount for t in following), Decimal(0))
            if in_txn.amount > 0 and abs(in_txn.amount - total) / in_txn.amount < self.fan_tolerance:
                anomalies.append(Anomaly(
                    anomaly_type=AnomalyType.PATTERN,
                    description=(
                        f"Fan-out pattern: one incoming transaction of {in_txn.amount} "
                        f"{in_txn.currency} distributed into {len(following)} outgoing transactions"
                    ),
                    severity=min(0.7 + len(following) / 20, 1.0),
                    transaction_ids=[in_txn.id] + [t.id for t in following],
                ))
        return anomalies

    def detect_round_amounts(self, transactions: tuple[Transaction, ...]) -> list[Anomaly]:
        return [
            Anomaly(
                anomaly_type=AnomalyType.PATTERN,
                description=f"Suspicious round number transaction of {txn.amount} {txn.currency}",
                severity=self.ROUND_AMOUNT_SEVERITY,
                transaction_ids=[txn.id],
            )
            for txn in transactions
            if txn.amount >= self.round_amount_minimum and txn.amount % self.ROUND_UNIT == 0
        ]

    def detect_risky_connections(
        self,
        incoming: tuple[Transaction, ...],
        outgoing: tuple[Transaction, ...],
        graph: EntityGraph,
    ) -> list[Anomaly]:
        """Transfers with counterparties rated high or critical."""
        risky = [
            t for t in incoming
            if _is_elevated(graph.get(t.source_entity_id))
        ] + [
            t for t in outgoing
            if _is_elevated(graph.get(t.destination_entity_id))
        ]
        if not risky:
            return []

        return [Anomaly(
            anomaly_type=AnomalyType.CONNECTION,
            description=f"Entity has {len(risky)} transactions with high-risk entities",
            severity=min(0.5 + len(risky) / 10, 1.0),
            transaction_ids=[t.id for t in risky],
        )]


def _is_elevated(entity: Optional[Entity]) -> bool:
    return entity is not None and entity.risk_level.is_elevated

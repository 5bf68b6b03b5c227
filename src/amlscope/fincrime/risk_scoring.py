"""
Rule-based risk scoring for transactions and entities.

Both scorers start from a base score, add points for each matching risk
factor and cap the result at 100. Transaction scores feed into entity
scores through the share of high-risk transactions an entity takes part in.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Union

from amlscope.config import ConfigurationError, Settings, get_settings
from amlscope.entities.graph import EntityGraph
from amlscope.fincrime.index import TransactionIndex
from amlscope.fincrime.models import Entity, RiskLevel, Transaction, utcnow

logger = logging.getLogger(__name__)


class RiskCategory(str, Enum):
    """Categories of risk factors."""

    AMOUNT = "amount"
    ENTITY = "entity"
    PRODUCT = "product"
    GEOGRAPHIC = "geographic"
    TIMING = "timing"
    NARRATIVE = "narrative"
    BEHAVIORAL = "behavioral"


@dataclass
class RiskFactor:
    """Individual risk factor contributing to a score."""

    category: RiskCategory
    name: str
    description: str
    points: float
    evidence: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "name": self.name,
            "description": self.description,
            "points": self.points,
            "evidence": self.evidence,
        }


@dataclass
class RiskScore:
    """Risk assessment of one transaction or entity."""

    subject_id: str
    score: float
    risk_level: RiskLevel
    factors: list[RiskFactor] = field(default_factory=list)
    calculated_at: datetime = field(default_factory=utcnow)

    @property
    def factor_names(self) -> list[str]:
        return [f.name for f in self.factors]

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "score": self.score,
            "risk_level": self.risk_level.value,
            "factors": [f.to_dict() for f in self.factors],
            "calculated_at": self.calculated_at.isoformat(),
        }


def _finish(subject_id: str, base: float, factors: list[RiskFactor], cap: float) -> RiskScore:
    score = min(max(base + sum(f.points for f in factors), 0), cap)
    return RiskScore(
        subject_id=subject_id,
        score=score,
        risk_level=RiskLevel.from_score(score),
        factors=factors,
    )


def _jurisdictions(values: Optional[Iterable[str]]) -> set[str]:
    if values is None:
        values = get_settings().high_risk_jurisdictions
    return {j.strip().casefold() for j in values if j.strip()}


def _sorted(scores: list[RiskScore]) -> list[RiskScore]:
    scores.sort(key=lambda s: (-s.score, s.subject_id))
    return scores


class TransactionRiskScorer:
    """
    Risk scoring for single transactions.

    Factors considered:
    - Amount (large, just below the reporting threshold, round)
    - Counterparties (newly registered, already high risk, first contact)
    - Category and type (cross-border, crypto, currency exchange)
    - Counterparty jurisdictions
    - Timing (outside business hours, weekend)
    - Narrative (vague wording, urgency or secrecy keywords, too short)

    Entity-based factors need the entity graph; without it they are skipped.
    """

    BASE_SCORE = 20
    MAX_SCORE = 100

    ROUND_UNIT = Decimal(1000)
    LARGE_AMOUNT_MAX_POINTS = 15
    BUSINESS_HOURS = (6, 22)

    VAGUE_PHRASES = ("consulting", "services", "fees", "commission", "general", "miscellaneous")
    SUSPICIOUS_KEYWORDS = ("urgent", "fast", "immediate", "offshore", "confidential", "private")

    CATEGORY_POINTS = {"cross_border": 15, "crypto": 10}
    TYPE_POINTS = {"exchange": 5}

    def __init__(
        self,
        threshold: Union[Decimal, int, float, str] = 10000,
        buffer: Union[Decimal, int, float, str] = 1000,
        high_risk_jurisdictions: Optional[Iterable[str]] = None,
        high_risk_score: float = 70,
        new_entity_period: timedelta = timedelta(days=180),
    ):
        self.threshold = Decimal(str(threshold))
        self.buffer = Decimal(str(buffer))
        if self.threshold <= 0 or not 0 <= self.buffer < self.threshold:
            raise ConfigurationError(
                f"need 0 <= buffer < threshold, got buffer {buffer} and threshold {threshold}"
            )
        if not isinstance(new_entity_period, timedelta) or new_entity_period <= timedelta(0):
            raise ConfigurationError(
                f"new_entity_period must be a positive timedelta, got {new_entity_period!r}"
            )
        self.high_risk_jurisdictions = _jurisdictions(high_risk_jurisdictions)
        self.high_risk_score = high_risk_score
        self.new_entity_period = new_entity_period

    @classmethod
    def from_settings(cls, settings: Settings) -> "TransactionRiskScorer":
        return cls(
            threshold=settings.structuring_threshold,
            buffer=settings.structuring_buffer,
            high_risk_jurisdictions=settings.high_risk_jurisdictions,
            high_risk_score=settings.risk_high_score,
            new_entity_period=timedelta(days=settings.risk_new_entity_days),
        )

    def score(
        self,
        txn: Transaction,
        graph: Optional[EntityGraph] = None,
        index: Optional[TransactionIndex] = None,
    ) -> RiskScore:
        """
        Score one transaction.

        Args:
            txn: Transaction to score
            graph: Entity graph for counterparty factors
            index: Transaction index for the first-contact factor

        Returns:
            RiskScore
        """
        first_contact = None
        if index is not None:
            earlier = next(
                (t for t in index.outgoing(txn.source_entity_id)
                 if t.destination_entity_id == txn.destination_entity_id),
                None,
            )
            first_contact = earlier is None or earlier.id == txn.id
        return self._score(txn, graph, first_contact)

    def score_all(
        self,
        index: TransactionIndex,
        graph: Optional[EntityGraph] = None,
    ) -> list[RiskScore]:
        """Score every indexed transaction, highest score first."""
        first_ids: dict[tuple[str, str], str] = {}
        for txn in index.transactions:
            first_ids.setdefault((txn.source_entity_id, txn.destination_entity_id), txn.id)

        scores = [
            self._score(
                txn,
                graph,
                first_ids[(txn.source_entity_id, txn.destination_entity_id)] == txn.id,
            )
            for txn in index.transactions
        ]
        logger.debug("transaction_risk: %d transactions scored", len(scores))
        return _sorted(scores)

    def _score(
        self,
        txn: Transaction,
        graph: Optional[EntityGraph],
        first_contact: Optional[bool],
    ) -> RiskScore:
        factors = self._amount_factors(txn)
        if graph is not None:
            factors.extend(self._entity_factors(txn, graph))
        if first_contact:
            factors.append(RiskFactor(
                category=RiskCategory.BEHAVIORAL,
                name="first_transaction",
                description="First transaction between these entities",
                points=10,
            ))
        factors.extend(self._product_factors(txn))
        if graph is not None:
            factors.extend(self._jurisdiction_factors(txn, graph))
        factors.extend(self._timing_factors(txn))
        factors.extend(self._narrative_factors(txn))
        return _finish(txn.id, self.BASE_SCORE, factors, self.MAX_SCORE)

    def _amount_factors(self, txn: Transaction) -> list[RiskFactor]:
        factors = []
        amount = txn.amount

        if amount >= self.threshold:
            excess = float((amount - self.threshold) / self.threshold)
            factors.append(RiskFactor(
                category=RiskCategory.AMOUNT,
                name="large_amount",
                description=f"Large transaction amount: {amount}",
                points=min(5 + excess, self.LARGE_AMOUNT_MAX_POINTS),
                evidence={"amount": str(amount)},
            ))
        elif amount >= self.threshold - self.buffer:
            factors.append(RiskFactor(
                category=RiskCategory.AMOUNT,
                name="below_reporting_threshold",
                description="Transaction amount just below reporting threshold",
                points=20,
                evidence={"amount": str(amount), "threshold": str(self.threshold)},
            ))

        if amount >= self.ROUND_UNIT and amount % self.ROUND_UNIT == 0:
            factors.append(RiskFactor(
                category=RiskCategory.AMOUNT,
                name="round_amount",
                description="Suspiciously round transaction amount",
                points=5,
                evidence={"amount": str(amount)},
            ))

        return factors

    def _entity_factors(self, txn: Transaction, graph: EntityGraph) -> list[RiskFactor]:
        factors = []
        source = graph.get(txn.source_entity_id)
        destination = graph.get(txn.destination_entity_id)

        new_entities = [
            e.id for e in (source, destination)
            if e is not None
            and e.registration_date is not None
            and e.registration_date > txn.timestamp - self.new_entity_period
        ]
        if new_entities:
            factors.append(RiskFactor(
                category=RiskCategory.ENTITY,
                name="new_entity",
                description="Transaction involves newly created entity",
                points=15,
                evidence={"entity_ids": new_entities},
            ))

        for role, entity in (("source", source), ("destination", destination)):
            if entity is not None and entity.risk_score > self.high_risk_score:
                factors.append(RiskFactor(
                    category=RiskCategory.ENTITY,
                    name=f"high_risk_{role}",
                    description=f"{role.capitalize()} entity has high risk score",
                    points=15,
                    evidence={"entity_id": entity.id, "risk_score": entity.risk_score},
                ))

        return factors

    def _product_factors(self, txn: Transaction) -> list[RiskFactor]:
        factors = []
        category = txn.category.strip().lower()
        transaction_type = txn.transaction_type.strip().lower()

        if category in self.CATEGORY_POINTS:
            factors.append(RiskFactor(
                category=RiskCategory.PRODUCT,
                name=category,
                description=f"{category.replace('_', ' ').capitalize()} transaction",
                points=self.CATEGORY_POINTS[category],
            ))
        if transaction_type in self.TYPE_POINTS:
            factors.append(RiskFactor(
                category=RiskCategory.PRODUCT,
                name=transaction_type,
                description="Currency exchange transaction",
                points=self.TYPE_POINTS[transaction_type],
            ))

        return factors

    def _jurisdiction_factors(self, txn: Transaction, graph: EntityGraph) -> list[RiskFactor]:
        factors = []
        for role, entity_id in (
            ("source", txn.source_entity_id),
            ("destination", txn.destination_entity_id),
        ):
            entity = graph.get(entity_id)
            if entity and entity.jurisdiction.strip().casefold() in self.high_risk_jurisdictions:
                factors.append(RiskFactor(
                    category=RiskCategory.GEOGRAPHIC,
                    name=f"{role}_high_risk_jurisdiction",
                    description=(
                        f"{role.capitalize()} entity in high-risk jurisdiction: "
                        f"{entity.jurisdiction}"
                    ),
                    points=20,
                    evidence={"entity_id": entity_id, "jurisdiction": entity.jurisdiction},
                ))
        return factors

    def _timing_factors(self, txn: Transaction) -> list[RiskFactor]:
        # Local time of the record's own UTC offset
        factors = []
        opening, closing = self.BUSINESS_HOURS
        hour = txn.timestamp.hour

        if hour < opening or hour >= closing:
            factors.append(RiskFactor(
                category=RiskCategory.TIMING,
                name="outside_business_hours",
                description=f"Transaction conducted outside business hours: {hour}:00",
                points=5,
            ))
        if txn.timestamp.weekday() >= 5:
            factors.append(RiskFactor(
                category=RiskCategory.TIMING,
                name="weekend",
                description="Transaction conducted on weekend",
                points=5,
            ))

        return factors

    def _narrative_factors(self, txn: Transaction) -> list[RiskFactor]:
        if not txn.description:
            return []

        factors = []
        description = str(txn.description).lower()

        vague = next((p for p in self.VAGUE_PHRASES if p in description), None)
        if vague:
            factors.append(RiskFactor(
                category=RiskCategory.NARRATIVE,
                name="vague_description",
                description=f'Vague description containing "{vague}"',
                points=10,
            ))

        keyword = next((k for k in self.SUSPICIOUS_KEYWORDS if k in description), None)
        if keyword:
            factors.append(RiskFactor(
                category=RiskCategory.NARRATIVE,
                name="suspicious_keyword",
                description=f'Suspicious keyword in description: "{keyword}"',
                points=15,
            ))

        if len(description) < 5:
            factors.append(RiskFactor(
                category=RiskCategory.NARRATIVE,
                name="short_description",
                description="Missing or extremely short description",
                points=10,
            ))

        return factors


class EntityRiskScorer:
    """
    Risk scoring for entities from their profile and transaction history.

    Factors considered:
    - Registration in a high-risk jurisdiction
    - Registration age (under six or under twelve months)
    - Number and total value of transactions
    - Share of the entity's transactions scored as high risk
    """

    BASE_SCORE = 20
    MAX_SCORE = 100

    HIGH_TRANSACTION_COUNT = 50
    HIGH_TOTAL_VALUE = Decimal(1_000_000)

    def __init__(
        self,
        high_risk_jurisdictions: Optional[Iterable[str]] = None,
        high_risk_score: float = 70,
    ):
        if not 0 < high_risk_score <= self.MAX_SCORE:
            raise ConfigurationError(
                f"high_risk_score must be in (0, {self.MAX_SCORE}], got {high_risk_score}"
            )
        self.high_risk_jurisdictions = _jurisdictions(high_risk_jurisdictions)
        self.high_risk_score = high_risk_score

    @classmethod
    def from_settings(cls, settings: Settings) -> "EntityRiskScorer":
        return cls(
            high_risk_jurisdictions=settings.high_risk_jurisdictions,
            high_risk_score=settings.risk_high_score,
        )

    def score(
        self,
        entity: Entity,
        index: TransactionIndex,
        transaction_scores: Optional[Mapping[str, float]] = None,
        as_of: Optional[datetime] = None,
    ) -> RiskScore:
        """
        Score one entity.

        Args:
            entity: Entity to score
            index: Transaction index holding the entity's history
            transaction_scores: Transaction id -> risk score
            as_of: Reference instant for registration age (now if None)

        Returns:
            RiskScore
        """
        as_of = as_of or utcnow()
        factors = []

        if entity.jurisdiction.strip().casefold() in self.high_risk_jurisdictions:
            factors.append(RiskFactor(
                category=RiskCategory.GEOGRAPHIC,
                name="high_risk_jurisdiction",
                description=f"Registered in high-risk jurisdiction: {entity.jurisdiction}",
                points=25,
                evidence={"jurisdiction": entity.jurisdiction},
            ))

        age_factor = self._age_factor(entity, as_of)
        if age_factor:
            factors.append(age_factor)

        history = index.outgoing(entity.id) + index.incoming(entity.id)
        factors.extend(self._history_factors(history, transaction_scores or {}))

        return _finish(entity.id, self.BASE_SCORE, factors, self.MAX_SCORE)

    def score_all(
        self,
        graph: EntityGraph,
        index: TransactionIndex,
        transaction_scores: Optional[Mapping[str, float]] = None,
        as_of: Optional[datetime] = None,
    ) -> list[RiskScore]:
        """Score every entity in the graph, highest score first."""
        as_of = as_of or utcnow()
        scores = [
            self.score(entity, index, transaction_scores, as_of)
            for entity in graph.entities.values()
        ]
        logger.debug("entity_risk: %d entities scored", len(scores))
        return _sorted(scores)

    def _age_factor(self, entity: Entity, as_of: datetime) -> Optional[RiskFactor]:
        registered = entity.registration_date
        if registered is None:
            return None

        # Calendar months, ignoring the day of month
        months = (as_of.year - registered.year) * 12 + (as_of.month - registered.month)
        if months < 6:
            return RiskFactor(
                category=RiskCategory.ENTITY,
                name="recently_registered",
                description="Recently registered entity (less than 6 months old)",
                points=15,
                evidence={"age_months": months},
            )
        elif months < 12:
            return RiskFactor(
                category=RiskCategory.ENTITY,
                name="relatively_new",
                description="Relatively new entity (less than 1 year old)",
                points=10,
                evidence={"age_months": months},
            )
        return None

    def _history_factors(
        self,
        history: tuple[Transaction, ...],
        transaction_scores: Mapping[str, float],
    ) -> list[RiskFactor]:
        factors = []
        if not history:
            return factors

        if len(history) > self.HIGH_TRANSACTION_COUNT:
            factors.append(RiskFactor(
                category=RiskCategory.BEHAVIORAL,
                name="high_transaction_count",
                description=f"High transaction volume: {len(history)} transactions",
                points=10,
                evidence={"transaction_count": len(history)},
            ))

        total = sum((t.amount for t in history), Decimal(0))
        if total > self.HIGH_TOTAL_VALUE:
            factors.append(RiskFactor(
                category=RiskCategory.BEHAVIORAL,
                name="high_total_value",
                description=f"High total transaction value: {total}",
                points=15,
                evidence={"total_value": str(total)},
            ))

        risky = sum(
            1 for t in history if transaction_scores.get(t.id, 0) > self.high_risk_score
        )
        percentage = risky / len(history) * 100
        if percentage > 30:
            factors.append(RiskFactor(
                category=RiskCategory.BEHAVIORAL,
                name="high_risk_transaction_share",
                description=f"High percentage of risky transactions: {percentage:.1f}%",
                points=20,
                evidence={"percentage": percentage},
            ))
        elif percentage > 10:
            factors.append(RiskFactor(
                category=RiskCategory.BEHAVIORAL,
                name="moderate_risk_transaction_share",
                description=f"Moderate percentage of risky transactions: {percentage:.1f}%",
                points=10,
                evidence={"percentage": percentage},
            ))

        return factors

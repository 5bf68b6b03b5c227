"""
Data model for AML typology detection.

Transactions, entities and relationships arrive from an external data layer
either as these dataclasses or as plain mappings (snake_case or camelCase
keys). The coerce_* helpers normalize both shapes and return None for records
that cannot take part in detection, so a malformed record never aborts a
batch.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)

# Decimal exponent bound for non-zero amounts
AMOUNT_MAX_EXPONENT = 18


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_id(prefix: str) -> str:
    """Generate a short identifier such as PTN-1f3a9c0b2d4e."""
    return f"{prefix}-{uuid4().hex[:12]}"


class RiskLevel(str, Enum):
    """Ordered risk classification: low < medium < high < critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    @property
    def is_elevated(self) -> bool:
        """High or critical."""
        return self.rank >= _RISK_RANK[RiskLevel.HIGH]

    @classmethod
    def parse(cls, value: Any) -> Optional["RiskLevel"]:
        """Parse a risk level case-insensitively, None if unknown."""
        if isinstance(value, RiskLevel):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None

    @classmethod
    def from_score(cls, score: float) -> "RiskLevel":
        """Classify a 0-100 risk score."""
        if score >= 85:
            return cls.CRITICAL
        elif score >= 70:
            return cls.HIGH
        elif score >= 40:
            return cls.MEDIUM
        return cls.LOW


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


@dataclass(frozen=True)
class Transaction:
    """A transfer of funds between two entities."""

    id: str
    source_entity_id: str
    destination_entity_id: str
    amount: Decimal
    timestamp: datetime
    transaction_type: str = ""
    category: str = ""
    currency: str = "USD"
    description: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_entity_id": self.source_entity_id,
            "destination_entity_id": self.destination_entity_id,
            "amount": str(self.amount),
            "timestamp": self.timestamp.isoformat(),
            "transaction_type": self.transaction_type,
            "category": self.category,
            "currency": self.currency,
            "description": self.description,
        }


@dataclass(frozen=True)
class Entity:
    """A person or organization taking part in transactions."""

    id: str
    name: str
    entity_type: str = "company"
    jurisdiction: str = ""
    registration_date: Optional[datetime] = None
    risk_level: RiskLevel = RiskLevel.LOW
    risk_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "entity_type": self.entity_type,
            "jurisdiction": self.jurisdiction,
            "registration_date": (
                self.registration_date.isoformat() if self.registration_date else None
            ),
            "risk_level": self.risk_level.value,
            "risk_score": self.risk_score,
        }


@dataclass(frozen=True)
class EntityRelationship:
    """A relationship from one entity to another (ownership, directorship...)."""

    source_entity_id: str
    target_entity_id: str
    relationship_type: str = "associated"
    strength: float = 1.0
    id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_entity_id": self.source_entity_id,
            "target_entity_id": self.target_entity_id,
            "relationship_type": self.relationship_type,
            "strength": self.strength,
        }


@dataclass
class DetectedPattern:
    """A named finding produced by one detector for one analysis call."""

    pattern_type: str
    name: str
    description: str
    risk_level: RiskLevel
    transactions: tuple[Transaction, ...] = ()

    # Distinct chains (transaction ids) behind the finding
    chains: tuple[tuple[str, ...], ...] = ()

    details: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: generate_id("PTN"))
    detected_at: datetime = field(default_factory=utcnow)

    @property
    def transaction_ids(self) -> list[str]:
        return [t.id for t in self.transactions]

    @property
    def entity_ids(self) -> list[str]:
        seen: dict[str, None] = {}
        for txn in self.transactions:
            seen.setdefault(txn.source_entity_id)
            seen.setdefault(txn.destination_entity_id)
        return list(seen)

    @property
    def is_empty(self) -> bool:
        return not self.transactions

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for the reporting layer."""
        return {
            "id": self.id,
            "pattern_type": self.pattern_type,
            "name": self.name,
            "description": self.description,
            "risk_level": self.risk_level.value,
            "entity_ids": self.entity_ids,
            "transaction_ids": self.transaction_ids,
            "chains": [list(c) for c in self.chains],
            "details": self.details,
            "detected_at": self.detected_at.isoformat(),
        }


# Record coercion

def _get(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def parse_identifier(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_amount(value: Any) -> Optional[Decimal]:
    """
    Parse a non-negative, finite amount.

    Non-zero amounts must lie within 10**-18 and 10**19 so that ratios
    between any two amounts stay inside the decimal context.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not amount.is_finite() or amount < 0:
        return None
    if amount == 0:
        return amount if amount.as_tuple().exponent == 0 else Decimal(0)
    if not -AMOUNT_MAX_EXPONENT <= amount.adjusted() <= AMOUNT_MAX_EXPONENT:
        return None
    return amount


def parse_instant(value: Any) -> Optional[datetime]:
    """
    Parse a timestamp into an aware datetime.

    Accepts datetime, date, ISO-8601 strings (a trailing Z is allowed) and
    epoch seconds. Naive values are taken to be UTC.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        instant = value
    elif isinstance(value, date):
        instant = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            instant = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant


def _parse_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _normalized(raw: Any, required: dict[str, Any], optional: Optional[dict[str, Any]] = None):
    """
    Apply parsed field values to a dataclass record.

    Returns None when a required value failed to parse, the record itself
    when nothing changed, and an updated copy otherwise.
    """
    if any(v is None for v in required.values()):
        return None
    changes = {
        k: v for k, v in {**required, **(optional or {})}.items()
        if type(v) is not type(getattr(raw, k)) or v != getattr(raw, k)
    }
    return replace(raw, **changes) if changes else raw


def coerce_transaction(raw: Any) -> Optional[Transaction]:
    """Normalize a transaction record, None if it cannot be analyzed."""
    if isinstance(raw, Transaction):
        normalized = {
            "id": parse_identifier(raw.id),
            "source_entity_id": parse_identifier(raw.source_entity_id),
            "destination_entity_id": parse_identifier(raw.destination_entity_id),
            "amount": parse_amount(raw.amount),
            "timestamp": parse_instant(raw.timestamp),
        }
        return _normalized(raw, normalized)

    if not isinstance(raw, Mapping):
        return None

    txn_id = parse_identifier(_get(raw, "id"))
    source = parse_identifier(_get(raw, "source_entity_id", "sourceEntityId"))
    destination = parse_identifier(
        _get(raw, "destination_entity_id", "destinationEntityId")
    )
    amount = parse_amount(_get(raw, "amount"))
    timestamp = parse_instant(_get(raw, "timestamp"))

    if None in (txn_id, source, destination, amount, timestamp):
        return None

    return Transaction(
        id=txn_id,
        source_entity_id=source,
        destination_entity_id=destination,
        amount=amount,
        timestamp=timestamp,
        transaction_type=str(_get(raw, "transaction_type", "type") or ""),
        category=str(_get(raw, "category") or ""),
        currency=str(_get(raw, "currency") or "USD"),
        description=_get(raw, "description"),
    )


def coerce_entity(raw: Any) -> Optional[Entity]:
    """Normalize an entity record, None if it cannot be analyzed."""
    if isinstance(raw, Entity):
        entity = _normalized(raw, {
            "id": parse_identifier(raw.id),
            "risk_level": RiskLevel.parse(raw.risk_level),
            "risk_score": _parse_float(raw.risk_score),
        })
        if entity is None:
            return None
        registration_date = parse_instant(entity.registration_date)
        if registration_date is entity.registration_date:
            return entity
        return replace(entity, registration_date=registration_date)

    if not isinstance(raw, Mapping):
        return None

    entity_id = parse_identifier(_get(raw, "id"))
    if entity_id is None:
        return None

    raw_level = _get(raw, "risk_level", "riskLevel")
    risk_level = RiskLevel.LOW if raw_level is None else RiskLevel.parse(raw_level)
    raw_score = _get(raw, "risk_score", "riskScore")
    risk_score = 0.0 if raw_score is None else _parse_float(raw_score)
    if risk_level is None or risk_score is None:
        return None

    return Entity(
        id=entity_id,
        name=str(_get(raw, "name") or ""),
        entity_type=str(_get(raw, "entity_type", "type") or "company"),
        jurisdiction=str(_get(raw, "jurisdiction") or ""),
        registration_date=parse_instant(
            _get(raw, "registration_date", "registrationDate")
        ),
        risk_level=risk_level,
        risk_score=risk_score,
    )


def coerce_relationship(raw: Any) -> Optional[EntityRelationship]:
    """Normalize a relationship record, None if it cannot be analyzed."""
    if isinstance(raw, EntityRelationship):
        return _normalized(
            raw,
            {
                "source_entity_id": parse_identifier(raw.source_entity_id),
                "target_entity_id": parse_identifier(raw.target_entity_id),
                "strength": _parse_float(raw.strength),
            },
            optional={"id": parse_identifier(raw.id)},
        )

    if not isinstance(raw, Mapping):
        return None

    source = parse_identifier(_get(raw, "source_entity_id", "sourceEntityId"))
    target = parse_identifier(_get(raw, "target_entity_id", "targetEntityId"))
    raw_strength = _get(raw, "strength")
    strength = 1.0 if raw_strength is None else _parse_float(raw_strength)
    if source is None or target is None or strength is None:
        return None

    return EntityRelationship(
        source_entity_id=source,
        target_entity_id=target,
        relationship_type=str(
            _get(raw, "relationship_type", "relationshipType") or "associated"
        ),
        strength=strength,
        id=parse_identifier(_get(raw, "id")),
    )

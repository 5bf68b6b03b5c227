"""
Pytest configuration and shared fixtures for amlscope tests.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count
from typing import Callable

import pytest

from amlscope.config import Settings
from amlscope.entities.graph import EntityGraph
from amlscope.fincrime.models import Entity, EntityRelationship, RiskLevel, Transaction

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def base_time() -> datetime:
    return BASE_TIME


@pytest.fixture
def settings() -> Settings:
    """Default settings, independent of the process environment."""
    return Settings(_env_file=None)


@pytest.fixture
def make_transaction() -> Callable[..., Transaction]:
    """Factory for transactions; hours are offsets from BASE_TIME."""
    ids = count(1)

    def _make(source: str, destination: str, amount, hours: float = 0, txn_id: str = None):
        return Transaction(
            id=txn_id or f"TX-{next(ids):04d}",
            source_entity_id=source,
            destination_entity_id=destination,
            amount=Decimal(str(amount)),
            timestamp=BASE_TIME + timedelta(hours=hours),
            transaction_type="transfer",
            category="wire",
        )

    return _make


@pytest.fixture
def make_entity() -> Callable[..., Entity]:
    """Factory for established, low-risk entities unless overridden."""

    def _make(entity_id: str, **overrides):
        fields = {
            "id": entity_id,
            "name": f"Entity {entity_id}",
            "entity_type": "company",
            "jurisdiction": "Sweden",
            "registration_date": BASE_TIME - timedelta(days=5 * 365),
            "risk_level": RiskLevel.LOW,
            "risk_score": 10.0,
        }
        fields.update(overrides)
        return Entity(**fields)

    return _make


@pytest.fixture
def structuring_transactions(make_transaction) -> list[Transaction]:
    """Three deposits into one account just under 10,000 within a day."""
    return [
        make_transaction("SRC-1", "ACC-1", "9500", hours=0),
        make_transaction("SRC-2", "ACC-1", "9800", hours=6),
        make_transaction("SRC-3", "ACC-1", "9200", hours=20),
    ]


@pytest.fixture
def layering_transactions(make_transaction) -> list[Transaction]:
    """A -> B -> C -> D with similar amounts one hour apart."""
    return [
        make_transaction("A", "B", "10000", hours=0, txn_id="L-1"),
        make_transaction("B", "C", "9800", hours=1, txn_id="L-2"),
        make_transaction("C", "D", "10100", hours=2, txn_id="L-3"),
    ]


@pytest.fixture
def shell_network(make_entity) -> tuple[list[Entity], list[EntityRelationship]]:
    """
    One shell-like entity SHELL: Panama, registered two months ago,
    five outgoing and one incoming relationship, rated high.
    """
    entities = [
        make_entity(
            "SHELL",
            jurisdiction="Panama",
            registration_date=BASE_TIME - timedelta(days=60),
            risk_level=RiskLevel.HIGH,
            risk_score=75.0,
        ),
        *[make_entity(f"SUB-{i}") for i in range(5)],
        make_entity("PARENT"),
    ]
    relationships = [
        EntityRelationship("SHELL", f"SUB-{i}", "owner", 0.9) for i in range(5)
    ]
    relationships.append(EntityRelationship("PARENT", "SHELL", "owner", 1.0))
    return entities, relationships


@pytest.fixture
def shell_graph(shell_network) -> EntityGraph:
    entities, relationships = shell_network
    return EntityGraph.build(entities, relationships)

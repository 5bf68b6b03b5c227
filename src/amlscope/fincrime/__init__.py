"""
Financial crime detection module for amlscope.

Provides:
- Transaction, entity and relationship data model
- Transaction index shared by the detectors
- AML transaction pattern detection (structuring, round-tripping, layering)
"""

from amlscope.fincrime.aml_patterns import (
    AMLPattern,
    AMLPatternDetector,
    LayeringDetector,
    RoundTripDetector,
    StructuringDetector,
)
from amlscope.fincrime.index import TransactionIndex
from amlscope.fincrime.models import (
    DetectedPattern,
    Entity,
    EntityRelationship,
    RiskLevel,
    Transaction,
)

__all__ = [
    # AML Patterns
    "AMLPattern",
    "AMLPatternDetector",
    "LayeringDetector",
    "RoundTripDetector",
    "StructuringDetector",
    # Index
    "TransactionIndex",
    # Models
    "DetectedPattern",
    "Entity",
    "EntityRelationship",
    "RiskLevel",
    "Transaction",
]

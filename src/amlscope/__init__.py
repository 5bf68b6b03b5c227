"""
amlscope - AML typology detection engine

Analyzes an in-memory snapshot of transactions, entities and entity
relationships and flags:
- Structuring just below reporting thresholds
- Round-tripping of funds back to their origin
- Layering chains of near-constant value transfers
- Shell companies, risky sub-networks and central entities
"""

__version__ = "0.1.0"

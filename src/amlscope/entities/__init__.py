"""
Entity network analysis for amlscope.

Provides:
- Entity graph construction from relationships
- Shell company scoring
- Risky sub-network ranking and degree centrality
- Circular ownership detection
"""

from amlscope.entities.graph import EntityGraph
from amlscope.entities.network import (
    CentralityRanker,
    CentralityScore,
    CircularOwnershipDetector,
    EntityNetworkAnalysis,
    EntityNetworkAnalyzer,
    NetworkComponentFinder,
    NetworkRisk,
    OwnershipCycle,
    ShellCompanyAssessment,
    ShellCompanyScorer,
)

__all__ = [
    "EntityGraph",
    "CentralityRanker",
    "CentralityScore",
    "CircularOwnershipDetector",
    "EntityNetworkAnalysis",
    "EntityNetworkAnalyzer",
    "NetworkComponentFinder",
    "NetworkRisk",
    "OwnershipCycle",
    "ShellCompanyAssessment",
    "ShellCompanyScorer",
]

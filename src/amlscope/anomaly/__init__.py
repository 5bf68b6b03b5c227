"""
Anomaly detection module for amlscope.

Provides:
- Per-entity behaviour anomalies (velocity, volume, fan-in/fan-out,
  round amounts, high-risk connections)
- Combined anomaly score per entity
"""

from amlscope.anomaly.entity_anomalies import (
    Anomaly,
    AnomalyType,
    EntityAnomalyDetector,
    EntityAnomalyScore,
)

__all__ = [
    "Anomaly",
    "AnomalyType",
    "EntityAnomalyDetector",
    "EntityAnomalyScore",
]

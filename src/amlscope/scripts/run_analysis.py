#!/usr/bin/env python3
"""
Run AML typology detection on a JSON snapshot.

The input file holds one object with three arrays:

    {"transactions": [...], "entities": [...], "relationships": [...]}

Usage:
    python -m amlscope.scripts.run_analysis data/snapshot.json
    python -m amlscope.scripts.run_analysis data/snapshot.json -o report.json --top 5
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from amlscope.config import ConfigurationError, get_settings
from amlscope.engine import AnalysisEngine, AnalysisReport

logger = logging.getLogger(__name__)


def load_snapshot(path: Path) -> dict:
    """Load and shape-check the input snapshot."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError("snapshot must be a JSON object")
    for key in ("transactions", "entities", "relationships"):
        if not isinstance(data.get(key, []), list):
            raise ValueError(f"'{key}' must be a list")
    return data


def print_report(report: AnalysisReport, top: int) -> None:
    print("=" * 70)
    print("AML TYPOLOGY ANALYSIS")
    print("=" * 70)

    for key, value in report.summary().items():
        print(f"  {key.replace('_', ' '):32} {value}")

    if report.patterns:
        print("\nDetected patterns:")
        for pattern in report.patterns:
            print(
                f"  [{pattern.risk_level.value.upper()}] {pattern.name}: "
                f"{len(pattern.transactions)} transactions, "
                f"{len(pattern.entity_ids)} entities"
            )

    if report.shell_companies:
        print("\nShell company candidates:")
        for assessment in report.shell_companies[:top]:
            print(
                f"  {assessment.entity.name or assessment.entity.id} "
                f"(score {assessment.score}): {', '.join(assessment.indicators)}"
            )

    if report.risky_networks:
        print("\nHighest risk networks:")
        for i, network in enumerate(report.risky_networks[:top], 1):
            print(
                f"  {i}. {network.size} entities, risk {network.network_risk:.1f} "
                f"({network.high_risk_percentage:.0f}% high risk)"
            )

    if report.centrality:
        print("\nMost connected entities:")
        for score in report.centrality[:top]:
            print(f"  {score.entity.name or score.entity.id}: {score.score}")

    risky_entities = [s for s in report.entity_risk if s.risk_level.is_elevated]
    if risky_entities:
        print("\nHighest risk entities:")
        for score in risky_entities[:top]:
            print(
                f"  {score.subject_id}: {score.score:.0f} ({score.risk_level.value}) "
                f"{', '.join(score.factor_names)}"
            )

    if report.anomalies:
        print("\nBehaviour anomalies:")
        for result in report.anomalies[:top]:
            print(
                f"  {result.entity.name or result.entity.id} "
                f"(score {result.anomaly_score:.1f}): {len(result.anomalies)} anomalies"
            )

    if report.circular_ownership:
        print("\nCircular ownership:")
        for cycle in report.circular_ownership[:top]:
            print(f"  {' -> '.join(cycle.entity_ids + cycle.entity_ids[:1])}")


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Detect AML typologies in a JSON snapshot")
    parser.add_argument("input", type=Path, help="Snapshot JSON file")
    parser.add_argument("-o", "--output", type=Path, help="Write the full report as JSON")
    parser.add_argument("--top", type=int, default=10, help="Rows shown per section")
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Error: invalid configuration\n{e}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        snapshot = load_snapshot(args.input)
    except (OSError, ValueError) as e:
        print(f"Error: cannot read {args.input}: {e}", file=sys.stderr)
        return 1

    try:
        engine = AnalysisEngine(settings)
    except ConfigurationError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1

    report = engine.analyze(
        snapshot.get("transactions", []),
        snapshot.get("entities", []),
        snapshot.get("relationships", []),
    )
    print_report(report, args.top)

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(report.to_dict(), f, indent=2, default=str)
        print(f"\nDetailed results saved to: {args.output}")

    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Tests for rule-based transaction and entity risk scoring.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from amlscope.config import ConfigurationError
from amlscope.entities.graph import EntityGraph
from amlscope.fincrime.index import TransactionIndex
from amlscope.fincrime.models import RiskLevel
from amlscope.fincrime.risk_scoring import EntityRiskScorer, TransactionRiskScorer


@pytest.fixture
def risky_source_graph(make_entity, base_time):
    """SRC: Panama, registered a month ago, risk score 80. DST: established."""
    return EntityGraph.build(
        [
            make_entity(
                "SRC",
                jurisdiction="Panama",
                registration_date=base_time - timedelta(days=30),
                risk_score=80.0,
            ),
            make_entity("DST"),
        ],
        [],
    )


class TestTransactionRiskScorer:
    """Tests for transaction risk scoring."""

    def test_plain_transaction_scores_base(self, make_transaction):
        score = TransactionRiskScorer().score(make_transaction("A", "B", "500"))

        assert score.score == 20
        assert score.risk_level == RiskLevel.LOW
        assert score.factors == []

    def test_amount_just_below_threshold(self, make_transaction):
        score = TransactionRiskScorer().score(make_transaction("A", "B", "9500"))

        assert score.factor_names == ["below_reporting_threshold"]
        assert score.score == 40
        assert score.risk_level == RiskLevel.MEDIUM

    def test_large_round_amount(self, make_transaction):
        """Points grow with the excess over the threshold."""
        score = TransactionRiskScorer().score(make_transaction("A", "B", "25000"))

        assert score.factor_names == ["large_amount", "round_amount"]
        assert score.score == 31.5

    def test_large_amount_points_are_capped(self, make_transaction):
        score = TransactionRiskScorer().score(make_transaction("A", "B", "200000"))

        assert score.factors[0].points == 15
        assert score.score == 40

    def test_counterparty_factors(self, make_transaction, risky_source_graph):
        txn = make_transaction("SRC", "DST", "500")
        index = TransactionIndex.build([txn])

        score = TransactionRiskScorer().score(txn, risky_source_graph, index)

        assert score.factor_names == [
            "new_entity",
            "high_risk_source",
            "first_transaction",
            "source_high_risk_jurisdiction",
        ]
        assert score.score == 80
        assert score.risk_level == RiskLevel.HIGH

    def test_counterparty_factors_need_graph(self, make_transaction):
        """Without the entity graph only transaction fields are scored."""
        score = TransactionRiskScorer().score(make_transaction("SRC", "DST", "500"))

        assert score.score == 20

    def test_repeat_transaction_is_not_first_contact(self, make_transaction):
        first = make_transaction("A", "B", "500", hours=0)
        second = make_transaction("A", "B", "500", hours=1)
        index = TransactionIndex.build([first, second])
        scorer = TransactionRiskScorer()

        assert scorer.score(first, index=index).factor_names == ["first_transaction"]
        assert scorer.score(second, index=index).factor_names == []

    def test_weekend_night_transaction(self, make_transaction):
        """Saturday 00:00 is both outside business hours and on a weekend."""
        score = TransactionRiskScorer().score(make_transaction("A", "B", "500", hours=12))

        assert score.factor_names == ["outside_business_hours", "weekend"]
        assert score.score == 30

    def test_closing_hour_is_outside_business_hours(self, make_transaction):
        score = TransactionRiskScorer().score(make_transaction("A", "B", "500", hours=10))

        assert score.factor_names == ["outside_business_hours"]

    def test_narrative_factors(self, make_transaction):
        txn = replace(make_transaction("A", "B", "500"), description="Urgent consulting fees")

        score = TransactionRiskScorer().score(txn)

        assert score.factor_names == ["vague_description", "suspicious_keyword"]
        assert score.score == 45

    def test_short_description(self, make_transaction):
        scorer = TransactionRiskScorer()
        txn = make_transaction("A", "B", "500")

        assert scorer.score(replace(txn, description="x")).factor_names == ["short_description"]
        assert scorer.score(replace(txn, description="")).factors == []

    def test_product_factors_are_case_insensitive(self, make_transaction):
        txn = replace(
            make_transaction("A", "B", "500"),
            category="Cross_Border",
            transaction_type="EXCHANGE",
        )

        score = TransactionRiskScorer().score(txn)

        assert score.factor_names == ["cross_border", "exchange"]
        assert score.score == 40

    def test_score_is_capped(self, make_transaction, risky_source_graph):
        txn = replace(make_transaction("SRC", "DST", "9500"), description="urgent")

        score = TransactionRiskScorer().score(txn, risky_source_graph)

        assert score.score == 100
        assert score.risk_level == RiskLevel.CRITICAL

    def test_score_all_sorted(self, make_transaction):
        """Highest score first, ties broken by transaction id."""
        index = TransactionIndex.build([
            make_transaction("A", "B", "500", hours=0, txn_id="T1"),
            make_transaction("A", "B", "500", hours=1, txn_id="T2"),
            make_transaction("C", "D", "9500", hours=2, txn_id="T3"),
        ])

        scores = TransactionRiskScorer().score_all(index)

        assert [s.subject_id for s in scores] == ["T3", "T1", "T2"]
        assert [s.score for s in scores] == [50, 30, 20]

    def test_to_dict(self, make_transaction):
        data = TransactionRiskScorer().score(make_transaction("A", "B", "9500")).to_dict()

        assert data["risk_level"] == "medium"
        assert data["factors"][0]["category"] == "amount"
        assert data["factors"][0]["evidence"] == {"amount": "9500", "threshold": "10000"}

    def test_rejects_invalid_configuration(self):
        with pytest.raises(ConfigurationError):
            TransactionRiskScorer(threshold=1000, buffer=1000)
        with pytest.raises(ConfigurationError):
            TransactionRiskScorer(new_entity_period=timedelta(0))

    def test_from_settings(self, settings):
        scorer = TransactionRiskScorer.from_settings(settings)

        assert scorer.threshold == Decimal("10000")
        assert scorer.new_entity_period == timedelta(days=180)
        assert "panama" in scorer.high_risk_jurisdictions


class TestEntityRiskScorer:
    """Tests for entity risk scoring."""

    def test_established_entity_scores_base(self, make_entity, base_time):
        score = EntityRiskScorer().score(
            make_entity("E"), TransactionIndex.build([]), as_of=base_time
        )

        assert score.score == 20
        assert score.risk_level == RiskLevel.LOW

    def test_new_entity_in_high_risk_jurisdiction(self, make_entity, base_time):
        entity = make_entity(
            "E", jurisdiction="panama", registration_date=base_time - timedelta(days=60)
        )

        score = EntityRiskScorer().score(entity, TransactionIndex.build([]), as_of=base_time)

        assert score.factor_names == ["high_risk_jurisdiction", "recently_registered"]
        assert score.score == 60
        assert score.risk_level == RiskLevel.MEDIUM

    def test_relatively_new_entity(self, make_entity, base_time):
        """Age is counted in calendar months."""
        entity = make_entity(
            "E", registration_date=datetime(2023, 6, 28, tzinfo=timezone.utc)
        )

        score = EntityRiskScorer().score(entity, TransactionIndex.build([]), as_of=base_time)

        assert score.factor_names == ["relatively_new"]
        assert score.factors[0].evidence == {"age_months": 9}

    def test_unknown_registration_date(self, make_entity, base_time):
        entity = make_entity("E", registration_date=None)

        score = EntityRiskScorer().score(entity, TransactionIndex.build([]), as_of=base_time)

        assert score.factors == []

    def test_high_transaction_count(self, make_entity, make_transaction, base_time):
        index = TransactionIndex.build(
            [make_transaction("E", f"C-{i}", "100", hours=i) for i in range(51)]
        )

        score = EntityRiskScorer().score(make_entity("E"), index, as_of=base_time)

        assert score.factor_names == ["high_transaction_count"]

    def test_high_total_value(self, make_entity, make_transaction, base_time):
        """Incoming and outgoing transactions both count."""
        index = TransactionIndex.build([
            make_transaction("X", "E", "600000", hours=0),
            make_transaction("E", "Y", "500000", hours=1),
        ])

        score = EntityRiskScorer().score(make_entity("E"), index, as_of=base_time)

        assert score.factor_names == ["high_total_value"]
        assert score.score == 35

    def test_high_risk_transaction_share(self, make_entity, make_transaction, base_time):
        index = TransactionIndex.build([
            make_transaction("E", "B", "100", hours=i, txn_id=f"T{i}") for i in range(3)
        ])

        score = EntityRiskScorer().score(
            make_entity("E"), index, {"T0": 75, "T1": 20, "T2": 20}, base_time
        )

        assert score.factor_names == ["high_risk_transaction_share"]
        assert score.score == 40

    def test_moderate_risk_transaction_share(self, make_entity, make_transaction, base_time):
        """Scores equal to the high-risk score do not count as risky."""
        index = TransactionIndex.build([
            make_transaction("E", "B", "100", hours=i, txn_id=f"T{i}") for i in range(10)
        ])
        scores = {"T0": 90, "T1": 71, "T2": 70}

        score = EntityRiskScorer().score(make_entity("E"), index, scores, base_time)

        assert score.factor_names == ["moderate_risk_transaction_share"]
        assert score.factors[0].evidence == {"percentage": 20.0}

    def test_score_all_sorted(self, shell_graph, base_time):
        scores = EntityRiskScorer().score_all(
            shell_graph, TransactionIndex.build([]), as_of=base_time
        )

        assert scores[0].subject_id == "SHELL"
        assert scores[0].score == 60
        assert [s.subject_id for s in scores[1:]] == [
            "PARENT", "SUB-0", "SUB-1", "SUB-2", "SUB-3", "SUB-4",
        ]

    def test_rejects_invalid_configuration(self):
        with pytest.raises(ConfigurationError):
            EntityRiskScorer(high_risk_score=0)
        with pytest.raises(ConfigurationError):
            EntityRiskScorer(high_risk_score=150)

    def test_from_settings(self, settings):
        scorer = EntityRiskScorer.from_settings(settings)

        assert scorer.high_risk_score == 70
        assert "panama" in scorer.high_risk_jurisdictions

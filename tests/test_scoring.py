"""
Tests for confidence scoring and candidate ranking.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from fleet_recon.models import EnergyType, FinancialTransaction, VehicleRefueling
from fleet_recon.reconciliation.scoring import ConfidenceScorer

from conftest import BASE_TIME


def make_transaction(quantity="50.000", transaction_date=BASE_TIME):
    return FinancialTransaction(
        id=1,
        transaction_date=transaction_date,
        quantity=Decimal(quantity) if quantity is not None else None,
    )


def make_refueling(id_, minutes=0, volume="50.00"):
    return VehicleRefueling(
        id=id_,
        refueling_date=BASE_TIME + timedelta(minutes=minutes),
        volume_liters=Decimal(volume) if volume is not None else None,
    )


class TestScoreFormula:
    """Tests for the score formula."""

    @pytest.fixture
    def scorer(self, settings):
        return ConfidenceScorer(settings=settings)

    def test_perfect_match(self, scorer):
        assert scorer.score(BASE_TIME, 50, BASE_TIME, 50) == 100.0

    def test_window_edge_costs_thirty(self, scorer):
        assert scorer.score(BASE_TIME, 50, BASE_TIME + timedelta(minutes=120), 50) == 70.0

    def test_time_penalty_is_symmetric(self, scorer):
        before = scorer.score(BASE_TIME, 50, BASE_TIME - timedelta(minutes=30), 50)
        after = scorer.score(BASE_TIME, 50, BASE_TIME + timedelta(minutes=30), 50)
        assert before == after == 92.5

    def test_quantity_penalty_capped(self, scorer):
        # 200% off still only costs 40
        assert scorer.score(BASE_TIME, 50, BASE_TIME, 150) == 60.0

    def test_never_negative(self, scorer):
        assert scorer.score(BASE_TIME, 50, BASE_TIME + timedelta(minutes=500), 500) == 0.0

    def test_scenario_a(self, scorer):
        candidate = scorer.score_candidate(
            make_transaction("50.000"),
            make_refueling(7, minutes=5, volume="49.50"),
            EnergyType.FUEL,
        )

        assert candidate.time_penalty == pytest.approx(1.25)
        assert candidate.quantity_penalty == pytest.approx(1.0)
        assert candidate.confidence == 97.75
        assert scorer.is_acceptable(candidate)

    @pytest.mark.parametrize("quantity", [None, "0", "-5"])
    def test_unusable_transaction_quantity_takes_full_penalty(self, scorer, quantity):
        candidate = scorer.score_candidate(
            make_transaction(quantity), make_refueling(1), EnergyType.FUEL
        )

        assert candidate.quantity_penalty == 40.0
        assert candidate.quantity_diff_percent is None
        assert candidate.confidence == 60.0

    def test_missing_event_quantity_takes_full_penalty(self, scorer):
        penalty, diff = scorer.quantity_penalty(Decimal("50"), None)
        assert penalty == 40.0
        assert diff is None

    def test_threshold_is_inclusive(self, scorer):
        candidate = scorer.score_candidate(
            make_transaction(), make_refueling(1, minutes=120, volume="45.00"), EnergyType.FUEL
        )
        # 30 time + 10 quantity
        assert candidate.confidence == 60.0
        assert scorer.is_acceptable(candidate)

    def test_match_details(self, scorer):
        candidate = scorer.score_candidate(
            make_transaction(), make_refueling(3, minutes=5, volume="49.50"), EnergyType.FUEL
        )
        details = candidate.match_details()

        assert details["time_diff_seconds"] == 300.0
        assert details["quantity_diff_percent"] == 1.0
        assert details["matched_by"] == "auto"
        assert details["energy_type"] == "fuel"
        assert details["event_type"] == "vehicle_refuelings"
        assert details["event_id"] == 3


class TestRanking:
    """Tests for ordering and thresholding."""

    @pytest.fixture
    def scorer(self, settings):
        return ConfidenceScorer(settings=settings)

    def test_best_score_first(self, scorer):
        candidates = [
            make_refueling(1, minutes=60),
            make_refueling(2, minutes=5),
            make_refueling(3, minutes=-20),
        ]
        ranked = scorer.rank(make_transaction(), candidates, EnergyType.FUEL)
        assert [c.event_id for c in ranked] == [2, 3, 1]

    def test_tie_broken_by_time_then_id(self, scorer):
        # Same score: 10 minutes away with exact volume vs exact time with
        # 2.5% volume difference
        candidates = [
            make_refueling(5, minutes=0, volume="51.25"),
            make_refueling(4, minutes=10),
            make_refueling(9, minutes=-10),
        ]
        ranked = scorer.score_all(make_transaction(), candidates, EnergyType.FUEL)

        assert [c.confidence for c in ranked] == [97.5, 97.5, 97.5]
        assert [c.event_id for c in ranked] == [5, 4, 9]

    def test_below_threshold_rejected(self, scorer):
        candidates = [make_refueling(1, minutes=110, volume="80.00")]

        assert scorer.rank(make_transaction(), candidates, EnergyType.FUEL) == []
        assert scorer.select_best(make_transaction(), candidates, EnergyType.FUEL) is None

    def test_select_best(self, scorer):
        candidates = [make_refueling(1, minutes=90), make_refueling(2, minutes=1)]
        best = scorer.select_best(make_transaction(), candidates, EnergyType.FUEL)
        assert best.event_id == 2

    def test_custom_threshold(self, settings):
        settings.min_match_confidence = 99.0
        scorer = ConfidenceScorer(settings=settings)

        candidates = [make_refueling(1, minutes=5)]
        assert scorer.rank(make_transaction(), candidates, EnergyType.FUEL) == []

"""
Confidence Scorer - scores telemetry candidates against a transaction.

Score (0-100, two decimals):
    100
    - (time_diff_minutes / window_minutes) * max_time_penalty
    - min(quantity_diff_percent, max_quantity_penalty)
floored at 0.

A match is accepted only at or above min_match_confidence. Equal scores are
broken by the smallest time difference, then the lowest event id.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple, Union

import structlog

from ..config import Settings, get_settings
from ..models import EnergyType, FinancialTransaction, ScoredCandidate

logger = structlog.get_logger()

Number = Union[int, float, Decimal]


def _as_float(value: Optional[Number]) -> Optional[float]:
    return float(value) if value is not None else None


class ConfidenceScorer:
    """Scores and ranks candidate events."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.threshold = self.settings.min_match_confidence

    def quantity_penalty(
        self,
        transaction_quantity: Optional[Number],
        event_quantity: Optional[Number],
    ) -> Tuple[float, Optional[float]]:
        """
        Penalty for the quantity difference, capped.

        Returns (penalty, difference percent). A missing or non-positive
        transaction quantity, or a missing event quantity, takes the full
        penalty with no percent.
        """
        cap = self.settings.max_quantity_penalty
        tx_qty = _as_float(transaction_quantity)
        ev_qty = _as_float(event_quantity)

        if tx_qty is None or tx_qty <= 0 or ev_qty is None:
            return cap, None

        diff_percent = abs(ev_qty - tx_qty) / tx_qty * 100
        return min(diff_percent, cap), diff_percent

    def score(
        self,
        transaction_date: datetime,
        transaction_quantity: Optional[Number],
        event_timestamp: datetime,
        event_quantity: Optional[Number],
    ) -> float:
        """Confidence score for one transaction/event pair."""
        time_diff_minutes = abs((event_timestamp - transaction_date).total_seconds()) / 60.0
        time_penalty = self.settings.time_penalty(time_diff_minutes)
        quantity_penalty, _ = self.quantity_penalty(transaction_quantity, event_quantity)
        return round(max(100.0 - time_penalty - quantity_penalty, 0.0), 2)

    def score_candidate(
        self,
        transaction: FinancialTransaction,
        event,
        energy_type: EnergyType,
    ) -> ScoredCandidate:
        """Score an event and keep the breakdown for match metadata."""
        time_diff_seconds = abs(
            (event.event_timestamp - transaction.transaction_date).total_seconds()
        )
        time_penalty = self.settings.time_penalty(time_diff_seconds / 60.0)
        quantity_penalty, diff_percent = self.quantity_penalty(
            transaction.quantity, event.quantity
        )
        confidence = round(max(100.0 - time_penalty - quantity_penalty, 0.0), 2)

        return ScoredCandidate(
            event=event,
            energy_type=energy_type,
            confidence=confidence,
            time_diff_seconds=time_diff_seconds,
            quantity_diff_percent=diff_percent,
            time_penalty=time_penalty,
            quantity_penalty=quantity_penalty,
        )

    def is_acceptable(self, candidate: ScoredCandidate) -> bool:
        return candidate.confidence >= self.threshold

    def score_all(
        self,
        transaction: FinancialTransaction,
        candidates: Sequence,
        energy_type: EnergyType,
    ) -> List[ScoredCandidate]:
        """
        Score every candidate, best first.

        Order: confidence desc, time difference asc, event id asc.
        """
        scored = [
            self.score_candidate(transaction, event, energy_type)
            for event in candidates
        ]
        scored.sort(key=lambda c: (-c.confidence, c.time_diff_seconds, c.event_id))
        return scored

    def rank(
        self,
        transaction: FinancialTransaction,
        candidates: Sequence,
        energy_type: EnergyType,
    ) -> List[ScoredCandidate]:
        """Acceptable candidates only, best first."""
        scored = self.score_all(transaction, candidates, energy_type)
        accepted = [c for c in scored if self.is_acceptable(c)]

        if scored and not accepted:
            logger.debug(
                "All candidates below threshold",
                transaction_id=transaction.id,
                best_confidence=scored[0].confidence,
                threshold=self.threshold,
            )

        return accepted

    def select_best(
        self,
        transaction: FinancialTransaction,
        candidates: Sequence,
        energy_type: EnergyType,
    ) -> Optional[ScoredCandidate]:
        """Best acceptable candidate, or None."""
        ranked = self.rank(transaction, candidates, energy_type)
        return ranked[0] if ranked else None

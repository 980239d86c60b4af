"""Reconciliation result models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any
from uuid import uuid4

from .enums import AuditAction, EnergyType, TransactionStatus


@dataclass
class ScoredCandidate:
    """A telemetry event scored against a financial transaction."""
    event: Any  # VehicleRefueling or VehicleElectricCharge
    energy_type: EnergyType
    confidence: float = 0.0

    # Deltas
    time_diff_seconds: float = 0.0
    quantity_diff_percent: Optional[float] = None

    # Penalties
    time_penalty: float = 0.0
    quantity_penalty: float = 0.0

    @property
    def event_id(self) -> int:
        return self.event.id

    def match_details(self) -> Dict[str, Any]:
        """Diagnostic payload stored on a matched transaction."""
        return {
            "time_diff_seconds": round(self.time_diff_seconds, 2),
            "quantity_diff_percent": (
                round(self.quantity_diff_percent, 2)
                if self.quantity_diff_percent is not None else None
            ),
            "time_penalty": round(self.time_penalty, 2),
            "quantity_penalty": round(self.quantity_penalty, 2),
            "matched_by": "auto",
            "energy_type": self.energy_type.value,
            "event_type": type(self.event).__tablename__,
            "event_id": self.event_id,
        }


@dataclass
class TransactionOutcome:
    """Terminal state reached by one transaction."""
    transaction_id: int
    status: TransactionStatus
    confidence: Optional[float] = None
    event_id: Optional[int] = None
    reason: Optional[str] = None


@dataclass
class AuditEntry:
    """An entry in the audit log."""
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.utcnow)

    # Action
    action: AuditAction = AuditAction.RUN_STARTED

    # Context
    transaction_ids: List[int] = field(default_factory=list)
    event_id: Optional[int] = None

    # Details
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    # Outcome
    success: bool = True
    error_message: Optional[str] = None


@dataclass
class ReconciliationSummary:
    """Aggregate counters of a reconciliation run."""
    processed: int = 0
    matched: int = 0
    unmatched: int = 0
    ignored: int = 0

    # Performance
    processing_time_seconds: float = 0.0

    def record(self, status: TransactionStatus) -> None:
        """Count one transaction that reached a terminal state."""
        self.processed += 1
        if status == TransactionStatus.MATCHED:
            self.matched += 1
        elif status == TransactionStatus.IGNORED:
            self.ignored += 1
        else:
            self.unmatched += 1

    def merge(self, other: "ReconciliationSummary") -> "ReconciliationSummary":
        """Accumulate another run's counters into this one."""
        self.processed += other.processed
        self.matched += other.matched
        self.unmatched += other.unmatched
        self.ignored += other.ignored
        self.processing_time_seconds += other.processing_time_seconds
        return self

    @property
    def match_rate(self) -> float:
        """Percentage of processed transactions matched."""
        if self.processed == 0:
            return 0.0
        return (self.matched / self.processed) * 100

    def to_dict(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "matched": self.matched,
            "unmatched": self.unmatched,
            "ignored": self.ignored,
        }

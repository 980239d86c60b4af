"""Enumerations for the fleet reconciliation system."""

from enum import Enum


class TransactionStatus(str, Enum):
    """
    Reconciliation status of a financial transaction.

    PENDING: Imported, not yet reconciled
    MATCHED: Linked to exactly one telemetry event
    UNMATCHED: No telemetry event could be linked (see MatchReason)
    IGNORED: Product is not energy (tolls, car wash, shop...)
    """
    PENDING = "pending"
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    IGNORED = "ignored"


class EnergyType(str, Enum):
    """Energy classification of a transaction's product."""
    FUEL = "fuel"
    ELECTRIC = "electric"
    OTHER = "other"


class MatchReason(str, Enum):
    """Machine-readable reason stored on unmatched transactions."""
    VEHICLE_NOT_IDENTIFIED = "vehicle_not_identified"
    NO_TELEMETRY_FOUND = "no_telemetry_found"
    RECONCILIATION_ERROR = "reconciliation_error"


class ClassificationSource(str, Enum):
    """Where an energy type came from."""
    CATALOG = "catalog"    # Provider product catalog (authoritative)
    KEYWORD = "keyword"    # Inferred from the product name


class LinkOutcome(str, Enum):
    """Result of trying to link a transaction to a telemetry event."""
    LINKED = "linked"
    EVENT_CLAIMED = "event_claimed"              # Event already linked elsewhere
    TRANSACTION_LINKED = "transaction_linked"    # Transaction already linked


class AuditAction(str, Enum):
    """Type of audit action."""
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    TRANSACTION_IGNORED = "transaction_ignored"
    VEHICLE_NOT_IDENTIFIED = "vehicle_not_identified"
    NO_TELEMETRY_FOUND = "no_telemetry_found"
    MATCH_COMMITTED = "match_committed"
    ALREADY_LINKED = "already_linked"
    CLAIM_CONFLICT = "claim_conflict"
    RECONCILIATION_ERROR = "reconciliation_error"

"""Data models for the fleet reconciliation system."""

from .enums import (
    TransactionStatus,
    EnergyType,
    MatchReason,
    ClassificationSource,
    LinkOutcome,
    AuditAction,
)
from .entities import (
    Vehicle,
    ProductCatalogEntry,
    CardVehicleMapping,
    SyncExecution,
    FinancialTransaction,
    VehicleRefueling,
    VehicleElectricCharge,
)
from .reconciliation import (
    ScoredCandidate,
    TransactionOutcome,
    AuditEntry,
    ReconciliationSummary,
)

__all__ = [
    # Enums
    "TransactionStatus",
    "EnergyType",
    "MatchReason",
    "ClassificationSource",
    "LinkOutcome",
    "AuditAction",
    # Tables
    "Vehicle",
    "ProductCatalogEntry",
    "CardVehicleMapping",
    "SyncExecution",
    "FinancialTransaction",
    "VehicleRefueling",
    "VehicleElectricCharge",
    # Reconciliation
    "ScoredCandidate",
    "TransactionOutcome",
    "AuditEntry",
    "ReconciliationSummary",
]

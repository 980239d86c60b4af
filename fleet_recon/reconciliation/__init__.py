"""Reconciliation engine components."""

from .classifier import ProductClassifier, Classification
from .vehicle_identifier import VehicleIdentifier, create_card_mapping
from .candidates import CandidateFinder, default_telemetry_registry
from .scoring import ConfidenceScorer
from .linker import TransactionLinker
from .orchestrator import ReconciliationOrchestrator

__all__ = [
    "ProductClassifier",
    "Classification",
    "VehicleIdentifier",
    "create_card_mapping",
    "CandidateFinder",
    "default_telemetry_registry",
    "ConfidenceScorer",
    "TransactionLinker",
    "ReconciliationOrchestrator",
]

"""
Database models for fleet financial reconciliation.

Defines SQLAlchemy models for:
- Vehicle: fleet vehicles, matched by license plate
- ProductCatalogEntry: per-provider product to energy type lookup
- CardVehicleMapping: fuel card to vehicle assignments
- SyncExecution: provider sync/import runs (alerting metadata)
- FinancialTransaction: normalized card transactions
- VehicleRefueling / VehicleElectricCharge: normalized telemetry events
"""

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declared_attr, synonym

from ..database import Base
from .enums import EnergyType, TransactionStatus


class Vehicle(Base):
    """Fleet vehicle owned by a tenant."""
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    name = Column(String(200), nullable=False, default="")
    license_plate = Column(String(20), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "license_plate", name="uq_vehicles_tenant_plate"),
    )


class ProductCatalogEntry(Base):
    """
    Provider product catalog.
    Authoritative over keyword inference when an active entry exists.
    """
    __tablename__ = "product_catalog_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider_id = Column(Integer, nullable=False, index=True)
    product_code = Column(String(50), nullable=False)
    product_name = Column(String(200), nullable=False)
    energy_type = Column(String(20), nullable=False, default=EnergyType.OTHER.value)
    fuel_type = Column(String(20), nullable=True)  # only for fuel products
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint(
            "provider_id", "product_code", "product_name",
            name="uq_product_catalog_provider_code_name",
        ),
        Index("ix_product_catalog_energy_type", "energy_type"),
    )


class CardVehicleMapping(Base):
    """Fuel card assigned to a vehicle for one tenant and provider."""
    __tablename__ = "card_vehicle_mappings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False)
    provider_id = Column(Integer, nullable=False)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    card_number = Column(String(50), nullable=False, index=True)  # normalized
    alternate_plate = Column(String(20), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "provider_id", "card_number",
            name="uq_card_vehicle_tenant_provider_card",
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "provider_id": self.provider_id,
            "vehicle_id": self.vehicle_id,
            "card_number": self.card_number,
            "alternate_plate": self.alternate_plate,
            "is_active": self.is_active,
            "valid_from": self.valid_from.isoformat() if self.valid_from else None,
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
        }


class SyncExecution(Base):
    """
    A provider sync or file import run.
    Unidentified vehicles are appended to its metadata for alerting.
    """
    __tablename__ = "integration_sync_executions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    configuration_id = Column(Integer, nullable=False, index=True)
    feature_key = Column(String(50), nullable=False, default="financial_transactions")
    status = Column(String(20), nullable=False, default="running")
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    finished_at = Column(DateTime, nullable=True)
    execution_metadata = Column("metadata", JSON, nullable=False, default=dict)


class FinancialTransaction(Base):
    """
    Normalized fuel card / financial transaction.
    Created by the import pipeline, mutated only by the reconciliation engine.
    """
    __tablename__ = "financial_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Ownership
    tenant_id = Column(Integer, nullable=False)
    provider_id = Column(Integer, nullable=False)
    configuration_id = Column(Integer, nullable=False, index=True)
    sync_execution_id = Column(
        Integer, ForeignKey("integration_sync_executions.id"), nullable=True, index=True
    )
    external_id = Column(String(100), nullable=True)
    provider_slug = Column(String(50), nullable=False, default="")

    # Transaction data
    transaction_date = Column(DateTime, nullable=False)
    product_code = Column(String(50), nullable=True)
    product_name = Column(String(200), nullable=True)
    quantity = Column(Numeric(10, 3), nullable=True)  # liters or kWh
    unit_price = Column(Numeric(10, 4), nullable=True)
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")
    location_string = Column(String(255), nullable=True)

    # Vehicle identifiers (raw, as sent by the provider)
    vehicle_plate = Column(String(20), nullable=True)
    card_number = Column(String(50), nullable=True)

    # Reconciliation state
    status = Column(String(20), nullable=False, default=TransactionStatus.PENDING.value)
    match_confidence = Column(Numeric(5, 2), nullable=True)
    reconciliation_metadata = Column(JSON, nullable=False, default=dict)

    # Exclusive link to one telemetry event (mirrors the event's financial_transaction_id)
    vehicle_refueling_id = Column(Integer, nullable=True, unique=True)
    vehicle_electric_charge_id = Column(Integer, nullable=True, unique=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_fin_trans_config_status", "configuration_id", "status"),
        Index("ix_fin_trans_plate_date", "vehicle_plate", "transaction_date"),
    )

    @property
    def is_linked(self) -> bool:
        """Check if the transaction already holds a telemetry link."""
        return (
            self.vehicle_refueling_id is not None
            or self.vehicle_electric_charge_id is not None
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "external_id": self.external_id,
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "product_code": self.product_code,
            "product_name": self.product_name,
            "quantity": float(self.quantity) if self.quantity is not None else None,
            "total_amount": float(self.total_amount) if self.total_amount is not None else None,
            "currency": self.currency,
            "vehicle_plate": self.vehicle_plate,
            "card_number": self.card_number,
            "status": self.status,
            "match_confidence": (
                float(self.match_confidence) if self.match_confidence is not None else None
            ),
            "vehicle_refueling_id": self.vehicle_refueling_id,
            "vehicle_electric_charge_id": self.vehicle_electric_charge_id,
            "reconciliation_metadata": self.reconciliation_metadata,
        }


class TelemetryEventMixin:
    """
    Columns shared by telemetry event variants.

    Each variant maps its own timestamp/quantity columns onto the
    `event_timestamp` and `quantity` synonyms used by the matcher.
    """

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    odometer_km = Column(Numeric(12, 2), nullable=True)

    # Financial fields, populated on link
    cost = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    is_reconciled = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    @declared_attr
    def vehicle_id(cls):
        return Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)

    @declared_attr
    def financial_transaction_id(cls):
        return Column(
            Integer,
            ForeignKey("financial_transactions.id"),
            nullable=True,
            unique=True,
        )


class VehicleRefueling(TelemetryEventMixin, Base):
    """Refueling reported by vehicle telemetry (quantity in liters)."""
    __tablename__ = "vehicle_refuelings"

    refueling_date = Column(DateTime, nullable=False)
    volume_liters = Column(Numeric(10, 2), nullable=False)
    fuel_type = Column(String(50), nullable=True)

    event_timestamp = synonym("refueling_date")
    quantity = synonym("volume_liters")

    __table_args__ = (
        Index("ix_refuelings_vehicle_date", "vehicle_id", "refueling_date"),
    )


class VehicleElectricCharge(TelemetryEventMixin, Base):
    """Charging session reported by vehicle telemetry (quantity in kWh)."""
    __tablename__ = "vehicle_electric_charges"

    charge_start_time = Column(DateTime, nullable=False)
    charge_end_time = Column(DateTime, nullable=True)
    energy_consumed_kwh = Column(Numeric(10, 3), nullable=True)
    charge_type = Column(String(10), nullable=True)  # AC / DC

    event_timestamp = synonym("charge_start_time")
    quantity = synonym("energy_consumed_kwh")

    __table_args__ = (
        Index("ix_charges_vehicle_start", "vehicle_id", "charge_start_time"),
    )

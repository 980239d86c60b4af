"""
Candidate Finder - unreconciled telemetry events near a transaction.

A candidate is a telemetry event of the variant registered for the
transaction's energy type, belonging to the resolved vehicle, not yet
linked to any transaction, and timestamped within the matching window.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional, Type

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, get_settings
from ..models import EnergyType, VehicleElectricCharge, VehicleRefueling

logger = structlog.get_logger()


TelemetryRegistry = Mapping[EnergyType, Type]


def default_telemetry_registry() -> Dict[EnergyType, Type]:
    """Telemetry event model per reconcilable energy type."""
    return {
        EnergyType.FUEL: VehicleRefueling,
        EnergyType.ELECTRIC: VehicleElectricCharge,
    }


class CandidateFinder:
    """
    Retrieves candidate telemetry events for a vehicle.

    The window is symmetric and inclusive: card swipes and telemetry
    reports drift apart by clock skew and reporting latency.
    """

    def __init__(
        self,
        registry: Optional[TelemetryRegistry] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.registry = dict(registry) if registry is not None else default_telemetry_registry()
        self.window = timedelta(minutes=self.settings.match_window_minutes)

    def model_for(self, energy_type: EnergyType) -> Optional[Type]:
        """Telemetry model registered for an energy type (None for OTHER)."""
        return self.registry.get(energy_type)

    def time_window(self, transaction_date: datetime) -> tuple:
        """Inclusive (start, end) window around a transaction timestamp."""
        return transaction_date - self.window, transaction_date + self.window

    async def find(
        self,
        session: AsyncSession,
        vehicle_id: int,
        energy_type: EnergyType,
        transaction_date: datetime,
    ) -> List:
        """
        Find unreconciled events of the right type for a vehicle.

        Args:
            session: Open database session
            vehicle_id: Resolved vehicle
            energy_type: Classified energy type of the transaction
            transaction_date: Transaction timestamp

        Returns:
            Candidate events ordered by timestamp (possibly empty)
        """
        model = self.model_for(energy_type)
        if model is None:
            return []

        start, end = self.time_window(transaction_date)

        result = await session.execute(
            select(model)
            .where(
                model.vehicle_id == vehicle_id,
                model.financial_transaction_id.is_(None),
                model.event_timestamp >= start,
                model.event_timestamp <= end,
            )
            .order_by(model.event_timestamp, model.id)
        )
        candidates = list(result.scalars().all())

        logger.debug(
            "Candidates found",
            vehicle_id=vehicle_id,
            energy_type=energy_type.value,
            window_start=start.isoformat(),
            window_end=end.isoformat(),
            count=len(candidates),
        )
        return candidates

"""
Vehicle Identifier - resolves a financial transaction to a fleet vehicle.

Cascade (first success wins):
1. License plate, normalized, against the tenant's vehicles
2. Card number, normalized, against active card-to-vehicle mappings
3. Not found
"""

import re
from datetime import datetime
from typing import Optional, Tuple

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import CardMappingError
from ..models import CardVehicleMapping, FinancialTransaction, Vehicle

logger = structlog.get_logger()

_WHITESPACE = re.compile(r"\s+")
_CARD_SEPARATORS = re.compile(r"[\s\-]+")

IDENTIFIED_BY_PLATE = "plate"
IDENTIFIED_BY_CARD = "card"


def normalize_plate(plate: Optional[str]) -> Optional[str]:
    """Normalize a license plate: drop whitespace, uppercase."""
    if plate is None:
        return None
    normalized = _WHITESPACE.sub("", str(plate)).upper()
    return normalized or None


def normalize_card_number(card_number: Optional[str]) -> Optional[str]:
    """Normalize a card number: drop whitespace and dashes, uppercase."""
    if card_number is None:
        return None
    normalized = _CARD_SEPARATORS.sub("", str(card_number)).upper()
    return normalized or None


class VehicleIdentifier:
    """Resolves transactions to vehicles by plate, then by card mapping."""

    async def identify(
        self,
        session: AsyncSession,
        transaction: FinancialTransaction,
    ) -> Optional[Vehicle]:
        """Return the transaction's vehicle, or None if it can't be resolved."""
        resolved = await self.resolve(session, transaction)
        return resolved[0] if resolved else None

    async def resolve(
        self,
        session: AsyncSession,
        transaction: FinancialTransaction,
    ) -> Optional[Tuple[Vehicle, str]]:
        """Run the cascade and report which strategy found the vehicle."""
        if normalize_plate(transaction.vehicle_plate):
            vehicle = await self.find_by_plate(
                session, transaction.vehicle_plate, transaction.tenant_id
            )
            if vehicle is not None:
                return vehicle, IDENTIFIED_BY_PLATE

        if normalize_card_number(transaction.card_number):
            vehicle = await self.find_by_card(
                session,
                transaction.card_number,
                transaction.tenant_id,
                transaction.provider_id,
                at=transaction.transaction_date,
            )
            if vehicle is not None:
                return vehicle, IDENTIFIED_BY_CARD

        logger.debug(
            "Vehicle not identified",
            transaction_id=transaction.id,
            plate=transaction.vehicle_plate,
            card=transaction.card_number,
        )
        return None

    async def find_by_plate(
        self,
        session: AsyncSession,
        plate: str,
        tenant_id: int,
    ) -> Optional[Vehicle]:
        """Find a tenant vehicle whose normalized plate equals the given one."""
        normalized = normalize_plate(plate)
        if normalized is None:
            return None

        result = await session.execute(
            select(Vehicle)
            .where(
                Vehicle.tenant_id == tenant_id,
                func.upper(func.replace(Vehicle.license_plate, " ", "")) == normalized,
            )
            .order_by(Vehicle.id)
            .limit(1)
        )
        return result.scalars().first()

    async def find_mapping(
        self,
        session: AsyncSession,
        card_number: str,
        tenant_id: int,
        provider_id: int,
        at: Optional[datetime] = None,
    ) -> Optional[CardVehicleMapping]:
        """Find the active mapping for a card, valid at the given moment."""
        normalized = normalize_card_number(card_number)
        if normalized is None:
            return None

        at = at or datetime.utcnow()
        result = await session.execute(
            select(CardVehicleMapping)
            .where(
                CardVehicleMapping.tenant_id == tenant_id,
                CardVehicleMapping.provider_id == provider_id,
                CardVehicleMapping.card_number == normalized,
                CardVehicleMapping.is_active.is_(True),
                or_(CardVehicleMapping.valid_from.is_(None), CardVehicleMapping.valid_from <= at),
                or_(CardVehicleMapping.valid_until.is_(None), CardVehicleMapping.valid_until >= at),
            )
            .limit(1)
        )
        return result.scalars().first()

    async def find_by_card(
        self,
        session: AsyncSession,
        card_number: str,
        tenant_id: int,
        provider_id: int,
        at: Optional[datetime] = None,
    ) -> Optional[Vehicle]:
        """Find the vehicle assigned to a card."""
        mapping = await self.find_mapping(
            session, card_number, tenant_id, provider_id, at=at
        )
        if mapping is None:
            return None
        return await session.get(Vehicle, mapping.vehicle_id)


async def create_card_mapping(
    session: AsyncSession,
    tenant_id: int,
    provider_id: int,
    card_number: str,
    vehicle_id: int,
    alternate_plate: Optional[str] = None,
    valid_from: Optional[datetime] = None,
    valid_until: Optional[datetime] = None,
) -> CardVehicleMapping:
    """
    Create an active card-to-vehicle mapping.

    The card number is stored normalized. The caller owns the commit.

    Raises:
        CardMappingError: blank card, unknown vehicle, vehicle of another
            tenant, or card already mapped for the tenant and provider
    """
    normalized = normalize_card_number(card_number)
    if normalized is None:
        raise CardMappingError("card_number is required")

    vehicle = await session.get(Vehicle, vehicle_id)
    if vehicle is None:
        raise CardMappingError(f"Vehicle {vehicle_id} not found")
    if vehicle.tenant_id != tenant_id:
        raise CardMappingError("Vehicle must belong to the same tenant")

    if valid_from and valid_until and valid_until < valid_from:
        raise CardMappingError("valid_until must not be earlier than valid_from")

    existing = await session.execute(
        select(CardVehicleMapping.id).where(
            CardVehicleMapping.tenant_id == tenant_id,
            CardVehicleMapping.provider_id == provider_id,
            CardVehicleMapping.card_number == normalized,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise CardMappingError("Card already mapped for this tenant and provider")

    mapping = CardVehicleMapping(
        tenant_id=tenant_id,
        provider_id=provider_id,
        vehicle_id=vehicle_id,
        card_number=normalized,
        alternate_plate=normalize_plate(alternate_plate),
        is_active=True,
        valid_from=valid_from,
        valid_until=valid_until,
    )
    session.add(mapping)
    await session.flush()

    logger.info(
        "Card mapping created",
        mapping_id=mapping.id,
        tenant_id=tenant_id,
        provider_id=provider_id,
        vehicle_id=vehicle_id,
    )
    return mapping

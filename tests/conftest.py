"""
Shared fixtures: in-memory database and a small fleet data factory.
"""

from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from fleet_recon.config import Settings
from fleet_recon.database import build_session_factory, init_db
from fleet_recon.models import (
    CardVehicleMapping,
    FinancialTransaction,
    ProductCatalogEntry,
    SyncExecution,
    Vehicle,
    VehicleElectricCharge,
    VehicleRefueling,
)

TENANT_ID = 1
PROVIDER_ID = 10
CONFIGURATION_ID = 100

# All timestamps are naive UTC
BASE_TIME = datetime(2024, 3, 15, 10, 0, 0)


@pytest.fixture
def settings(tmp_path):
    """Default matching parameters, isolated from any local .env."""
    return Settings(_env_file=None, reports_dir=tmp_path / "reports")


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


class FleetFactory:
    """Inserts rows in their own committed sessions."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _add(self, obj):
        async with self.session_factory() as session:
            session.add(obj)
            await session.commit()
        return obj

    async def vehicle(self, license_plate="AB-123CD", tenant_id=TENANT_ID, **kwargs):
        return await self._add(
            Vehicle(tenant_id=tenant_id, license_plate=license_plate, name=kwargs.pop("name", "Van"), **kwargs)
        )

    async def catalog_entry(self, product_code, product_name, energy_type, provider_id=PROVIDER_ID, **kwargs):
        return await self._add(
            ProductCatalogEntry(
                provider_id=provider_id,
                product_code=product_code,
                product_name=product_name,
                energy_type=energy_type,
                **kwargs,
            )
        )

    async def card_mapping(self, card_number, vehicle_id, tenant_id=TENANT_ID, provider_id=PROVIDER_ID, **kwargs):
        return await self._add(
            CardVehicleMapping(
                tenant_id=tenant_id,
                provider_id=provider_id,
                card_number=card_number,
                vehicle_id=vehicle_id,
                **kwargs,
            )
        )

    async def sync_execution(self, configuration_id=CONFIGURATION_ID, **kwargs):
        return await self._add(SyncExecution(configuration_id=configuration_id, **kwargs))

    async def transaction(
        self,
        product_name="Diesel",
        quantity="50.000",
        transaction_date=BASE_TIME,
        vehicle_plate="AB-123CD",
        card_number=None,
        configuration_id=CONFIGURATION_ID,
        **kwargs,
    ):
        return await self._add(
            FinancialTransaction(
                tenant_id=kwargs.pop("tenant_id", TENANT_ID),
                provider_id=kwargs.pop("provider_id", PROVIDER_ID),
                configuration_id=configuration_id,
                transaction_date=transaction_date,
                product_code=kwargs.pop("product_code", None),
                product_name=product_name,
                quantity=Decimal(quantity) if quantity is not None else None,
                total_amount=kwargs.pop("total_amount", Decimal("82.50")),
                vehicle_plate=vehicle_plate,
                card_number=card_number,
                **kwargs,
            )
        )

    async def refueling(self, vehicle_id, refueling_date=BASE_TIME, volume_liters="50.00", **kwargs):
        return await self._add(
            VehicleRefueling(
                tenant_id=kwargs.pop("tenant_id", TENANT_ID),
                vehicle_id=vehicle_id,
                refueling_date=refueling_date,
                volume_liters=Decimal(volume_liters),
                **kwargs,
            )
        )

    async def charge(self, vehicle_id, charge_start_time=BASE_TIME, energy_consumed_kwh="40.000", **kwargs):
        return await self._add(
            VehicleElectricCharge(
                tenant_id=kwargs.pop("tenant_id", TENANT_ID),
                vehicle_id=vehicle_id,
                charge_start_time=charge_start_time,
                energy_consumed_kwh=(
                    Decimal(energy_consumed_kwh) if energy_consumed_kwh is not None else None
                ),
                **kwargs,
            )
        )

    async def get(self, model, id_):
        """Fresh copy of a row, read in a new session."""
        async with self.session_factory() as session:
            return await session.get(model, id_)


@pytest.fixture
def fleet(session_factory):
    return FleetFactory(session_factory)

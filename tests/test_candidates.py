"""
Tests for candidate retrieval.
"""

from datetime import timedelta

import pytest

from fleet_recon.models import EnergyType, VehicleElectricCharge, VehicleRefueling
from fleet_recon.reconciliation.candidates import CandidateFinder, default_telemetry_registry

from conftest import BASE_TIME


class TestCandidateFinder:
    """Tests for the windowed telemetry search."""

    @pytest.fixture
    def finder(self, settings):
        return CandidateFinder(settings=settings)

    def test_registry(self, finder):
        assert finder.model_for(EnergyType.FUEL) is VehicleRefueling
        assert finder.model_for(EnergyType.ELECTRIC) is VehicleElectricCharge
        assert finder.model_for(EnergyType.OTHER) is None

    def test_window_bounds(self, finder):
        start, end = finder.time_window(BASE_TIME)
        assert start == BASE_TIME - timedelta(hours=2)
        assert end == BASE_TIME + timedelta(hours=2)

    @pytest.mark.asyncio
    async def test_window_is_inclusive(self, finder, session_factory, fleet):
        vehicle = await fleet.vehicle()
        edge_before = await fleet.refueling(vehicle.id, refueling_date=BASE_TIME - timedelta(minutes=120))
        edge_after = await fleet.refueling(vehicle.id, refueling_date=BASE_TIME + timedelta(minutes=120))
        await fleet.refueling(vehicle.id, refueling_date=BASE_TIME + timedelta(minutes=121))

        async with session_factory() as session:
            found = await finder.find(session, vehicle.id, EnergyType.FUEL, BASE_TIME)

        assert [e.id for e in found] == [edge_before.id, edge_after.id]

    @pytest.mark.asyncio
    async def test_excludes_linked_events(self, finder, session_factory, fleet):
        vehicle = await fleet.vehicle()
        linked_to = await fleet.transaction()
        await fleet.refueling(vehicle.id, financial_transaction_id=linked_to.id)
        free = await fleet.refueling(vehicle.id, refueling_date=BASE_TIME + timedelta(minutes=3))

        async with session_factory() as session:
            found = await finder.find(session, vehicle.id, EnergyType.FUEL, BASE_TIME)

        assert [e.id for e in found] == [free.id]

    @pytest.mark.asyncio
    async def test_only_registered_variant_and_vehicle(self, finder, session_factory, fleet):
        vehicle = await fleet.vehicle()
        other = await fleet.vehicle(license_plate="ZZ-999ZZ")
        await fleet.refueling(vehicle.id)
        await fleet.refueling(other.id)
        charge = await fleet.charge(vehicle.id)

        async with session_factory() as session:
            electric = await finder.find(session, vehicle.id, EnergyType.ELECTRIC, BASE_TIME)
            nothing = await finder.find(session, vehicle.id, EnergyType.OTHER, BASE_TIME)

        assert [e.id for e in electric] == [charge.id]
        assert nothing == []

    @pytest.mark.asyncio
    async def test_custom_registry(self, settings, session_factory, fleet):
        vehicle = await fleet.vehicle()
        await fleet.refueling(vehicle.id)
        finder = CandidateFinder(
            registry={EnergyType.ELECTRIC: VehicleElectricCharge},
            settings=settings,
        )

        async with session_factory() as session:
            assert await finder.find(session, vehicle.id, EnergyType.FUEL, BASE_TIME) == []

        assert EnergyType.FUEL in default_telemetry_registry()

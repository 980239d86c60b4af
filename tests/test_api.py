"""
Tests for the HTTP API.
"""

from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from fleet_recon.main import create_app
from fleet_recon.models import CardVehicleMapping, TransactionStatus, FinancialTransaction

from conftest import BASE_TIME, CONFIGURATION_ID, PROVIDER_ID, TENANT_ID


class TestAPI:
    """Endpoint tests over an in-memory database."""

    @pytest.fixture
    async def client(self, session_factory, settings):
        app = create_app(session_factory=session_factory, settings=settings)
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_run_reconciliation(self, client, fleet):
        vehicle = await fleet.vehicle()
        await fleet.transaction()
        await fleet.transaction(product_name="Peaje")
        await fleet.refueling(vehicle.id)

        response = await client.post(
            "/api/reconciliation/run", json={"configuration_id": CONFIGURATION_ID}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["reconciliation"] == {"processed": 2, "matched": 1, "unmatched": 0, "ignored": 1}
        assert body["match_rate"] == 50.0

    @pytest.mark.asyncio
    async def test_reconcile_transactions(self, client, fleet):
        first = await fleet.transaction(product_name="Peaje")
        second = await fleet.transaction(product_name="Peaje", configuration_id=CONFIGURATION_ID + 1)

        response = await client.post(
            "/api/financial-transactions/reconcile",
            json={"transaction_ids": [first.id, second.id]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["summary"] == "Processed 2 transactions across 2 configurations"
        assert body["reconciliation"]["ignored"] == 2

        stored = await fleet.get(FinancialTransaction, second.id)
        assert stored.status == TransactionStatus.IGNORED.value

    @pytest.mark.asyncio
    async def test_reconcile_unknown_transactions(self, client):
        response = await client.post(
            "/api/financial-transactions/reconcile", json={"transaction_ids": [999]}
        )

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "no_transactions_found"

    @pytest.mark.asyncio
    async def test_reconcile_requires_ids(self, client):
        response = await client.post(
            "/api/financial-transactions/reconcile", json={"transaction_ids": []}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_create_card_mapping(self, client, fleet):
        vehicle = await fleet.vehicle()

        response = await client.post("/api/card-mappings", json={
            "tenant_id": TENANT_ID,
            "provider_id": PROVIDER_ID,
            "card_number": "7078 0000 1111",
            "vehicle_id": vehicle.id,
        })

        assert response.status_code == 201
        body = response.json()
        assert body["card_number"] == "707800001111"

        stored = await fleet.get(CardVehicleMapping, body["id"])
        assert stored.vehicle_id == vehicle.id

    @pytest.mark.asyncio
    async def test_create_card_mapping_invalid(self, client):
        response = await client.post("/api/card-mappings", json={
            "tenant_id": TENANT_ID,
            "provider_id": PROVIDER_ID,
            "card_number": "1234",
            "vehicle_id": 999,
        })

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_card_mapping"

    @pytest.mark.asyncio
    async def test_list_transactions_paginated(self, client, fleet):
        for minutes in range(3):
            await fleet.transaction(transaction_date=BASE_TIME + timedelta(minutes=minutes))

        response = await client.get("/api/financial-transactions", params={"per_page": 2})

        assert response.status_code == 200
        body = response.json()
        assert body["meta"] == {"current_page": 1, "per_page": 2, "total_count": 3, "total_pages": 2}
        dates = [t["transaction_date"] for t in body["data"]]
        assert dates == [
            (BASE_TIME + timedelta(minutes=2)).isoformat(),
            (BASE_TIME + timedelta(minutes=1)).isoformat(),
        ]

        response = await client.get(
            "/api/financial-transactions", params={"per_page": 2, "page": 2}
        )
        assert len(response.json()["data"]) == 1

    @pytest.mark.asyncio
    async def test_list_transactions_filters(self, client, fleet):
        await fleet.transaction(product_name="Peaje")
        await client.post("/api/reconciliation/run", json={"configuration_id": CONFIGURATION_ID})
        pending = await fleet.transaction(
            vehicle_plate="ZZ-999ZZ",
            provider_slug="solred",
            transaction_date=BASE_TIME + timedelta(days=2),
        )

        response = await client.get(
            "/api/financial-transactions",
            params={"status": [TransactionStatus.IGNORED.value]},
        )
        body = response.json()
        assert body["meta"]["total_count"] == 1
        assert body["data"][0]["status"] == TransactionStatus.IGNORED.value

        for params in (
            {"provider_slug": "solred"},
            {"vehicle_plate": "ZZ-999ZZ"},
            {"start_date": (BASE_TIME + timedelta(days=1)).date().isoformat()},
            {"end_date": (BASE_TIME + timedelta(days=2)).date().isoformat(), "status": "pending"},
        ):
            response = await client.get("/api/financial-transactions", params=params)
            assert [t["id"] for t in response.json()["data"]] == [pending.id]

        response = await client.get(
            "/api/financial-transactions",
            params={"end_date": (BASE_TIME + timedelta(days=1)).date().isoformat()},
        )
        assert pending.id not in [t["id"] for t in response.json()["data"]]

    @pytest.mark.asyncio
    async def test_get_transaction(self, client, fleet):
        vehicle = await fleet.vehicle()
        transaction = await fleet.transaction()
        event = await fleet.refueling(vehicle.id)
        await client.post("/api/reconciliation/run", json={"configuration_id": CONFIGURATION_ID})

        response = await client.get(f"/api/financial-transactions/{transaction.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == TransactionStatus.MATCHED.value
        assert body["vehicle_refueling_id"] == event.id
        assert body["total_amount"] == 82.5
        assert body["reconciliation_metadata"]["vehicle_id"] == vehicle.id

    @pytest.mark.asyncio
    async def test_get_transaction_not_found(self, client):
        response = await client.get("/api/financial-transactions/999")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"

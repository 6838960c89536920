"""
Tests degli endpoint HTTP.

L'app viene esercitata con httpx.AsyncClient su ASGITransport; la
dependency get_db è sostituita con sessioni sul database di test.
"""

import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.core.database import get_db
from app.main import app


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def budget_payload():
    def _payload(unit_price: str = "1000.00") -> dict:
        return {
            "customer_id": str(uuid.uuid4()),
            "vehicle_id": str(uuid.uuid4()),
            "items": [
                {
                    "item_type": "service",
                    "description": "Tagliando completo",
                    "quantity": "1",
                    "unit_price": unit_price,
                }
            ],
        }

    return _payload


async def approved_budget(client: AsyncClient, payload: dict) -> str:
    response = await client.post("/api/v1/budgets/", json=payload)
    assert response.status_code == 201
    budget_id = response.json()["id"]
    for status in ("quoted", "approved"):
        response = await client.patch(f"/api/v1/budgets/{budget_id}/status", json={"status": status})
        assert response.status_code == 200
    return budget_id


# ============================================================
# Tests per sistema e preventivi
# ============================================================


class TestBudgetEndpoints:
    """Creazione, stato e anteprima."""

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_create_budget(self, client, budget_payload):
        response = await client.post("/api/v1/budgets/", json=budget_payload("199.90"))

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "draft"
        assert data["total_cost"] == "199.90"
        assert len(data["items"]) == 1

    async def test_budget_not_found_payload(self, client):
        response = await client.get(f"/api/v1/budgets/{uuid.uuid4()}")

        assert response.status_code == 404
        data = response.json()
        assert data["error_code"] == "RESOURCE_NOT_FOUND"
        assert data["title"] == "Risorsa non trovata"
        assert data["severity"] == "error"

    async def test_invalid_transition(self, client, budget_payload):
        response = await client.post("/api/v1/budgets/", json=budget_payload())
        budget_id = response.json()["id"]

        response = await client.patch(
            f"/api/v1/budgets/{budget_id}/status", json={"status": "approved"}
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "BUSINESS_VALIDATION_ERROR"

    async def test_allocation_preview(self, client, budget_payload):
        budget_id = await approved_budget(client, budget_payload())

        response = await client.post(
            f"/api/v1/budgets/{budget_id}/allocation-preview",
            json={
                "discount_type": "percentage",
                "discount_value": "10",
                "payment_amounts": ["500"],
                "installment_values": ["399.90"],
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["net"] == "900.00"
        assert data["remaining"] == "0.10"
        assert data["balanced"] is False

    async def test_readiness(self, client, budget_payload):
        response = await client.post("/api/v1/budgets/", json=budget_payload())
        budget_id = response.json()["id"]

        response = await client.get(f"/api/v1/budgets/{budget_id}/readiness")

        assert response.status_code == 200
        assert response.json()["ready"] is False


# ============================================================
# Tests per conversione e annullamento
# ============================================================


class TestConversionEndpoints:
    """Flusso completo via HTTP."""

    async def test_convert_settle_and_cancel(self, client, budget_payload, cash_account):
        budget_id = await approved_budget(client, budget_payload())

        response = await client.post(
            f"/api/v1/budgets/{budget_id}/convert",
            json={
                "payment_lines": [
                    {
                        "method": "boleto",
                        "status": "pending",
                        "amount": "1000.00",
                    }
                ]
            },
        )
        assert response.status_code == 201
        conversion = response.json()
        assert conversion["display_number"] == "000001"
        order_id = conversion["order_id"]

        response = await client.get(f"/api/v1/service-orders/{order_id}")
        assert response.status_code == 200
        assert response.json()["display_number"] == "000001"

        response = await client.get(f"/api/v1/service-orders/{order_id}/transactions")
        transactions = response.json()
        assert [t["status"] for t in transactions] == ["pending"]

        response = await client.get(f"/api/v1/budgets/{budget_id}")
        assert response.json()["status"] == "converted"

        response = await client.post(
            f"/api/v1/service-orders/{order_id}/cancel",
            json={"reason": "Cliente ha rinunciato"},
        )
        assert response.status_code == 200
        assert response.json()["voided_transactions"] == 1

        response = await client.get(f"/api/v1/budgets/{budget_id}")
        assert response.json()["status"] == "approved"
        assert response.json()["service_order_id"] is None

    async def test_second_conversion_conflict(self, client, budget_payload, cash_account):
        budget_id = await approved_budget(client, budget_payload())
        body = {
            "payment_lines": [
                {
                    "method": "pix",
                    "status": "paid",
                    "account_id": str(cash_account.id),
                    "amount": "1000.00",
                }
            ]
        }

        first = await client.post(f"/api/v1/budgets/{budget_id}/convert", json=body)
        second = await client.post(f"/api/v1/budgets/{budget_id}/convert", json=body)

        assert first.status_code == 201
        assert second.status_code == 409
        assert second.json()["error_code"] == "ALREADY_CONVERTED"
        assert second.json()["severity"] == "warning"

    async def test_unbalanced_conversion(self, client, budget_payload, cash_account):
        budget_id = await approved_budget(client, budget_payload())

        response = await client.post(
            f"/api/v1/budgets/{budget_id}/convert",
            json={
                "payment_lines": [
                    {
                        "method": "pix",
                        "account_id": str(cash_account.id),
                        "amount": "900.00",
                    }
                ]
            },
        )

        assert response.status_code == 422
        data = response.json()
        assert data["error_code"] == "UNBALANCED_ALLOCATION"
        assert data["title"] == "Valori divergenti"
        assert data["extra"]["difference"] == "100.00"

    async def test_paid_line_without_account(self, client, budget_payload):
        budget_id = await approved_budget(client, budget_payload())

        response = await client.post(
            f"/api/v1/budgets/{budget_id}/convert",
            json={"payment_lines": [{"method": "pix", "amount": "1000.00"}]},
        )

        assert response.status_code == 422

    async def test_cancel_with_settled_payment(self, client, budget_payload, cash_account):
        budget_id = await approved_budget(client, budget_payload())
        response = await client.post(
            f"/api/v1/budgets/{budget_id}/convert",
            json={
                "payment_lines": [
                    {"method": "cash", "account_id": str(cash_account.id), "amount": "1000.00"}
                ]
            },
        )
        order_id = response.json()["order_id"]

        response = await client.post(
            f"/api/v1/service-orders/{order_id}/cancel",
            json={"reason": "Cliente ha rinunciato"},
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "HAS_SETTLED_PAYMENTS"

    async def test_list_accounts(self, client, cash_account, bank_account):
        response = await client.get("/api/v1/accounts")

        assert response.status_code == 200
        assert [a["name"] for a in response.json()] == ["Cassa", "Conto corrente"]

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from settlement.api import create_app

from conftest import CUSTOMER_ID, OPTION_3M_ID, PANEL, RESELLER_ID


@pytest.fixture
def client(coordinator, settings) -> TestClient:
    return TestClient(create_app(coordinator=coordinator, settings=settings))


class TestSettlementEndpoints:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_recharge(self, client):
        response = client.post("/settlements", json={
            "kind": "recharge",
            "customer_id": str(CUSTOMER_ID),
            "recharge_option_id": str(OPTION_3M_ID),
        })

        assert response.status_code == 201
        body = response.json()
        assert body["workflow"] == "recharge"
        assert body["credits"] == 6
        assert Decimal(body["amount_charged"]) == Decimal("85.00")

    def test_reseller_purchase(self, client):
        response = client.post("/settlements", json={
            "kind": "reseller_purchase",
            "reseller_id": str(RESELLER_ID),
            "panel_name": PANEL,
            "quantity": 50,
        })

        assert response.status_code == 201
        body = response.json()
        assert Decimal(body["price_per_credit"]) == Decimal("0.80")
        assert Decimal(body["total"]) == Decimal("40.00")

    def test_recharge_requires_option_or_duration(self, client):
        response = client.post("/settlements", json={"kind": "recharge", "customer_id": str(CUSTOMER_ID)})

        assert response.status_code == 422

    def test_below_minimum_redemption(self, client):
        response = client.post("/settlements", json={
            "kind": "commission_redemption",
            "customer_id": str(CUSTOMER_ID),
            "redemption_kind": "to_cash",
            "amount": "49.99",
        })

        assert response.status_code == 400

    def test_below_minimum_reseller_quantity(self, client):
        response = client.post("/settlements", json={
            "kind": "reseller_purchase",
            "reseller_id": str(RESELLER_ID),
            "panel_name": PANEL,
            "quantity": 3,
        })

        assert response.status_code == 400
        assert "10" in response.json()["detail"]

    def test_step_failure_reports_step(self, client, storage, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("cash ledger offline")

        monkeypatch.setattr(storage, "append_cash_entry", boom)

        response = client.post("/settlements", json={
            "kind": "recharge",
            "customer_id": str(CUSTOMER_ID),
            "recharge_option_id": str(OPTION_3M_ID),
        })

        assert response.status_code == 502
        body = response.json()
        assert body["step_index"] == 3
        assert body["stage"] == 3
        assert body["step"] == "record_cash_inflow"
        assert body["completed_steps"] == ["allocate_credits", "extend_subscriptions"]

        failed = client.get("/settlements/failed").json()
        assert [r["id"] for r in failed] == [body["settlement_id"]]
        record = client.get(f"/settlements/{body['settlement_id']}").json()
        assert record["status"] == "failed"

    def test_redemption_failure_reports_stage(self, client, storage, monkeypatch):
        def offline(*args, **kwargs):
            raise RuntimeError("commission store offline")

        monkeypatch.setattr(storage, "decrement_commission", offline)

        response = client.post("/settlements", json={
            "kind": "commission_redemption",
            "customer_id": str(CUSTOMER_ID),
            "redemption_kind": "to_cash",
            "amount": "50.00",
        })

        assert response.status_code == 502
        assert response.json()["step_index"] == 2
        assert response.json()["stage"] == 3

    def test_unknown_settlement(self, client):
        response = client.get("/settlements/00000000-0000-0000-0000-000000000000")

        assert response.status_code == 404


class TestPricingEndpoints:

    def test_overlapping_band(self, client):
        response = client.post(f"/panels/{PANEL}/pricing-bands/validate", json={
            "panel_name": PANEL, "min_quantity": 40, "max_quantity": 100, "price_per_credit": "0.90",
        })

        assert response.status_code == 409

    def test_non_overlapping_band(self, client):
        response = client.post("/panels/Blade/pricing-bands/validate", json={
            "panel_name": "Blade", "min_quantity": 10, "max_quantity": None, "price_per_credit": "1.20",
        })

        assert response.status_code == 200
        assert response.json()["valid"] is True

    def test_minimum_quantity(self, client):
        assert client.get(f"/panels/{PANEL}/minimum-quantity").json()["minimum_quantity"] == 10
        assert client.get("/panels/Blade/minimum-quantity").status_code == 404

    def test_quote(self, client):
        response = client.get(f"/panels/{PANEL}/quote", params={"quantity": 49})

        assert response.status_code == 200
        assert Decimal(response.json()["total"]) == Decimal("49.00")

    def test_commission_balance(self, client):
        response = client.get(f"/customers/{CUSTOMER_ID}/commission")

        assert Decimal(response.json()["total_commission"]) == Decimal("1000.00")


class TestWithdrawalEndpoints:

    def request_withdrawal(self, client, **overrides):
        payload = {"customer_id": str(CUSTOMER_ID), "amount": "60.00", "pix_key": "ana@example.com"}
        payload.update(overrides)
        return client.post("/withdrawals", json=payload)

    def test_request_and_list_pending(self, client):
        response = self.request_withdrawal(client)

        assert response.status_code == 201
        assert response.json()["status"] == "pending"
        pending = client.get("/withdrawals/pending").json()
        assert [w["id"] for w in pending] == [response.json()["id"]]

    def test_request_below_minimum(self, client):
        assert self.request_withdrawal(client, amount="49.99").status_code == 400

    def test_approve(self, client):
        withdrawal_id = self.request_withdrawal(client).json()["id"]

        response = client.post(f"/withdrawals/{withdrawal_id}/approve", json={"admin_notes": "pago"})

        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        balance = client.get(f"/customers/{CUSTOMER_ID}/commission").json()
        assert Decimal(balance["total_commission"]) == Decimal("940.00")
        assert client.get("/withdrawals/pending").json() == []

    def test_approve_without_body_uses_requested_key(self, client):
        withdrawal_id = self.request_withdrawal(client).json()["id"]

        response = client.post(f"/withdrawals/{withdrawal_id}/approve")

        assert response.status_code == 200
        assert response.json()["pix_key"] == "ana@example.com"

    def test_cancel(self, client):
        withdrawal_id = self.request_withdrawal(client).json()["id"]

        assert client.post(f"/withdrawals/{withdrawal_id}/cancel", json={}).status_code == 400

        response = client.post(f"/withdrawals/{withdrawal_id}/cancel", json={"admin_notes": "duplicado"})

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert client.post(f"/withdrawals/{withdrawal_id}/approve").status_code == 400

    def test_unknown_withdrawal(self, client):
        response = client.post("/withdrawals/00000000-0000-0000-0000-000000000000/approve")

        assert response.status_code == 404


class TestAppFactory:

    def test_importing_module_builds_no_app(self):
        import settlement.api

        assert not hasattr(settlement.api, "app")

    def test_factory_builds_its_own_coordinator(self, settings):
        app = create_app(settings=settings)

        assert app.state.coordinator.settings == settings
        assert app.state.coordinator.storage.customers == {}
        assert TestClient(app).get("/health").status_code == 200

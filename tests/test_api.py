"""
HTTP surface: envelopes, error mapping, and the settlement flows end to end.
"""

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from erp_engine.core.config import settings
from erp_engine.main import create_app

pytestmark = pytest.mark.api

API = settings.API_V1_STR


def po_body(**overrides):
    body = {
        "supplier_id": 1,
        "lines": [{"item_code": "WIDGET-01", "item_name": "Widget", "quantity": "10", "unit_price": "10"}],
    }
    body.update(overrides)
    return body


def test_health(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert "running" in resp.json()["message"]


class TestEnvelope:
    def test_create_po(self, client):
        resp = client.post(f"{API}/purchase-orders", json=po_body())
        assert resp.status_code == 201
        body = resp.json()
        assert body["ok"] is True
        assert body["data"]["po_number"] == "PO-000001"
        assert body["data"]["total_amount"] == 100.0
        assert body["data"]["created_by"] == 7
        assert [e["name"] for e in body["meta"]["side_effects"]] == ["audit"]

    def test_list(self, client):
        client.post(f"{API}/purchase-orders", json=po_body())
        body = client.get(f"{API}/purchase-orders", params={"status": "DRAFT"}).json()
        assert body["ok"] is True
        assert len(body["data"]) == 1

    def test_not_found(self, client):
        resp = client.get(f"{API}/purchase-orders/999")
        assert resp.status_code == 404
        error = resp.json()["error"]
        assert (error["kind"], error["code"]) == ("NOT_FOUND", "NOT_FOUND")
        assert resp.json()["ok"] is False

    def test_invalid_status(self, client):
        po_id = client.post(f"{API}/purchase-orders", json=po_body()).json()["data"]["id"]
        resp = client.patch(f"{API}/purchase-orders/{po_id}/status", json={"status": "SHIPPED"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_STATUS"

    def test_request_validation(self, client):
        resp = client.post(f"{API}/purchase-orders", json={"lines": []})
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["kind"] == "VALIDATION"
        assert any(d["loc"][-1] == "supplier_id" for d in error["details"])

    def test_duplicate_is_conflict(self, client):
        client.post(f"{API}/purchase-orders", json=po_body(po_number="PO-MANUAL-1"))
        resp = client.post(f"{API}/purchase-orders", json=po_body(po_number="PO-MANUAL-1"))
        assert resp.status_code == 409
        assert resp.json()["error"]["kind"] == "CONFLICT"


class TestProcurementFlow:
    def test_receive_and_rollup(self, client, database):
        po = client.post(f"{API}/purchase-orders", json=po_body()).json()["data"]
        client.patch(f"{API}/purchase-orders/{po['id']}/status", json={"status": "released"})

        resp = client.post(f"{API}/receipts", json={
            "po_id": po["id"],
            "lines": [{"po_line_id": po["lines"][0]["line_id"], "quantity_received": "10"}],
        })
        assert resp.status_code == 201
        assert resp.json()["data"]["total_amount"] == 100.0

        rolled = client.post(f"{API}/purchase-orders/{po['id']}/rollup").json()["data"]
        assert rolled == {"id": po["id"], "status": "CLOSED"}
        po = client.get(f"{API}/purchase-orders/{po['id']}").json()["data"]
        assert po["amount_received"] == 100.0

    def test_agreement_and_po_lines(self, client):
        agreement = client.post(f"{API}/agreements", json={"supplier_id": 1}).json()["data"]
        resp = client.post(f"{API}/agreements/{agreement['id']}/lines", json={
            "item_code": "WIDGET-01", "quantity": "5", "unit_price": "8", "max_quantity": "50",
        })
        assert resp.status_code == 201
        line = resp.json()["data"]
        assert (line["line_number"], line["line_amount"], line["max_quantity"]) == (1, 40.0, 50.0)

        lines = client.get(f"{API}/agreements/{agreement['id']}/lines").json()["data"]
        assert [li["line_id"] for li in lines] == [line["line_id"]]
        assert client.get(f"{API}/agreements/{agreement['id']}").json()["data"]["total_amount"] == 40.0

        po = client.post(f"{API}/purchase-orders", json=po_body()).json()["data"]
        lines = client.get(f"{API}/purchase-orders/{po['id']}/lines").json()["data"]
        assert [(li["item_code"], li["quantity_received"]) for li in lines] == [("WIDGET-01", 0.0)]
        assert client.get(f"{API}/purchase-orders/999/lines").status_code == 404

    def test_generate_po_number(self, client):
        first = client.get(f"{API}/purchase-orders/generate-po-number", params={"year": 2031}).json()["data"]
        second = client.get(f"{API}/purchase-orders/generate-po-number", params={"year": 2031}).json()["data"]
        assert first == {"po_number": "PO-PK-2031-0001", "year": 2031}
        assert second["po_number"] == "PO-PK-2031-0002"


class TestPayments:
    def test_pay_reverse_and_delete(self, client):
        invoice = client.post(f"{API}/ap-invoices", json={
            "supplier_id": 1, "invoice_number": "INV-1", "total_amount": "100",
        }).json()["data"]

        resp = client.post(f"{API}/ap-payments", json={
            "supplier_id": 1,
            "payment_date": "2024-03-01",
            "payment_amount": "60",
            "applications": [{"invoice_id": invoice["id"], "application_amount": "60"}],
        })
        assert resp.status_code == 201
        payment = resp.json()["data"]
        assert payment["status"] == "PAID"
        assert payment["unapplied_amount"] == 0.0
        # invoice balance left after this application
        assert payment["applications"][0]["unapplied_amount"] == 40.0

        invoice = client.get(f"{API}/ap-invoices/{invoice['id']}").json()["data"]
        assert (invoice["amount_paid"], invoice["amount_due"], invoice["status"]) == (60.0, 40.0, "OPEN")

        resp = client.delete(f"{API}/ap-payments/{payment['id']}")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "HAS_ACTIVE_APPLICATIONS"

        app_id = payment["applications"][0]["id"]
        resp = client.post(f"{API}/ap-payments/{payment['id']}/applications/{app_id}/reverse")
        assert resp.json()["data"]["status"] == "REVERSED"

        assert client.delete(f"{API}/ap-payments/{payment['id']}").json()["data"]["status"] == "DRAFT"
        assert client.get(f"{API}/ap-invoices/{invoice['id']}").json()["data"]["amount_paid"] == 0.0

    def test_over_application(self, client):
        invoice = client.post(f"{API}/ap-invoices", json={"supplier_id": 1, "total_amount": "10"}).json()["data"]
        resp = client.post(f"{API}/ap-payments", json={
            "supplier_id": 1,
            "payment_date": "2024-03-01",
            "payment_amount": "50",
            "applications": [{"invoice_id": invoice["id"], "applied_amount": "20"}],
        })
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "OVER_APPLICATION"
        # nothing half-written
        assert client.get(f"{API}/ap-payments").json()["data"] == []

    def test_draft_receipt_then_apply(self, client):
        invoice = client.post(f"{API}/ar-invoices", json={
            "customer_id": 1,
            "invoice_number": "S-1",
            "status": "OPEN",
            "lines": [{"item_name": "Consulting", "quantity": "1", "unit_price": "100"}],
        }).json()["data"]

        receipt = client.post(f"{API}/ar-receipts", json={
            "customer_id": 1,
            "receipt_date": "2024-03-01",
            "amount_received": "100",
            "applications": [{"invoice_id": invoice["id"], "applied_amount": "100"}],
        }).json()["data"]
        assert receipt["status"] == "DRAFT"
        assert client.get(f"{API}/ar-invoices/{invoice['id']}").json()["data"]["amount_paid"] == 0.0

        conflicts = client.post(f"{API}/ar-receipts/check-draft-conflicts", json={
            "invoice_ids": [invoice["id"]],
        }).json()["data"]
        assert [c["document_id"] for c in conflicts] == [receipt["id"]]

        receipt = client.post(f"{API}/ar-receipts/{receipt['id']}/apply").json()["data"]
        assert receipt["status"] == "PAID"
        invoice = client.get(f"{API}/ar-invoices/{invoice['id']}").json()["data"]
        assert (invoice["status"], invoice["amount_due"]) == ("PAID", 0.0)


class TestInventoryItems:
    def test_create_and_list(self, client):
        resp = client.post(f"{API}/inventory-items", json={
            "item_code": "CABLE-3", "item_name": "Cable", "box_quantity": "2", "packet_quantity": "50",
        })
        assert resp.status_code == 201
        item = resp.json()["data"]
        assert item["active_detail"]["version"] == 1

        codes = [i["item_code"] for i in client.get(f"{API}/inventory-items").json()["data"]]
        assert codes == ["BOLT-01", "CABLE-3", "WIDGET-01"]


class TestAuth:
    @pytest.fixture
    def bare_client(self, database):
        app = create_app()
        app.state.db = database
        with TestClient(app) as c:
            yield c

    def test_missing_token(self, bare_client):
        resp = bare_client.get(f"{API}/purchase-orders")
        assert resp.status_code == 401
        assert resp.json()["error"]["kind"] == "UNAUTHORIZED"

    def test_bad_token(self, bare_client):
        resp = bare_client.get(f"{API}/purchase-orders", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    def test_token_subject_stamps_writes(self, bare_client):
        token = jwt.encode({"sub": "42", "username": "ops"}, settings.JWT_SECRET, algorithm=settings.JWT_ALG)
        resp = bare_client.post(f"{API}/purchase-orders", json=po_body(),
                                headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 201
        assert resp.json()["data"]["created_by"] == 42

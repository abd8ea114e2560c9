from __future__ import annotations

from decimal import Decimal


def _create_invoice(client, **kw):
    payload = {"name": "Nubank", "closing_day": 5, "due_day": 10, "credit_limit": 1000}
    payload.update(kw)
    r = client.post("/api/invoices", json=payload)
    assert r.status_code == 201, r.text
    return r.json()


def _create_card(client, invoice_id, **kw):
    payload = {"name": "Purple", "type": "CREDIT_CARD", "last_four_digits": "4242", "invoice_id": invoice_id}
    payload.update(kw)
    r = client.post("/api/payment-methods", json=payload)
    assert r.status_code == 201, r.text
    return r.json()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_invoice_crud(client):
    inv = _create_invoice(client)
    assert inv["status"] == "OPEN"
    assert Decimal(inv["available_limit"]) == Decimal("1000")
    assert inv["status_description"].startswith("Open")

    # duplicate name
    r = client.post("/api/invoices", json={"name": "Nubank", "closing_day": 1, "due_day": 8})
    assert r.status_code == 409

    r = client.patch(f"/api/invoices/{inv['id']}", json={"name": "Nubank Ultravioleta", "color": "#8B5CF6"})
    assert r.status_code == 200, r.text
    assert r.json()["name"] == "Nubank Ultravioleta"

    r = client.get("/api/invoices")
    assert [row["id"] for row in r.json()] == [inv["id"]]

    r = client.delete(f"/api/invoices/{inv['id']}")
    assert r.status_code == 204
    assert client.get("/api/invoices").json() == []
    assert len(client.get("/api/invoices", params={"include_inactive": True}).json()) == 1


def test_invoice_validation_and_not_found(client):
    r = client.post("/api/invoices", json={"name": "Bad", "closing_day": 32, "due_day": 10})
    assert r.status_code == 422
    r = client.post("/api/invoices", json={"name": "Zero", "closing_day": 1, "due_day": 8, "credit_limit": 0})
    assert r.status_code == 422
    r = client.get("/api/invoices/999999")
    assert r.status_code == 404
    assert r.json()["detail"] == "Invoice not found"


def test_delete_blocked_while_card_linked(client):
    inv = _create_invoice(client)
    card = _create_card(client, inv["id"])

    r = client.delete(f"/api/invoices/{inv['id']}")
    assert r.status_code == 409

    assert client.get(f"/api/invoices/{inv['id']}").json()["payment_method_ids"] == [card["id"]]

    assert client.delete(f"/api/payment-methods/{card['id']}").status_code == 204
    assert client.delete(f"/api/invoices/{inv['id']}").status_code == 204


def test_only_credit_cards_link_to_invoices(client):
    inv = _create_invoice(client)
    r = client.post(
        "/api/payment-methods",
        json={"name": "Checking", "type": "DEBIT_CARD", "invoice_id": inv["id"]},
    )
    assert r.status_code == 400


def test_limit_endpoints(client):
    inv = _create_invoice(client, credit_limit=500)
    card = _create_card(client, inv["id"])
    r = client.post(
        "/api/transactions",
        json={
            "description": "Flight",
            "amount": 400,
            "type": "EXPENSE",
            "transaction_date": "2025-03-01",
            "invoice_id": inv["id"],
            "payment_method_id": card["id"],
        },
    )
    assert r.status_code == 201, r.text

    info = client.get(f"/api/invoices/{inv['id']}/limit-info").json()
    assert Decimal(info["available"]) == Decimal("100")
    assert Decimal(info["used"]) == Decimal("400")
    assert info["usage_percentage"] == 80.0
    assert info["status"] == "warning"
    assert info["credit_cards_count"] == 1

    r = client.patch(f"/api/invoices/{inv['id']}/credit-limit", json={"credit_limit": 300})
    assert r.status_code == 400
    r = client.patch(f"/api/invoices/{inv['id']}/credit-limit", json={"credit_limit": 800})
    assert r.status_code == 200, r.text
    assert Decimal(r.json()["available_limit"]) == Decimal("400")

    overview = client.get("/api/invoices/user/limit-overview").json()
    assert overview[0]["id"] == inv["id"]
    assert overview[0]["credit_cards"][0]["name"] == "Purple (**** 4242)"

    stats = client.get("/api/invoices/user/limit-statistics").json()
    assert Decimal(stats["total_limit"]) == Decimal("800")
    assert stats["healthy_count"] == 1


def test_close_pay_and_status_listing(client):
    inv = _create_invoice(client)

    r = client.patch(f"/api/invoices/{inv['id']}/pay")
    assert r.status_code == 400

    r = client.patch(f"/api/invoices/{inv['id']}/close", json={"total_amount": 321.5})
    assert r.status_code == 200, r.text
    closed = r.json()
    assert closed["status"] == "CLOSED"
    assert Decimal(closed["total_amount"]) == Decimal("321.5")
    assert closed["due_date"] is not None

    assert [row["id"] for row in client.get("/api/invoices/status/CLOSED").json()] == [inv["id"]]
    assert client.get("/api/invoices/status/OPEN").json() == []

    r = client.patch(f"/api/invoices/{inv['id']}/close")
    assert r.status_code == 400

    r = client.patch(f"/api/invoices/{inv['id']}/pay")
    assert r.status_code == 200
    assert r.json()["status"] == "PAID"
    assert r.json()["payment_date"] is not None


def test_default_invoices_are_created_once(client):
    r = client.post("/api/invoices/defaults")
    assert r.status_code == 201
    assert {row["name"] for row in r.json()} == {"Nubank Invoice", "Inter Invoice"}

    r = client.post("/api/invoices/defaults")
    assert r.json() == []


def test_manual_scheduler_run(client):
    r = client.post("/api/invoices/scheduler/run")
    assert r.status_code == 200, r.text
    body = r.json()
    assert set(body) == {"run_date", "closed", "created", "overdue", "failures"}
    assert body["failures"] == []

import pytest
from httpx import ASGITransport, AsyncClient

from traveldesk.database import get_db
from traveldesk.main import app


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def test_health(client):
    resp = await client.get("/api/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


async def test_totals_preview(client):
    resp = await client.post(
        "/api/billing/totals/preview",
        json={
            "items": [
                {"description": "Hotel", "category": "accommodation", "total_price": "500"},
                {"description": "Tour", "category": "activity", "total_price": "300"},
            ],
            "mode": "detailed",
            "discount": {"type": "percentage", "value": "10"},
            "service_charge_rate": "5",
            "tax_rate": "10",
        },
    )

    assert resp.status_code == 200
    body = resp.json()
    assert float(body["total_amount"]) == 836
    assert float(body["taxable_amount"]) == 760
    assert body["warnings"] == []


async def test_quotation_to_paid_invoice(client, lead):
    lead_id = str(lead.id)
    resp = await client.post(
        "/api/billing/quotations",
        json={
            "lead_id": lead_id,
            "items": [{"description": "Bali Escape Package", "category": "package", "total_price": "1000"}],
            "tax_rate": "10",
            "status": "sent",
        },
    )
    assert resp.status_code == 201
    quotation = resp.json()
    assert float(quotation["total_amount"]) == 1100

    resp = await client.post(f"/api/billing/quotations/{quotation['id']}/convert", json={})
    assert resp.status_code == 201
    invoice = resp.json()
    assert float(invoice["outstanding_amount"]) == 1100

    resp = await client.put(f"/api/billing/quotations/{quotation['id']}", json={"tax_rate": "0"})
    assert resp.status_code == 422

    resp = await client.post(
        "/api/billing/receipts",
        json={"invoice_id": invoice["id"], "amount": "1200", "payment_method": "cash"},
    )
    assert resp.status_code == 422
    assert "exceeds" in resp.json()["detail"]

    resp = await client.post(
        "/api/billing/receipts",
        json={"invoice_id": invoice["id"], "amount": "1100", "payment_method": "card"},
    )
    assert resp.status_code == 201
    assert resp.json()["receipt_status"] == "paid-in-full"

    resp = await client.get(f"/api/billing/invoices/{invoice['id']}")
    assert resp.json()["status"] == "paid"

    resp = await client.get(f"/api/billing/invoices/{invoice['id']}/receipts")
    assert len(resp.json()) == 1

    resp = await client.get(f"/api/billing/leads/{lead_id}/summary")
    summary = resp.json()
    assert float(summary["outstanding"]) == 0
    assert summary["receipts"]["count"] == 1


async def test_draft_flow(client, lead):
    base = f"/api/billing/leads/{lead.id}/draft"

    resp = await client.post(base)
    assert resp.status_code == 200
    draft = resp.json()
    assert draft["mode"] == "summary"
    assert draft["editable"][0] is True
    assert draft["detailed_enabled"] is True

    resp = await client.post(f"{base}/items", json={"description": "Visa"})
    assert resp.status_code == 422

    resp = await client.post(f"{base}/mode", json={"mode": "detailed"})
    assert resp.json()["mode"] == "detailed"

    resp = await client.patch(f"{base}/items/1", json={"field": "unit_price", "value": "250"})
    assert resp.status_code == 200
    assert float(resp.json()["totals"]["subtotal"]) == 250

    resp = await client.post(f"{base}/save", json={})
    assert resp.status_code == 201
    assert resp.json()["mode"] == "detailed"

    resp = await client.get(base)
    assert resp.status_code == 404


async def test_unknown_quotation_is_404(client):
    resp = await client.get("/api/billing/quotations/00000000-0000-0000-0000-000000000000")

    assert resp.status_code == 404


async def test_financial_report(client, lead):
    resp = await client.post(
        "/api/billing/quotations",
        json={"lead_id": str(lead.id), "items": [{"description": "Package", "category": "package", "total_price": "400"}]},
    )
    quotation_id = resp.json()["id"]
    invoice = (await client.post(f"/api/billing/quotations/{quotation_id}/convert")).json()
    await client.post(
        "/api/billing/receipts",
        json={"invoice_id": invoice["id"], "amount": "100", "payment_method": "upi"},
    )

    resp = await client.get(
        "/api/billing/reports/financial",
        params={"start": invoice["issue_date"], "end": invoice["issue_date"]},
    )

    assert resp.status_code == 200
    report = resp.json()
    assert float(report["total_revenue"]) == 400
    assert float(report["total_collected"]) == 100
    assert float(report["collection_rate"]) == 25
    assert report["payment_methods"]["upi"]["count"] == 1


async def test_draft_rejects_non_finite_price(client, lead):
    base = f"/api/billing/leads/{lead.id}/draft"
    await client.post(base)

    resp = await client.patch(f"{base}/items/0", json={"field": "unit_price", "value": "NaN"})

    assert resp.status_code == 422
    resp = await client.post(f"{base}/save", json={})
    assert resp.status_code == 201

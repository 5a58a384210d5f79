import asyncio
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from traveldesk.errors import NotFoundError, UpstreamUnavailable, ValidationError
from traveldesk.models import Invoice, Lead, Quotation
from traveldesk.services.billing_service import apply_payment_state, billing_service
from traveldesk.services.lock_service import lock_service


def quotation_data(lead, **overrides):
    data = {
        "lead_id": lead.id,
        "mode": "summary",
        "items": [
            {"description": "Day 1: Hotel A - Resort", "category": "accommodation", "origin": "extracted"},
            {"description": "Bali Escape Package", "category": "package", "total_price": Decimal("1000")},
        ],
        "discount": {"type": "none", "value": Decimal("0")},
        "service_charge_rate": Decimal("0"),
        "tax_rate": Decimal("10"),
    }
    data.update(overrides)
    return data


async def make_invoice(db, lead) -> Invoice:
    quotation = await billing_service.create_quotation(db, quotation_data(lead))
    return await billing_service.convert_quotation_to_invoice(db, quotation.id)


async def wait_for_waiter(key: str):
    while lock_service._users.get(key, 0) < 2:
        await asyncio.sleep(0.01)


async def test_create_quotation_moves_package_first_and_totals(db, lead):
    quotation = await billing_service.create_quotation(db, quotation_data(lead))

    assert quotation.items[0]["category"] == "package"
    assert quotation.subtotal == Decimal("1000")
    assert quotation.tax_amount == Decimal("100")
    assert quotation.total_amount == Decimal("1100")
    assert quotation.quotation_number.startswith("QT-")
    assert quotation.quotation_number.endswith("-00001")
    assert quotation.customer_name == "Asha Rao"
    assert quotation.valid_until == quotation.issue_date + timedelta(days=30)

    refreshed = (await db.execute(select(Lead).where(Lead.id == lead.id))).scalar_one()
    assert refreshed.status == "quoted"
    assert refreshed.quote_amount == Decimal("1100")


async def test_create_quotation_requires_items(db, lead):
    with pytest.raises(ValidationError):
        await billing_service.create_quotation(db, quotation_data(lead, items=[]))


async def test_create_quotation_unknown_lead(db, lead):
    data = quotation_data(lead)
    await db.delete(lead)
    await db.commit()

    with pytest.raises(NotFoundError):
        await billing_service.create_quotation(db, data)


async def test_update_recomputes_and_tracks_revisions(db, lead):
    quotation = await billing_service.create_quotation(db, quotation_data(lead, status="sent"))

    updated = await billing_service.update_quotation(
        db,
        quotation.id,
        {"discount": {"type": "fixed", "value": Decimal("100")}, "changes": "Loyalty discount"},
    )

    assert updated.discount_amount == Decimal("100")
    assert updated.total_amount == Decimal("990")
    assert updated.version == 2
    assert updated.revision_history[-1]["changes"] == "Loyalty discount"


async def test_conversion_copies_pricing_and_is_terminal(db, lead):
    quotation = await billing_service.create_quotation(db, quotation_data(lead, mode="detailed", items=[
        {"description": "Bali Escape Package", "category": "package", "total_price": Decimal("1000")},
        {"description": "Day 1: Hotel A - Resort", "category": "accommodation", "total_price": Decimal("500")},
        {"description": "Day 2: City tour", "category": "activity", "total_price": Decimal("300")},
    ], discount={"type": "percentage", "value": Decimal("10")}, service_charge_rate=Decimal("5")))

    quotation_id, lead_id = quotation.id, lead.id
    invoice = await billing_service.convert_quotation_to_invoice(db, quotation.id)

    assert invoice.total_amount == Decimal("836")
    assert invoice.outstanding_amount == Decimal("836")
    assert invoice.paid_amount == Decimal("0")
    assert invoice.mode == "detailed"
    assert invoice.invoice_number.startswith("INV-")
    assert invoice.quotation_id == quotation.id

    converted = await billing_service.get_quotation(db, quotation_id)
    assert converted.status == "converted"
    assert converted.converted_invoice_id == invoice.id

    with pytest.raises(ValidationError):
        await billing_service.convert_quotation_to_invoice(db, quotation_id)
    with pytest.raises(ValidationError):
        await billing_service.update_quotation(db, quotation_id, {"tax_rate": Decimal("0")})

    unchanged = await billing_service.get_quotation(db, quotation_id)
    assert unchanged.tax_rate == Decimal("10")
    lead_row = (await db.execute(select(Lead).where(Lead.id == lead_id))).scalar_one()
    assert lead_row.status == "converted"


async def test_proforma_invoice_number(db, lead):
    quotation = await billing_service.create_quotation(db, quotation_data(lead))

    invoice = await billing_service.convert_quotation_to_invoice(db, quotation.id, {"type": "proforma"})

    assert invoice.invoice_number.startswith("PI-")


async def test_rejected_quotation_cannot_convert(db, lead):
    quotation = await billing_service.create_quotation(db, quotation_data(lead, status="sent"))
    quotation_id = quotation.id
    await billing_service.reject_quotation(db, quotation_id, "Too expensive")

    with pytest.raises(ValidationError):
        await billing_service.convert_quotation_to_invoice(db, quotation_id)

    unchanged = await billing_service.get_quotation(db, quotation_id)
    assert unchanged.status == "rejected"
    assert unchanged.converted_invoice_id is None
    invoices = await db.execute(select(Invoice).where(Invoice.quotation_id == quotation_id))
    assert invoices.scalars().all() == []


async def test_expiry_sweep_leaves_converted_quotation_alone(db, lead):
    quotation = await billing_service.create_quotation(
        db, quotation_data(lead, status="sent", valid_until=date.today() - timedelta(days=1))
    )
    quotation_id = quotation.id
    await billing_service.convert_quotation_to_invoice(db, quotation_id)

    count = await billing_service.expire_quotations(db, today=date.today() + timedelta(days=1))

    assert count == 0
    assert (await billing_service.get_quotation(db, quotation_id)).status == "converted"


async def test_quotation_lifecycle_send_accept(db, lead):
    quotation = await billing_service.create_quotation(db, quotation_data(lead))

    sent = await billing_service.send_quotation(db, quotation.id)
    assert sent.status == "sent"
    accepted = await billing_service.accept_quotation(db, quotation.id)
    assert accepted.status == "accepted"
    assert accepted.accepted_at is not None


async def test_expire_quotations(db, lead):
    quotation = await billing_service.create_quotation(
        db, quotation_data(lead, status="sent", valid_until=date.today() - timedelta(days=1))
    )

    count = await billing_service.expire_quotations(db, today=date.today() + timedelta(days=1))

    assert count == 1
    assert (await billing_service.get_quotation(db, quotation.id)).status == "expired"


async def test_receipt_over_outstanding_rejected(db, lead):
    invoice = await make_invoice(db, lead)
    invoice_id = invoice.id

    with pytest.raises(ValidationError):
        await billing_service.save_receipt(db, invoice.id, {"amount": Decimal("1200"), "payment_method": "cash"})

    unchanged = await billing_service.get_invoice(db, invoice_id)
    assert unchanged.paid_amount == Decimal("0")
    assert unchanged.outstanding_amount == Decimal("1100")


async def test_full_payment_marks_invoice_paid(db, lead):
    invoice = await make_invoice(db, lead)

    receipt = await billing_service.save_receipt(
        db, invoice.id, {"amount": Decimal("1100"), "payment_method": "bank-transfer"}
    )

    paid = await billing_service.get_invoice(db, invoice.id)
    assert paid.paid_amount == Decimal("1100")
    assert paid.outstanding_amount == Decimal("0")
    assert paid.status == "paid"
    assert paid.paid_date is not None
    assert receipt.receipt_status == "paid-in-full"
    assert receipt.previous_balance == Decimal("1100")
    assert receipt.outstanding_balance == Decimal("0")

    with pytest.raises(ValidationError):
        await billing_service.save_receipt(db, invoice.id, {"amount": Decimal("1"), "payment_method": "cash"})


async def test_outstanding_never_increases(db, lead):
    invoice = await make_invoice(db, lead)
    balances = [Decimal("1100")]

    for amount in ("100", "250.50", "49.50", "700"):
        await billing_service.save_receipt(db, invoice.id, {"amount": Decimal(amount), "payment_method": "upi"})
        balances.append((await billing_service.get_invoice(db, invoice.id)).outstanding_amount)

    assert balances == sorted(balances, reverse=True)
    assert balances[-1] == Decimal("0")
    assert all(b >= 0 for b in balances)


async def test_partial_payment_status(db, lead):
    invoice = await make_invoice(db, lead)

    receipt = await billing_service.save_receipt(
        db, invoice.id, {"amount": Decimal("400"), "payment_method": "card", "payment_type": "advance"}
    )

    partial = await billing_service.get_invoice(db, invoice.id)
    assert partial.status == "partial"
    assert partial.payment_status == "partial"
    assert receipt.receipt_status == "paid-in-advance"


async def test_non_positive_amount_rejected(db, lead):
    invoice = await make_invoice(db, lead)

    with pytest.raises(ValidationError):
        await billing_service.save_receipt(db, invoice.id, {"amount": Decimal("0"), "payment_method": "cash"})


async def test_concurrent_receipts_cannot_overpay(session_factory, db, lead):
    invoice = await make_invoice(db, lead)

    async def pay():
        async with session_factory() as session:
            return await billing_service.save_receipt(
                session, invoice.id, {"amount": Decimal("700"), "payment_method": "cash"}
            )

    results = await asyncio.gather(pay(), pay(), return_exceptions=True)

    assert sum(1 for r in results if isinstance(r, ValidationError)) == 1
    async with session_factory() as session:
        final = await billing_service.get_invoice(session, invoice.id)
    assert final.paid_amount == Decimal("700")
    assert final.outstanding_amount == Decimal("400")


async def test_cancel_receipt_restores_balance(db, lead):
    invoice = await make_invoice(db, lead)
    receipt = await billing_service.save_receipt(db, invoice.id, {"amount": Decimal("1100"), "payment_method": "cash"})

    cancelled = await billing_service.cancel_receipt(db, receipt.id, "Bounced")

    assert cancelled.receipt_status == "cancelled"
    restored = await billing_service.get_invoice(db, invoice.id)
    assert restored.paid_amount == Decimal("0")
    assert restored.outstanding_amount == Decimal("1100")
    assert restored.status == "draft"


async def test_receipt_update_amount_rebalances(db, lead):
    invoice = await make_invoice(db, lead)
    receipt = await billing_service.save_receipt(db, invoice.id, {"amount": Decimal("500"), "payment_method": "cash"})

    await billing_service.update_receipt(db, receipt.id, {"amount": Decimal("600"), "notes": "Corrected"})

    invoice = await billing_service.get_invoice(db, invoice.id)
    assert invoice.paid_amount == Decimal("600")
    assert invoice.outstanding_amount == Decimal("500")

    with pytest.raises(ValidationError):
        await billing_service.update_receipt(db, receipt.id, {"amount": Decimal("1101")})


async def test_verify_then_reconcile(db, lead):
    invoice = await make_invoice(db, lead)
    receipt = await billing_service.save_receipt(db, invoice.id, {"amount": Decimal("100"), "payment_method": "cash"})
    receipt_id = receipt.id

    with pytest.raises(ValidationError):
        await billing_service.reconcile_receipt(db, receipt.id)

    await billing_service.verify_receipt(db, receipt_id)
    reconciled = await billing_service.reconcile_receipt(db, receipt_id)

    assert reconciled.reconciled
    with pytest.raises(ValidationError):
        await billing_service.update_receipt(db, receipt_id, {"notes": "late edit"})
    with pytest.raises(ValidationError):
        await billing_service.cancel_receipt(db, receipt_id)


async def test_update_invoice_below_paid_rejected(db, lead):
    invoice = await make_invoice(db, lead)
    invoice_id = invoice.id
    await billing_service.save_receipt(db, invoice.id, {"amount": Decimal("800"), "payment_method": "cash"})

    with pytest.raises(ValidationError):
        await billing_service.update_invoice(db, invoice.id, {"discount": {"type": "fixed", "value": Decimal("500")}})

    invoice = await billing_service.get_invoice(db, invoice_id)
    assert invoice.total_amount == Decimal("1100")


async def test_cancel_invoice_with_payments_rejected(db, lead):
    invoice = await make_invoice(db, lead)
    await billing_service.save_receipt(db, invoice.id, {"amount": Decimal("10"), "payment_method": "cash"})

    with pytest.raises(ValidationError):
        await billing_service.cancel_invoice(db, invoice.id)


async def test_mark_overdue(db, lead):
    invoice = await make_invoice(db, lead)
    await billing_service.send_invoice(db, invoice.id)

    count = await billing_service.mark_overdue_invoices(db, today=date.today() + timedelta(days=60))

    assert count == 1
    assert (await billing_service.get_invoice(db, invoice.id)).status == "overdue"


async def test_lead_quotations_most_recent_first(db, lead):
    first = await billing_service.create_quotation(db, quotation_data(lead))
    second = await billing_service.create_quotation(db, quotation_data(lead))

    quotations = await billing_service.list_lead_quotations(db, lead.id)

    assert [q.id for q in quotations] == [second.id, first.id]
    assert all(isinstance(q, Quotation) for q in quotations)


async def test_concurrent_receipts_on_different_invoices(session_factory, db, lead):
    first = await make_invoice(db, lead)
    second = await make_invoice(db, lead)
    invoice_ids = [first.id, second.id]

    async def pay(invoice_id):
        async with session_factory() as session:
            return await billing_service.save_receipt(
                session, invoice_id, {"amount": Decimal("100"), "payment_method": "cash"}
            )

    receipts = await asyncio.gather(*(pay(i) for i in invoice_ids))

    assert len({r.receipt_number for r in receipts}) == 2
    async with session_factory() as session:
        for invoice_id in invoice_ids:
            assert (await billing_service.get_invoice(session, invoice_id)).paid_amount == Decimal("100")


async def test_taken_receipt_number_is_renumbered(db, lead, monkeypatch):
    invoice = await make_invoice(db, lead)
    invoice_id = invoice.id
    taken = (
        await billing_service.save_receipt(db, invoice_id, {"amount": Decimal("100"), "payment_method": "cash"})
    ).receipt_number
    next_number = billing_service._next_number
    calls = []

    async def stale_number(session, model, prefix):
        calls.append(prefix)
        if len(calls) == 1:
            return taken
        return await next_number(session, model, prefix)

    monkeypatch.setattr(billing_service, "_next_number", stale_number)

    receipt = await billing_service.save_receipt(db, invoice_id, {"amount": Decimal("200"), "payment_method": "card"})

    assert calls == ["REC", "REC"]
    assert receipt.receipt_number != taken
    assert (await billing_service.get_invoice(db, invoice_id)).paid_amount == Decimal("300")


async def test_number_allocation_gives_up_as_unavailable(db, lead, monkeypatch):
    invoice = await make_invoice(db, lead)
    invoice_id = invoice.id
    taken = (
        await billing_service.save_receipt(db, invoice_id, {"amount": Decimal("100"), "payment_method": "cash"})
    ).receipt_number

    async def always_taken(session, model, prefix):
        return taken

    monkeypatch.setattr(billing_service, "_next_number", always_taken)

    with pytest.raises(UpstreamUnavailable):
        await billing_service.save_receipt(db, invoice_id, {"amount": Decimal("200"), "payment_method": "card"})

    assert (await billing_service.get_invoice(db, invoice_id)).paid_amount == Decimal("100")


async def test_overdue_sweep_skips_invoice_settled_while_waiting(session_factory, db, lead):
    invoice = await make_invoice(db, lead)
    invoice_id = invoice.id
    await billing_service.send_invoice(db, invoice_id)
    key = lock_service.invoice_key(invoice_id)

    async def sweep():
        async with session_factory() as session:
            return await billing_service.mark_overdue_invoices(session, today=date.today() + timedelta(days=60))

    async with lock_service.hold(key):
        task = asyncio.create_task(sweep())
        await wait_for_waiter(key)
        async with session_factory() as session:
            settled = await billing_service.get_invoice(session, invoice_id)
            settled.paid_amount = settled.total_amount
            apply_payment_state(settled)
            await session.commit()

    assert await task == 0
    async with session_factory() as session:
        assert (await billing_service.get_invoice(session, invoice_id)).status == "paid"


async def test_cancel_rechecks_receipt_under_invoice_lock(session_factory, db, lead):
    invoice = await make_invoice(db, lead)
    invoice_id = invoice.id
    receipt = await billing_service.save_receipt(db, invoice_id, {"amount": Decimal("100"), "payment_method": "cash"})
    receipt_id = receipt.id
    key = lock_service.invoice_key(invoice_id)

    async def cancel():
        async with session_factory() as session:
            return await billing_service.cancel_receipt(session, receipt_id, "Duplicate")

    async with lock_service.hold(key):
        task = asyncio.create_task(cancel())
        await wait_for_waiter(key)
        async with session_factory() as session:
            await billing_service.verify_receipt(session, receipt_id)
            await billing_service.reconcile_receipt(session, receipt_id)

    with pytest.raises(ValidationError):
        await task
    async with session_factory() as session:
        assert (await billing_service.get_invoice(session, invoice_id)).paid_amount == Decimal("100")

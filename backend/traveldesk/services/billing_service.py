"""Billing service: quotation, invoice and receipt lifecycle with balance reconciliation."""

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from traveldesk.config import settings
from traveldesk.database import retry_once_on_db_fault
from traveldesk.errors import NotFoundError, ValidationError
from traveldesk.models.billing import Invoice, PaymentReceipt, Quotation
from traveldesk.models.lead import Lead
from traveldesk.services.line_items import (
    CATEGORIES,
    DISCOUNT_TYPES,
    MODES,
    ORIGINS,
    ZERO,
    DiscountPolicy,
    LineItem,
    items_from_json,
    items_to_json,
    to_money,
)
from traveldesk.services.lock_service import lock_service
from traveldesk.services.totals_calculator import Totals, compute_totals

logger = logging.getLogger(__name__)

QUOTATION_EDITABLE_FIELDS = ("valid_until", "notes", "terms", "payment_terms")
INVOICE_EDITABLE_FIELDS = ("due_date", "notes", "terms", "payment_terms")
INVOICE_TYPES = frozenset({"invoice", "proforma", "tax-invoice", "commercial-invoice"})
PAYMENT_METHODS = frozenset({"cash", "card", "bank-transfer", "online", "cheque", "upi", "wallet", "other"})
PAYMENT_TYPES = frozenset({"advance", "installment", "full-payment", "final-payment"})


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _today() -> date:
    return _now().date()


def prepare_items(raw_items) -> list[LineItem]:
    """Validate incoming items and move the package item to the front.

    Accepts LineItem objects or plain dicts. A missing total_price is filled
    from quantity * unit_price.
    """
    items = []
    for n, raw in enumerate(raw_items or [], start=1):
        item = raw if isinstance(raw, LineItem) else LineItem.from_dict(dict(raw))
        if not item.description or not item.description.strip():
            raise ValidationError(f"Item {n} needs a description")
        if item.category not in CATEGORIES:
            raise ValidationError(f"Item {n} has unknown category '{item.category}'")
        if item.origin not in ORIGINS:
            raise ValidationError(f"Item {n} has unknown origin '{item.origin}'")
        if item.quantity <= 0:
            raise ValidationError(f"Item {n} quantity must be positive")
        if item.unit_price < 0 or (item.total_price is not None and item.total_price < 0):
            raise ValidationError(f"Item {n} prices cannot be negative")
        if item.total_price is None:
            item.total_price = item.quantity * item.unit_price
        items.append(item)

    if not items:
        raise ValidationError("At least one line item is required")
    # Stable: package items first, everything else keeps its order
    return sorted(items, key=lambda i: not i.is_package)


def _check_rate(name: str, value) -> Decimal:
    rate = to_money(value)
    if not ZERO <= rate <= 100:
        raise ValidationError(f"{name} must be between 0 and 100")
    return rate


def apply_pricing(doc, data: dict) -> None:
    """Copy mode, items and pricing parameters from ``data`` onto a document."""
    if "mode" in data and data["mode"] is not None:
        if data["mode"] not in MODES:
            raise ValidationError(f"Unknown mode '{data['mode']}'")
        doc.mode = data["mode"]
    if "items" in data and data["items"] is not None:
        doc.items = items_to_json(prepare_items(data["items"]))
    if "discount" in data and data["discount"] is not None:
        discount = data["discount"]
        if isinstance(discount, DiscountPolicy):
            discount = {"type": discount.type, "value": discount.value}
        d_type = discount.get("type") or "none"
        d_value = to_money(discount.get("value"))
        if d_type not in DISCOUNT_TYPES:
            raise ValidationError(f"Unknown discount type '{d_type}'")
        if d_value < 0:
            raise ValidationError("Discount value cannot be negative")
        doc.discount_type = d_type
        doc.discount_value = d_value
    if "service_charge_rate" in data and data["service_charge_rate"] is not None:
        doc.service_charge_rate = _check_rate("Service charge rate", data["service_charge_rate"])
    if "tax_rate" in data and data["tax_rate"] is not None:
        doc.tax_rate = _check_rate("Tax rate", data["tax_rate"])


def document_discount(doc) -> DiscountPolicy:
    return DiscountPolicy(type=doc.discount_type or "none", value=to_money(doc.discount_value))


def update_document_totals(doc) -> Totals:
    """Recompute and store a document's totals from its own items and parameters."""
    totals = compute_totals(
        items_from_json(doc.items),
        document_discount(doc),
        doc.service_charge_rate,
        doc.tax_rate,
        doc.mode,
    )
    doc.subtotal = totals.subtotal
    doc.discount_amount = totals.discount_amount
    doc.service_charge_amount = totals.service_charge_amount
    doc.tax_amount = totals.tax_amount
    doc.total_amount = totals.total_amount
    for warning in document_discount(doc).warnings():
        logger.warning(f"{type(doc).__name__} {doc.id}: {warning}")
    return totals


def apply_payment_state(invoice: Invoice, today: date | None = None) -> None:
    """Derive outstanding amount and status from total and paid amounts."""
    today = today or _today()
    total = to_money(invoice.total_amount)
    paid = to_money(invoice.paid_amount)
    invoice.outstanding_amount = max(total - paid, ZERO)
    if invoice.status == "cancelled":
        return

    if paid > 0 and invoice.outstanding_amount == 0:
        invoice.status = "paid"
        invoice.payment_status = "paid"
        invoice.paid_date = invoice.paid_date or today
    elif paid > 0:
        invoice.payment_status = "partial"
        invoice.status = "overdue" if invoice.due_date < today else "partial"
        invoice.paid_date = None
    else:
        invoice.payment_status = "unpaid"
        invoice.paid_date = None
        if invoice.status in ("partial", "paid", "overdue"):
            if invoice.sent_at is None:
                invoice.status = "draft"
            else:
                invoice.status = "overdue" if invoice.due_date < today else "sent"


class BillingService:
    """Creates and advances billing documents. Every public operation commits once."""

    # ── Lookups ────────────────────────────────────────────────────────────

    async def _get_lead(self, db: AsyncSession, lead_id: uuid.UUID) -> Lead:
        lead = (await db.execute(select(Lead).where(Lead.id == lead_id))).scalar_one_or_none()
        if not lead:
            raise NotFoundError(f"Lead {lead_id} not found")
        return lead

    async def _get_quotation(
        self, db: AsyncSession, quotation_id: uuid.UUID, for_update: bool = False
    ) -> Quotation:
        stmt = select(Quotation).where(Quotation.id == quotation_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        quotation = (await db.execute(stmt)).scalar_one_or_none()
        if not quotation:
            raise NotFoundError(f"Quotation {quotation_id} not found")
        return quotation

    async def _get_invoice(
        self, db: AsyncSession, invoice_id: uuid.UUID, for_update: bool = False
    ) -> Invoice:
        stmt = select(Invoice).where(Invoice.id == invoice_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        invoice = (await db.execute(stmt)).scalar_one_or_none()
        if not invoice:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    async def _get_receipt(
        self, db: AsyncSession, receipt_id: uuid.UUID, for_update: bool = False
    ) -> PaymentReceipt:
        stmt = select(PaymentReceipt).where(PaymentReceipt.id == receipt_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        receipt = (await db.execute(stmt)).scalar_one_or_none()
        if not receipt:
            raise NotFoundError(f"Receipt {receipt_id} not found")
        return receipt

    async def _next_number(self, db: AsyncSession, model, prefix: str) -> str:
        count = (await db.execute(select(func.count()).select_from(model))).scalar_one()
        return f"{prefix}-{_today():%Y%m}-{count + 1:05d}"

    async def get_quotation(self, db: AsyncSession, quotation_id: uuid.UUID) -> Quotation:
        return await self._get_quotation(db, quotation_id)

    async def get_invoice(self, db: AsyncSession, invoice_id: uuid.UUID) -> Invoice:
        return await self._get_invoice(db, invoice_id)

    async def get_receipt(self, db: AsyncSession, receipt_id: uuid.UUID) -> PaymentReceipt:
        return await self._get_receipt(db, receipt_id)

    async def list_lead_quotations(self, db: AsyncSession, lead_id: uuid.UUID) -> list[Quotation]:
        """Saved quotations for a lead, most recent first."""
        await self._get_lead(db, lead_id)
        result = await db.execute(
            select(Quotation)
            .where(Quotation.lead_id == lead_id)
            .order_by(Quotation.created_at.desc(), Quotation.quotation_number.desc())
        )
        return list(result.scalars().all())

    async def list_invoice_receipts(self, db: AsyncSession, invoice_id: uuid.UUID) -> list[PaymentReceipt]:
        await self._get_invoice(db, invoice_id)
        result = await db.execute(
            select(PaymentReceipt)
            .where(PaymentReceipt.invoice_id == invoice_id)
            .order_by(PaymentReceipt.created_at, PaymentReceipt.receipt_number)
        )
        return list(result.scalars().all())

    # ── Quotations ─────────────────────────────────────────────────────────

    async def build_quotation(self, db: AsyncSession, data: dict) -> Quotation:
        """Validate and stage a new quotation without committing."""
        lead = await self._get_lead(db, data["lead_id"])
        issue_date = data.get("issue_date") or _today()
        status = data.get("status") or "draft"
        if status not in ("draft", "sent"):
            raise ValidationError("A new quotation must be saved as draft or sent")

        quotation = Quotation(
            id=uuid.uuid4(),
            quotation_number=await self._next_number(db, Quotation, "QT"),
            lead_id=lead.id,
            package_id=data.get("package_id") or lead.package_id,
            customer_name=data.get("customer_name") or lead.name,
            customer_email=data.get("customer_email") or lead.email,
            customer_phone=data.get("customer_phone") or lead.phone,
            mode="summary",
            items=[],
            tax_rate=to_money(settings.default_tax_rate),
            discount_type="none",
            discount_value=ZERO,
            service_charge_rate=ZERO,
            status=status,
            issue_date=issue_date,
            valid_until=data.get("valid_until")
            or issue_date + timedelta(days=settings.quotation_validity_days),
            notes=data.get("notes"),
            terms=data.get("terms"),
            payment_terms=data.get("payment_terms"),
            sent_at=_now() if status == "sent" else None,
            version=1,
            revision_history=[],
        )
        apply_pricing(quotation, {**data, "items": data.get("items") or []})
        update_document_totals(quotation)
        db.add(quotation)

        lead.status = "quoted"
        lead.quote_amount = quotation.total_amount
        if status == "sent":
            lead.quote_sent = True
        return quotation

    @retry_once_on_db_fault
    async def create_quotation(self, db: AsyncSession, data: dict) -> Quotation:
        quotation = await self.build_quotation(db, data)
        await db.commit()
        await db.refresh(quotation)
        logger.info(
            f"Quotation {quotation.quotation_number} created for lead {quotation.lead_id}: "
            f"total {quotation.total_amount}"
        )
        return quotation

    @retry_once_on_db_fault
    async def update_quotation(self, db: AsyncSession, quotation_id: uuid.UUID, changes: dict) -> Quotation:
        """Apply edits and recompute totals. Totals are never taken from the caller."""
        quotation = await self._get_quotation(db, quotation_id)
        if quotation.status == "converted":
            raise ValidationError("A converted quotation can no longer be edited")

        apply_pricing(quotation, changes)
        for field_name in QUOTATION_EDITABLE_FIELDS:
            if changes.get(field_name) is not None:
                setattr(quotation, field_name, changes[field_name])
        update_document_totals(quotation)

        if quotation.status != "draft":
            quotation.version = (quotation.version or 1) + 1
            quotation.revision_history = list(quotation.revision_history or []) + [
                {
                    "version": quotation.version,
                    "changed_at": _now().isoformat(),
                    "changes": changes.get("changes") or "Quotation updated",
                    "total_amount": str(quotation.total_amount),
                }
            ]

        await db.commit()
        await db.refresh(quotation)
        logger.info(f"Quotation {quotation.quotation_number} updated (v{quotation.version})")
        return quotation

    @retry_once_on_db_fault
    async def send_quotation(self, db: AsyncSession, quotation_id: uuid.UUID) -> Quotation:
        quotation = await self._get_quotation(db, quotation_id)
        if quotation.status not in ("draft", "sent"):
            raise ValidationError(f"Cannot send a {quotation.status} quotation")
        quotation.status = "sent"
        quotation.sent_at = _now()
        lead = await self._get_lead(db, quotation.lead_id)
        lead.quote_sent = True
        await db.commit()
        await db.refresh(quotation)
        logger.info(f"Quotation {quotation.quotation_number} sent")
        return quotation

    @retry_once_on_db_fault
    async def accept_quotation(self, db: AsyncSession, quotation_id: uuid.UUID) -> Quotation:
        quotation = await self._get_quotation(db, quotation_id)
        if quotation.status != "sent":
            raise ValidationError(f"Only a sent quotation can be accepted (status: {quotation.status})")
        if quotation.valid_until < _today():
            raise ValidationError(f"Quotation expired on {quotation.valid_until}")
        quotation.status = "accepted"
        quotation.accepted_at = _now()
        await db.commit()
        await db.refresh(quotation)
        logger.info(f"Quotation {quotation.quotation_number} accepted")
        return quotation

    @retry_once_on_db_fault
    async def reject_quotation(
        self, db: AsyncSession, quotation_id: uuid.UUID, reason: str | None = None
    ) -> Quotation:
        quotation = await self._get_quotation(db, quotation_id)
        if quotation.status != "sent":
            raise ValidationError(f"Only a sent quotation can be rejected (status: {quotation.status})")
        quotation.status = "rejected"
        quotation.rejected_at = _now()
        quotation.rejection_reason = reason
        await db.commit()
        await db.refresh(quotation)
        logger.info(f"Quotation {quotation.quotation_number} rejected")
        return quotation

    @retry_once_on_db_fault
    async def expire_quotations(self, db: AsyncSession, today: date | None = None) -> int:
        """Mark sent quotations past their validity date as expired."""
        today = today or _today()
        # Rows locked by a running conversion are skipped until the next sweep
        result = await db.execute(
            select(Quotation)
            .where(Quotation.status == "sent", Quotation.valid_until < today)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        expired = list(result.scalars().all())
        for quotation in expired:
            quotation.status = "expired"
            logger.info(f"Quotation {quotation.quotation_number} expired (valid until {quotation.valid_until})")
        await db.commit()
        return len(expired)

    @retry_once_on_db_fault
    async def convert_quotation_to_invoice(
        self, db: AsyncSession, quotation_id: uuid.UUID, additional: dict | None = None
    ) -> Invoice:
        """Create an invoice from a quotation. The quotation becomes terminally ``converted``."""
        additional = additional or {}
        quotation = await self._get_quotation(db, quotation_id, for_update=True)
        if quotation.status == "converted":
            raise ValidationError(f"Quotation {quotation.quotation_number} is already converted")
        if quotation.status in ("rejected", "expired"):
            raise ValidationError(f"Cannot convert a {quotation.status} quotation")

        invoice_type = additional.get("type") or "invoice"
        if invoice_type not in INVOICE_TYPES:
            raise ValidationError(f"Unknown invoice type '{invoice_type}'")
        issue_date = additional.get("issue_date") or _today()
        due_date = additional.get("due_date") or issue_date + timedelta(days=settings.invoice_due_days)
        if due_date < issue_date:
            raise ValidationError("Due date cannot be before the issue date")

        prefix = "PI" if invoice_type == "proforma" else "INV"
        invoice = Invoice(
            id=uuid.uuid4(),
            invoice_number=await self._next_number(db, Invoice, prefix),
            lead_id=quotation.lead_id,
            quotation_id=quotation.id,
            package_id=quotation.package_id,
            customer_name=quotation.customer_name,
            customer_email=quotation.customer_email,
            customer_phone=quotation.customer_phone,
            type=invoice_type,
            mode=quotation.mode,
            items=list(quotation.items or []),
            tax_rate=quotation.tax_rate,
            discount_type=quotation.discount_type,
            discount_value=quotation.discount_value,
            service_charge_rate=quotation.service_charge_rate,
            paid_amount=ZERO,
            status="draft",
            payment_status="unpaid",
            issue_date=issue_date,
            due_date=due_date,
            notes=quotation.notes,
            terms=quotation.terms,
            payment_terms=quotation.payment_terms,
        )
        update_document_totals(invoice)
        invoice.outstanding_amount = max(to_money(invoice.total_amount), ZERO)
        db.add(invoice)

        quotation.status = "converted"
        quotation.converted_invoice_id = invoice.id
        lead = await self._get_lead(db, quotation.lead_id)
        lead.status = "converted"

        await db.commit()
        await db.refresh(invoice)
        logger.info(
            f"Quotation {quotation.quotation_number} converted to {invoice.invoice_number}: "
            f"total {invoice.total_amount}"
        )
        return invoice

    # ── Invoices ───────────────────────────────────────────────────────────

    @retry_once_on_db_fault
    async def update_invoice(self, db: AsyncSession, invoice_id: uuid.UUID, changes: dict) -> Invoice:
        async with lock_service.hold(lock_service.invoice_key(invoice_id)):
            invoice = await self._get_invoice(db, invoice_id, for_update=True)
            if invoice.status in ("cancelled", "paid"):
                raise ValidationError(f"A {invoice.status} invoice can no longer be edited")

            apply_pricing(invoice, changes)
            for field_name in INVOICE_EDITABLE_FIELDS:
                if changes.get(field_name) is not None:
                    setattr(invoice, field_name, changes[field_name])
            if invoice.due_date < invoice.issue_date:
                raise ValidationError("Due date cannot be before the issue date")
            update_document_totals(invoice)

            paid = to_money(invoice.paid_amount)
            if to_money(invoice.total_amount) < paid:
                raise ValidationError(
                    f"New total {invoice.total_amount} is below the {paid} already paid"
                )
            apply_payment_state(invoice)

            await db.commit()
        await db.refresh(invoice)
        logger.info(f"Invoice {invoice.invoice_number} updated: total {invoice.total_amount}")
        return invoice

    @retry_once_on_db_fault
    async def send_invoice(self, db: AsyncSession, invoice_id: uuid.UUID) -> Invoice:
        invoice = await self._get_invoice(db, invoice_id)
        if invoice.status in ("cancelled", "paid"):
            raise ValidationError(f"Cannot send a {invoice.status} invoice")
        if invoice.status == "draft":
            invoice.status = "sent"
        invoice.sent_at = _now()
        await db.commit()
        await db.refresh(invoice)
        logger.info(f"Invoice {invoice.invoice_number} sent")
        return invoice

    @retry_once_on_db_fault
    async def cancel_invoice(
        self, db: AsyncSession, invoice_id: uuid.UUID, reason: str | None = None
    ) -> Invoice:
        async with lock_service.hold(lock_service.invoice_key(invoice_id)):
            invoice = await self._get_invoice(db, invoice_id, for_update=True)
            if invoice.status == "cancelled":
                raise ValidationError(f"Invoice {invoice.invoice_number} is already cancelled")
            if to_money(invoice.paid_amount) > 0:
                raise ValidationError("Invoice has payments recorded; cancel its receipts first")
            invoice.status = "cancelled"
            invoice.cancelled_at = _now()
            invoice.cancellation_reason = reason
            await db.commit()
        await db.refresh(invoice)
        logger.info(f"Invoice {invoice.invoice_number} cancelled")
        return invoice

    @retry_once_on_db_fault
    async def mark_overdue_invoices(self, db: AsyncSession, today: date | None = None) -> int:
        """Flag unpaid invoices past their due date.

        Each candidate is re-read under its invoice lock and committed on its
        own, so a payment landing mid-sweep is never overwritten.
        """
        today = today or _today()
        result = await db.execute(
            select(Invoice.id).where(
                Invoice.status.in_(("sent", "partial")),
                Invoice.due_date < today,
                Invoice.outstanding_amount > 0,
            )
        )
        count = 0
        for invoice_id in list(result.scalars().all()):
            async with lock_service.hold(lock_service.invoice_key(invoice_id)):
                invoice = await self._get_invoice(db, invoice_id, for_update=True)
                if (
                    invoice.status not in ("sent", "partial")
                    or invoice.due_date >= today
                    or to_money(invoice.outstanding_amount) <= 0
                ):
                    await db.rollback()
                    continue
                invoice.status = "overdue"
                await db.commit()
            count += 1
            logger.info(f"Invoice {invoice.invoice_number} overdue (due {invoice.due_date})")
        return count

    # ── Receipts ───────────────────────────────────────────────────────────

    async def _paid_from_receipts(self, db: AsyncSession, invoice_id: uuid.UUID) -> Decimal:
        result = await db.execute(
            select(PaymentReceipt.amount).where(
                PaymentReceipt.invoice_id == invoice_id,
                PaymentReceipt.cancelled_at.is_(None),
            )
        )
        return sum((to_money(a) for a in result.scalars().all()), ZERO)

    async def _reconcile_invoice(self, db: AsyncSession, invoice: Invoice) -> None:
        await db.flush()
        invoice.paid_amount = await self._paid_from_receipts(db, invoice.id)
        apply_payment_state(invoice)

    @retry_once_on_db_fault
    async def save_receipt(self, db: AsyncSession, invoice_id: uuid.UUID, data: dict) -> PaymentReceipt:
        """Record a payment against an invoice.

        Saves for the same invoice are serialized; each one re-reads the
        balance under the lock, so an amount that no longer fits is rejected
        and the invoice is left unchanged.
        """
        payment_method = data.get("payment_method")
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Unknown payment method '{payment_method}'")
        payment_type = data.get("payment_type") or "installment"
        if payment_type not in PAYMENT_TYPES:
            raise ValidationError(f"Unknown payment type '{payment_type}'")
        amount = to_money(data.get("amount"))
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than zero")

        async with lock_service.hold(lock_service.invoice_key(invoice_id)):
            invoice = await self._get_invoice(db, invoice_id, for_update=True)
            if invoice.status == "cancelled":
                raise ValidationError(f"Invoice {invoice.invoice_number} is cancelled")

            paid = await self._paid_from_receipts(db, invoice.id)
            outstanding = max(to_money(invoice.total_amount) - paid, ZERO)
            if outstanding == 0:
                raise ValidationError(f"Invoice {invoice.invoice_number} is already paid in full")
            if amount > outstanding:
                raise ValidationError(
                    f"Payment of {amount} exceeds the outstanding balance of {outstanding}"
                )

            remaining = outstanding - amount
            if remaining == 0:
                receipt_status = "paid-in-full"
            elif payment_type == "advance":
                receipt_status = "paid-in-advance"
            else:
                receipt_status = "partial-payment"

            receipt = PaymentReceipt(
                id=uuid.uuid4(),
                receipt_number=await self._next_number(db, PaymentReceipt, "REC"),
                invoice_id=invoice.id,
                lead_id=invoice.lead_id,
                amount=amount,
                payment_method=payment_method,
                payment_details=dict(data.get("payment_details") or {}),
                transaction_id=data.get("transaction_id"),
                payment_date=data.get("payment_date") or _today(),
                payment_type=payment_type,
                receipt_status=receipt_status,
                previous_balance=outstanding,
                outstanding_balance=remaining,
                notes=data.get("notes"),
                internal_notes=data.get("internal_notes"),
                verified=False,
                reconciled=False,
            )
            db.add(receipt)
            invoice.paid_amount = paid + amount
            apply_payment_state(invoice)

            await db.commit()
        await db.refresh(receipt)
        await db.refresh(invoice)
        logger.info(
            f"Receipt {receipt.receipt_number}: {amount} against {invoice.invoice_number}, "
            f"outstanding {invoice.outstanding_amount} ({invoice.status})"
        )
        return receipt

    @retry_once_on_db_fault
    async def update_receipt(self, db: AsyncSession, receipt_id: uuid.UUID, changes: dict) -> PaymentReceipt:
        receipt = await self._get_receipt(db, receipt_id)

        async with lock_service.hold(lock_service.invoice_key(receipt.invoice_id)):
            invoice = await self._get_invoice(db, receipt.invoice_id, for_update=True)
            receipt = await self._get_receipt(db, receipt_id, for_update=True)
            if receipt.cancelled_at is not None:
                raise ValidationError("A cancelled receipt cannot be edited")
            if receipt.verified:
                raise ValidationError("A verified receipt cannot be edited")
            if changes.get("amount") is not None:
                amount = to_money(changes["amount"])
                if amount <= 0:
                    raise ValidationError("Payment amount must be greater than zero")
                others = await self._paid_from_receipts(db, invoice.id) - to_money(receipt.amount)
                available = to_money(invoice.total_amount) - others
                if amount > available:
                    raise ValidationError(
                        f"Payment of {amount} exceeds the outstanding balance of {available}"
                    )
                receipt.amount = amount
                receipt.previous_balance = available
                receipt.outstanding_balance = available - amount
            for field_name in ("notes", "internal_notes"):
                if changes.get(field_name) is not None:
                    setattr(receipt, field_name, changes[field_name])
            if changes.get("payment_details") is not None:
                receipt.payment_details = dict(changes["payment_details"])

            await self._reconcile_invoice(db, invoice)
            await db.commit()
        await db.refresh(receipt)
        await db.refresh(invoice)
        logger.info(f"Receipt {receipt.receipt_number} updated")
        return receipt

    @retry_once_on_db_fault
    async def cancel_receipt(
        self, db: AsyncSession, receipt_id: uuid.UUID, reason: str | None = None
    ) -> PaymentReceipt:
        """Cancel a receipt and give its amount back to the invoice balance."""
        receipt = await self._get_receipt(db, receipt_id)

        async with lock_service.hold(lock_service.invoice_key(receipt.invoice_id)):
            invoice = await self._get_invoice(db, receipt.invoice_id, for_update=True)
            receipt = await self._get_receipt(db, receipt_id, for_update=True)
            if receipt.cancelled_at is not None:
                raise ValidationError(f"Receipt {receipt.receipt_number} is already cancelled")
            if receipt.reconciled:
                raise ValidationError("A reconciled receipt cannot be cancelled")
            receipt.cancelled_at = _now()
            receipt.cancellation_reason = reason
            receipt.receipt_status = "cancelled"
            await self._reconcile_invoice(db, invoice)
            await db.commit()
        await db.refresh(receipt)
        await db.refresh(invoice)
        logger.info(
            f"Receipt {receipt.receipt_number} cancelled; {invoice.invoice_number} "
            f"outstanding {invoice.outstanding_amount}"
        )
        return receipt

    @retry_once_on_db_fault
    async def verify_receipt(self, db: AsyncSession, receipt_id: uuid.UUID) -> PaymentReceipt:
        receipt = await self._get_receipt(db, receipt_id)
        if receipt.cancelled_at is not None:
            raise ValidationError("A cancelled receipt cannot be verified")
        if not receipt.verified:
            receipt.verified = True
            receipt.verified_at = _now()
        await db.commit()
        await db.refresh(receipt)
        logger.info(f"Receipt {receipt.receipt_number} verified")
        return receipt

    @retry_once_on_db_fault
    async def reconcile_receipt(self, db: AsyncSession, receipt_id: uuid.UUID) -> PaymentReceipt:
        receipt = await self._get_receipt(db, receipt_id)
        if receipt.cancelled_at is not None:
            raise ValidationError("A cancelled receipt cannot be reconciled")
        if not receipt.verified:
            raise ValidationError("Verify the receipt before reconciling it")
        if not receipt.reconciled:
            receipt.reconciled = True
            receipt.reconciled_at = _now()
        await db.commit()
        await db.refresh(receipt)
        logger.info(f"Receipt {receipt.receipt_number} reconciled")
        return receipt


billing_service = BillingService()

"""Billing report service: lead billing summary, overdue listing and period financials."""

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from traveldesk.errors import NotFoundError, ValidationError
from traveldesk.models.billing import Invoice, PaymentReceipt, Quotation
from traveldesk.models.lead import Lead
from traveldesk.services.line_items import ZERO, round_money, to_money

logger = logging.getLogger(__name__)


class BillingReportService:
    """Read-only aggregates over saved billing documents."""

    async def lead_summary(self, db: AsyncSession, lead_id: uuid.UUID) -> dict:
        """Quoted, invoiced, paid and outstanding totals for one lead."""
        lead = (await db.execute(select(Lead).where(Lead.id == lead_id))).scalar_one_or_none()
        if not lead:
            raise NotFoundError(f"Lead {lead_id} not found")

        quoted = await db.execute(
            select(func.count(Quotation.id), func.sum(Quotation.total_amount)).where(
                and_(Quotation.lead_id == lead_id, Quotation.status.in_(("sent", "accepted")))
            )
        )
        quote_count, quoted_total = quoted.one()

        invoiced = await db.execute(
            select(func.count(Invoice.id), func.sum(Invoice.total_amount)).where(
                and_(Invoice.lead_id == lead_id, Invoice.status != "cancelled")
            )
        )
        invoice_count, invoiced_total = invoiced.one()

        paid = await db.execute(
            select(func.count(PaymentReceipt.id), func.sum(PaymentReceipt.amount)).where(
                and_(PaymentReceipt.lead_id == lead_id, PaymentReceipt.cancelled_at.is_(None))
            )
        )
        receipt_count, paid_total = paid.one()

        invoiced_total = to_money(invoiced_total)
        paid_total = to_money(paid_total)
        return {
            "lead_id": lead.id,
            "quotations": {"count": quote_count or 0, "total": round_money(to_money(quoted_total))},
            "invoices": {"count": invoice_count or 0, "total": round_money(invoiced_total)},
            "receipts": {"count": receipt_count or 0, "total": round_money(paid_total)},
            "outstanding": round_money(max(invoiced_total - paid_total, ZERO)),
        }

    async def overdue_invoices(self, db: AsyncSession, today: date | None = None) -> list[Invoice]:
        """Unpaid invoices past their due date, oldest due first."""
        today = today or datetime.now(timezone.utc).date()
        result = await db.execute(
            select(Invoice)
            .where(
                and_(
                    Invoice.status.in_(("sent", "partial", "overdue")),
                    Invoice.due_date < today,
                    Invoice.outstanding_amount > 0,
                )
            )
            .order_by(Invoice.due_date, Invoice.invoice_number)
        )
        return list(result.scalars().all())

    async def financial_report(self, db: AsyncSession, start: date, end: date) -> dict:
        """Revenue and collections for invoices issued between ``start`` and ``end`` inclusive."""
        if end < start:
            raise ValidationError("Report end date is before its start date")

        result = await db.execute(
            select(Invoice).where(and_(Invoice.issue_date >= start, Invoice.issue_date <= end))
        )
        invoices = list(result.scalars().all())

        status_breakdown: dict[str, int] = {}
        revenue = ZERO
        outstanding = ZERO
        for invoice in invoices:
            status_breakdown[invoice.status] = status_breakdown.get(invoice.status, 0) + 1
            if invoice.status == "cancelled":
                continue
            revenue += to_money(invoice.total_amount)
            outstanding += to_money(invoice.outstanding_amount)

        receipts = await db.execute(
            select(PaymentReceipt.payment_method, func.count(PaymentReceipt.id), func.sum(PaymentReceipt.amount))
            .where(
                and_(
                    PaymentReceipt.payment_date >= start,
                    PaymentReceipt.payment_date <= end,
                    PaymentReceipt.cancelled_at.is_(None),
                )
            )
            .group_by(PaymentReceipt.payment_method)
        )
        method_breakdown = {}
        collected = ZERO
        for method, count, amount in receipts.all():
            amount = round_money(to_money(amount))
            method_breakdown[method] = {"count": count, "amount": amount}
            collected += amount

        collection_rate = round_money(collected / revenue * 100) if revenue > 0 else Decimal("0.00")
        logger.info(f"Financial report {start}..{end}: revenue {revenue}, collected {collected}")
        return {
            "start": start,
            "end": end,
            "invoice_count": len(invoices),
            "total_revenue": round_money(revenue),
            "total_collected": round_money(collected),
            "total_outstanding": round_money(outstanding),
            "collection_rate": collection_rate,
            "payment_methods": method_breakdown,
            "invoice_statuses": status_breakdown,
        }


billing_report_service = BillingReportService()

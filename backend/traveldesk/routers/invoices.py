"""Invoice router: invoice edits, sending, cancellation and overdue listing."""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from traveldesk.database import get_db
from traveldesk.errors import BillingError
from traveldesk.schemas.billing import CancelRequest, InvoiceResponse, InvoiceUpdate, ReceiptResponse
from traveldesk.services.billing_report_service import billing_report_service
from traveldesk.services.billing_service import billing_service

router = APIRouter()


# Declared before /invoices/{invoice_id} so "overdue" is not parsed as an id
@router.get("/invoices/overdue", response_model=list[InvoiceResponse])
async def list_overdue_invoices(db: AsyncSession = Depends(get_db)):
    return await billing_report_service.overdue_invoices(db)


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(invoice_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await billing_service.get_invoice(db, invoice_id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/invoices/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: uuid.UUID,
    req: InvoiceUpdate,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await billing_service.update_invoice(db, invoice_id, req.model_dump(exclude_unset=True))
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/invoices/{invoice_id}/send", response_model=InvoiceResponse)
async def send_invoice(invoice_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await billing_service.send_invoice(db, invoice_id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/invoices/{invoice_id}/cancel", response_model=InvoiceResponse)
async def cancel_invoice(
    invoice_id: uuid.UUID,
    req: CancelRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await billing_service.cancel_invoice(db, invoice_id, req.reason if req else None)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/invoices/{invoice_id}/receipts", response_model=list[ReceiptResponse])
async def list_invoice_receipts(invoice_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await billing_service.list_invoice_receipts(db, invoice_id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

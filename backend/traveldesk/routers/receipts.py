"""Receipt router: record payments and manage receipt verification."""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from traveldesk.database import get_db
from traveldesk.errors import BillingError
from traveldesk.schemas.billing import CancelRequest, ReceiptCreate, ReceiptResponse, ReceiptUpdate
from traveldesk.services.billing_service import billing_service

router = APIRouter()


@router.post("/receipts", response_model=ReceiptResponse, status_code=201)
async def save_receipt(req: ReceiptCreate, db: AsyncSession = Depends(get_db)):
    """Record a payment. The amount must fit the invoice's outstanding balance."""
    data = req.model_dump(exclude={"invoice_id"})
    try:
        return await billing_service.save_receipt(db, req.invoice_id, data)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/receipts/{receipt_id}", response_model=ReceiptResponse)
async def update_receipt(
    receipt_id: uuid.UUID,
    req: ReceiptUpdate,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await billing_service.update_receipt(db, receipt_id, req.model_dump(exclude_unset=True))
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/receipts/{receipt_id}/cancel", response_model=ReceiptResponse)
async def cancel_receipt(
    receipt_id: uuid.UUID,
    req: CancelRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await billing_service.cancel_receipt(db, receipt_id, req.reason if req else None)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/receipts/{receipt_id}/verify", response_model=ReceiptResponse)
async def verify_receipt(receipt_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await billing_service.verify_receipt(db, receipt_id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/receipts/{receipt_id}/reconcile", response_model=ReceiptResponse)
async def reconcile_receipt(receipt_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await billing_service.reconcile_receipt(db, receipt_id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

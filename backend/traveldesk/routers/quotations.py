"""Quotation router: create, edit and move quotations through their lifecycle."""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from traveldesk.database import get_db
from traveldesk.errors import BillingError
from traveldesk.schemas.billing import (
    ConvertRequest,
    InvoiceResponse,
    QuotationCreate,
    QuotationResponse,
    QuotationUpdate,
    RejectRequest,
    TotalsPreviewRequest,
    TotalsResponse,
)
from traveldesk.services.billing_service import billing_service
from traveldesk.services.line_items import DiscountPolicy, LineItem
from traveldesk.services.totals_calculator import compute_totals

router = APIRouter()


@router.post("/totals/preview", response_model=TotalsResponse)
async def preview_totals(req: TotalsPreviewRequest):
    """Compute totals for unsaved items. Nothing is stored."""
    discount = DiscountPolicy(type=req.discount.type, value=req.discount.value)
    items = [LineItem.from_dict(i.model_dump()) for i in req.items]
    totals = compute_totals(items, discount, req.service_charge_rate, req.tax_rate, req.mode)
    return {**totals.as_dict(), "warnings": discount.warnings()}


@router.post("/quotations", response_model=QuotationResponse, status_code=201)
async def create_quotation(req: QuotationCreate, db: AsyncSession = Depends(get_db)):
    try:
        return await billing_service.create_quotation(db, req.model_dump())
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/quotations/{quotation_id}", response_model=QuotationResponse)
async def get_quotation(quotation_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await billing_service.get_quotation(db, quotation_id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/quotations/{quotation_id}", response_model=QuotationResponse)
async def update_quotation(
    quotation_id: uuid.UUID,
    req: QuotationUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Edit a quotation. Totals are always recomputed from the stored items."""
    try:
        return await billing_service.update_quotation(db, quotation_id, req.model_dump(exclude_unset=True))
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/quotations/{quotation_id}/send", response_model=QuotationResponse)
async def send_quotation(quotation_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await billing_service.send_quotation(db, quotation_id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/quotations/{quotation_id}/accept", response_model=QuotationResponse)
async def accept_quotation(quotation_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await billing_service.accept_quotation(db, quotation_id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/quotations/{quotation_id}/reject", response_model=QuotationResponse)
async def reject_quotation(
    quotation_id: uuid.UUID,
    req: RejectRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await billing_service.reject_quotation(db, quotation_id, req.reason if req else None)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/quotations/{quotation_id}/convert", response_model=InvoiceResponse, status_code=201)
async def convert_quotation(
    quotation_id: uuid.UUID,
    req: ConvertRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Create an invoice from the quotation."""
    additional = req.model_dump(exclude_none=True) if req else {}
    try:
        return await billing_service.convert_quotation_to_invoice(db, quotation_id, additional)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/leads/{lead_id}/quotations", response_model=list[QuotationResponse])
async def list_lead_quotations(lead_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await billing_service.list_lead_quotations(db, lead_id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

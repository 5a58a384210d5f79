"""Quotation draft router: the per-lead quotation being edited, mode toggles and item edits."""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from traveldesk.database import get_db
from traveldesk.errors import BillingError
from traveldesk.models.billing import QuotationDraft
from traveldesk.schemas.billing import (
    AddItemRequest,
    DraftResponse,
    EditItemRequest,
    ModeRequest,
    PackagePriceRequest,
    PricingIn,
    QuotationResponse,
    SaveDraftRequest,
)
from traveldesk.services.draft_service import draft_service
from traveldesk.services.mode_controller import ModeController

router = APIRouter()


def draft_response(draft: QuotationDraft, controller: ModeController) -> DraftResponse:
    totals = controller.totals()
    state = controller.state
    return DraftResponse(
        lead_id=draft.lead_id,
        mode=controller.mode,
        source_type=state.source_type,
        detailed_enabled=controller.detailed_enabled,
        items=[i.to_dict() for i in controller.items],
        editable=[controller.is_editable(n) for n in range(len(controller.items))],
        discount={"type": state.discount.type, "value": state.discount.value},
        service_charge_rate=state.service_charge_rate,
        tax_rate=state.tax_rate,
        totals={**totals.as_dict(), "warnings": state.discount.warnings()},
    )


@router.post("/leads/{lead_id}/draft", response_model=DraftResponse)
async def start_draft(lead_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    """Open a fresh draft for the lead, seeded from its itinerary source."""
    try:
        draft, controller = await draft_service.start_draft(db, lead_id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return draft_response(draft, controller)


@router.get("/leads/{lead_id}/draft", response_model=DraftResponse)
async def get_draft(lead_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    try:
        draft, controller = await draft_service.get_draft(db, lead_id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return draft_response(draft, controller)


@router.post("/leads/{lead_id}/draft/mode", response_model=DraftResponse)
async def set_mode(
    lead_id: uuid.UUID,
    req: ModeRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Switch to the requested mode, or toggle when no body is sent."""
    try:
        draft, controller = await draft_service.set_mode(db, lead_id, req.mode if req else None)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return draft_response(draft, controller)


@router.post("/leads/{lead_id}/draft/items", response_model=DraftResponse, status_code=201)
async def add_item(lead_id: uuid.UUID, req: AddItemRequest, db: AsyncSession = Depends(get_db)):
    try:
        draft, controller = await draft_service.add_item(db, lead_id, req.model_dump())
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return draft_response(draft, controller)


@router.patch("/leads/{lead_id}/draft/items/{index}", response_model=DraftResponse)
async def edit_item(
    lead_id: uuid.UUID,
    index: int,
    req: EditItemRequest,
    db: AsyncSession = Depends(get_db),
):
    try:
        draft, controller = await draft_service.edit_item(db, lead_id, index, req.field, req.value)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return draft_response(draft, controller)


@router.delete("/leads/{lead_id}/draft/items/{index}", response_model=DraftResponse)
async def remove_item(lead_id: uuid.UUID, index: int, db: AsyncSession = Depends(get_db)):
    try:
        draft, controller = await draft_service.remove_item(db, lead_id, index)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return draft_response(draft, controller)


@router.put("/leads/{lead_id}/draft/package-price", response_model=DraftResponse)
async def set_package_price(
    lead_id: uuid.UUID,
    req: PackagePriceRequest,
    db: AsyncSession = Depends(get_db),
):
    try:
        draft, controller = await draft_service.set_package_price(db, lead_id, req.amount)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return draft_response(draft, controller)


@router.put("/leads/{lead_id}/draft/pricing", response_model=DraftResponse)
async def set_pricing(lead_id: uuid.UUID, req: PricingIn, db: AsyncSession = Depends(get_db)):
    try:
        draft, controller = await draft_service.set_pricing(db, lead_id, req.model_dump())
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return draft_response(draft, controller)


@router.post("/leads/{lead_id}/draft/save", response_model=QuotationResponse, status_code=201)
async def save_draft(
    lead_id: uuid.UUID,
    req: SaveDraftRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Save the draft as a numbered quotation."""
    extra = req.model_dump(exclude_none=True) if req else {}
    try:
        return await draft_service.save_draft(db, lead_id, extra)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

"""Billing reports router: per-lead summary and period financials."""

import uuid
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from traveldesk.database import get_db
from traveldesk.errors import BillingError
from traveldesk.services.billing_report_service import billing_report_service

router = APIRouter()


@router.get("/leads/{lead_id}/summary")
async def lead_billing_summary(lead_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    try:
        return await billing_report_service.lead_summary(db, lead_id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/reports/financial")
async def financial_report(
    start: date = Query(...),
    end: date = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Revenue, collections and outstanding for invoices issued in [start, end]."""
    try:
        return await billing_report_service.financial_report(db, start, end)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

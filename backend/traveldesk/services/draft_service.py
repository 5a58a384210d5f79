"""Draft service: persists each lead's quotation-in-edit and drives the mode controller."""

import logging
import uuid
from types import SimpleNamespace

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from traveldesk.config import settings
from traveldesk.database import retry_once_on_db_fault
from traveldesk.errors import NotFoundError, ValidationError
from traveldesk.models.billing import Quotation, QuotationDraft
from traveldesk.models.lead import Lead
from traveldesk.services.billing_service import apply_pricing, billing_service
from traveldesk.services.itinerary_resolver import (
    CatalogItineraryProvider,
    ItineraryProvider,
    ResolvedItinerary,
    itinerary_resolver,
)
from traveldesk.services.line_items import DiscountPolicy, items_from_json, items_to_json, to_money
from traveldesk.services.lock_service import lock_service
from traveldesk.services.mode_controller import DraftState, ModeController

logger = logging.getLogger(__name__)


def controller_for(draft: QuotationDraft) -> ModeController:
    return ModeController(
        DraftState(
            mode=draft.mode or "summary",
            source_type=draft.source_type or "none",
            items=items_from_json(draft.items),
            discount=DiscountPolicy(type=draft.discount_type or "none", value=to_money(draft.discount_value)),
            service_charge_rate=to_money(draft.service_charge_rate),
            tax_rate=to_money(draft.tax_rate),
        )
    )


def store_state(draft: QuotationDraft, controller: ModeController) -> None:
    state = controller.state
    draft.mode = state.mode
    draft.source_type = state.source_type
    draft.items = items_to_json(state.items)
    draft.discount_type = state.discount.type
    draft.discount_value = state.discount.value
    draft.service_charge_rate = state.service_charge_rate
    draft.tax_rate = state.tax_rate


class DraftService:
    """One editable quotation per lead. Mutations run under that lead's draft lock."""

    def __init__(self, provider_factory=CatalogItineraryProvider):
        self.provider_factory = provider_factory

    async def _get_lead(self, db: AsyncSession, lead_id: uuid.UUID) -> Lead:
        lead = (await db.execute(select(Lead).where(Lead.id == lead_id))).scalar_one_or_none()
        if not lead:
            raise NotFoundError(f"Lead {lead_id} not found")
        return lead

    async def _find_draft(self, db: AsyncSession, lead_id: uuid.UUID) -> QuotationDraft | None:
        result = await db.execute(
            select(QuotationDraft)
            .where(QuotationDraft.lead_id == lead_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _get_draft(self, db: AsyncSession, lead_id: uuid.UUID) -> QuotationDraft:
        draft = await self._find_draft(db, lead_id)
        if not draft:
            raise NotFoundError(f"No quotation draft for lead {lead_id}")
        return draft

    async def _resolve(self, db: AsyncSession, lead: Lead) -> ResolvedItinerary:
        provider: ItineraryProvider = self.provider_factory(db)
        return await itinerary_resolver.resolve(lead, provider)

    async def get_draft(self, db: AsyncSession, lead_id: uuid.UUID) -> tuple[QuotationDraft, ModeController]:
        draft = await self._get_draft(db, lead_id)
        return draft, controller_for(draft)

    @retry_once_on_db_fault
    async def start_draft(self, db: AsyncSession, lead_id: uuid.UUID) -> tuple[QuotationDraft, ModeController]:
        """Open (or reopen from scratch) the lead's draft in summary mode."""
        lead = await self._get_lead(db, lead_id)
        async with lock_service.hold(lock_service.draft_key(lead_id), wait=False):
            resolved = await self._resolve(db, lead)
            controller = ModeController(DraftState(tax_rate=to_money(settings.default_tax_rate)))
            controller.load(resolved)

            draft = await self._find_draft(db, lead_id)
            if draft is None:
                draft = QuotationDraft(id=uuid.uuid4(), lead_id=lead.id)
                db.add(draft)
            draft.package_id = resolved.package_id
            store_state(draft, controller)
            await db.commit()
        await db.refresh(draft)
        logger.info(
            f"Draft for lead {lead_id} started from {resolved.source_type} source "
            f"({len(controller.items)} items)"
        )
        return draft, controller

    async def _mutate(self, db: AsyncSession, lead_id: uuid.UUID, change) -> tuple[QuotationDraft, ModeController]:
        """Load the draft, apply ``change(controller, lead)`` and store the result."""
        async with lock_service.hold(lock_service.draft_key(lead_id), wait=False):
            draft = await self._get_draft(db, lead_id)
            lead = await self._get_lead(db, lead_id)
            controller = controller_for(draft)
            await change(controller, lead)
            store_state(draft, controller)
            await db.commit()
        await db.refresh(draft)
        return draft, controller

    @retry_once_on_db_fault
    async def set_mode(self, db: AsyncSession, lead_id: uuid.UUID, mode: str | None = None):
        """Switch the draft's mode, or flip it when ``mode`` is None.

        The itinerary is re-resolved first so the latest source wins. A lead
        with no itinerary source stays in summary mode.
        """

        async def change(controller: ModeController, lead: Lead):
            async def refresh():
                return await self._resolve(db, lead)

            if mode is None:
                await controller.toggle(refresh)
            elif mode == "detailed":
                await controller.enter_detailed(refresh)
            elif mode == "summary":
                await controller.enter_summary(refresh)
            else:
                raise ValidationError(f"Unknown mode '{mode}'")

        draft, controller = await self._mutate(db, lead_id, change)
        logger.info(f"Draft for lead {lead_id} now in {controller.mode} mode")
        return draft, controller

    @retry_once_on_db_fault
    async def add_item(self, db: AsyncSession, lead_id: uuid.UUID, data: dict):
        async def change(controller: ModeController, lead: Lead):
            if controller.add_item(**data) is None:
                raise ValidationError("Items can only be added in detailed mode")

        return await self._mutate(db, lead_id, change)

    @retry_once_on_db_fault
    async def edit_item(self, db: AsyncSession, lead_id: uuid.UUID, index: int, field_name: str, value):
        async def change(controller: ModeController, lead: Lead):
            if not controller.edit_item(index, field_name, value):
                raise ValidationError(f"Item {index} field '{field_name}' is not editable in {controller.mode} mode")

        return await self._mutate(db, lead_id, change)

    @retry_once_on_db_fault
    async def remove_item(self, db: AsyncSession, lead_id: uuid.UUID, index: int):
        async def change(controller: ModeController, lead: Lead):
            if not controller.remove_item(index):
                raise ValidationError(f"Item {index} cannot be removed")

        return await self._mutate(db, lead_id, change)

    @retry_once_on_db_fault
    async def set_package_price(self, db: AsyncSession, lead_id: uuid.UUID, amount):
        async def change(controller: ModeController, lead: Lead):
            if not controller.set_package_price(amount):
                raise ValidationError("The package price can only be set in summary mode")

        return await self._mutate(db, lead_id, change)

    @retry_once_on_db_fault
    async def set_pricing(self, db: AsyncSession, lead_id: uuid.UUID, data: dict):
        """Update discount, service charge and tax parameters on the draft."""

        async def change(controller: ModeController, lead: Lead):
            holder = SimpleNamespace(
                discount_type=controller.state.discount.type,
                discount_value=controller.state.discount.value,
                service_charge_rate=controller.state.service_charge_rate,
                tax_rate=controller.state.tax_rate,
            )
            apply_pricing(holder, {k: data.get(k) for k in ("discount", "service_charge_rate", "tax_rate")})
            controller.state.discount = DiscountPolicy(type=holder.discount_type, value=to_money(holder.discount_value))
            controller.state.service_charge_rate = to_money(holder.service_charge_rate)
            controller.state.tax_rate = to_money(holder.tax_rate)

        return await self._mutate(db, lead_id, change)

    @retry_once_on_db_fault
    async def save_draft(self, db: AsyncSession, lead_id: uuid.UUID, extra: dict | None = None) -> Quotation:
        """Save the draft as a quotation and clear it."""
        async with lock_service.hold(lock_service.draft_key(lead_id), wait=False):
            draft = await self._get_draft(db, lead_id)
            controller = controller_for(draft)
            items = controller.items_for_submission()
            if not items:
                raise ValidationError("Add at least one described item before saving")

            quotation = await billing_service.build_quotation(
                db,
                {
                    **(extra or {}),
                    "lead_id": lead_id,
                    "package_id": draft.package_id,
                    "mode": controller.mode,
                    "items": items,
                    "discount": controller.state.discount,
                    "service_charge_rate": controller.state.service_charge_rate,
                    "tax_rate": controller.state.tax_rate,
                },
            )
            await db.delete(draft)
            await db.commit()
        await db.refresh(quotation)
        logger.info(f"Draft for lead {lead_id} saved as {quotation.quotation_number}")
        return quotation


draft_service = DraftService()

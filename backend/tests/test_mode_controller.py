import asyncio
from decimal import Decimal

import pytest

from traveldesk.errors import ConflictError, ValidationError
from traveldesk.services.itinerary_resolver import ResolvedItinerary, normalize_days
from traveldesk.services.mode_controller import DraftState, ModeController


def resolved(days, source_type="package", price="1000"):
    return ResolvedItinerary(
        source_type=source_type,
        days=normalize_days(days),
        package_name="Bali Escape",
        package_price=Decimal(price) if price is not None else None,
    )


def refresher(result):
    async def refresh():
        return result

    return refresh


@pytest.fixture
def controller(bali_days):
    c = ModeController(DraftState(tax_rate=Decimal("10")))
    c.load(resolved(bali_days))
    return c


def test_load_seeds_package_item_first_in_summary(controller):
    assert controller.mode == "summary"
    first = controller.items[0]
    assert first.description == "Bali Escape Package"
    assert first.category == "package"
    assert first.total_price == Decimal("1000")
    assert controller.totals().total_amount == Decimal("1100")


async def test_enter_detailed_excludes_package_from_totals(controller, bali_days):
    assert await controller.enter_detailed(refresher(resolved(bali_days)))
    controller.edit_item(1, "unit_price", "200")
    controller.edit_item(2, "total_price", "50")

    totals = controller.totals()

    assert controller.mode == "detailed"
    assert controller.items[0].is_package
    assert totals.subtotal == Decimal("250")


async def test_toggle_round_trip_keeps_descriptions_and_package_price(controller, bali_days):
    refresh = refresher(resolved(bali_days))
    controller.set_package_price("1250")
    summary_view = [(i.description, i.category) for i in controller.items]

    await controller.toggle(refresh)
    detailed_view = [(i.description, i.category) for i in controller.items]
    await controller.toggle(refresh)

    assert [(i.description, i.category) for i in controller.items] == summary_view
    assert controller.package_item.total_price == Decimal("1250")
    await controller.toggle(refresh)
    assert [(i.description, i.category) for i in controller.items] == detailed_view


async def test_reentering_detailed_resets_extracted_prices(controller, bali_days):
    refresh = refresher(resolved(bali_days))
    await controller.enter_detailed(refresh)
    controller.edit_item(1, "unit_price", "300")
    controller.add_item("Travel insurance", "other", 2, "15")

    await controller.enter_summary(refresh)
    await controller.enter_detailed(refresh)

    assert controller.items[1].total_price == Decimal("0")
    assert all(i.description != "Travel insurance" for i in controller.items)


async def test_no_source_disables_detailed_mode():
    c = ModeController(DraftState())
    c.load(ResolvedItinerary(source_type="none"))

    changed = await c.toggle(refresher(ResolvedItinerary(source_type="none")))

    assert changed is False
    assert c.mode == "summary"
    assert not c.detailed_enabled


async def test_toggle_while_loading_is_rejected(controller, bali_days):
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow_refresh():
        started.set()
        await release.wait()
        return resolved(bali_days)

    first = asyncio.create_task(controller.toggle(slow_refresh))
    await started.wait()

    with pytest.raises(ConflictError):
        await controller.toggle(refresher(resolved(bali_days)))

    release.set()
    assert await first
    assert controller.mode == "detailed"


def test_summary_mode_only_package_is_editable(controller):
    assert controller.is_editable(0)
    assert not controller.is_editable(1)
    assert not controller.edit_item(1, "unit_price", "10")


def test_summary_package_item_keeps_its_identity(controller):
    assert not controller.edit_item(0, "category", "activity")
    assert not controller.edit_item(0, "description", "Something else")
    assert controller.edit_item(0, "notes", "Flights not included")

    assert controller.package_item is controller.items[0]
    assert controller.package_item.description == "Bali Escape Package"
    assert controller.totals().subtotal == Decimal("1000")


@pytest.mark.parametrize(
    "field_name, value",
    [("total_price", "-500"), ("unit_price", "-1"), ("quantity", "0"), ("quantity", "-2"), ("unit_price", "NaN"), ("total_price", "Infinity")],
)
def test_invalid_package_amounts_rejected(controller, field_name, value):
    with pytest.raises(ValidationError):
        controller.edit_item(0, field_name, value)

    assert controller.package_item.total_price == Decimal("1000")
    assert controller.totals().subtotal == Decimal("1000")


def test_negative_package_price_rejected(controller):
    with pytest.raises(ValidationError):
        controller.set_package_price("-10")
    with pytest.raises(ValidationError):
        controller.set_package_price("NaN")

    assert controller.package_item.total_price == Decimal("1000")


def test_package_price_synthesizes_package_total():
    c = ModeController(DraftState())
    c.load(ResolvedItinerary(source_type="none"))

    assert c.set_package_price("750")

    assert c.items[0].description == "Package Total"
    assert c.items[0].category == "package"
    assert c.totals().subtotal == Decimal("750")


async def test_items_only_added_in_detailed_mode(controller, bali_days):
    assert controller.add_item("Visa fee") is None

    await controller.enter_detailed(refresher(resolved(bali_days)))
    added = controller.add_item("Visa fee", "package", 1, "35")

    assert added.category == "other"
    assert added.origin == "manual"
    assert controller.items[-1] is added

    with pytest.raises(ValidationError):
        controller.add_item("Refund", "other", 1, "-35")


async def test_manual_item_cannot_become_package(controller, bali_days):
    await controller.enter_detailed(refresher(resolved(bali_days)))
    controller.add_item("Visa fee", "other", 1, "35")

    assert not controller.edit_item(len(controller.items) - 1, "category", "package")
    assert controller.edit_item(len(controller.items) - 1, "category", "activity")
    assert [i for i in controller.items if i.is_package] == [controller.items[0]]


async def test_extracted_description_is_read_only_in_detailed(controller, bali_days):
    await controller.enter_detailed(refresher(resolved(bali_days)))

    assert not controller.edit_item(1, "description", "Different hotel")
    assert controller.edit_item(1, "notes", "Sea view")
    assert not controller.is_editable(0)


async def test_remove_keeps_one_visible_item():
    days = [{"dayNumber": 1, "activities": ["Only tour"]}]
    c = ModeController(DraftState())
    c.load(resolved(days))
    await c.enter_detailed(refresher(resolved(days)))
    c.add_item("Extra")

    assert c.remove_item(2)
    assert not c.remove_item(1)
    assert not c.remove_item(0)


async def test_submission_drops_blank_items_and_detailed_package(controller, bali_days):
    await controller.enter_detailed(refresher(resolved(bali_days)))
    controller.add_item("   ")

    submitted = controller.items_for_submission()

    assert all(i.description.strip() for i in submitted)
    assert not any(i.is_package for i in submitted)
    assert len(submitted) == 10

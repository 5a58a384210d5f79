"""Mode controller: explicit state for the quotation being edited.

Summary mode shows one editable package price plus a read-only list of
itinerary items; detailed mode prices each itinerary item individually and
leaves the package item out of the totals. Every mode change re-runs the
extractor over the latest itinerary, so what a toggle discards is fixed:

* entering detailed drops every non-package item and re-extracts, which
  resets prices on extracted items;
* entering summary drops manual items and re-extracts the display list;
* the package item, and the price on it, survives every toggle.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal

from traveldesk.errors import ConflictError, ValidationError
from traveldesk.services.itinerary_resolver import ResolvedItinerary
from traveldesk.services.line_item_extractor import extract_items
from traveldesk.services.line_items import (
    CATEGORIES,
    ONE,
    PACKAGE_TOTAL_DESCRIPTION,
    ZERO,
    DiscountPolicy,
    LineItem,
    apply_item_edit,
    to_money,
)
from traveldesk.services.totals_calculator import Totals, compute_totals

logger = logging.getLogger(__name__)

PRICE_FIELDS = frozenset({"quantity", "unit_price", "total_price"})
PACKAGE_FIELDS = PRICE_FIELDS | {"notes"}

Refresh = Callable[[], Awaitable[ResolvedItinerary]]


@dataclass
class DraftState:
    mode: str = "summary"
    source_type: str = "none"
    items: list[LineItem] = field(default_factory=list)
    discount: DiscountPolicy = field(default_factory=DiscountPolicy)
    service_charge_rate: Decimal = ZERO
    tax_rate: Decimal = ZERO


def package_line(name: str | None, price: Decimal, customized: bool = False) -> LineItem:
    label = f"{name.strip()} Package" if name and name.strip() else PACKAGE_TOTAL_DESCRIPTION
    return LineItem(
        description=label,
        category="package",
        quantity=ONE,
        unit_price=price,
        total_price=price,
        notes="Customized package" if customized else "",
        origin="extracted",
    )


class ModeController:
    def __init__(self, state: DraftState):
        self.state = state
        self.loading = False

    @property
    def mode(self) -> str:
        return self.state.mode

    @property
    def items(self) -> list[LineItem]:
        return self.state.items

    @property
    def package_item(self) -> LineItem | None:
        return next((i for i in self.state.items if i.is_package), None)

    @property
    def detailed_enabled(self) -> bool:
        return self.state.source_type != "none"

    # ── Loading ────────────────────────────────────────────────────────────

    def load(self, resolved: ResolvedItinerary) -> None:
        """Seed a fresh draft: package item from the catalog price, summary display list."""
        self.state.source_type = resolved.source_type
        package = self.package_item
        if resolved.package_price is not None and resolved.source_type in ("package", "customized"):
            package = package_line(
                resolved.package_name, resolved.package_price, resolved.source_type == "customized"
            )
        self.state.mode = "summary"
        self.state.items = self._with_package(package, extract_items(resolved.days))

    def _with_package(self, package: LineItem | None, rest: list[LineItem]) -> list[LineItem]:
        return ([package] if package else []) + [i for i in rest if not i.is_package]

    async def _refresh(self, refresh: Refresh) -> ResolvedItinerary:
        if self.loading:
            raise ConflictError("Itinerary is still loading, try again in a moment")
        self.loading = True
        try:
            return await refresh()
        finally:
            self.loading = False

    # ── Mode changes ───────────────────────────────────────────────────────

    async def enter_detailed(self, refresh: Refresh) -> bool:
        """Switch to detailed mode. No-op (False) when the lead has no itinerary source."""
        resolved = await self._refresh(refresh)
        self.state.source_type = resolved.source_type
        if not resolved.has_source:
            logger.info("No itinerary source, detailed mode unavailable")
            return False
        self.state.items = self._with_package(self.package_item, extract_items(resolved.days))
        self.state.mode = "detailed"
        return True

    async def enter_summary(self, refresh: Refresh) -> bool:
        resolved = await self._refresh(refresh)
        self.state.source_type = resolved.source_type
        self.state.items = self._with_package(self.package_item, extract_items(resolved.days))
        self.state.mode = "summary"
        return True

    async def toggle(self, refresh: Refresh) -> bool:
        if self.state.mode == "detailed":
            return await self.enter_summary(refresh)
        return await self.enter_detailed(refresh)

    # ── Item edits ─────────────────────────────────────────────────────────

    def is_editable(self, index: int, field_name: str = "unit_price") -> bool:
        if not 0 <= index < len(self.state.items):
            return False
        item = self.state.items[index]
        if self.state.mode == "summary":
            return item.is_package and field_name in PACKAGE_FIELDS
        if item.is_package:
            return False
        # Extracted descriptions stay byte-identical to the itinerary
        return item.origin == "manual" or field_name in PRICE_FIELDS or field_name == "notes"

    def edit_item(self, index: int, field_name: str, value) -> bool:
        if not self.is_editable(index, field_name):
            return False
        item = self.state.items[index]
        if field_name == "category" and (item.is_package or value == "package" or value not in CATEGORIES):
            return False
        apply_item_edit(item, field_name, value)
        return True

    def set_package_price(self, amount) -> bool:
        """Set the package price in summary mode, creating a "Package Total" line if needed."""
        if self.state.mode != "summary":
            return False
        price = to_money(amount)
        if price < 0:
            raise ValidationError("Package price cannot be negative")
        package = self.package_item
        if package is None:
            package = package_line(None, price)
            package.origin = "manual"
            self.state.items.insert(0, package)
        else:
            apply_item_edit(package, "total_price", price)
        return True

    def add_item(
        self,
        description: str = "",
        category: str = "other",
        quantity=ONE,
        unit_price=ZERO,
        notes: str = "",
    ) -> LineItem | None:
        """Append a manual item. Only allowed in detailed mode."""
        if self.state.mode != "detailed":
            return None
        if category == "package" or category not in CATEGORIES:
            category = "other"
        qty = to_money(quantity) or ONE
        price = to_money(unit_price)
        if qty < 0 or price < 0:
            raise ValidationError("Quantity and unit price cannot be negative")
        item = LineItem(
            description=description,
            category=category,
            quantity=qty,
            unit_price=price,
            total_price=qty * price,
            notes=notes,
            origin="manual",
        )
        self.state.items.append(item)
        return item

    def remove_item(self, index: int) -> bool:
        """Remove a non-package item in detailed mode, keeping at least one visible item."""
        if self.state.mode != "detailed" or not 0 <= index < len(self.state.items):
            return False
        if self.state.items[index].is_package:
            return False
        visible = [i for i in self.state.items if not i.is_package]
        if len(visible) <= 1:
            return False
        del self.state.items[index]
        return True

    # ── Output ─────────────────────────────────────────────────────────────

    def items_for_submission(self) -> list[LineItem]:
        items = [i for i in self.state.items if i.description and i.description.strip()]
        if self.state.mode == "detailed":
            items = [i for i in items if not i.is_package]
        return items

    def totals(self) -> Totals:
        return compute_totals(
            self.items_for_submission(),
            self.state.discount,
            self.state.service_charge_rate,
            self.state.tax_rate,
            self.state.mode,
        )

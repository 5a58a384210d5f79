"""Line item and discount types shared by the extractor, mode controller and totals calculator."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from traveldesk.errors import ValidationError

ZERO = Decimal("0")
ONE = Decimal("1")
CENT = Decimal("0.01")

CATEGORIES = frozenset({"package", "accommodation", "transportation", "food", "activity", "other"})
ORIGINS = frozenset({"extracted", "manual"})
DISCOUNT_TYPES = frozenset({"none", "percentage", "fixed"})
MODES = frozenset({"summary", "detailed"})

PACKAGE_TOTAL_DESCRIPTION = "Package Total"


def to_money(value) -> Decimal:
    """Coerce a number, numeric string or None into a Decimal without float drift.

    Unparseable input counts as zero. NaN and infinities are rejected.
    """
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            return ZERO
    if not amount.is_finite():
        raise ValidationError(f"'{value}' is not a valid amount")
    return amount


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class LineItem:
    description: str
    category: str = "other"  # package | accommodation | transportation | food | activity | other
    quantity: Decimal = ONE
    unit_price: Decimal = ZERO
    total_price: Decimal | None = ZERO
    notes: str = ""
    origin: str = "manual"  # extracted | manual

    @property
    def is_package(self) -> bool:
        return self.category == "package"

    @property
    def line_total(self) -> Decimal:
        if self.total_price is not None:
            return self.total_price
        return self.quantity * self.unit_price

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "category": self.category,
            "quantity": str(self.quantity),
            "unit_price": str(self.unit_price),
            "total_price": str(self.total_price) if self.total_price is not None else None,
            "notes": self.notes,
            "origin": self.origin,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        total = data.get("total_price")
        return cls(
            description=data.get("description") or "",
            category=data.get("category") or "other",
            quantity=to_money(data.get("quantity", 1)) or ONE,
            unit_price=to_money(data.get("unit_price")),
            total_price=to_money(total) if total is not None else None,
            notes=data.get("notes") or "",
            origin=data.get("origin") or "manual",
        )


@dataclass
class DiscountPolicy:
    type: str = "none"  # none | percentage | fixed
    value: Decimal = ZERO

    def warnings(self) -> list[str]:
        if self.type == "percentage" and self.value > 100:
            return [f"Percentage discount of {self.value}% exceeds 100%"]
        return []


def apply_item_edit(item: LineItem, field_name: str, value) -> LineItem:
    """Apply a single-field edit, keeping quantity, unit price and total consistent.

    Editing quantity or unit_price recomputes total_price. Editing total_price
    directly makes it authoritative: unit_price follows it and quantity drops to 1.
    Quantities must stay positive and prices non-negative.
    """
    if field_name in ("quantity", "unit_price", "total_price"):
        amount = to_money(value)
        if field_name == "quantity" and amount <= 0:
            raise ValidationError("Quantity must be positive")
        if amount < 0:
            raise ValidationError(f"{field_name.replace('_', ' ').capitalize()} cannot be negative")
        value = amount

    if field_name == "quantity":
        item.quantity = value
        item.total_price = item.quantity * item.unit_price
    elif field_name == "unit_price":
        item.unit_price = value
        item.total_price = item.quantity * item.unit_price
    elif field_name == "total_price":
        item.total_price = value
        item.unit_price = value
        item.quantity = ONE
    elif field_name == "description":
        item.description = str(value or "")
    elif field_name == "notes":
        item.notes = str(value or "")
    elif field_name == "category":
        item.category = value if value in CATEGORIES else "other"
    return item


def items_from_json(raw: list | None) -> list[LineItem]:
    return [LineItem.from_dict(d) for d in (raw or [])]


def items_to_json(items: list[LineItem]) -> list[dict]:
    return [i.to_dict() for i in items]

"""Totals calculator: turns line items and pricing parameters into document totals."""

from dataclasses import dataclass
from decimal import Decimal

from traveldesk.services.line_items import ZERO, DiscountPolicy, LineItem, round_money, to_money


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount_amount: Decimal
    service_charge_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal

    def as_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "service_charge_amount": self.service_charge_amount,
            "taxable_amount": self.taxable_amount,
            "tax_amount": self.tax_amount,
            "total_amount": self.total_amount,
        }


def select_priced_items(items: list[LineItem], mode: str) -> list[LineItem]:
    """Items that contribute to the subtotal in the given presentation mode.

    Detailed mode prices every itinerary item and ignores the package item;
    summary mode prices the package item alone.
    """
    if mode == "detailed":
        return [i for i in items if not i.is_package]
    return [i for i in items if i.is_package]


def compute_totals(
    items: list[LineItem],
    discount: DiscountPolicy | None,
    service_charge_rate,
    tax_rate,
    mode: str,
) -> Totals:
    """
    Compute document totals.

    Each derived amount is rounded to cents before it feeds the next step, so
    subtotal - discount + service charge + tax always equals the total.
    A discount larger than the subtotal yields a negative taxable amount;
    nothing is clamped.
    """
    discount = discount or DiscountPolicy()
    sc_rate = to_money(service_charge_rate)
    t_rate = to_money(tax_rate)

    subtotal = round_money(sum((i.line_total for i in select_priced_items(items, mode)), ZERO))

    if discount.type == "percentage":
        discount_amount = round_money(subtotal * discount.value / 100)
    elif discount.type == "fixed":
        discount_amount = round_money(discount.value)
    else:
        discount_amount = round_money(ZERO)

    service_charge_amount = round_money(subtotal * sc_rate / 100)
    taxable_amount = subtotal - discount_amount + service_charge_amount
    tax_amount = round_money(taxable_amount * t_rate / 100)
    total_amount = taxable_amount + tax_amount

    return Totals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        service_charge_amount=service_charge_amount,
        taxable_amount=taxable_amount,
        tax_amount=tax_amount,
        total_amount=total_amount,
    )

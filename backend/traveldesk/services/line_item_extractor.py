"""Line-item extractor: derives priceable candidate items from normalized itinerary days."""

from traveldesk.services.itinerary_resolver import NormalizedDay
from traveldesk.services.line_items import ONE, ZERO, LineItem


def _extracted(description: str, category: str, notes: str | None = None) -> LineItem:
    # Prices are always entered by staff, never inferred from the itinerary
    return LineItem(
        description=description,
        category=category,
        quantity=ONE,
        unit_price=ZERO,
        total_price=ZERO,
        notes=notes or "",
        origin="extracted",
    )


def extract_day_items(day: NormalizedDay) -> list[LineItem]:
    """Items for one day: accommodation, transport, meals, activities, then places."""
    n = day.day_number
    items: list[LineItem] = []

    if day.accommodation and day.accommodation.name:
        acc = day.accommodation
        items.append(
            _extracted(
                f"Day {n}: {acc.name} - {acc.type or 'Accommodation'}",
                "accommodation",
                acc.address,
            )
        )

    if day.transport:
        items.append(_extracted(f"Day {n}: {day.transport} Transportation", "transportation"))

    meals = day.meals.included()
    if meals:
        items.append(_extracted(f"Day {n}: Meals ({', '.join(meals)})", "food"))

    for activity in day.activities:
        items.append(_extracted(f"Day {n}: {activity}", "activity"))

    for place in day.places:
        items.append(_extracted(f"Day {n}: {place.name or 'Place visit'}", "activity", place.description))

    return items


def extract_items(days: list[NormalizedDay]) -> list[LineItem]:
    """
    Extract candidate line items from itinerary days.

    Pure and order-deterministic: the same days always yield the same
    descriptions in the same order. Days contributing nothing emit nothing.
    """
    items: list[LineItem] = []
    for day in sorted(days, key=lambda d: d.day_number):
        items.extend(extract_day_items(day))
    return items

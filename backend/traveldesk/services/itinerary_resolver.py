"""Itinerary source resolver: picks the lead's day-by-day source and normalizes its days."""

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from traveldesk.errors import UpstreamUnavailable
from traveldesk.models.lead import CustomizedPackage, ManualItinerary, Package
from traveldesk.services.line_items import to_money

logger = logging.getLogger(__name__)

SOURCE_TYPES = ("customized", "package", "manual", "none")


@dataclass
class Accommodation:
    name: str
    type: str | None = None
    address: str | None = None


@dataclass
class Meals:
    breakfast: bool = False
    lunch: bool = False
    dinner: bool = False

    def included(self) -> list[str]:
        names = []
        if self.breakfast:
            names.append("Breakfast")
        if self.lunch:
            names.append("Lunch")
        if self.dinner:
            names.append("Dinner")
        return names


@dataclass
class Place:
    name: str | None = None
    description: str | None = None


@dataclass
class NormalizedDay:
    day_number: int
    accommodation: Accommodation | None = None
    transport: str | None = None
    meals: Meals = field(default_factory=Meals)
    activities: list[str] = field(default_factory=list)
    places: list[Place] = field(default_factory=list)


@dataclass
class ResolvedItinerary:
    source_type: str  # customized | package | manual | none
    days: list[NormalizedDay] = field(default_factory=list)
    package_id: uuid.UUID | None = None
    package_name: str | None = None
    package_price: Decimal | None = None

    @property
    def has_source(self) -> bool:
        return self.source_type != "none"


class ItineraryProvider(Protocol):
    """Inbound lookups for itinerary detail. Each returns None when not found."""

    async def get_package(self, package_id: uuid.UUID) -> dict | None: ...

    async def get_customized_package(self, package_id: uuid.UUID) -> dict | None: ...

    async def get_manual_itinerary(self, lead_id: uuid.UUID) -> dict | None: ...

    async def get_package_price(self, package_id: uuid.UUID) -> Decimal | None: ...


def _itinerary_days(itinerary: dict | list | None) -> list:
    if isinstance(itinerary, list):
        return itinerary
    if isinstance(itinerary, dict):
        return itinerary.get("days") or []
    return []


class CatalogItineraryProvider:
    """Reads packages and manual itineraries from the catalog tables."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _fetch(self, stmt):
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise UpstreamUnavailable(f"Itinerary lookup failed: {e}") from e
        return result.scalar_one_or_none()

    async def get_package(self, package_id: uuid.UUID) -> dict | None:
        pkg = await self._fetch(select(Package).where(Package.id == package_id))
        if not pkg:
            return None
        return {"name": pkg.name, "price": pkg.price, "days": _itinerary_days(pkg.itinerary)}

    async def get_customized_package(self, package_id: uuid.UUID) -> dict | None:
        pkg = await self._fetch(select(CustomizedPackage).where(CustomizedPackage.id == package_id))
        if not pkg:
            return None
        return {"name": pkg.name, "price": pkg.price, "days": _itinerary_days(pkg.itinerary)}

    async def get_manual_itinerary(self, lead_id: uuid.UUID) -> dict | None:
        itinerary = await self._fetch(select(ManualItinerary).where(ManualItinerary.lead_id == lead_id))
        if not itinerary:
            return None
        return {"days": _itinerary_days(itinerary.days)}

    async def get_package_price(self, package_id: uuid.UUID) -> Decimal | None:
        pkg = await self._fetch(select(Package).where(Package.id == package_id))
        return pkg.price if pkg else None


def normalize_day(raw: dict, position: int) -> NormalizedDay:
    """Normalize one stored day. Missing day numbers fall back to position + 1."""
    day_number = raw.get("day_number", raw.get("dayNumber"))
    try:
        day_number = int(day_number) if day_number is not None else position + 1
    except (TypeError, ValueError):
        day_number = position + 1

    accommodation = None
    acc = raw.get("accommodation")
    if isinstance(acc, dict) and acc.get("name"):
        accommodation = Accommodation(
            name=acc["name"], type=acc.get("type") or None, address=acc.get("address") or None
        )

    meals_raw = raw.get("meals") or {}
    meals = Meals(
        breakfast=bool(meals_raw.get("breakfast")),
        lunch=bool(meals_raw.get("lunch")),
        dinner=bool(meals_raw.get("dinner")),
    )

    activities = [a for a in (raw.get("activities") or []) if isinstance(a, str) and a.strip()]

    places = []
    for p in raw.get("places") or []:
        if isinstance(p, dict):
            places.append(Place(name=p.get("name") or None, description=p.get("description") or None))
        elif isinstance(p, str):
            places.append(Place(name=p or None))

    return NormalizedDay(
        day_number=day_number,
        accommodation=accommodation,
        transport=raw.get("transport") or None,
        meals=meals,
        activities=activities,
        places=places,
    )


def normalize_days(raw_days: list | None) -> list[NormalizedDay]:
    days = [normalize_day(d, i) for i, d in enumerate(raw_days or []) if isinstance(d, dict)]
    # sorted() is stable, so days sharing a number keep their stored order
    return sorted(days, key=lambda d: d.day_number)


class ItineraryResolver:
    """Resolves which of the lead's sources supplies trip detail.

    Order is fixed: customized package, catalog package, manual itinerary.
    A source that cannot be fetched still reports its type, with no days.
    """

    async def resolve(self, lead, provider: ItineraryProvider) -> ResolvedItinerary:
        if lead.customized_package_id:
            return await self._resolve_package(
                "customized", lead.customized_package_id, provider.get_customized_package, provider
            )

        if lead.package_id:
            return await self._resolve_package("package", lead.package_id, provider.get_package, provider)

        if lead.manual_itinerary_id:
            resolved = ResolvedItinerary(source_type="manual", package_name="Manual Itinerary")
            try:
                itinerary = await provider.get_manual_itinerary(lead.id)
            except UpstreamUnavailable as e:
                logger.warning(f"Manual itinerary for lead {lead.id} unavailable: {e}")
                return resolved
            if itinerary:
                resolved.days = normalize_days(itinerary.get("days"))
            else:
                logger.warning(f"Manual itinerary for lead {lead.id} not found")
            return resolved

        return ResolvedItinerary(source_type="none")

    async def _resolve_package(self, source_type, package_id, fetch, provider) -> ResolvedItinerary:
        resolved = ResolvedItinerary(source_type=source_type)
        if source_type == "package":
            resolved.package_id = package_id
        try:
            pkg = await fetch(package_id)
        except UpstreamUnavailable as e:
            logger.warning(f"{source_type} package {package_id} unavailable: {e}")
            return resolved

        if not pkg:
            logger.warning(f"{source_type} package {package_id} not found")
            return resolved

        resolved.package_name = pkg.get("name")
        price = pkg.get("price")
        if price is None and source_type == "package":
            try:
                price = await provider.get_package_price(package_id)
            except UpstreamUnavailable:
                price = None
        resolved.package_price = to_money(price) if price is not None else None
        resolved.days = normalize_days(pkg.get("days"))
        return resolved


itinerary_resolver = ItineraryResolver()

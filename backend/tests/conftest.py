import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["LOCK_BACKEND"] = "local"
os.environ["SCHEDULER_ENABLED"] = "false"

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

from traveldesk.database import Base  # noqa: E402
from traveldesk.models import CustomizedPackage, Lead, ManualItinerary, Package  # noqa: E402

BALI_DAYS = [
    {
        "dayNumber": 1,
        "accommodation": {"name": "Hotel A", "type": "Resort", "address": "Jalan Pantai 1"},
        "transport": "Airport Transfer",
        "meals": {"breakfast": False, "lunch": False, "dinner": True},
        "activities": ["Welcome dinner"],
    },
    {
        "dayNumber": 2,
        "accommodation": {"name": "Hotel A", "type": "Resort"},
        "meals": {"breakfast": True, "lunch": True},
        "activities": ["City tour", "Museum"],
        "places": [{"name": "Tanah Lot", "description": "Sea temple"}, {"description": "Rice terraces"}],
    },
]


@pytest.fixture
def bali_days():
    return BALI_DAYS


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def package(db):
    pkg = Package(name="Bali Escape", price=Decimal("1000.00"), duration_days=2, itinerary={"days": BALI_DAYS})
    db.add(pkg)
    await db.commit()
    await db.refresh(pkg)
    return pkg


@pytest.fixture
async def lead(db, package):
    lead = Lead(name="Asha Rao", email="asha@example.com", phone="+91 98000 00000", package_id=package.id)
    db.add(lead)
    await db.commit()
    await db.refresh(lead)
    return lead


@pytest.fixture
async def bare_lead(db):
    lead = Lead(name="Sam Lee", email="sam@example.com", phone="+65 8000 0000")
    db.add(lead)
    await db.commit()
    await db.refresh(lead)
    return lead


@pytest.fixture
async def customized_lead(db, package):
    custom = CustomizedPackage(
        name="Bali Honeymoon",
        base_package_id=package.id,
        price=Decimal("1500.00"),
        duration_days=1,
        itinerary={"days": [{"dayNumber": 1, "activities": ["Spa day"]}]},
    )
    db.add(custom)
    await db.flush()
    lead = Lead(
        name="Kim Park",
        email="kim@example.com",
        phone="+82 10 0000 0000",
        package_id=package.id,
        customized_package_id=custom.id,
    )
    db.add(lead)
    await db.commit()
    await db.refresh(lead)
    return lead


@pytest.fixture
async def manual_lead(db):
    lead = Lead(name="Lee Chan", email="lee@example.com", phone="+852 0000 0000")
    db.add(lead)
    await db.flush()
    itinerary = ManualItinerary(
        lead_id=lead.id,
        days=[{"dayNumber": 1, "transport": "Ferry", "activities": ["Island hop"]}],
    )
    db.add(itinerary)
    await db.flush()
    lead.manual_itinerary_id = itinerary.id
    await db.commit()
    await db.refresh(lead)
    return lead

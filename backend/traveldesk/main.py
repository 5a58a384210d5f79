import logging
import os
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from traveldesk.config import settings

# ─── Logging setup (file + console) ───
_LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
_LOG_DIR.mkdir(exist_ok=True)

_log_level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)

logging.basicConfig(
    level=_log_level,
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[
        logging.StreamHandler(),
        RotatingFileHandler(
            _LOG_DIR / "traveldesk.log",
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
            encoding="utf-8",
        ),
    ],
)

# Quiet noisy libraries
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

from traveldesk.routers import drafts, invoices, quotations, receipts, reports  # noqa: E402
from traveldesk.services.lock_service import lock_service  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: launch background scheduler
    scheduler = None
    if settings.scheduler_enabled:
        from apscheduler.schedulers.asyncio import AsyncIOScheduler
        from apscheduler.triggers.cron import CronTrigger

        scheduler = AsyncIOScheduler()

        async def _expire_quotations():
            from traveldesk.database import async_session_factory
            from traveldesk.services.billing_service import billing_service
            async with async_session_factory() as db:
                count = await billing_service.expire_quotations(db)
                if count:
                    logger.info(f"Quotation expiry: {count} quotations expired")

        async def _mark_overdue_invoices():
            from traveldesk.database import async_session_factory
            from traveldesk.services.billing_service import billing_service
            async with async_session_factory() as db:
                count = await billing_service.mark_overdue_invoices(db)
                if count:
                    logger.info(f"Overdue sweep: {count} invoices marked overdue")

        scheduler.add_job(_expire_quotations, CronTrigger(hour=0, minute=15), id="expire_quotations")
        scheduler.add_job(_mark_overdue_invoices, CronTrigger(hour=0, minute=30), id="overdue_invoices")
        scheduler.start()
        logger.info("Background scheduler started")

    yield

    # Shutdown
    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")
    await lock_service.close()


app = FastAPI(
    title="TravelDesk Billing",
    description="Quotation, invoice and receipt engine for travel bookings",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(drafts.router, prefix="/api/billing", tags=["drafts"])
app.include_router(quotations.router, prefix="/api/billing", tags=["quotations"])
app.include_router(invoices.router, prefix="/api/billing", tags=["invoices"])
app.include_router(receipts.router, prefix="/api/billing", tags=["receipts"])
app.include_router(reports.router, prefix="/api/billing", tags=["reports"])


@app.get("/api/health")
async def health_check():
    return {"status": "ok", "service": "traveldesk-billing"}

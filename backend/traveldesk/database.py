import functools
import logging

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from traveldesk.config import settings
from traveldesk.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

engine = create_async_engine(settings.database_url, pool_pre_ping=True)
async_session_factory = async_sessionmaker(engine, expire_on_commit=False)

# Unique columns filled by count-based numbering
DOCUMENT_NUMBER_COLUMNS = ("quotation_number", "invoice_number", "receipt_number")
MAX_RENUMBER_ATTEMPTS = 3

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


async def get_db():
    async with async_session_factory() as session:
        yield session


def is_number_collision(error: IntegrityError) -> bool:
    message = str(error.orig)
    return any(column in message for column in DOCUMENT_NUMBER_COLUMNS)


def retry_once_on_db_fault(func):
    """Run a service operation as one unit of work, retrying once on a database fault.

    The wrapped method takes the session as its first argument after ``self``
    and commits only at the very end. Any failure, including cancellation,
    rolls the session back so no partially applied totals survive. A unique
    document number taken by a concurrent writer reruns the operation so it
    picks the next number.
    """

    @functools.wraps(func)
    async def wrapper(self, db: AsyncSession, *args, **kwargs):
        faults = 0
        collisions = 0
        while True:
            try:
                return await func(self, db, *args, **kwargs)
            except (OperationalError, InterfaceError) as e:
                await db.rollback()
                faults += 1
                if faults == 2:
                    logger.error(f"{func.__name__}: database fault after retry: {e}")
                    raise UpstreamUnavailable("Billing storage is unavailable, please try again") from e
                logger.warning(f"{func.__name__}: database fault, retrying once: {e}")
            except IntegrityError as e:
                await db.rollback()
                if not is_number_collision(e):
                    raise
                collisions += 1
                if collisions == MAX_RENUMBER_ATTEMPTS:
                    logger.error(f"{func.__name__}: no free document number after {collisions} attempts")
                    raise UpstreamUnavailable("Could not allocate a document number, please try again") from e
                logger.warning(f"{func.__name__}: document number already taken, renumbering")
            except BaseException:
                await db.rollback()
                raise

    return wrapper

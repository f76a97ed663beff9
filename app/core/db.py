import logging
from contextlib import asynccontextmanager
from logging import INFO
from typing import Any, AsyncIterator, Optional

from tortoise import Tortoise
from tortoise.transactions import in_transaction

from app.core.config import DB_URL

# Set logging level for Tortoise ORM
logging.getLogger('tortoise').setLevel(INFO)
log = logging.getLogger(__name__)

# Define all models modules for the ORM
MODELS_MODULES = [
    "app.models.outbox",
    "app.models.dead_letter",
    "app.models.processed_event",
    "app.models.booking",
    "app.models.inventory",
    "app.models.payment",
]


async def init_db(db_url: str = DB_URL, generate_schemas: bool = True):
    """Initializes the Tortoise ORM connection and generates schemas."""
    try:
        await Tortoise.init(
            db_url=db_url,
            modules={"models": MODELS_MODULES},
            use_tz=True,
            timezone="UTC",
        )
        if generate_schemas:
            await Tortoise.generate_schemas(safe=True)
        log.info("Database connection established and schemas generated.")
    except Exception:
        log.exception("FATAL ERROR: Could not connect to database.")
        # Re-raise to prevent the application from starting without a database
        raise


async def close_db():
    """Closes all database connections."""
    await Tortoise.close_connections()
    log.info("Database connections closed.")


@asynccontextmanager
async def atomic(conn: Optional[Any] = None) -> AsyncIterator[Any]:
    """
    Yields a transactional connection.

    When the caller already holds a transaction it is reused, so a service
    call made from a consumer joins the consumer's unit of work instead of
    committing on its own.
    """
    if conn is not None:
        yield conn
        return
    async with in_transaction() as new_conn:
        yield new_conn

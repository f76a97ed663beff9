import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, status

from app.api.v1.bookings import router as bookings_router
from app.api.v1.dead_letters import router as dead_letters_router
from app.api.v1.inventory import router as inventory_router
from app.api.v1.payments import router as payments_router
from app.core.config import PROJECT_NAME, RUN_BACKGROUND_WORKERS, SERVICES, VERSION
from app.core.db import close_db, init_db
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.runtime import ServiceRuntime

configure_logging()
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles startup and shutdown events."""
    log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
    await init_db()  # Connect to DB and generate schemas

    runtime = None
    if RUN_BACKGROUND_WORKERS:
        runtime = ServiceRuntime(SERVICES)
        await runtime.start()
    app.state.runtime = runtime

    yield

    if runtime:
        await runtime.stop()
    await close_db()
    log.info(f"{PROJECT_NAME} stopped.")


app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    lifespan=lifespan,
    # Configure API documentation and paths
    docs_url="/docs",
    redoc_url="/redoc",
)

# Include routers for modular API structure
app.include_router(bookings_router, prefix="/api/v1/bookings", tags=["Bookings"])
app.include_router(inventory_router, prefix="/api/v1/inventory", tags=["Inventory"])
app.include_router(payments_router, prefix="/api/v1/payments", tags=["Payments"])
app.include_router(dead_letters_router, prefix="/api/v1/dead-letters", tags=["Dead Letters"])

setup_exception_handlers(app)


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Health check; reports broker connectivity when background workers run in this process."""
    body = {"status": "ok", "app_name": PROJECT_NAME}
    runtime = getattr(app.state, "runtime", None)
    if runtime is not None:
        body.update(runtime.health())
    return body

import pytest_asyncio

from app.core.db import close_db, init_db


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory database per test, with every model's schema."""
    await init_db("sqlite://:memory:")
    yield
    await close_db()

import sys
from dataclasses import dataclass
from pathlib import Path
from uuid import UUID

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from loyalty_api import models  # noqa: E402,F401
from loyalty_api.app import create_app  # noqa: E402
from loyalty_api.db.base import Base  # noqa: E402
from loyalty_api.db.session import get_session  # noqa: E402
from loyalty_api.models.directory import Brand, Customer, Store  # noqa: E402
from loyalty_api.observability.loyalty import get_loyalty_store  # noqa: E402


@dataclass
class DirectorySeed:
    brand_id: UUID
    store_id: UUID
    customer_id: UUID
    other_customer_id: UUID


@pytest.fixture(autouse=True)
def reset_loyalty_store():
    get_loyalty_store().reset()
    yield
    get_loyalty_store().reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def directory(session_factory) -> DirectorySeed:
    async with session_factory() as session:
        brand = Brand(name="Corner Cafe", category="cafe")
        customer = Customer(display_name="Ada", email="ada@example.com")
        other = Customer(display_name="Grace", email="grace@example.com")
        session.add_all([brand, customer, other])
        await session.flush()
        store = Store(brand_id=brand.id, name="Main Street", city="Lisbon", country="PT")
        session.add(store)
        await session.commit()
        return DirectorySeed(
            brand_id=brand.id,
            store_id=store.id,
            customer_id=customer.id,
            other_customer_id=other.id,
        )


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()

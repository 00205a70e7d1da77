import os
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace

# must be set before storefront.core.config is imported
os.environ["ENVIRONMENT"] = "test"
os.environ["QUEUE_BACKEND"] = "memory"
os.environ["DB_URL"] = "sqlite+aiosqlite:///:memory:"

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from storefront.db.base import init_models, make_sessionmaker  # noqa: E402
from storefront.db.models import jobs, order_items  # noqa: E402,F401
from storefront.db.models.addresses import Address  # noqa: E402
from storefront.db.models.catalog import Product  # noqa: E402
from storefront.db.models.inventory import Sku  # noqa: E402
from storefront.db.models.orders import Order  # noqa: E402
from storefront.jobs.queue.memory import InMemoryJobQueue  # noqa: E402
from tests.factories import address_payload  # noqa: E402


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = Path(item.fspath)

        if "/domain/" in str(test_path):
            item.add_marker(pytest.mark.domain)
        elif "/application/" in str(test_path):
            item.add_marker(pytest.mark.application)
        elif "/integration/" in str(test_path):
            item.add_marker(pytest.mark.integration)
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)


def make_engine(path: Path):
    # NullPool: no connection outlives the event loop that opened it
    return create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)


@pytest.fixture
async def engine(tmp_path):
    engine = make_engine(tmp_path / "storefront.db")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_sessionmaker(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def queue():
    return InMemoryJobQueue(default_max_retries=3)


async def seed_catalog(session) -> SimpleNamespace:
    tee = Product(name="Classic Tee", category="apparel", active=True)
    mug = Product(name="Retired Mug", category="drinkware", active=False)
    tee_black_m = Sku(product=tee, code="TEE-BLK-M", size="M", color="black", price=Decimal("100.00"), stock=10)
    tee_white_l = Sku(product=tee, code="TEE-WHT-L", size="L", color="white", price=Decimal("50.00"), stock=5)
    mug_white = Sku(product=mug, code="MUG-WHT", size=None, color="white", price=Decimal("15.00"), stock=20)
    session.add_all([tee, mug, tee_black_m, tee_white_l, mug_white])
    await session.commit()
    return SimpleNamespace(
        tee=tee,
        mug=mug,
        sku_a=tee_black_m,
        sku_b=tee_white_l,
        inactive_sku=mug_white,
    )


@pytest.fixture
async def catalog(session_factory):
    # seeded in its own session so a rollback in `db` never expires these objects
    async with session_factory() as session:
        return await seed_catalog(session)


@pytest.fixture
def make_order(db):
    """Insert an order directly in a given status, bypassing checkout."""

    async def _make_order(status="PENDING", user_id="user-1", total=Decimal("10.00"), key=None):
        address = Address(user_id=user_id, **address_payload())
        order = Order(
            user_id=user_id,
            status=status,
            total_amount=total,
            idempotency_key=key or f"key-{os.urandom(6).hex()}",
            address=address,
        )
        db.add_all([address, order])
        await db.commit()
        return order

    return _make_order

import asyncio

import pytest
from fastapi.testclient import TestClient

from storefront.api.deps import get_db
from storefront.db.base import init_models, make_sessionmaker
from storefront.domain.payments.gateway import FakeGateway
from storefront.jobs.queue.memory import InMemoryJobQueue
from storefront.main import create_app
from tests.conftest import make_engine, seed_catalog


@pytest.fixture
def api_engine(tmp_path):
    engine = make_engine(tmp_path / "api.db")
    asyncio.run(init_models(engine))
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture
def api_catalog(api_engine):
    async def _seed():
        async with make_sessionmaker(api_engine)() as session:
            return await seed_catalog(session)

    return asyncio.run(_seed())


@pytest.fixture
def api_queue():
    return InMemoryJobQueue(default_max_retries=3)


@pytest.fixture
def gateway():
    return FakeGateway(webhook_secret="whsec_test")


@pytest.fixture
def client(api_engine, api_queue, gateway):
    app = create_app(queue=api_queue, gateway=gateway, run_dispatcher=False)
    factory = make_sessionmaker(api_engine)

    async def override_get_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client

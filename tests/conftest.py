"""Shared pytest fixtures."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from fake_mongo import FakeDatabase, FakeMongoClient

from threadkeeper.config import Config
from threadkeeper.core.core import Core
from threadkeeper.core.modules.tenant.models import Tenant
from threadkeeper.core.modules.thread.models import Thread


@pytest.fixture
def config() -> Config:
    """Configuration tuned for fast, deterministic tests."""
    return Config(
        database_url="mongodb://localhost:27017/threadkeeper_test",
        allocator_timeout_ms=1000,
        worker_concurrency=4,
        worker_backlog_limit=100,
        max_attempts=3,
        retry_base_delay=0,
        retry_max_delay=0,
        task_timeout_seconds=5,
        shutdown_grace_seconds=1,
        reconcile_interval_seconds=0,
        recovery_on_start=False,
    )


@pytest.fixture
def mongo_client() -> FakeMongoClient:
    return FakeMongoClient()


@pytest.fixture
def database(mongo_client: FakeMongoClient) -> FakeDatabase:
    return mongo_client.get_database("threadkeeper_test")


@pytest_asyncio.fixture
async def core(config: Config, mongo_client: FakeMongoClient) -> AsyncGenerator[Core]:
    """Started core backed by the in-memory database."""
    core = Core(config, mongo_client)  # type: ignore[arg-type]
    async with core.lifespan():
        yield core


@pytest_asyncio.fixture
async def tenant(core: Core) -> Tenant:
    return await core.services.tenant.create_tenant("Acme Support")


@pytest_asyncio.fixture
async def thread(core: Core, tenant: Tenant) -> Thread:
    """A thread that has gone through allocation and the creation worker."""
    number = await core.services.thread.create_thread(tenant.id)
    await core.services.worker.drain()
    return await core.services.thread.get_thread_by_number(tenant.id, number)

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID

from pymongo import AsyncMongoClient

from threadkeeper.config import Config
from threadkeeper.core.core import Core
from threadkeeper.core.modules.counter.models import ChildKind
from threadkeeper.core.modules.counter_cache.models import SweepResult
from threadkeeper.core.modules.entry.models import Entry
from threadkeeper.core.modules.gap.models import GapReport, OperationalHealth
from threadkeeper.core.modules.tenant.models import Tenant
from threadkeeper.core.modules.thread.models import Thread
from threadkeeper.core.modules.worker.models import CreationTask, DeadTask, WorkerStats
from threadkeeper.core.pagination import PaginationResult
from threadkeeper.errors import IndexingError, SearchUnavailableError


class App:
    """Facade for all application operations, resolves external identifiers before delegating to Core."""

    def __init__(self, config: Config, mongo_client: AsyncMongoClient[dict[str, Any]] | None = None) -> None:
        self._core = Core(config, mongo_client)

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        async with self._core.lifespan():
            yield

    # --- Tenants ---

    async def create_tenant(self, display_name: str) -> Tenant:
        return await self._core.services.tenant.create_tenant(display_name)

    async def list_tenants(self, limit: int = 50, offset: int = 0) -> PaginationResult[Tenant]:
        return await self._core.services.tenant.list_tenants(limit, offset)

    async def get_tenant(self, token: str) -> Tenant:
        return await self._core.services.tenant.get_tenant_by_token(token)

    async def rename_tenant(self, token: str, display_name: str) -> Tenant:
        tenant = await self.get_tenant(token)
        return await self._core.services.tenant.rename_tenant(tenant.id, display_name)

    async def delete_tenant(self, token: str) -> None:
        tenant = await self.get_tenant(token)
        await self._core.services.tenant.delete_tenant(tenant.id)

    # --- Threads ---

    async def create_thread(self, token: str) -> int:
        """Allocate a thread number; the row is written asynchronously."""
        tenant = await self.get_tenant(token)
        return await self._core.services.thread.create_thread(tenant.id)

    async def list_threads(self, token: str, limit: int = 50, offset: int = 0) -> PaginationResult[Thread]:
        tenant = await self.get_tenant(token)
        return await self._core.services.thread.list_threads(tenant.id, limit, offset)

    async def get_thread(self, token: str, number: int) -> Thread:
        tenant = await self.get_tenant(token)
        return await self._core.services.thread.get_thread_by_number(tenant.id, number)

    # --- Entries ---

    async def create_entry(self, token: str, thread_number: int, body: str) -> int:
        """Allocate an entry number in a persisted thread; the row is written asynchronously."""
        thread = await self.get_thread(token, thread_number)
        return await self._core.services.entry.create_entry(thread.id, body)

    async def list_entries(self, token: str, thread_number: int, limit: int = 50, offset: int = 0) -> PaginationResult[Entry]:
        thread = await self.get_thread(token, thread_number)
        return await self._core.services.entry.list_entries(thread.id, limit, offset)

    async def get_entry(self, token: str, thread_number: int, number: int) -> Entry:
        thread = await self.get_thread(token, thread_number)
        return await self._core.services.entry.get_entry_by_number(thread.id, number)

    async def search_entries(self, token: str, thread_number: int, query: str, limit: int = 50) -> list[Entry]:
        """Search entry bodies in one thread; index hits are resolved to live entries."""
        thread = await self.get_thread(token, thread_number)
        hits = await self._core.services.search.search(thread.id, query, limit)
        return await self._core.services.entry.get_entries_by_ids(thread.id, [hit.id for hit in hits])

    # --- Operations ---

    async def list_dead_tasks(self, limit: int = 100) -> list[DeadTask]:
        return await self._core.services.worker.list_dead_tasks(limit=limit)

    async def requeue_dead_task(self, task_id: UUID) -> CreationTask:
        return await self._core.services.worker.requeue_dead_task(task_id)

    async def get_tenant_gaps(self, token: str) -> list[GapReport]:
        tenant = await self.get_tenant(token)
        return await self._core.services.gap.get_tenant_gaps(tenant.id)

    async def reconcile_counts(self) -> list[SweepResult]:
        return await self._core.services.counter_cache.sweep_all()

    async def reindex(self) -> int:
        try:
            return await self._core.services.search.reindex()
        except IndexingError as e:
            raise SearchUnavailableError(str(e)) from e

    async def rebuild_counters(self) -> dict[str, int]:
        return {kind: await self._core.services.counter.rebuild(kind) for kind in ChildKind}

    async def get_health(self) -> OperationalHealth:
        return await self._core.services.gap.get_health()

    def get_worker_stats(self) -> WorkerStats:
        return self._core.services.worker.get_stats()

    async def drain(self) -> None:
        """Wait until every queued creation task has finished or been dead-lettered."""
        await self._core.services.worker.drain()

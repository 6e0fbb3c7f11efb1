from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.database import AsyncDatabase

from threadkeeper.core.core import Service
from threadkeeper.core.modules.tenant.models import Tenant
from threadkeeper.core.pagination import PaginationResult
from threadkeeper.errors import NotFoundError, ValidationError

logger = structlog.get_logger(__name__)


class TenantService(Service):
    """Manages tenants and the cascading delete of everything under them."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("tenants")

    async def on_start(self) -> None:
        await self._collection.create_index([("token", 1)], unique=True)

    async def create_tenant(self, display_name: str) -> Tenant:
        display_name = display_name.strip()
        if not display_name:
            raise ValidationError("Display name must not be empty")
        tenant = Tenant(display_name=display_name)
        await self._collection.insert_one(tenant.to_mongo())
        logger.info("tenant_created", tenant_id=tenant.id)
        return tenant

    async def get_tenant(self, tenant_id: UUID) -> Tenant:
        doc = await self._collection.find_one({"_id": tenant_id})
        if not doc:
            raise NotFoundError(f"Tenant not found: {tenant_id}")
        return Tenant.model_validate(doc)

    async def get_tenant_by_token(self, token: str) -> Tenant:
        doc = await self._collection.find_one({"token": token})
        if not doc:
            raise NotFoundError("Tenant not found")
        return Tenant.model_validate(doc)

    async def list_tenants(self, limit: int = 50, offset: int = 0) -> PaginationResult[Tenant]:
        total = await self._collection.count_documents({})
        cursor = self._collection.find({}).sort("created_at", 1).skip(offset).limit(limit)
        items = await Tenant.list_cursor(cursor)
        return PaginationResult(items=items, total=total, limit=limit, offset=offset)

    async def rename_tenant(self, tenant_id: UUID, display_name: str) -> Tenant:
        display_name = display_name.strip()
        if not display_name:
            raise ValidationError("Display name must not be empty")
        result = await self._collection.update_one({"_id": tenant_id}, {"$set": {"display_name": display_name}})
        if result.matched_count == 0:
            raise NotFoundError(f"Tenant not found: {tenant_id}")
        return await self.get_tenant(tenant_id)

    async def delete_tenant(self, tenant_id: UUID) -> None:
        """Delete a tenant and cascade to its threads, entries, index documents, counters and dead tasks.

        The tenant row goes first: creation tasks re-check their parent after
        inserting, so a child written concurrently with this delete removes
        itself instead of being left orphaned.
        """
        result = await self._collection.delete_one({"_id": tenant_id})
        if result.deleted_count == 0:
            raise NotFoundError(f"Tenant not found: {tenant_id}")

        services = self.core.services
        thread_ids = await services.thread.list_thread_ids(tenant_id)
        deleted_threads = await services.thread.delete_threads_by_tenant(tenant_id)
        deleted_entries = await services.entry.delete_entries_by_threads(thread_ids)
        await services.search.delete_by_threads(thread_ids)
        await services.counter.delete_counters([tenant_id, *thread_ids])
        await services.worker.delete_dead_tasks([tenant_id, *thread_ids])

        logger.info("tenant_deleted", tenant_id=tenant_id, threads=deleted_threads, entries=deleted_entries)

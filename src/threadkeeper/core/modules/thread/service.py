from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError

from threadkeeper.core.core import Service
from threadkeeper.core.modules.counter.models import ChildKind
from threadkeeper.core.modules.thread.models import Thread
from threadkeeper.core.modules.worker.models import CreationTask
from threadkeeper.core.pagination import PaginationResult
from threadkeeper.errors import DuplicateNumberError, NotFoundError

logger = structlog.get_logger(__name__)


class ThreadService(Service):
    """Manages threads numbered per tenant."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("threads")

    async def on_start(self) -> None:
        """Create the (tenant, number) uniqueness constraint, the final arbiter for thread numbers."""
        await self._collection.create_index([("tenant_id", 1), ("number", 1)], unique=True)
        await self._collection.create_index([("tenant_id", 1)])

    async def create_thread(self, tenant_id: UUID) -> int:
        """Allocate the next thread number and enqueue its creation.

        Returns the number immediately, before the row exists.
        """
        worker = self.core.services.worker
        worker.ensure_capacity()
        number = await self.core.services.counter.allocate(tenant_id, ChildKind.THREAD)
        await worker.submit(CreationTask(kind=ChildKind.THREAD, parent_id=tenant_id, number=number))
        return number

    async def insert_thread(self, tenant_id: UUID, number: int) -> Thread:
        """Write one thread row. Called by the creation worker.

        Raises:
            NotFoundError: If the tenant does not exist (or was deleted meanwhile)
            DuplicateNumberError: If (tenant_id, number) is already taken
        """
        await self.core.services.tenant.get_tenant(tenant_id)
        thread = Thread(tenant_id=tenant_id, number=number)
        try:
            await self._collection.insert_one(thread.to_mongo())
        except DuplicateKeyError as e:
            raise DuplicateNumberError(f"Thread number {number} already exists for tenant {tenant_id}") from e

        try:
            await self.core.services.tenant.get_tenant(tenant_id)
        except NotFoundError:
            await self._collection.delete_one({"_id": thread.id})
            raise
        return thread

    async def get_thread(self, thread_id: UUID) -> Thread:
        doc = await self._collection.find_one({"_id": thread_id})
        if not doc:
            raise NotFoundError(f"Thread not found: {thread_id}")
        return Thread.model_validate(doc)

    async def get_thread_by_number(self, tenant_id: UUID, number: int) -> Thread:
        doc = await self._collection.find_one({"tenant_id": tenant_id, "number": number})
        if not doc:
            raise NotFoundError(f"Thread not found: number={number}")
        return Thread.model_validate(doc)

    async def list_threads(self, tenant_id: UUID, limit: int = 50, offset: int = 0) -> PaginationResult[Thread]:
        query = {"tenant_id": tenant_id}
        total = await self._collection.count_documents(query)
        cursor = self._collection.find(query).sort("number", 1).skip(offset).limit(limit)
        items = await Thread.list_cursor(cursor)
        return PaginationResult(items=items, total=total, limit=limit, offset=offset)

    async def list_thread_ids(self, tenant_id: UUID) -> list[UUID]:
        return [doc["_id"] async for doc in self._collection.find({"tenant_id": tenant_id}, {"_id": 1})]

    async def delete_threads_by_tenant(self, tenant_id: UUID) -> int:
        result = await self._collection.delete_many({"tenant_id": tenant_id})
        return result.deleted_count

from collections.abc import AsyncIterator
from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError

from threadkeeper.core.core import Service
from threadkeeper.core.modules.counter.models import ChildKind
from threadkeeper.core.modules.entry.models import Entry
from threadkeeper.core.modules.worker.models import CreationTask
from threadkeeper.core.pagination import PaginationResult
from threadkeeper.errors import DuplicateNumberError, NotFoundError, ValidationError

logger = structlog.get_logger(__name__)


class EntryService(Service):
    """Manages entries numbered per thread."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("entries")

    async def on_start(self) -> None:
        await self._collection.create_index([("thread_id", 1), ("number", 1)], unique=True)
        await self._collection.create_index([("thread_id", 1)])

    async def create_entry(self, thread_id: UUID, body: str) -> int:
        """Allocate the next entry number in a thread and enqueue its creation."""
        if not body.strip():
            raise ValidationError("Entry body must not be empty")
        worker = self.core.services.worker
        worker.ensure_capacity()
        number = await self.core.services.counter.allocate(thread_id, ChildKind.ENTRY)
        await worker.submit(CreationTask(kind=ChildKind.ENTRY, parent_id=thread_id, number=number, payload={"body": body}))
        return number

    async def insert_entry(self, thread_id: UUID, number: int, body: str) -> Entry:
        """Write one entry row. Called by the creation worker.

        Raises:
            NotFoundError: If the thread does not exist (or was deleted meanwhile)
            DuplicateNumberError: If (thread_id, number) is already taken
        """
        await self.core.services.thread.get_thread(thread_id)
        entry = Entry(thread_id=thread_id, number=number, body=body)
        try:
            await self._collection.insert_one(entry.to_mongo())
        except DuplicateKeyError as e:
            raise DuplicateNumberError(f"Entry number {number} already exists for thread {thread_id}") from e

        try:
            await self.core.services.thread.get_thread(thread_id)
        except NotFoundError:
            await self._collection.delete_one({"_id": entry.id})
            raise
        return entry

    async def get_entry_by_number(self, thread_id: UUID, number: int) -> Entry:
        doc = await self._collection.find_one({"thread_id": thread_id, "number": number})
        if not doc:
            raise NotFoundError(f"Entry not found: number={number}")
        return Entry.model_validate(doc)

    async def get_entries_by_ids(self, thread_id: UUID, entry_ids: list[UUID]) -> list[Entry]:
        """Resolve ids to live entries of one thread, ordered by number. Unknown ids are skipped."""
        cursor = self._collection.find({"thread_id": thread_id, "_id": {"$in": entry_ids}}).sort("number", 1)
        return await Entry.list_cursor(cursor)

    async def list_entries(self, thread_id: UUID, limit: int = 50, offset: int = 0) -> PaginationResult[Entry]:
        query = {"thread_id": thread_id}
        total = await self._collection.count_documents(query)
        cursor = self._collection.find(query).sort("number", 1).skip(offset).limit(limit)
        items = await Entry.list_cursor(cursor)
        return PaginationResult(items=items, total=total, limit=limit, offset=offset)

    async def iter_entries(self) -> AsyncIterator[Entry]:
        """Stream every stored entry, used by the reindex sweep."""
        async for doc in self._collection.find({}):
            yield Entry.model_validate(doc)

    async def count_entries(self) -> int:
        return await self._collection.count_documents({})

    async def delete_entries_by_threads(self, thread_ids: list[UUID]) -> int:
        result = await self._collection.delete_many({"thread_id": {"$in": thread_ids}})
        return result.deleted_count

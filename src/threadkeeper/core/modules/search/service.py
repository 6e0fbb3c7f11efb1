import asyncio
import re
from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import PyMongoError

from threadkeeper.core.core import Service
from threadkeeper.core.modules.entry.models import Entry
from threadkeeper.core.modules.search.models import IndexedEntry
from threadkeeper.errors import IndexingError, SearchUnavailableError, ValidationError

logger = structlog.get_logger(__name__)


class SearchService(Service):
    """Best-effort text index over entry bodies.

    Writes from the creation path never raise: a failed write is logged and
    left for reindex(), which rebuilds the projection from the entries
    collection and is safe to run any number of times.
    """

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("entry_index")
        self._background_tasks: set[asyncio.Task[Any]] = set()

    async def on_start(self) -> None:
        await self._collection.create_index([("thread_id", 1)])
        if self.core.config.recovery_on_start:
            task = asyncio.create_task(self.recover())
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

    async def on_stop(self) -> None:
        for task in self._background_tasks:
            task.cancel()
        await asyncio.gather(*self._background_tasks, return_exceptions=True)

    async def index_entry(self, entry: Entry) -> bool:
        """Project an entry into the index. Returns False instead of raising on failure."""
        try:
            await self._upsert(entry)
        except Exception as e:
            logger.warning("indexing_failed", entry_id=entry.id, thread_id=entry.thread_id, number=entry.number, error=str(e))
            return False
        return True

    async def search(self, thread_id: UUID, query: str, limit: int = 50) -> list[IndexedEntry]:
        """Case-insensitive substring match on entry bodies within one thread."""
        if not query.strip():
            raise ValidationError("Query parameter required")
        pattern = re.escape(query.strip())
        try:
            cursor = self._collection.find({"thread_id": thread_id, "body": {"$regex": pattern, "$options": "i"}}).limit(limit)
            return await IndexedEntry.list_cursor(cursor)
        except PyMongoError as e:
            logger.warning("search_failed", thread_id=thread_id, error=str(e))
            raise SearchUnavailableError from e

    async def reindex(self) -> int:
        """Republish every stored entry into the index (upsert by id).

        Raises:
            IndexingError: If the index rejects a write; rerunning picks up where it stopped
        """
        logger.info("reindex_started")
        total = 0
        async for entry in self.core.services.entry.iter_entries():
            try:
                await self._upsert(entry)
            except PyMongoError as e:
                logger.error("reindex_failed", entry_id=entry.id, republished=total, error=str(e))
                raise IndexingError(f"Reindex stopped after {total} entries: {e}") from e
            total += 1
        logger.info("reindex_finished", republished=total)
        return total

    async def count_indexed(self) -> int:
        return await self._collection.count_documents({})

    async def check_consistency(self) -> bool:
        """Compare the number of indexed documents with the number of stored entries."""
        indexed = await self.count_indexed()
        stored = await self.core.services.entry.count_entries()
        if indexed != stored:
            logger.warning("index_out_of_sync", indexed=indexed, stored=stored)
            return False
        return True

    async def recover(self) -> None:
        """Startup check: reindex when the index and the entries collection disagree."""
        try:
            if not await self.check_consistency():
                await self.reindex()
        except (PyMongoError, IndexingError) as e:
            logger.error("index_recovery_failed", error=str(e))

    async def delete_by_threads(self, thread_ids: list[UUID]) -> int:
        result = await self._collection.delete_many({"thread_id": {"$in": thread_ids}})
        return result.deleted_count

    async def _upsert(self, entry: Entry) -> None:
        doc = IndexedEntry(id=entry.id, thread_id=entry.thread_id, body=entry.body).to_mongo()
        await self._collection.replace_one({"_id": entry.id}, doc, upsert=True)

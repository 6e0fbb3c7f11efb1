import asyncio
from typing import Any
from uuid import UUID

import structlog
from pymongo import ReturnDocument
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import PyMongoError

from threadkeeper.core.core import Service
from threadkeeper.core.modules.counter.models import ChildKind
from threadkeeper.errors import AllocatorUnavailableError

logger = structlog.get_logger(__name__)


class CounterService(Service):
    """Number allocator: hands out per-parent sequence numbers from atomic counters."""

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._collection = database.get_collection("counters")

    async def on_start(self) -> None:
        await self._collection.create_index([("parent_id", 1), ("kind", 1)], unique=True)
        if self.core.config.recovery_on_start:
            for kind in ChildKind:
                if not await self.check_consistency(kind):
                    await self.rebuild(kind)

    async def allocate(self, parent_id: UUID, kind: ChildKind) -> int:
        """Atomically increment and return the next number for a parent.

        Raises:
            AllocatorUnavailableError: If the counter store is unreachable or too slow
        """
        timeout = self.core.config.allocator_timeout_ms / 1000
        try:
            result = await asyncio.wait_for(
                self._collection.find_one_and_update(
                    {"parent_id": parent_id, "kind": kind},
                    {"$inc": {"seq": 1}},
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                ),
                timeout,
            )
        except TimeoutError as e:
            # The increment may still land server-side; that number then stays a gap
            logger.warning("allocator_timeout", parent_id=parent_id, kind=kind, timeout_ms=self.core.config.allocator_timeout_ms)
            raise AllocatorUnavailableError from e
        except PyMongoError as e:
            logger.warning("allocator_unavailable", parent_id=parent_id, kind=kind, error=str(e))
            raise AllocatorUnavailableError from e

        return int(result["seq"])

    async def get_high_water_mark(self, parent_id: UUID, kind: ChildKind) -> int:
        """Get the last allocated number without incrementing."""
        doc = await self._collection.find_one({"parent_id": parent_id, "kind": kind})
        if doc:
            return int(doc["seq"])
        return 0

    async def get_max_persisted(self, parent_id: UUID, kind: ChildKind) -> int:
        """Highest number actually stored for a parent, 0 if it has no children yet."""
        relation = kind.relation
        doc = await self.database.get_collection(relation.child_collection).find_one(
            {relation.parent_field: parent_id}, sort=[("number", -1)]
        )
        return int(doc["number"]) if doc else 0

    async def raise_to(self, parent_id: UUID, kind: ChildKind, value: int) -> int:
        """Move a counter up to at least value. Never moves it down."""
        result = await self._collection.find_one_and_update(
            {"parent_id": parent_id, "kind": kind},
            {"$max": {"seq": value}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(result["seq"])

    async def rebuild(self, kind: ChildKind) -> int:
        """Restore counters of one kind from the durable store after the counter store lost state.

        Returns:
            Number of parents whose counter was checked
        """
        parents = self.database.get_collection(kind.relation.parent_collection)
        rebuilt = 0
        async for parent in parents.find({}, {"_id": 1}):
            max_persisted = await self.get_max_persisted(parent["_id"], kind)
            seq = await self.raise_to(parent["_id"], kind, max_persisted)
            logger.debug("counter_rebuilt", parent_id=parent["_id"], kind=kind, max_persisted=max_persisted, seq=seq)
            rebuilt += 1
        logger.info("counters_rebuilt", kind=kind, parents=rebuilt)
        return rebuilt

    async def check_consistency(self, kind: ChildKind) -> bool:
        """Sample parents and report whether every counter is at or above its persisted maximum."""
        parents = self.database.get_collection(kind.relation.parent_collection)
        cursor = parents.find({}, {"_id": 1}).limit(self.core.config.recovery_sample_size)
        async for parent in cursor:
            max_persisted = await self.get_max_persisted(parent["_id"], kind)
            seq = await self.get_high_water_mark(parent["_id"], kind)
            if seq < max_persisted:
                logger.warning("counter_behind_store", parent_id=parent["_id"], kind=kind, seq=seq, max_persisted=max_persisted)
                return False
        return True

    async def delete_counters(self, parent_ids: list[UUID]) -> int:
        """Delete all counters for the given parents and return how many were removed."""
        result = await self._collection.delete_many({"parent_id": {"$in": parent_ids}})
        return result.deleted_count

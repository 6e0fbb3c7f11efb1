import asyncio
import contextlib
from typing import Any
from uuid import UUID

import structlog
from pymongo.asynchronous.database import AsyncDatabase

from threadkeeper.core.core import Service
from threadkeeper.core.modules.counter.models import ChildKind
from threadkeeper.core.modules.counter_cache.models import SweepResult
from threadkeeper.errors import NotFoundError, ReconciliationRaceError

logger = structlog.get_logger(__name__)


class CounterCacheService(Service):
    """Maintains the cached child counts on tenants and threads.

    Two cooperating paths write the same field:

    - increment() runs after every successful creation. It is fast and may
      drift under retries and replays.
    - reconcile_parent() recounts the live children and overwrites the cache.
      It is the source of truth; the scheduled sweep runs it for every parent.

    Every write also bumps count_version. The recount is a compare-and-set on
    the version it read, so an increment that lands between the count and the
    write forces a recount instead of being lost.
    """

    def __init__(self, database: AsyncDatabase[dict[str, Any]]) -> None:
        super().__init__(database)
        self._sweeper: asyncio.Task[None] | None = None

    async def on_start(self) -> None:
        interval = self.core.config.reconcile_interval_seconds
        if interval > 0:
            self._sweeper = asyncio.create_task(self._sweep_periodically(interval))
            logger.debug("reconciler_scheduled", interval=interval)

    async def on_stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

    async def increment(self, kind: ChildKind, parent_id: UUID) -> None:
        relation = kind.relation
        result = await self.database.get_collection(relation.parent_collection).update_one(
            {"_id": parent_id}, {"$inc": {relation.count_field: 1, "count_version": 1}}
        )
        if result.matched_count == 0:
            raise NotFoundError(f"Parent not found for {kind} count: {parent_id}")

    async def get_cached_count(self, kind: ChildKind, parent_id: UUID) -> int:
        relation = kind.relation
        doc = await self.database.get_collection(relation.parent_collection).find_one({"_id": parent_id})
        if not doc:
            raise NotFoundError(f"Parent not found for {kind} count: {parent_id}")
        return int(doc.get(relation.count_field, 0))

    async def reconcile_parent(self, kind: ChildKind, parent_id: UUID) -> tuple[int, int]:
        """Overwrite one parent's cached count with the exact live-child count.

        Returns:
            (previous cached count, exact count)

        Raises:
            NotFoundError: If the parent is gone
            ReconciliationRaceError: If every compare-and-set attempt lost to a concurrent write
        """
        relation = kind.relation
        parents = self.database.get_collection(relation.parent_collection)
        children = self.database.get_collection(relation.child_collection)

        for _ in range(self.core.config.reconcile_cas_attempts):
            parent = await parents.find_one({"_id": parent_id})
            if parent is None:
                raise NotFoundError(f"Parent not found for {kind} count: {parent_id}")
            version = parent.get("count_version", 0)
            exact = await children.count_documents({relation.parent_field: parent_id})
            result = await parents.update_one(
                {"_id": parent_id, "count_version": version},
                {"$set": {relation.count_field: exact}, "$inc": {"count_version": 1}},
            )
            if result.modified_count == 1:
                return int(parent.get(relation.count_field, 0)), exact

        raise ReconciliationRaceError(f"Cached {kind} count of {parent_id} kept changing during reconciliation")

    async def sweep(self, kind: ChildKind) -> SweepResult:
        """Recount every parent of one kind."""
        summary = SweepResult(kind=kind)
        parents = self.database.get_collection(kind.relation.parent_collection)
        async for parent in parents.find({}, {"_id": 1}):
            try:
                previous, exact = await self.reconcile_parent(kind, parent["_id"])
            except NotFoundError:
                continue  # Deleted while the sweep was running
            except ReconciliationRaceError:
                summary.races += 1
                logger.warning("reconcile_race", kind=kind, parent_id=parent["_id"])
                continue
            summary.reconciled += 1
            if previous != exact:
                summary.corrected += 1
                logger.info("counter_cache_corrected", kind=kind, parent_id=parent["_id"], cached=previous, exact=exact)
        logger.info("reconcile_sweep_finished", **summary.model_dump())
        return summary

    async def sweep_all(self) -> list[SweepResult]:
        return [await self.sweep(kind) for kind in ChildKind]

    async def _sweep_periodically(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep_all()
            except Exception:
                logger.exception("reconcile_sweep_failed")

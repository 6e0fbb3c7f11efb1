from uuid import UUID

import structlog

from threadkeeper.config import GapPolicy
from threadkeeper.core.core import Service
from threadkeeper.core.modules.counter.models import ChildKind
from threadkeeper.core.modules.gap.models import GapReport, OperationalHealth

logger = structlog.get_logger(__name__)


class GapService(Service):
    """Detects allocated numbers that never became rows.

    A number is unfulfilled when it is at or below the allocator's high-water
    mark but not stored. Numbers of queued or retrying tasks are reported as
    in flight; the rest are either dead-lettered or missing outright (for
    example lost with a crashed process).
    """

    async def get_gap_report(self, kind: ChildKind, parent_id: UUID) -> GapReport:
        services = self.core.services
        relation = kind.relation
        high_water_mark = await services.counter.get_high_water_mark(parent_id, kind)
        children = self.database.get_collection(relation.child_collection)
        persisted = {doc["number"] async for doc in children.find({relation.parent_field: parent_id}, {"number": 1})}

        in_flight = services.worker.get_in_flight_numbers(parent_id, kind)
        dead_tasks = await services.worker.list_dead_tasks(parent_id=parent_id, kind=kind, limit=0)
        dead_lettered = sorted({task.number for task in dead_tasks} - persisted)

        accounted = persisted | set(in_flight) | set(dead_lettered)
        missing = [number for number in range(1, high_water_mark + 1) if number not in accounted]

        max_persisted = max(persisted, default=0)
        return GapReport(
            kind=kind,
            parent_id=parent_id,
            high_water_mark=high_water_mark,
            max_persisted=max_persisted,
            persisted_count=len(persisted),
            in_flight=in_flight,
            dead_lettered=dead_lettered,
            missing=missing,
            counter_behind_store=high_water_mark < max_persisted,
        )

    async def is_consistent(self, kind: ChildKind, parent_id: UUID) -> bool:
        """Cheap pre-check: every allocated number is stored and the counter is not behind.

        Uses a count and two single-document reads instead of building the full report.
        """
        services = self.core.services
        relation = kind.relation
        high_water_mark = await services.counter.get_high_water_mark(parent_id, kind)
        persisted_count = await self.database.get_collection(relation.child_collection).count_documents(
            {relation.parent_field: parent_id}
        )
        if persisted_count != high_water_mark:
            return False
        return await services.counter.get_max_persisted(parent_id, kind) <= high_water_mark

    async def get_tenant_gaps(self, tenant_id: UUID) -> list[GapReport]:
        """Reports for a tenant's thread numbers and each of its threads' entry numbers."""
        reports = [await self.get_gap_report(ChildKind.THREAD, tenant_id)]
        for thread_id in await self.core.services.thread.list_thread_ids(tenant_id):
            reports.append(await self.get_gap_report(ChildKind.ENTRY, thread_id))
        return reports

    async def scan(self) -> list[GapReport]:
        """Reports with gaps or a lagging counter across every parent, logged according to the gap policy."""
        found: list[GapReport] = []
        for kind in ChildKind:
            parents = self.database.get_collection(kind.relation.parent_collection)
            async for parent in parents.find({}, {"_id": 1}):
                if await self.is_consistent(kind, parent["_id"]):
                    continue
                report = await self.get_gap_report(kind, parent["_id"])
                if not (report.has_gaps or report.counter_behind_store):
                    continue
                found.append(report)
                if report.counter_behind_store:
                    logger.error(
                        "counter_behind_store",
                        kind=report.kind,
                        parent_id=report.parent_id,
                        high_water_mark=report.high_water_mark,
                        max_persisted=report.max_persisted,
                    )
                if report.has_gaps:
                    self._log_gap(report)
        return found

    async def get_health(self) -> OperationalHealth:
        policy = self.core.config.gap_policy
        worker = self.core.services.worker
        gaps = await self.scan()
        behind = sum(1 for report in gaps if report.counter_behind_store)
        # A lagging counter hands out numbers that already exist, whatever the gap policy
        degraded = behind > 0 or (policy == GapPolicy.ALERT and any(report.has_gaps for report in gaps))
        return OperationalHealth(
            status="degraded" if degraded else "ok",
            counters_behind_store=behind,
            gap_policy=policy,
            dead_tasks=await worker.count_dead_tasks(),
            backlog=worker.backlog(),
            gaps=gaps,
        )

    def _log_gap(self, report: GapReport) -> None:
        log = logger.error if self.core.config.gap_policy == GapPolicy.ALERT else logger.info
        log(
            "sequence_gap_detected",
            kind=report.kind,
            parent_id=report.parent_id,
            high_water_mark=report.high_water_mark,
            dead_lettered=report.dead_lettered,
            missing=report.missing,
        )

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from threadkeeper.core.modules.counter_cache.models import SweepResult
from threadkeeper.core.modules.gap.models import GapReport, OperationalHealth
from threadkeeper.core.modules.worker.models import CreationTask, DeadTask, WorkerStats
from threadkeeper.web.deps import AppDep
from threadkeeper.web.openapi import ErrorResponse

router = APIRouter(prefix="/ops", tags=["ops"])


class ReindexResult(BaseModel):
    republished: int


@router.get(
    "/health",
    summary="Operational health",
    description="Dead tasks, backlog and sequence gaps. Returns 503 when the gap policy is `alert` and gaps exist.",
    operation_id="getOperationalHealth",
    responses={503: {"model": OperationalHealth, "description": "Degraded"}},
)
async def get_health(app: AppDep) -> JSONResponse:
    health = await app.get_health()
    status_code = 503 if health.status == "degraded" else 200
    return JSONResponse(status_code=status_code, content=health.model_dump(mode="json"))


@router.get("/worker", summary="Worker pool stats", operation_id="getWorkerStats")
async def get_worker_stats(app: AppDep) -> WorkerStats:
    return app.get_worker_stats()


@router.get("/dead-tasks", summary="List dead-lettered creation tasks", operation_id="listDeadTasks")
async def list_dead_tasks(app: AppDep, limit: Annotated[int, Query(ge=1, le=1000)] = 100) -> list[DeadTask]:
    return await app.list_dead_tasks(limit)


@router.post(
    "/dead-tasks/{task_id}/requeue",
    summary="Requeue a dead task",
    description="Give a dead-lettered task a fresh retry budget for the same allocated number.",
    operation_id="requeueDeadTask",
    responses={
        404: {"model": ErrorResponse, "description": "Dead task not found"},
        503: {"model": ErrorResponse, "description": "Backlog full"},
    },
)
async def requeue_dead_task(task_id: UUID, app: AppDep) -> CreationTask:
    return await app.requeue_dead_task(task_id)


@router.get(
    "/gaps/{token}",
    summary="Sequence gaps of a tenant",
    operation_id="getTenantGaps",
    responses={404: {"model": ErrorResponse, "description": "Tenant not found"}},
)
async def get_tenant_gaps(token: str, app: AppDep) -> list[GapReport]:
    return await app.get_tenant_gaps(token)


@router.post("/reconcile", summary="Run the counter-cache sweep now", operation_id="reconcileCounts")
async def reconcile_counts(app: AppDep) -> list[SweepResult]:
    return await app.reconcile_counts()


@router.post(
    "/reindex",
    summary="Rebuild the search index",
    operation_id="reindex",
    responses={503: {"model": ErrorResponse, "description": "Search index rejected a write"}},
)
async def reindex(app: AppDep) -> ReindexResult:
    return ReindexResult(republished=await app.reindex())


@router.post(
    "/rebuild-counters",
    summary="Rebuild allocator counters from stored rows",
    description="Raise every counter to at least the highest stored number. Counters never move down.",
    operation_id="rebuildCounters",
)
async def rebuild_counters(app: AppDep) -> dict[str, int]:
    return await app.rebuild_counters()

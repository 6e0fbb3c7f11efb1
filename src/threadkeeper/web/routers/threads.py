from typing import Annotated

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from threadkeeper.core.modules.thread.models import Thread
from threadkeeper.core.pagination import PaginationResult
from threadkeeper.web.deps import AppDep
from threadkeeper.web.openapi import ErrorResponse

router = APIRouter(tags=["threads"])


class AllocatedNumber(BaseModel):
    """Number reserved for a child that is being persisted in the background."""

    number: int = Field(..., description="Sequential number within the parent, final once returned")


@router.post(
    "/tenants/{token}/threads",
    summary="Create thread",
    description=(
        "Allocate the next thread number and return it immediately. "
        "The thread becomes readable once the creation worker has stored it."
    ),
    operation_id="createThread",
    status_code=201,
    responses={
        201: {"description": "Number allocated, creation enqueued"},
        404: {"model": ErrorResponse, "description": "Tenant not found"},
        503: {"model": ErrorResponse, "description": "Allocator unavailable or backlog full"},
    },
)
async def create_thread(token: str, app: AppDep) -> AllocatedNumber:
    return AllocatedNumber(number=await app.create_thread(token))


@router.get(
    "/tenants/{token}/threads",
    summary="List threads",
    operation_id="listThreads",
    responses={404: {"model": ErrorResponse, "description": "Tenant not found"}},
)
async def list_threads(
    token: str,
    app: AppDep,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> PaginationResult[Thread]:
    return await app.list_threads(token, limit, offset)


@router.get(
    "/tenants/{token}/threads/{number}",
    summary="Get thread",
    operation_id="getThread",
    responses={404: {"model": ErrorResponse, "description": "Tenant or thread not found (or not persisted yet)"}},
)
async def get_thread(token: str, number: int, app: AppDep) -> Thread:
    return await app.get_thread(token, number)

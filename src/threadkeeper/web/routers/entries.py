from typing import Annotated

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from threadkeeper.core.modules.entry.models import Entry
from threadkeeper.core.pagination import PaginationResult
from threadkeeper.web.deps import AppDep
from threadkeeper.web.openapi import ErrorResponse
from threadkeeper.web.routers.threads import AllocatedNumber

router = APIRouter(tags=["entries"])


class CreateEntryRequest(BaseModel):
    """Request to create a new entry."""

    body: str = Field(..., min_length=1, description="Entry text, indexed for search")

    model_config = {"json_schema_extra": {"examples": [{"body": "Customer reports the export is empty"}]}}


@router.post(
    "/tenants/{token}/threads/{thread_number}/entries",
    summary="Create entry",
    description="Allocate the next entry number in a thread and return it immediately.",
    operation_id="createEntry",
    status_code=201,
    responses={
        201: {"description": "Number allocated, creation enqueued"},
        400: {"model": ErrorResponse, "description": "Empty body"},
        404: {"model": ErrorResponse, "description": "Tenant or thread not found"},
        503: {"model": ErrorResponse, "description": "Allocator unavailable or backlog full"},
    },
)
async def create_entry(token: str, thread_number: int, req: CreateEntryRequest, app: AppDep) -> AllocatedNumber:
    return AllocatedNumber(number=await app.create_entry(token, thread_number, req.body))


@router.get(
    "/tenants/{token}/threads/{thread_number}/entries",
    summary="List entries",
    operation_id="listEntries",
    responses={404: {"model": ErrorResponse, "description": "Tenant or thread not found"}},
)
async def list_entries(
    token: str,
    thread_number: int,
    app: AppDep,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> PaginationResult[Entry]:
    return await app.list_entries(token, thread_number, limit, offset)


# Declared before the {number} route so "search" is not parsed as a number
@router.get(
    "/tenants/{token}/threads/{thread_number}/entries/search",
    summary="Search entries",
    description="Case-insensitive substring search over entry bodies in one thread.",
    operation_id="searchEntries",
    responses={
        400: {"model": ErrorResponse, "description": "Empty query"},
        404: {"model": ErrorResponse, "description": "Tenant or thread not found"},
        503: {"model": ErrorResponse, "description": "Search index unavailable"},
    },
)
async def search_entries(
    token: str,
    thread_number: int,
    app: AppDep,
    q: Annotated[str, Query(description="Text to look for")],
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> list[Entry]:
    return await app.search_entries(token, thread_number, q, limit)


@router.get(
    "/tenants/{token}/threads/{thread_number}/entries/{number}",
    summary="Get entry",
    operation_id="getEntry",
    responses={404: {"model": ErrorResponse, "description": "Tenant, thread or entry not found"}},
)
async def get_entry(token: str, thread_number: int, number: int, app: AppDep) -> Entry:
    return await app.get_entry(token, thread_number, number)

from typing import Annotated

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from threadkeeper.core.modules.tenant.models import Tenant
from threadkeeper.core.pagination import PaginationResult
from threadkeeper.web.deps import AppDep
from threadkeeper.web.openapi import ErrorResponse

router = APIRouter(tags=["tenants"])


class TenantRequest(BaseModel):
    """Request to create or rename a tenant."""

    display_name: str = Field(..., min_length=1, description="Human-readable tenant name")

    model_config = {"json_schema_extra": {"examples": [{"display_name": "Acme Support"}]}}


@router.post(
    "/tenants",
    summary="Create tenant",
    description="Create a tenant synchronously. The response carries the opaque token used in every other URL.",
    operation_id="createTenant",
    status_code=201,
    responses={
        201: {"description": "Tenant created"},
        400: {"model": ErrorResponse, "description": "Invalid display name"},
    },
)
async def create_tenant(req: TenantRequest, app: AppDep) -> Tenant:
    return await app.create_tenant(req.display_name)


@router.get(
    "/tenants",
    summary="List tenants",
    operation_id="listTenants",
)
async def list_tenants(
    app: AppDep,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> PaginationResult[Tenant]:
    return await app.list_tenants(limit, offset)


@router.get(
    "/tenants/{token}",
    summary="Get tenant",
    description="Get a tenant by token. `thread_count` is a cache and may lag until the next reconciliation sweep.",
    operation_id="getTenant",
    responses={404: {"model": ErrorResponse, "description": "Tenant not found"}},
)
async def get_tenant(token: str, app: AppDep) -> Tenant:
    return await app.get_tenant(token)


@router.patch(
    "/tenants/{token}",
    summary="Rename tenant",
    operation_id="renameTenant",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid display name"},
        404: {"model": ErrorResponse, "description": "Tenant not found"},
    },
)
async def rename_tenant(token: str, req: TenantRequest, app: AppDep) -> Tenant:
    return await app.rename_tenant(token, req.display_name)


@router.delete(
    "/tenants/{token}",
    summary="Delete tenant",
    description="Delete a tenant together with all of its threads and entries.",
    operation_id="deleteTenant",
    status_code=204,
    responses={404: {"model": ErrorResponse, "description": "Tenant not found"}},
)
async def delete_tenant(token: str, app: AppDep) -> None:
    await app.delete_tenant(token)

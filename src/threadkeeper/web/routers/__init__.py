from threadkeeper.web.routers.entries import router as entries_router
from threadkeeper.web.routers.ops import router as ops_router
from threadkeeper.web.routers.tenants import router as tenants_router
from threadkeeper.web.routers.threads import router as threads_router

__all__ = [
    "entries_router",
    "ops_router",
    "tenants_router",
    "threads_router",
]

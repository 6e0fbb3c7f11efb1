from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from threadkeeper.app import App
from threadkeeper.config import Config
from threadkeeper.errors import UserError
from threadkeeper.web.error_handlers import general_exception_handler, user_error_handler
from threadkeeper.web.openapi import set_custom_openapi
from threadkeeper.web.routers import entries_router, ops_router, tenants_router, threads_router


def create_fastapi_app(app_instance: App, config: Config) -> FastAPI:
    """Create and configure FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        app.state.app = app_instance
        app.state.config = config
        async with app_instance.lifespan():
            yield

    app = FastAPI(title="threadkeeper API", lifespan=lifespan)

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Liveness only; /api/v1/ops/health covers gaps and dead tasks
    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    app.include_router(tenants_router, prefix="/api/v1")
    app.include_router(threads_router, prefix="/api/v1")
    app.include_router(entries_router, prefix="/api/v1")
    app.include_router(ops_router, prefix="/api/v1")

    app.add_exception_handler(UserError, user_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    set_custom_openapi(app)

    return app

from typing import Any

from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi
from pydantic import BaseModel, Field


def set_custom_openapi(app: FastAPI) -> None:
    def custom_openapi() -> dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        app.openapi_schema = get_openapi(
            title="threadkeeper API",
            version="0.1.0",
            summary="Sequentially numbered threads and entries with asynchronous persistence",
            description=(
                "Create endpoints return the allocated number immediately; the row becomes readable "
                "once the creation worker has persisted it."
            ),
            routes=app.routes,
        )
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[method-assign]


class ErrorResponse(BaseModel):
    """Standard error response format."""

    message: str = Field(..., description="Human-readable error message")
    type: str | None = Field(None, description="Machine-readable error type")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"message": "Tenant not found", "type": "not_found"},
                {"message": "Number allocator is unavailable", "type": "allocator_unavailable"},
                {"message": "Creation backlog is full, try again later", "type": "backlog_full"},
            ]
        }
    }

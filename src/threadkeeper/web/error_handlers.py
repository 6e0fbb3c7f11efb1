import structlog
from fastapi import Request
from fastapi.responses import JSONResponse, Response

from threadkeeper.errors import (
    AllocatorUnavailableError,
    BacklogFullError,
    NotFoundError,
    SearchUnavailableError,
    UnavailableError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


def create_json_error_response(status_code: int, message: str, error_type: str | None = None) -> JSONResponse:
    """Create JSON error response with optional type for machine parsing."""
    content = {"message": message}
    if error_type:
        content["type"] = error_type
    return JSONResponse(status_code=status_code, content=content)


async def user_error_handler(_: Request, exc: Exception) -> Response:
    """Handle all UserError subclasses with appropriate status codes."""
    if isinstance(exc, NotFoundError):
        status_code = 404
        error_type = "not_found"
    elif isinstance(exc, ValidationError):
        status_code = 400
        error_type = "validation_error"
    elif isinstance(exc, AllocatorUnavailableError):
        status_code = 503
        error_type = "allocator_unavailable"
    elif isinstance(exc, BacklogFullError):
        status_code = 503
        error_type = "backlog_full"
    elif isinstance(exc, SearchUnavailableError):
        status_code = 503
        error_type = "search_unavailable"
    elif isinstance(exc, UnavailableError):
        status_code = 503
        error_type = "unavailable"
    else:
        status_code = 400
        error_type = "bad_request"

    return create_json_error_response(status_code=status_code, message=str(exc), error_type=error_type)


async def general_exception_handler(_: Request, exc: Exception) -> Response:
    """Handle unexpected errors (500)."""
    logger.exception("unexpected_error", error=str(exc))
    return create_json_error_response(
        status_code=500, message="An unexpected error occurred.", error_type="internal_server_error"
    )

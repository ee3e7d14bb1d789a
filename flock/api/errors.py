"""Translation of domain errors into HTTP responses.

NotFound -> 404, Forbidden -> 403, Conflict -> 409, Unavailable -> 503
(with Retry-After), invalid input and unknown columns -> 422, a request
the record store refuses -> 502.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from flock.common.logger import get_logger
from flock.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PermissionDeniedError,
    SchemaError,
    StoreRequestError,
    UnavailableError,
)

logger = get_logger("api.errors")

RETRY_AFTER_SECONDS = 5


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: Optional[str] = None
    details: Dict[str, Any] = {}


def _error(status_code: int, code: str, exc: Exception, headers=None, **details: Any) -> JSONResponse:
    body = ErrorResponse(error=code, detail=str(exc), details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error(status.HTTP_404_NOT_FOUND, "not_found", exc, table=exc.table, id=exc.record_id)


async def forbidden_handler(request: Request, exc: ForbiddenError) -> JSONResponse:
    details = {}
    if isinstance(exc, PermissionDeniedError):
        details["required_permission"] = exc.required_permission
    return _error(status.HTTP_403_FORBIDDEN, "forbidden", exc, **details)


async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
    return _error(status.HTTP_409_CONFLICT, "conflict", exc)


async def unavailable_handler(request: Request, exc: UnavailableError) -> JSONResponse:
    logger.error(f"Record store unavailable during {request.method} {request.url.path}: {exc}")
    return _error(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "unavailable",
        exc,
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )


async def store_rejected_handler(request: Request, exc: StoreRequestError) -> JSONResponse:
    logger.error(f"Record store rejected {request.method} {request.url.path}: {exc}")
    return _error(status.HTTP_502_BAD_GATEWAY, "store_rejected", exc, upstream_status=exc.status_code)


async def schema_handler(request: Request, exc: SchemaError) -> JSONResponse:
    return _error(
        status.HTTP_422_UNPROCESSABLE_ENTITY, "invalid", exc, table=exc.table, columns=list(exc.columns)
    )


async def invalid_input_handler(request: Request, exc: ValueError) -> JSONResponse:
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "invalid", exc)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the domain error handlers on an app."""
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(ForbiddenError, forbidden_handler)
    app.add_exception_handler(ConflictError, conflict_handler)
    app.add_exception_handler(UnavailableError, unavailable_handler)
    app.add_exception_handler(StoreRequestError, store_rejected_handler)
    app.add_exception_handler(SchemaError, schema_handler)
    app.add_exception_handler(ValueError, invalid_input_handler)

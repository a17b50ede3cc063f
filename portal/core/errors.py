from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class EntityNotFoundError(Exception):
    def __init__(self, kind: str, entity_id: Any) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind.capitalize()} not found")


class InvalidDeletionTarget(Exception):
    """Raised when the requested root exists but cannot be deleted as the given kind."""


class CascadeError(Exception):
    def __init__(self, relation: str, completed: Optional[Dict[str, int]] = None) -> None:
        self.relation = relation
        self.completed = dict(completed or {})
        super().__init__(f"Cascade failed at relation {relation}")


def _error_body(message: Any, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": message}
    body.update(extra)
    return body


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    headers = getattr(exc, "headers", None)
    if exc.status_code < 400:
        return Response(status_code=exc.status_code, headers=headers)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.detail), headers=headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        details.append(
            {
                "field": ".".join(location),
                "message": error.get("msg", ""),
                "type": error.get("type", ""),
            }
        )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("Validation error", details=details),
    )


async def not_found_handler(request: Request, exc: EntityNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=_error_body(str(exc)))


async def invalid_target_handler(request: Request, exc: InvalidDeletionTarget) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=_error_body(str(exc)))


async def cascade_error_handler(request: Request, exc: CascadeError) -> JSONResponse:
    logger.error(
        "Cascade aborted relation=%s completed=%s endpoint=%s %s",
        exc.relation,
        exc.completed,
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("Internal server error", completed=exc.completed),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception endpoint=%s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("Internal server error"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(EntityNotFoundError, not_found_handler)
    app.add_exception_handler(InvalidDeletionTarget, invalid_target_handler)
    app.add_exception_handler(CascadeError, cascade_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

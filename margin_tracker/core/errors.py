"""
Error Taxonomy and Exception Handlers

Every failure that reaches a client is rendered as ``{"error": ..., "message": ...}``.
The ``message`` detail is only exposed while running in development.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from margin_tracker.core.config import settings

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map onto an HTTP status."""
    status_code = 500
    error = "Internal server error"

    def __init__(self, message: Optional[str] = None, error: Optional[str] = None, **extra: Any):
        super().__init__(message or error or self.error)
        self.message = message
        if error:
            self.error = error
        self.extra = extra


class AuthenticationRequired(AppError):
    status_code = 401
    error = "Authentication required"


class ValidationError(AppError):
    status_code = 400
    error = "Invalid request"


class NotFound(AppError):
    status_code = 404
    error = "Not found"


class ConflictError(AppError):
    status_code = 409
    error = "Conflict"


class UpstreamError(AppError):
    """A vendor API or database call failed."""
    status_code = 500
    error = "Upstream service error"


class InternalError(AppError):
    status_code = 500
    error = "Internal server error"


def error_body(error: str, message: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": error}
    if message and settings.is_development:
        body["message"] = message
    body.update(extra)
    return body


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.error, exc.message, **exc.extra),
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "message": "; ".join(problems)},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_body("Internal server error", str(exc)),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

"""Application error taxonomy and the FastAPI handlers that render it.

Every failure leaves the service as
``{"success": false, "message": ..., "error": {"type": ..., "details": ...}}``.
"""
from typing import Any, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class AppError(Exception):
    status_code: int = 500
    type: str = "APP_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(AppError):
    status_code = 400
    type = "VALIDATION_ERROR"


class AuthorizationError(AppError):
    status_code = 403
    type = "AUTHORIZATION_ERROR"


class AuthenticationError(AuthorizationError):
    """No usable identity, or a token that failed signature verification."""
    status_code = 401
    type = "AUTHENTICATION_ERROR"


class NotFoundError(AppError):
    status_code = 404
    type = "NOT_FOUND_ERROR"


class ConflictError(AppError):
    status_code = 409
    type = "CONFLICT_ERROR"


class DatabaseError(AppError):
    status_code = 500
    type = "DATABASE_ERROR"


def error_body(message: str, type_: str, details: Any = None) -> dict:
    body: dict[str, Any] = {"success": False, "message": message, "error": {"type": type_}}
    if details is not None:
        body["error"]["details"] = details
    return body


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error_type=exc.type, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.type, exc.details))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=error_body("Invalid request payload", ValidationError.type, {"fields": fields}),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", path=request.url.path)
    return JSONResponse(status_code=500, content=error_body("Internal server error", "UNKNOWN_ERROR"))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

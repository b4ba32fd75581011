"""
Error handler middleware and custom exceptions.

Provides consistent error responses for transport-level failures and maps
workflow errors to status codes. Every error body has the shape
``{"error", "kind", "correlation_id", "details"}``.
"""
import logging
from typing import Optional, Dict, Any
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from carrental.domain.errors import WorkflowError
from carrental.lib.logging import get_correlation_id, get_logger

logger = get_logger(__name__)


WORKFLOW_STATUS_CODES = {
    "validation_error": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "invalid_transition": status.HTTP_409_CONFLICT,
    "conflict": status.HTTP_409_CONFLICT,
    "not_found": status.HTTP_404_NOT_FOUND,
    "unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
}


# Custom exception classes
class AppException(Exception):
    """Base application exception."""

    kind = "app_error"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class UnauthorizedException(AppException):
    """Missing, invalid or expired bearer token."""

    kind = "unauthorized"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or get_correlation_id() or "unknown"


def error_body(
    message: Any,
    kind: str,
    correlation_id: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "error": message,
        "kind": kind,
        "correlation_id": correlation_id,
        "details": details or {},
    }


# Exception handlers
async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Handler for custom application exceptions.

    Returns consistent error response with correlation ID.
    """
    correlation_id = _correlation_id(request)

    log_level = logging.WARNING if exc.status_code < 500 else logging.ERROR
    logger.log(
        log_level,
        f"Application error: {exc.message}",
        extra={"extra_fields": {
            "status_code": exc.status_code,
            "path": request.url.path,
            "method": request.method,
        }},
    )

    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, exc.kind, correlation_id, exc.details),
        headers=headers,
    )


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    """
    Handler for booking/agency workflow errors.

    The status code is derived from the error kind; the structured context
    (statuses, actor role, resource) is returned as ``details``.
    """
    correlation_id = _correlation_id(request)
    status_code = WORKFLOW_STATUS_CODES.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)

    log_level = logging.WARNING if status_code < 500 else logging.ERROR
    logger.log(
        log_level,
        f"Workflow error ({exc.kind}): {exc.message}",
        extra={"extra_fields": {
            "status_code": status_code,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
        }},
    )

    return JSONResponse(
        status_code=status_code,
        content=error_body(exc.message, exc.kind, correlation_id, exc.details),
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handler for Pydantic validation errors.

    Formats validation errors in a consistent way.
    """
    correlation_id = _correlation_id(request)

    errors = []
    for error in exc.errors():
        errors.append({
            "loc": list(error["loc"]),
            "msg": error["msg"],
            "type": error["type"],
        })

    logger.warning(
        "Validation error",
        extra={"extra_fields": {
            "path": request.url.path,
            "method": request.method,
            "errors": errors,
        }},
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body("Validation error", "validation_error", correlation_id, {"errors": errors}),
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """
    Handler for Starlette HTTP exceptions.
    """
    correlation_id = _correlation_id(request)

    logger.warning(
        f"HTTP exception: {exc.detail}",
        extra={"extra_fields": {
            "status_code": exc.status_code,
            "path": request.url.path,
            "method": request.method,
        }},
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.detail, "http_error", correlation_id),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handler for unhandled exceptions.

    Logs full stack trace and returns generic error message.
    """
    correlation_id = _correlation_id(request)

    logger.error(
        f"Unhandled exception: {exc}",
        extra={"extra_fields": {
            "path": request.url.path,
            "method": request.method,
        }},
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("Internal server error", "internal_error", correlation_id),
    )

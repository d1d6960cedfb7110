"""
Global Exception Handlers for the Tenant Portal

Every error leaves the API in the same envelope:

{
    "error": {
        "status_code": 402,
        "error_code": "FEATURE_LOCKED",
        "message": "Feature 'blog.tags.manage' requires a higher tier",
        "type": "Payment Required",
        "details": {"plugin_id": "...", "feature_key": "...", "upgrade": {...}},
        "path": "/api/v1/features/..."
    }
}

`error_code` is machine-readable so the frontend can pick a view (upgrade
prompt, login redirect, retry banner) without parsing messages.
"""

import logging
from typing import Any, Union

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from portal.exceptions import PortalException

logger = logging.getLogger(__name__)

# status code -> (envelope type, fallback error code for plain HTTPExceptions)
STATUS_INFO: dict[int, tuple[str, str]] = {
    400: ("Bad Request", "VALIDATION_FAILED"),
    401: ("Unauthorized", "AUTH_FAILED"),
    402: ("Payment Required", "FEATURE_LOCKED"),
    403: ("Forbidden", "AUTH_PERMISSION_DENIED"),
    404: ("Not Found", "RESOURCE_NOT_FOUND"),
    405: ("Method Not Allowed", "METHOD_NOT_ALLOWED"),
    409: ("Conflict", "CONFLICT"),
    422: ("Validation Error", "VALIDATION_FAILED"),
    500: ("Internal Server Error", "INTERNAL_ERROR"),
    502: ("Bad Gateway", "UPSTREAM_ERROR"),
    503: ("Service Unavailable", "SERVICE_UNAVAILABLE"),
}

UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."


def get_error_type(status_code: int) -> str:
    return STATUS_INFO.get(status_code, ("Error", ""))[0]


def get_http_error_code(status_code: int) -> str:
    """Error code used when a bare HTTPException carries none of its own."""
    return STATUS_INFO.get(status_code, ("", "UNKNOWN_ERROR"))[1]


def create_error_response(
    status_code: int,
    message: str,
    error_code: str | None = None,
    details: dict[str, Any] | None = None,
    path: str | None = None,
) -> JSONResponse:
    """Build the standard error envelope; empty optional members are left out."""
    body: dict[str, Any] = {
        "status_code": status_code,
        "message": message,
        "type": get_error_type(status_code),
    }
    optional = {"error_code": error_code, "details": details, "path": path}
    body.update({key: value for key, value in optional.items() if value})
    return JSONResponse(status_code=status_code, content={"error": body})


async def portal_exception_handler(request: Request, exc: PortalException) -> JSONResponse:
    # Registry outages are operational problems; denials are routine
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        "%s on %s: %s",
        type(exc).__name__,
        request.url.path,
        exc.message,
        extra={"status_code": exc.status_code, "error_code": exc.error_code, "path": request.url.path},
    )
    return create_error_response(
        exc.status_code, exc.message, error_code=exc.error_code, details=exc.details, path=request.url.path
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.warning("HTTP %d on %s: %s", exc.status_code, request.url.path, exc.detail)
    return create_error_response(
        exc.status_code,
        str(exc.detail),
        error_code=get_http_error_code(exc.status_code),
        path=request.url.path,
    )


async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, PydanticValidationError]
) -> JSONResponse:
    problems = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part not in ("body", "query", "path")),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning("Rejected request to %s: %d invalid field(s)", request.url.path, len(problems))
    return create_error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Request validation failed",
        error_code="VALIDATION_FAILED",
        details={"validation_errors": problems},
        path=request.url.path,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled %s on %s %s", type(exc).__name__, request.method, request.url.path)
    # Internal details stay in the log
    return create_error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        UNEXPECTED_ERROR_MESSAGE,
        error_code="INTERNAL_ERROR",
        path=request.url.path,
    )


def register_exception_handlers(app: FastAPI) -> None:
    handlers = (
        (PortalException, portal_exception_handler),
        (StarletteHTTPException, http_exception_handler),
        (RequestValidationError, validation_exception_handler),
        (PydanticValidationError, validation_exception_handler),
        (Exception, unhandled_exception_handler),
    )
    for exc_class, handler in handlers:
        app.add_exception_handler(exc_class, handler)
    logger.debug("Registered %d exception handlers", len(handlers))

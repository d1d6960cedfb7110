"""
Structured Logging Middleware

JSON request/response logging for the portal. Every record carries the
request id and, once the tenant is known, the tenant id, so registry and
loader messages can be traced back to the request that triggered them.
"""

import json
import logging
import time
import uuid
from collections.abc import Callable
from contextvars import ContextVar
from datetime import datetime, timezone

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
tenant_id_var: ContextVar[str] = ContextVar("tenant_id", default="")

REQUEST_ID_HEADER = "X-Request-ID"
TENANT_ID_HEADER = "X-Tenant-ID"

# Paths not worth an access log line
QUIET_PATHS = frozenset({"/health", "/ready"})

# Logger levels applied by setup_structured_logging; None means "use log_level"
LOGGER_LEVELS: dict[str, str | None] = {
    "portal": None,
    "portal.access": None,
    "uvicorn": "WARNING",
    "uvicorn.access": "WARNING",
    "httpx": "WARNING",
}


class RequestContextFilter(logging.Filter):
    """Copy request id and tenant id from context onto every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        record.tenant_id = tenant_id_var.get()
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter, one object per line."""

    EXTRA_FIELDS = ("tenant_id", "user_id", "method", "path", "status_code", "duration_ms", "client_ip", "error_code")

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", ""),
        }
        payload.update(
            (field, getattr(record, field))
            for field in self.EXTRA_FIELDS
            if getattr(record, field, None) not in (None, "")
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For") or request.headers.get("X-Real-IP")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    Access logging with request ids.

    Reads X-Request-ID (or generates one) and X-Tenant-ID, exposes them to
    every logger through context variables, echoes the request id back in
    the response headers, and writes one access record per request.
    """

    def __init__(self, app: ASGIApp, logger_name: str = "portal.access"):
        super().__init__(app)
        self.logger = logging.getLogger(logger_name)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request_id_var.set(request_id)
        tenant_id_var.set(request.headers.get(TENANT_ID_HEADER, ""))

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            self._access(request, 500, started, error=e)
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        self._access(request, response.status_code, started)
        return response

    def _access(self, request: Request, status_code: int, started: float, error: Exception | None = None) -> None:
        path = request.url.path
        if path in QUIET_PATHS:
            return

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        extra = {
            "method": request.method,
            "path": path,
            "status_code": status_code,
            "duration_ms": duration_ms,
            "client_ip": _client_ip(request),
        }
        # Tenant resolved by dependencies wins over the raw header
        tenant = getattr(request.state, "tenant", None)
        if tenant is not None:
            extra["tenant_id"] = tenant.id
        user = getattr(request.state, "user", None)
        if user is not None:
            extra["user_id"] = user.id

        message = "%s %s -> %d in %.2fms"
        args: tuple = (request.method, path, status_code, duration_ms)
        if error is not None:
            message += " (%s)"
            args += (type(error).__name__,)
        self.logger.log(_level_for(status_code), message, *args, extra=extra)


def setup_structured_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    log_file: str | None = None,
) -> None:
    """
    Configure root logging for the portal.

    Args:
        log_level: Level for the portal loggers (DEBUG, INFO, WARNING, ERROR)
        json_format: One JSON object per line instead of plain text
        log_file: Write to this file instead of stderr
    """
    level = log_level.upper()

    handler: logging.Handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s [%(request_id)s/%(tenant_id)s] %(message)s")
        )
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name, override in LOGGER_LEVELS.items():
        logging.getLogger(name).setLevel(override or level)


def get_request_id() -> str:
    return request_id_var.get()

"""
Request logging middleware.

Every request gets a request id and a correlation id (taken from the
``x-request-id`` / ``x-correlation-id`` headers when the caller sends them)
bound into the structlog contextvars, and one access line when it finishes.
Routes under ``/api/databases/{id}`` also log the connection id.
"""
from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from dbbroker.core.structured_logging import correlation_id_var, request_id_var

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"
CORRELATION_ID_HEADER = "x-correlation-id"

_CONNECTION_PATH = re.compile(r"^/api/databases/(?P<connection_id>[^/]+)")


def _incoming_id(request: Request, header: str) -> str:
    value = (request.headers.get(header) or "").strip()
    # Oversized ids are replaced so they cannot bloat every log line
    if not value or len(value) > 128:
        return uuid.uuid4().hex
    return value


def _connection_id(path: str) -> Optional[str]:
    match = _CONNECTION_PATH.match(path)
    return match.group("connection_id") if match else None


class CorrelationMiddleware(BaseHTTPMiddleware):
    """Bind request/correlation ids for the duration of a request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = _incoming_id(request, REQUEST_ID_HEADER)
        correlation_id = _incoming_id(request, CORRELATION_ID_HEADER)
        rid_token = request_id_var.set(request_id)
        cid_token = correlation_id_var.set(correlation_id)

        path = request.url.path
        log_extra = {"http.method": request.method, "http.path": path}
        connection_id = _connection_id(path)
        if connection_id:
            log_extra["connection_id"] = connection_id

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            log_extra["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
            logger.exception("request_failed", extra=log_extra)
            raise
        else:
            log_extra["http.status_code"] = response.status_code
            log_extra["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
            level = logging.WARNING if response.status_code >= 500 else logging.INFO
            logger.log(level, "request_completed", extra=log_extra)
        finally:
            request_id_var.reset(rid_token)
            correlation_id_var.reset(cid_token)

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response

"""
FastAPI exception handlers.

BrokerError is rendered from its registry entry as

    {"success": false, "message": ..., <fields>, "error": {code, title, retryable, remediation}}

with ``detail`` added for 5xx responses only. Malformed request bodies and
query parameters become DBB-VAL-001.
"""

import logging
from typing import Any, Dict, List

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from dbbroker.core.errors import BrokerError, DescriptorValidationError
from dbbroker.core.errors.registry import error_registry

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _envelope(exc: BrokerError, title: str, retryable: bool, remediation: List[str]) -> Dict[str, Any]:
    return {
        "success": False,
        "message": exc.message,
        **exc.fields,
        "error": {
            "code": exc.code,
            "title": title,
            "retryable": retryable,
            "remediation": remediation,
        },
    }


async def broker_error_handler(request: Request, exc: BrokerError) -> JSONResponse:
    error_registry.ensure_loaded()
    entry = error_registry.get(exc.code)

    if entry is None:
        logger.error("unregistered_error_code", extra={"error.code": exc.code, "error.message": exc.message})
        return JSONResponse(status_code=500, content=_envelope(exc, "Internal error", False, []))

    logger.log(
        _LOG_LEVELS.get(entry.severity, logging.ERROR),
        entry.title,
        extra={
            "error.code": exc.code,
            "error.kind": type(exc).__name__,
            "error.message": exc.message,
            "error.detail": exc.detail,
            "http.method": request.method,
            "http.path": request.url.path,
            **{f"error.ctx.{key}": value for key, value in exc.context.items()},
        },
    )

    content = _envelope(exc, entry.title, entry.retryable, entry.remediation)
    if entry.http_status >= 500 and exc.detail:
        content["detail"] = exc.detail
    return JSONResponse(status_code=entry.http_status, content=content)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report the first pydantic error as a descriptor validation failure."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query"))
    message = first.get("msg", "Invalid request")
    err = DescriptorValidationError(
        f"{location}: {message}" if location else message,
        context={"errors": len(errors)},
    )
    return await broker_error_handler(request, err)

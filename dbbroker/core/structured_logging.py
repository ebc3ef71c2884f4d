"""
Structured logging with structlog.

One JSON object per line, written to stderr and to a rotating file under
``settings.log_dir``. Module code keeps using ``logging.getLogger(__name__)``;
stdlib records run through the same processor chain as structlog events, so
both carry service/version fields, the request and correlation ids of the
current request, and redacted credentials.
"""
from __future__ import annotations

import logging
import logging.handlers
import os
import sys
import time
from contextvars import ContextVar
from typing import List, Optional

import structlog

from dbbroker import __version__
from dbbroker.core.redaction import redact_event_dict

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

APP_VERSION = __version__
SERVICE_NAME = "dbbroker"

_NOISY_LOGGERS = (
    "httpcore",
    "httpx",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "alembic.runtime.migration",
    "uvicorn.access",
)

_process_started = time.monotonic()


def get_uptime_s() -> float:
    return time.monotonic() - _process_started


def _service_fields(logger_name: str, method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("version", APP_VERSION)
    return event_dict


def _request_ids(logger_name: str, method_name: str, event_dict: dict) -> dict:
    for key, var in (("request_id", request_id_var), ("correlation_id", correlation_id_var)):
        value = var.get()
        if value and key not in event_dict:
            event_dict[key] = value
    return event_dict


def _level_name(logger_name: str, method_name: str, event_dict: dict) -> dict:
    if "level" in event_dict:
        event_dict["level"] = str(event_dict["level"]).lower()
    return event_dict


def _pre_chain() -> List:
    """Processors shared by structlog events and foreign stdlib records."""
    return [
        structlog.contextvars.merge_contextvars,
        # Copies `extra={...}` from stdlib records into the event
        structlog.stdlib.ExtraAdder(),
        structlog.stdlib.add_log_level,
        _level_name,
        structlog.stdlib.add_logger_name,
        _service_fields,
        _request_ids,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _rotating_handler(
    log_dir: str, log_file: str, max_bytes: int, backup_count: int
) -> Optional[logging.Handler]:
    try:
        os.makedirs(log_dir, exist_ok=True)
        return logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, log_file),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    except OSError:
        # Read-only filesystem: stderr only
        return None


def setup_logging(
    log_dir: str = "logs",
    log_file: str = "dbbroker.jsonl",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    log_level: int | str = logging.INFO,
) -> None:
    """Configure structlog and the stdlib root logger. Call once at startup."""
    pre_chain = _pre_chain()
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            redact_event_dict,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
    )

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    file_handler = _rotating_handler(log_dir, log_file, max_bytes, backup_count)
    if file_handler is not None:
        handlers.append(file_handler)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(log_level.upper() if isinstance(log_level, str) else log_level)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

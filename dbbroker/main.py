"""
dbbroker application entry point.

    uvicorn dbbroker.main:app --host 0.0.0.0 --port 8000
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from dbbroker import __version__
from dbbroker.config import settings
from dbbroker.core.database import close_db, init_db
from dbbroker.core.errors import BrokerError, InternalError
from dbbroker.core.errors.middleware import broker_error_handler, request_validation_handler
from dbbroker.core.errors.registry import error_registry
from dbbroker.core.log_middleware import CorrelationMiddleware
from dbbroker.core.structured_logging import setup_logging
from dbbroker.routers import databases, health

setup_logging(log_dir=settings.log_dir, log_file=settings.log_file, log_level=settings.log_level)

logger = logging.getLogger(__name__)

API_TITLE = "dbbroker API"
API_VERSION = __version__

API_DESCRIPTION = """
## dbbroker - Database Connection Broker

Register PostgreSQL, MySQL and ClickHouse connections, test and connect
them, and browse their tables and sample rows.

### Authentication

Every `/api/databases` endpoint needs `Authorization: Bearer <jwt>` issued
by the authentication service.
"""

TAGS_METADATA = [
    {"name": "health", "description": "Liveness probes. No authentication."},
    {
        "name": "databases",
        "description": "Connection registry, lifecycle and read-only introspection. **Requires bearer token.**",
    },
]

# Engine probes block a worker thread for up to the connect timeout
EXECUTOR_WORKERS = 32


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s v%s", API_TITLE, API_VERSION)
    error_registry.load()

    executor = ThreadPoolExecutor(max_workers=EXECUTOR_WORKERS, thread_name_prefix="dbbroker")
    asyncio.get_running_loop().set_default_executor(executor)

    init_db()
    logger.info("Descriptor store ready")
    try:
        yield
    finally:
        close_db()
        executor.shutdown(wait=False)
        logger.info("Shutdown complete")


async def unhandled_exception_handler(request: Request, exc: Exception):
    """Last resort: render anything unexpected as DBB-SYS-001."""
    logger.error(
        "Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True,
    )
    return await broker_error_handler(request, InternalError())


def create_app() -> FastAPI:
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        openapi_tags=TAGS_METADATA,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"],
    )
    app.add_middleware(CorrelationMiddleware)

    app.add_exception_handler(BrokerError, broker_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(databases.router, prefix="/api/databases", tags=["databases"])

    @app.get("/", tags=["health"], summary="API root")
    async def root():
        return {
            "name": API_TITLE,
            "version": API_VERSION,
            "status": "running",
            "docs": "/docs",
            "health": "/api/health",
        }

    return app


app = create_app()

"""
Health endpoints.

- GET /api/health        liveness: process up, version, uptime
- GET /api/health/ready  readiness: the descriptor store answers a query
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from dbbroker.core.async_utils import run_sync
from dbbroker.core.database import get_engine
from dbbroker.core.structured_logging import APP_VERSION, SERVICE_NAME, get_uptime_s

logger = logging.getLogger(__name__)

router = APIRouter()

READINESS_TIMEOUT_S = 5


def _ping_store() -> None:
    with get_engine().connect() as conn:
        conn.execute(text("SELECT 1"))


@router.get("/health")
async def health_check():
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "version": APP_VERSION,
        "uptime_s": round(get_uptime_s(), 1),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/ready")
async def readiness_check():
    """503 until the descriptor store accepts queries."""
    try:
        await run_sync(_ping_store, timeout=READINESS_TIMEOUT_S)
    except Exception as exc:
        logger.warning("Descriptor store not ready: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "store": "error", "detail": str(exc)},
        )
    return {"status": "ready", "store": "ok"}

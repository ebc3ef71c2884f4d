"""
Databases Router
================

HTTP surface of the connection broker, mounted at ``/api/databases``.

Blocking work (store access, engine probes) runs in the thread pool via
run_sync. BrokerErrors propagate to the registry-driven exception handler;
anything else becomes a 500 with an operation-specific message.
"""

import logging
from typing import Any, Callable, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from dbbroker.auth.identity import CallerIdentity, get_caller_identity
from dbbroker.config import settings
from dbbroker.core.async_utils import run_sync
from dbbroker.core.errors import BrokerError, InternalError
from dbbroker.dependencies import get_broker
from dbbroker.models.descriptors import ConnectionRequest, ConnectionStatus
from dbbroker.services.broker import Broker, to_details
from dbbroker.services.lifecycle import TransitionResult

logger = logging.getLogger(__name__)
router = APIRouter()


def _dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json", by_alias=True)


async def _call(failure_message: str, func: Callable[..., Any], *args: Any) -> Any:
    """Run a broker call off the event loop, wrapping unexpected failures."""
    try:
        return await run_sync(func, *args, timeout=settings.request_timeout_s)
    except BrokerError:
        raise
    except Exception as exc:
        logger.error("%s: %s", failure_message, exc, exc_info=True)
        raise InternalError(failure_message, detail=str(exc)) from exc


def _transition_body(result: TransitionResult) -> dict:
    """Success body for test/connect; failures re-raise the classified error."""
    if not result.success:
        error = result.error
        error.fields.setdefault("status", ConnectionStatus.DISCONNECTED.value)
        raise error
    return {"success": True, "status": result.status.value, "message": result.message}


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------

@router.get("")
async def list_databases(
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    caller: CallerIdentity = Depends(get_caller_identity),
    broker: Broker = Depends(get_broker),
):
    """Paginated list of connections, newest first. Passwords are never included."""
    result = await _call("Failed to fetch database connections", broker.list, caller, page, limit)
    return {
        "success": True,
        "databases": [_dump(d) for d in result.databases],
        "total": result.total,
        "totalPages": result.total_pages,
        "currentPage": result.current_page,
    }


@router.post("", status_code=201)
async def add_database(
    body: ConnectionRequest,
    caller: CallerIdentity = Depends(get_caller_identity),
    broker: Broker = Depends(get_broker),
):
    """Validate, de-duplicate and test a connection, then store it."""
    result = await _call("Failed to add database connection", broker.add, caller, body)
    return {"success": True, "message": result.message, "database": _dump(result.database)}


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

@router.post("/{connection_id}/test")
async def test_database(
    connection_id: str,
    caller: CallerIdentity = Depends(get_caller_identity),
    broker: Broker = Depends(get_broker),
):
    result = await _call("Failed to test database connection", broker.test, caller, connection_id)
    return _transition_body(result)


@router.post("/{connection_id}/connect")
async def connect_database(
    connection_id: str,
    caller: CallerIdentity = Depends(get_caller_identity),
    broker: Broker = Depends(get_broker),
):
    """Test and mark active; the response carries the full descriptor."""
    result = await _call("Failed to connect to database", broker.connect, caller, connection_id)
    body = _transition_body(result)
    body["databasedetails"] = _dump(to_details(result.record, result.descriptor))
    return body


@router.post("/{connection_id}/disconnect")
async def disconnect_database(
    connection_id: str,
    caller: CallerIdentity = Depends(get_caller_identity),
    broker: Broker = Depends(get_broker),
):
    result = await _call("Failed to disconnect from database", broker.disconnect, caller, connection_id)
    return {"success": True, "status": result.status.value, "message": result.message}


# ---------------------------------------------------------------------------
# Item
# ---------------------------------------------------------------------------

@router.get("/{connection_id}")
async def get_database(
    connection_id: str,
    caller: CallerIdentity = Depends(get_caller_identity),
    broker: Broker = Depends(get_broker),
):
    view = await _call("Failed to get database details", broker.get, caller, connection_id)
    return {"success": True, "database": _dump(view)}


@router.get("/{connection_id}/schema")
async def get_database_schema(
    connection_id: str,
    caller: CallerIdentity = Depends(get_caller_identity),
    broker: Broker = Depends(get_broker),
):
    result = await _call("Failed to fetch database schema", broker.get_schema, caller, connection_id)
    return {
        "success": True,
        "tables": result.tables,
        "collections": result.collections,
        "databaseType": result.database_type,
    }


@router.get("/{connection_id}/table-data/{table_name}")
async def get_table_data(
    connection_id: str,
    table_name: str,
    caller: CallerIdentity = Depends(get_caller_identity),
    broker: Broker = Depends(get_broker),
):
    """Up to 50 sample rows of one table."""
    rows = await _call("Failed to fetch table data", broker.get_table_data, caller, connection_id, table_name)
    return {"success": True, "data": rows, "message": "Data fetched successfully"}


@router.put("/{connection_id}")
async def update_database(
    connection_id: str,
    body: ConnectionRequest,
    caller: CallerIdentity = Depends(get_caller_identity),
    broker: Broker = Depends(get_broker),
):
    result = await _call("Failed to update database connection", broker.update, caller, connection_id, body)
    return {"success": True, "message": result.message, "database": _dump(result.database)}


@router.delete("/{connection_id}")
async def delete_database(
    connection_id: str,
    caller: CallerIdentity = Depends(get_caller_identity),
    broker: Broker = Depends(get_broker),
):
    await _call("Failed to delete database connection", broker.delete, caller, connection_id)
    return {"success": True, "message": "Database connection deleted successfully"}

"""
Connection Lifecycle Manager
============================

Drives the per-connection status machine:

    Disconnected -> Testing | Connecting -> Connected | ConnectedWarning
                                         -> Disconnected (on failure)
    any -> Disconnecting -> Disconnected

The transient status is committed before the adapter runs, so a crash
mid-probe leaves the record visibly stuck in Testing/Connecting until it
is re-tested.

Concurrent calls on one connection are not serialised: two simultaneous
tests may interleave their status writes and the last writer wins. The
operation is admin-only and low-concurrency, so this race is accepted.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from dbbroker.config import settings
from dbbroker.core.errors import EngineError, FeatureDisabledError
from dbbroker.models.database_connection import DatabaseConnection
from dbbroker.models.descriptors import ConnectionStatus, Descriptor, EngineType
from dbbroker.services.adapters import AdapterRegistry, ConnectionTestResult, classify_engine_error
from dbbroker.services.classifier import MONGODB_DISABLED_MESSAGE
from dbbroker.services.connection_store import ConnectionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    success: bool
    status: ConnectionStatus
    message: str
    record: Optional[DatabaseConnection] = None
    descriptor: Optional[Descriptor] = None  # set by a successful connect
    error: Optional[EngineError] = None


def status_for(result: ConnectionTestResult) -> ConnectionStatus:
    """Final status for a successful probe."""
    if result.is_secure:
        return ConnectionStatus.CONNECTED
    if result.warning:
        return ConnectionStatus.CONNECTED_WARNING
    return ConnectionStatus.CONNECTED


class LifecycleManager:
    """Runs test / connect / disconnect and persists every status change."""

    def __init__(
        self,
        store: ConnectionStore,
        adapters: AdapterRegistry,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.adapters = adapters
        self._sleep = sleep

    def probe(self, descriptor: Descriptor) -> ConnectionTestResult:
        """Run the adapter test; any failure comes back as a classified EngineError."""
        try:
            adapter = self.adapters.get(descriptor.engine_type)
            return adapter.test_connection(descriptor)
        except Exception as exc:
            raise classify_engine_error(exc, descriptor.engine_type, descriptor.database) from exc

    def test(self, connection_id: str) -> TransitionResult:
        return self._transition(connection_id, ConnectionStatus.TESTING, connect=False)

    def connect(self, connection_id: str) -> TransitionResult:
        return self._transition(connection_id, ConnectionStatus.CONNECTING, connect=True)

    def disconnect(self, connection_id: str) -> TransitionResult:
        """Reset to Disconnected from any state. No adapter call."""
        self.store.set_status(connection_id, ConnectionStatus.DISCONNECTING)
        # Keeps "Disconnecting" observable to pollers
        self._sleep(settings.disconnect_delay_s)
        row = self.store.set_status(connection_id, ConnectionStatus.DISCONNECTED)
        logger.info(
            "Connection status changed",
            extra={"connection_id": connection_id, "engine": row.engine_type, "status": row.status},
        )
        return TransitionResult(
            success=True,
            status=ConnectionStatus.DISCONNECTED,
            message="Database disconnected successfully",
            record=row,
        )

    # -- internals -----------------------------------------------------------

    def _transition(self, connection_id: str, transient: ConnectionStatus, connect: bool) -> TransitionResult:
        row = self.store.require(connection_id)
        if row.engine_type == EngineType.MONGODB:
            raise FeatureDisabledError(MONGODB_DISABLED_MESSAGE)

        self.store.set_status(connection_id, transient)
        try:
            descriptor = self.store.to_descriptor(row)
            result = self.probe(descriptor)
        except Exception as exc:
            error = classify_engine_error(exc, row.engine_type, row.database)
            failed = self.store.set_status(connection_id, ConnectionStatus.DISCONNECTED)
            logger.warning(
                "Connection status changed",
                extra={
                    "connection_id": connection_id,
                    "engine": row.engine_type,
                    "status": failed.status,
                    "error.code": error.code,
                    "error.message": error.message,
                },
            )
            return TransitionResult(
                success=False,
                status=ConnectionStatus.DISCONNECTED,
                message=error.message,
                record=failed,
                error=error,
            )

        status = status_for(result)
        updated = self.store.set_status(connection_id, status)
        logger.info(
            "Connection status changed",
            extra={"connection_id": connection_id, "engine": row.engine_type, "status": status.value},
        )

        if connect:
            message = result.warning or "Database connected successfully"
        else:
            message = result.warning or result.message
        return TransitionResult(
            success=True,
            status=status,
            message=message,
            record=updated,
            descriptor=descriptor if connect else None,
        )

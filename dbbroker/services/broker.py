"""
Broker
======

Domain façade behind the ``/api/databases`` routes. Every operation first
authorizes the caller, then validates, de-duplicates and probes through
the classifier, duplicate detector and lifecycle manager.

Returned records never expose a password; only ``connect`` hands the
decrypted descriptor back (as ``ConnectionDetails``) for downstream use.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dbbroker.auth.identity import CallerIdentity
from dbbroker.auth.revocation import RevokedTokenRegistry
from dbbroker.config import settings
from dbbroker.core.errors import (
    AuthenticationRequiredError,
    CloudHostError,
    DuplicateConnectionError,
    DuplicateNameError,
    EngineError,
    FeatureDisabledError,
    InactiveAccountError,
    InternalError,
    InvalidTableNameError,
    NotConnectedError,
    SameDatabaseConflictError,
    TokenRevokedError,
)
from dbbroker.models.database_connection import DatabaseConnection
from dbbroker.models.descriptors import (
    BROWSABLE_STATUSES,
    ConnectionDetails,
    ConnectionRequest,
    ConnectionStatus,
    ConnectionView,
    Descriptor,
    EngineType,
    LocalDescriptor,
    ServerType,
)
from dbbroker.services.adapters import AdapterRegistry
from dbbroker.services.classifier import (
    MONGODB_DISABLED_MESSAGE,
    is_cloud_host,
    validate_database_name_match,
    validate_descriptor,
)
from dbbroker.services.connection_store import EXTERNAL_DUPLICATE_MESSAGE, ConnectionStore
from dbbroker.services.credential_service import decrypt_password
from dbbroker.services.duplicate_detector import is_same_database
from dbbroker.services.lifecycle import LifecycleManager, TransitionResult, status_for

logger = logging.getLogger(__name__)

_INVALID_TABLE_NAMES = {"", "null", "undefined"}


@dataclass
class ListPage:
    databases: List[ConnectionView]
    total: int
    total_pages: int
    current_page: int


@dataclass
class MutationResult:
    database: ConnectionView
    message: str


@dataclass
class SchemaResult:
    tables: List[str]
    database_type: str
    collections: List[str] = field(default_factory=list)


def to_view(row: DatabaseConnection) -> ConnectionView:
    return ConnectionView.model_validate(row)


def to_details(row: DatabaseConnection, descriptor: Descriptor) -> ConnectionDetails:
    password = descriptor.password if isinstance(descriptor, LocalDescriptor) else None
    return ConnectionDetails(**to_view(row).model_dump(), password=password)


class Broker:
    """Authorization + orchestration for every connection operation."""

    def __init__(
        self,
        store: ConnectionStore,
        adapters: AdapterRegistry,
        lifecycle: LifecycleManager,
        revocations: RevokedTokenRegistry,
    ):
        self.store = store
        self.adapters = adapters
        self.lifecycle = lifecycle
        self.revocations = revocations

    # -- authorization -------------------------------------------------------

    def authorize(self, caller: Optional[CallerIdentity]) -> CallerIdentity:
        if caller is None:
            raise AuthenticationRequiredError()
        if self.revocations.is_revoked(caller.id):
            raise TokenRevokedError(context={"user_id": caller.id})
        if not caller.is_active:
            raise InactiveAccountError(context={"user_id": caller.id})
        return caller

    # -- reads ---------------------------------------------------------------

    def list(self, caller: Optional[CallerIdentity], page: int = 1, limit: Optional[int] = None) -> ListPage:
        self.authorize(caller)
        page = max(int(page or 1), 1)
        limit = min(max(int(limit or settings.default_page_size), 1), settings.max_page_size)
        rows, total = self.store.list_page(page, limit)
        return ListPage(
            databases=[to_view(r) for r in rows],
            total=total,
            total_pages=math.ceil(total / limit),
            current_page=page,
        )

    def get(self, caller: Optional[CallerIdentity], connection_id: str) -> ConnectionView:
        self.authorize(caller)
        return to_view(self.store.require(connection_id))

    def get_schema(self, caller: Optional[CallerIdentity], connection_id: str) -> SchemaResult:
        self.authorize(caller)
        row = self._browsable(connection_id, "Database is not connected. Please connect first to view schema.")
        descriptor = self.store.to_descriptor(row)
        try:
            tables = self.adapters.get(row.engine_type).list_tables(descriptor)
        except Exception as exc:
            logger.error("Error fetching schema", extra={"connection_id": connection_id}, exc_info=True)
            raise InternalError("Failed to fetch database schema", detail=str(exc)) from exc
        return SchemaResult(tables=tables, database_type=row.engine_type)

    def get_table_data(
        self, caller: Optional[CallerIdentity], connection_id: str, table_name: Optional[str]
    ) -> List[Dict[str, Any]]:
        self.authorize(caller)
        if table_name is None or table_name.strip() in _INVALID_TABLE_NAMES:
            raise InvalidTableNameError()
        row = self._browsable(connection_id, "Database is not connected. Please connect first to view data.")
        descriptor = self.store.to_descriptor(row)
        try:
            return self.adapters.get(row.engine_type).fetch_sample_rows(
                descriptor, table_name, settings.sample_row_limit,
            )
        except Exception as exc:
            logger.error(
                "Error fetching table data",
                extra={"connection_id": connection_id, "table": table_name},
                exc_info=True,
            )
            raise InternalError("Failed to fetch table data", detail=str(exc)) from exc

    # -- writes --------------------------------------------------------------

    def add(self, caller: Optional[CallerIdentity], request: ConnectionRequest) -> MutationResult:
        self.authorize(caller)
        descriptor = self._prepare(request)
        self._check_uniqueness(descriptor)
        status, warning = self._probe(descriptor)
        row = self.store.create(descriptor, status)
        return MutationResult(
            database=to_view(row),
            message=warning or "Database connection added successfully",
        )

    def update(
        self, caller: Optional[CallerIdentity], connection_id: str, request: ConnectionRequest
    ) -> MutationResult:
        self.authorize(caller)
        if request.engine_type == EngineType.MONGODB:
            raise FeatureDisabledError(MONGODB_DISABLED_MESSAGE)
        row = self.store.require(connection_id)

        # A missing password keeps the stored one
        if request.password is None and row.password_encrypted is not None:
            request = request.model_copy(update={"password": decrypt_password(row.password_encrypted)})

        descriptor = self._prepare(request)
        self._check_uniqueness(descriptor, exclude_id=connection_id)
        status, warning = self._probe(descriptor)
        updated = self.store.update(connection_id, descriptor, status)
        return MutationResult(
            database=to_view(updated),
            message=warning or "Database connection updated successfully",
        )

    def delete(self, caller: Optional[CallerIdentity], connection_id: str) -> None:
        self.authorize(caller)
        self.store.delete(connection_id)

    # -- lifecycle -----------------------------------------------------------

    def test(self, caller: Optional[CallerIdentity], connection_id: str) -> TransitionResult:
        self.authorize(caller)
        return self.lifecycle.test(connection_id)

    def connect(self, caller: Optional[CallerIdentity], connection_id: str) -> TransitionResult:
        self.authorize(caller)
        return self.lifecycle.connect(connection_id)

    def disconnect(self, caller: Optional[CallerIdentity], connection_id: str) -> TransitionResult:
        self.authorize(caller)
        return self.lifecycle.disconnect(connection_id)

    # -- internals -----------------------------------------------------------

    def _prepare(self, request: ConnectionRequest) -> Descriptor:
        """Validate, then apply the server-type specific checks."""
        descriptor = validate_descriptor(request)
        if descriptor.server_type == ServerType.LOCAL:
            if is_cloud_host(descriptor.host):
                raise CloudHostError(descriptor.host)
            return descriptor

        match = validate_database_name_match(
            descriptor.connection_string, descriptor.database, descriptor.engine_type,
        )
        if match.actual_database != descriptor.database:
            descriptor = descriptor.model_copy(update={"database": match.actual_database})
        return descriptor

    def _check_uniqueness(self, descriptor: Descriptor, exclude_id: Optional[str] = None) -> None:
        if self.store.get_by_name(descriptor.name, exclude_id=exclude_id):
            raise DuplicateNameError()

        if self.store.find_exact_duplicate(descriptor, exclude_id=exclude_id):
            if descriptor.server_type == ServerType.EXTERNAL:
                raise DuplicateConnectionError(EXTERNAL_DUPLICATE_MESSAGE)
            raise DuplicateConnectionError()

        for existing in self.store.all(exclude_id=exclude_id):
            if is_same_database(descriptor, existing):
                raise SameDatabaseConflictError(context={"existing_id": existing.id})

    def _probe(self, descriptor: Descriptor):
        """Adapter test for a not-yet-stored descriptor -> (status, warning)."""
        try:
            result = self.lifecycle.probe(descriptor)
        except EngineError as err:
            err.fields.setdefault("status", ConnectionStatus.DISCONNECTED.value)
            raise
        return status_for(result), result.warning

    def _browsable(self, connection_id: str, not_connected_message: str) -> DatabaseConnection:
        row = self.store.require(connection_id)
        if row.engine_type == EngineType.MONGODB:
            raise FeatureDisabledError(MONGODB_DISABLED_MESSAGE)
        if row.status not in BROWSABLE_STATUSES:
            raise NotConnectedError(not_connected_message)
        return row

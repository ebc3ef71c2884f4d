"""
Connection Store
================

Data access for ``DatabaseConnection`` rows. Returned records are detached
from their session so callers can read them freely after the session
closes. Passwords are encrypted on the way in and decrypted only by
``to_descriptor``.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from dbbroker.core.database import get_session_context
from dbbroker.core.errors import (
    DuplicateConnectionError,
    DuplicateNameError,
    NotFoundError,
)
from dbbroker.models.database_connection import DatabaseConnection
from dbbroker.models.descriptors import (
    ConnectionStatus,
    Descriptor,
    ExternalDescriptor,
    LocalDescriptor,
    ServerType,
)
from dbbroker.services.credential_service import decrypt_password, encrypt_password

logger = logging.getLogger(__name__)

EXTERNAL_DUPLICATE_MESSAGE = "This external connection already exists"


def _duplicate_error(exc: IntegrityError, server_type: str):
    """Translate a unique-index violation into the matching duplicate error."""
    msg = str(exc.orig)
    if "database_connections.name" in msg or "uq_database_connections_name" in msg:
        return DuplicateNameError(detail=msg)
    if server_type == ServerType.EXTERNAL:
        return DuplicateConnectionError(EXTERNAL_DUPLICATE_MESSAGE, detail=msg)
    return DuplicateConnectionError(detail=msg)


def _apply_descriptor(row: DatabaseConnection, descriptor: Descriptor) -> None:
    """Copy descriptor fields onto *row*, nulling the other server type's group."""
    row.name = descriptor.name
    row.server_type = descriptor.server_type
    row.engine_type = descriptor.engine_type.value
    row.ssl = descriptor.ssl
    row.database = descriptor.database
    if isinstance(descriptor, LocalDescriptor):
        row.host = descriptor.host
        row.port = descriptor.port
        row.username = descriptor.username
        row.password_encrypted = encrypt_password(descriptor.password)
        row.connection_string = None
    else:
        row.host = None
        row.port = None
        row.username = None
        row.password_encrypted = None
        row.connection_string = descriptor.connection_string


class ConnectionStore:
    """CRUD over the database_connections table."""

    # -- reads ---------------------------------------------------------------

    def list_page(self, page: int, limit: int) -> Tuple[List[DatabaseConnection], int]:
        """One page ordered newest first, plus the total row count."""
        with get_session_context() as session:
            total = session.exec(select(func.count(DatabaseConnection.id))).one()
            rows = session.exec(
                select(DatabaseConnection)
                .order_by(DatabaseConnection.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
            for row in rows:
                session.expunge(row)
            return list(rows), int(total)

    def get(self, connection_id: str) -> Optional[DatabaseConnection]:
        with get_session_context() as session:
            row = session.get(DatabaseConnection, connection_id)
            if row is not None:
                session.expunge(row)
            return row

    def require(self, connection_id: str) -> DatabaseConnection:
        row = self.get(connection_id)
        if row is None:
            raise NotFoundError(context={"connection_id": connection_id})
        return row

    def get_by_name(self, name: str, exclude_id: Optional[str] = None) -> Optional[DatabaseConnection]:
        with get_session_context() as session:
            stmt = select(DatabaseConnection).where(DatabaseConnection.name == name)
            if exclude_id:
                stmt = stmt.where(DatabaseConnection.id != exclude_id)
            row = session.exec(stmt).first()
            if row is not None:
                session.expunge(row)
            return row

    def all(self, exclude_id: Optional[str] = None) -> List[DatabaseConnection]:
        with get_session_context() as session:
            stmt = select(DatabaseConnection)
            if exclude_id:
                stmt = stmt.where(DatabaseConnection.id != exclude_id)
            rows = session.exec(stmt).all()
            for row in rows:
                session.expunge(row)
            return list(rows)

    def find_exact_duplicate(
        self, descriptor: Descriptor, exclude_id: Optional[str] = None
    ) -> Optional[DatabaseConnection]:
        """Row with the identical local tuple or identical external string."""
        with get_session_context() as session:
            stmt = select(DatabaseConnection).where(
                DatabaseConnection.server_type == descriptor.server_type
            )
            if isinstance(descriptor, LocalDescriptor):
                stmt = stmt.where(
                    DatabaseConnection.host == descriptor.host,
                    DatabaseConnection.port == descriptor.port,
                    DatabaseConnection.engine_type == descriptor.engine_type.value,
                    DatabaseConnection.database == descriptor.database,
                )
            else:
                stmt = stmt.where(
                    DatabaseConnection.connection_string == descriptor.connection_string
                )
            if exclude_id:
                stmt = stmt.where(DatabaseConnection.id != exclude_id)
            row = session.exec(stmt).first()
            if row is not None:
                session.expunge(row)
            return row

    # -- writes --------------------------------------------------------------

    def create(self, descriptor: Descriptor, status: ConnectionStatus) -> DatabaseConnection:
        row = DatabaseConnection(
            name=descriptor.name,
            engine_type=descriptor.engine_type.value,
            status=status.value,
        )
        _apply_descriptor(row, descriptor)
        with get_session_context() as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise _duplicate_error(exc, descriptor.server_type)
            session.refresh(row)
            session.expunge(row)
        logger.info(
            "Database connection created",
            extra={"connection_id": row.id, "engine": row.engine_type, "server_type": row.server_type},
        )
        return row

    def update(
        self, connection_id: str, descriptor: Descriptor, status: ConnectionStatus
    ) -> DatabaseConnection:
        with get_session_context() as session:
            row = session.get(DatabaseConnection, connection_id)
            if row is None:
                raise NotFoundError(context={"connection_id": connection_id})
            _apply_descriptor(row, descriptor)
            row.status = status.value
            row.updated_at = datetime.now(timezone.utc)
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise _duplicate_error(exc, descriptor.server_type)
            session.refresh(row)
            session.expunge(row)
        logger.info("Database connection updated", extra={"connection_id": connection_id})
        return row

    def set_status(self, connection_id: str, status: ConnectionStatus) -> DatabaseConnection:
        """Persist *status* immediately (committed before the caller continues)."""
        with get_session_context() as session:
            row = session.get(DatabaseConnection, connection_id)
            if row is None:
                raise NotFoundError(context={"connection_id": connection_id})
            row.status = status.value
            row.updated_at = datetime.now(timezone.utc)
            session.add(row)
            session.commit()
            session.refresh(row)
            session.expunge(row)
            return row

    def delete(self, connection_id: str) -> None:
        with get_session_context() as session:
            row = session.get(DatabaseConnection, connection_id)
            if row is None:
                raise NotFoundError(context={"connection_id": connection_id})
            session.delete(row)
            session.commit()
        logger.info("Database connection deleted", extra={"connection_id": connection_id})

    # -- conversion ----------------------------------------------------------

    @staticmethod
    def to_descriptor(row: DatabaseConnection) -> Descriptor:
        """Rebuild the validated descriptor for *row*, decrypting its password."""
        if row.server_type == ServerType.EXTERNAL:
            return ExternalDescriptor(
                name=row.name,
                engine_type=row.engine_type,
                connection_string=row.connection_string or "",
                database=row.database,
                ssl=row.ssl,
            )
        return LocalDescriptor(
            name=row.name,
            engine_type=row.engine_type,
            host=row.host or "",
            port=row.port or 0,
            username=row.username or "",
            password=decrypt_password(row.password_encrypted) or "",
            database=row.database or "",
            ssl=row.ssl,
        )

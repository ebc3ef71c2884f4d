"""
SQL Engine Adapter
==================

PostgreSQL (psycopg2) and MySQL (pymysql) through SQLAlchemy. Each call
builds a throwaway engine with ``NullPool`` so the connection is closed
before the call returns.
"""

import datetime as dt
import decimal
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Connection, make_url
from sqlalchemy.pool import NullPool

from dbbroker.config import settings
from dbbroker.core.errors import UnsupportedEngineError
from dbbroker.models.descriptors import Descriptor, EngineType, ServerType
from dbbroker.services.adapters.base import ConnectionTestResult, EngineAdapter

logger = logging.getLogger(__name__)

DEFAULT_CREDENTIALS_WARNING = (
    "Warning: Using default PostgreSQL credentials. Consider changing for security."
)

_DRIVERS = {
    EngineType.POSTGRESQL: "postgresql+psycopg2",
    EngineType.MYSQL: "mysql+pymysql",
}

# Bare schemes accepted in external connection strings
_SCHEME_ALIASES = {
    EngineType.POSTGRESQL: {"postgres", "postgresql", "postgresql+psycopg2"},
    EngineType.MYSQL: {"mysql", "mysql+pymysql"},
}

_CURRENT_DATABASE_SQL = {
    EngineType.POSTGRESQL: "SELECT current_database()",
    EngineType.MYSQL: "SELECT DATABASE()",
}


def _coerce_value(value: Any) -> Any:
    """Convert a driver value to a JSON-safe equivalent."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, dt.timedelta):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [_coerce_value(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _coerce_value(v) for k, v in value.items()}
    return str(value)


class SqlEngineAdapter(EngineAdapter):
    """Adapter for relational engines reachable through SQLAlchemy."""

    def __init__(self, engine_type: EngineType):
        if engine_type not in _DRIVERS:
            raise UnsupportedEngineError(context={"engine_type": str(engine_type)})
        self.engine_type = engine_type

    # -- URL / connect args --------------------------------------------------

    def _build_url(self, descriptor: Descriptor) -> URL:
        """SQLAlchemy URL for a local descriptor or a normalised external string."""
        if descriptor.server_type == ServerType.LOCAL:
            return URL.create(
                _DRIVERS[self.engine_type],
                username=descriptor.username,
                password=descriptor.password or None,  # "" means no password
                host=descriptor.host,
                port=descriptor.port,
                database=descriptor.database,
            )

        parsed = self.parsed_connection_string(descriptor)
        url = make_url(descriptor.connection_string)
        if parsed.scheme in _SCHEME_ALIASES[self.engine_type]:
            url = url.set(drivername=_DRIVERS[self.engine_type])
        return url

    def _connect_args(self, descriptor: Descriptor, timeout: int) -> dict:
        """Build driver-specific connect_args."""
        args: dict = {"connect_timeout": timeout}
        if descriptor.ssl:
            if self.engine_type == EngineType.POSTGRESQL:
                args["sslmode"] = "require"
            else:
                args["ssl"] = {"ssl": True}
        return args

    @contextmanager
    def _connect(self, descriptor: Descriptor, timeout: int) -> Iterator[Connection]:
        engine = create_engine(
            self._build_url(descriptor),
            poolclass=NullPool,
            connect_args=self._connect_args(descriptor, timeout),
        )
        try:
            with engine.connect() as conn:
                yield conn
        finally:
            engine.dispose()

    # -- EngineAdapter -------------------------------------------------------

    def test_connection(self, descriptor: Descriptor) -> ConnectionTestResult:
        self.ensure_local_host_allowed(descriptor)
        expected = self.expected_database(descriptor)

        with self._connect(descriptor, settings.connect_timeout_s) as conn:
            conn.execute(text("SELECT 1"))
            self._verify_current_database(conn, expected)

        if descriptor.server_type == ServerType.EXTERNAL:
            return ConnectionTestResult(
                message=f"Connection successful to external {self.engine_type.value} database",
                is_secure=descriptor.ssl,
            )

        warning = self._default_credentials_warning(descriptor)
        return ConnectionTestResult(
            message=warning or "Connection successful",
            warning=warning,
            is_secure=descriptor.ssl or not warning,
        )

    def list_tables(self, descriptor: Descriptor) -> List[str]:
        self.ensure_local_host_allowed(descriptor)
        database = self.expected_database(descriptor)

        with self._connect(descriptor, settings.introspection_timeout_s) as conn:
            if self.engine_type == EngineType.POSTGRESQL:
                rows = conn.execute(text(
                    "SELECT table_name FROM information_schema.tables "
                    "WHERE table_schema = 'public' AND table_type = 'BASE TABLE' "
                    "ORDER BY table_name"
                ))
            else:
                schema = database or conn.execute(text("SELECT DATABASE()")).scalar()
                rows = conn.execute(
                    text(
                        "SELECT table_name FROM information_schema.tables "
                        "WHERE table_schema = :schema AND table_type = 'BASE TABLE' "
                        "ORDER BY table_name"
                    ),
                    {"schema": schema},
                )
            return [row[0] for row in rows if isinstance(row[0], str) and row[0]]

    def fetch_sample_rows(self, descriptor: Descriptor, table_name: str, limit: int) -> List[Dict[str, Any]]:
        self.ensure_local_host_allowed(descriptor)
        self.expected_database(descriptor)

        # Identifier quoting only; callers are authenticated admins
        if self.engine_type == EngineType.MYSQL:
            quoted = f"`{table_name}`"
        else:
            quoted = f'"{table_name}"'
        query = f"SELECT * FROM {quoted} LIMIT {int(limit)}"

        with self._connect(descriptor, settings.introspection_timeout_s) as conn:
            result = conn.exec_driver_sql(query)
            return [
                {key: _coerce_value(value) for key, value in row.items()}
                for row in result.mappings()
            ]

    # -- helpers -------------------------------------------------------------

    def _verify_current_database(self, conn: Connection, expected: Optional[str]) -> None:
        """Best-effort check that the session landed in *expected*; never fails."""
        if not expected:
            return
        try:
            current = conn.execute(text(_CURRENT_DATABASE_SQL[self.engine_type])).scalar()
        except Exception as e:
            logger.warning("Database verification query failed, connection is still usable: %s", e)
            return
        if current and current != expected:
            logger.warning(
                "Connected to database '%s' but expected '%s'", current, expected,
                extra={"engine": self.engine_type.value},
            )

    def _default_credentials_warning(self, descriptor: Descriptor) -> Optional[str]:
        if (
            self.engine_type == EngineType.POSTGRESQL
            and descriptor.host == "localhost"
            and descriptor.port == 5432
            and descriptor.username == "postgres"
        ):
            return DEFAULT_CREDENTIALS_WARNING
        return None

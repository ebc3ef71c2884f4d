"""
ClickHouse Engine Adapter
=========================

Talks to the ClickHouse HTTP interface with httpx. Queries are sent as the
POST body with ``FORMAT JSONEachRow``; values are bound through
``param_<name>`` query parameters.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import httpx

from dbbroker.config import settings
from dbbroker.core.errors import AuthFailedError, DatabaseMissingError
from dbbroker.models.descriptors import Descriptor, EngineType, ServerType
from dbbroker.services.adapters.base import ConnectionTestResult, EngineAdapter

logger = logging.getLogger(__name__)

DEFAULT_HTTP_PORT = 8123
DEFAULT_HTTPS_PORT = 8443
DEFAULT_DATABASE = "default"

# Server error 81, e.g. "Code: 81. DB::Exception: Database x does not exist. (UNKNOWN_DATABASE)"
_UNKNOWN_DATABASE = re.compile(r"^Code: 81\.|\(UNKNOWN_DATABASE\)")


@dataclass(frozen=True)
class _Endpoint:
    base_url: str
    database: str
    auth: Optional[Tuple[str, str]]
    timeout: float
    is_secure: bool


class ClickHouseAdapter(EngineAdapter):
    engine_type = EngineType.CLICKHOUSE

    def __init__(self, transport: Optional[httpx.BaseTransport] = None):
        # transport is injectable so tests can use httpx.MockTransport
        self._transport = transport

    # -- endpoint resolution -------------------------------------------------

    def _endpoint(self, descriptor: Descriptor) -> _Endpoint:
        if descriptor.server_type == ServerType.LOCAL:
            scheme = "https" if descriptor.ssl else "http"
            host = "127.0.0.1" if descriptor.host == "localhost" else descriptor.host
            port = descriptor.port or DEFAULT_HTTP_PORT
            auth = (descriptor.username, descriptor.password or "") if descriptor.username else None
            return _Endpoint(
                base_url=f"{scheme}://{host}:{port}",
                database=descriptor.database or DEFAULT_DATABASE,
                auth=auth,
                timeout=settings.clickhouse_timeout_s,
                is_secure=descriptor.ssl,
            )

        parsed = self.parsed_connection_string(descriptor)
        # Any scheme other than https (clickhouse://, http://) means plain HTTP
        scheme = "https" if parsed.scheme == "https" else "http"
        default_port = DEFAULT_HTTPS_PORT if scheme == "https" else DEFAULT_HTTP_PORT
        auth = (parsed.username, parsed.password or "") if parsed.username else None
        return _Endpoint(
            base_url=f"{scheme}://{parsed.host}:{parsed.port or default_port}",
            database=self.expected_database(descriptor) or DEFAULT_DATABASE,
            auth=auth,
            timeout=settings.connect_timeout_s,
            is_secure=scheme == "https",
        )

    def _query(
        self,
        endpoint: _Endpoint,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        scoped: bool = True,
    ) -> List[Dict[str, Any]]:
        """Run *sql* and decode the JSONEachRow response.

        *scoped* queries run with the endpoint database as the session default;
        the server rejects those outright when that database is missing.
        """
        query_params = {"database": endpoint.database} if scoped else {}
        for name, value in (params or {}).items():
            query_params[f"param_{name}"] = str(value)

        with httpx.Client(
            base_url=endpoint.base_url,
            auth=endpoint.auth,
            timeout=endpoint.timeout,
            transport=self._transport,
        ) as client:
            response = client.post("/", params=query_params, content=f"{sql} FORMAT JSONEachRow")

        if response.status_code in (401, 403):
            raise AuthFailedError(engine=self.engine_type.value, detail=response.text.strip())
        if response.status_code >= 400 and _UNKNOWN_DATABASE.search(response.text):
            text = response.text.strip()
            raise DatabaseMissingError(text, engine=self.engine_type.value, detail=text)
        if response.status_code >= 400:
            raise httpx.HTTPStatusError(
                response.text.strip() or f"HTTP {response.status_code}",
                request=response.request,
                response=response,
            )
        return [json.loads(line) for line in response.text.splitlines() if line.strip()]

    # -- EngineAdapter -------------------------------------------------------

    def test_connection(self, descriptor: Descriptor) -> ConnectionTestResult:
        self.ensure_local_host_allowed(descriptor)
        endpoint = self._endpoint(descriptor)

        self._query(endpoint, "SELECT 1 AS test", scoped=False)
        found = self._query(
            endpoint,
            "SELECT name FROM system.databases WHERE name = {db:String}",
            {"db": endpoint.database},
            scoped=False,
        )
        if not found:
            raise DatabaseMissingError(
                f"Database '{endpoint.database}' does not exist",
                engine=self.engine_type.value,
            )

        return ConnectionTestResult(
            message=f"Connection successful to ClickHouse database '{endpoint.database}'",
            is_secure=endpoint.is_secure,
        )

    def list_tables(self, descriptor: Descriptor) -> List[str]:
        self.ensure_local_host_allowed(descriptor)
        endpoint = self._endpoint(descriptor)
        rows = self._query(
            endpoint,
            "SELECT name FROM system.tables WHERE database = {db:String} ORDER BY name",
            {"db": endpoint.database},
        )
        return [row["name"] for row in rows if isinstance(row.get("name"), str) and row["name"]]

    def fetch_sample_rows(self, descriptor: Descriptor, table_name: str, limit: int) -> List[Dict[str, Any]]:
        self.ensure_local_host_allowed(descriptor)
        endpoint = self._endpoint(descriptor)
        # ClickHouse identifier rules differ; the name is used as given
        return self._query(endpoint, f"SELECT * FROM {table_name} LIMIT {int(limit)}")

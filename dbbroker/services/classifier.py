"""
Connection Descriptor Classifier
================================

Pure functions that validate and normalise connection requests:
required-field rules per server type, cloud-host detection, and
connection-string parsing. No I/O happens here.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Union
from urllib.parse import unquote, urlsplit

from dbbroker.core.errors import (
    DatabaseNameMismatchError,
    DescriptorValidationError,
    FeatureDisabledError,
    UnsupportedEngineError,
)
from dbbroker.core.redaction import redact_connection_string
from dbbroker.models.descriptors import (
    ConnectionRequest,
    Descriptor,
    EngineType,
    ExternalDescriptor,
    LocalDescriptor,
    ServerType,
)

logger = logging.getLogger(__name__)

MONGODB_DISABLED_MESSAGE = "MongoDB connections are temporarily disabled"

# Substring markers of managed cloud database hosts
_CLOUD_HOST_MARKERS = (
    # AWS
    ".amazonaws.com", ".aws.", ".rds.amazonaws.com",
    # Google Cloud
    ".gcp.", ".googleapis.com", ".cloud.google.com",
    # Azure
    ".azure.com", ".database.azure.com", ".windows.net",
    # DigitalOcean
    ".digitaloceanspaces.com", ".ondigitalocean.com",
    # Other managed providers
    ".cloud.", ".tidbcloud.com", ".scalegrid.com",
    ".aivencloud.com", ".clever-cloud.com",
    ".mongodb.net", ".clickhouse.cloud",
    # Generic proxy / cluster naming
    "proxy-", "cluster-", "shard-",
)
_CLOUD_HOST_PATTERNS = (
    re.compile(r"gateway0\d\."),
)
_IPV4_PATTERN = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")

# scheme://[user[:pass]@]host[:port][/db][?query]
_AUTHORITY_PATTERN = re.compile(r"://([^/?#]*)")
_DATABASE_PATTERN = re.compile(r"://[^/]+/([^?#]+)")


@dataclass(frozen=True)
class ParsedConnectionString:
    scheme: str
    host: str
    port: Optional[int]
    database: Optional[str]
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class Unparseable:
    raw: str  # credentials masked
    reason: str


@dataclass(frozen=True)
class DatabaseMatch:
    actual_database: Optional[str]


# ---------------------------------------------------------------------------
# Cloud host detection
# ---------------------------------------------------------------------------

def is_cloud_host(host: Optional[str]) -> bool:
    """Return True when *host* looks like a managed cloud database endpoint."""
    if not host:
        return False
    host_lower = host.strip().lower()
    if _IPV4_PATTERN.match(host_lower):
        return False
    if any(marker in host_lower for marker in _CLOUD_HOST_MARKERS):
        return True
    return any(p.search(host_lower) for p in _CLOUD_HOST_PATTERNS)


# ---------------------------------------------------------------------------
# Connection string parsing
# ---------------------------------------------------------------------------

def _with_default_scheme(
    conn_str: Optional[str], engine_type: Union[EngineType, str, None]
) -> Optional[str]:
    """ClickHouse accepts a bare ``host[:port][/db]``; it means plain HTTP."""
    if conn_str and engine_type == EngineType.CLICKHOUSE and "://" not in conn_str:
        return f"http://{conn_str}"
    return conn_str


def extract_host_from_connection_string(conn_str: Optional[str]) -> Optional[str]:
    """Authority host: after the last '@' of the user-info, before the port."""
    if not conn_str:
        return None
    match = _AUTHORITY_PATTERN.search(conn_str)
    if not match:
        return None
    host = match.group(1).rpartition("@")[2].split(":")[0]
    return host or None


def extract_database_from_connection_string(
    conn_str: Optional[str], engine_type: Union[EngineType, str, None]
) -> Optional[str]:
    """Path segment after the authority; ClickHouse falls back to ``default``."""
    if not conn_str:
        return None
    match = _DATABASE_PATTERN.search(_with_default_scheme(conn_str, engine_type))
    if match:
        return match.group(1)
    if engine_type == EngineType.CLICKHOUSE:
        return "default"
    return None


def parse_connection_string(
    conn_str: Optional[str], engine_type: Union[EngineType, str, None] = None
) -> Union[ParsedConnectionString, Unparseable]:
    """Split a URI-shaped connection string into its parts.

    Never raises: anything that does not look like ``scheme://host...``
    comes back as ``Unparseable``. Credentials are percent-decoded.
    """
    raw = redact_connection_string(conn_str) or ""
    conn_str = _with_default_scheme(conn_str, engine_type)
    if not conn_str or "://" not in conn_str:
        return Unparseable(raw=raw, reason="missing scheme")

    try:
        parts = urlsplit(conn_str)
        port = parts.port
    except ValueError as exc:
        return Unparseable(raw=raw, reason=str(exc))

    host = extract_host_from_connection_string(conn_str)
    if not host:
        return Unparseable(raw=raw, reason="missing host")

    return ParsedConnectionString(
        scheme=parts.scheme.lower(),
        host=host,
        port=port,
        database=extract_database_from_connection_string(conn_str, engine_type),
        username=unquote(parts.username) if parts.username else None,
        password=unquote(parts.password) if parts.password is not None else None,
    )


def validate_database_name_match(
    conn_str: Optional[str],
    provided: Optional[str],
    engine_type: Union[EngineType, str, None],
) -> DatabaseMatch:
    """Reconcile the database typed by the caller with the one in the string.

    No database in the string: the provided name is trusted. No provided
    name: the encoded one is adopted. Both present and different: mismatch.
    """
    if not conn_str:
        raise DescriptorValidationError("Connection string is required")

    encoded = extract_database_from_connection_string(conn_str, engine_type)
    if not encoded:
        return DatabaseMatch(actual_database=provided)
    if not provided:
        return DatabaseMatch(actual_database=encoded)
    if encoded != provided:
        raise DatabaseNameMismatchError(actual=encoded, provided=provided)
    return DatabaseMatch(actual_database=encoded)


# ---------------------------------------------------------------------------
# Descriptor validation
# ---------------------------------------------------------------------------

def _parse_engine_type(raw: Optional[str]) -> EngineType:
    if not raw:
        raise DescriptorValidationError("Database type is required")
    try:
        return EngineType(raw)
    except ValueError:
        raise UnsupportedEngineError(context={"engine_type": raw})


def _parse_port(raw) -> int:
    try:
        port = int(str(raw).strip())
    except (TypeError, ValueError):
        raise DescriptorValidationError("Port must be a number between 1 and 65535")
    if not 0 < port <= 65535:
        raise DescriptorValidationError("Port must be a number between 1 and 65535")
    return port


def validate_descriptor(request: ConnectionRequest) -> Descriptor:
    """Turn a loose request into a Local or External descriptor.

    Raises:
        FeatureDisabledError: engine type is MongoDB, whatever else is sent.
        UnsupportedEngineError: unknown engine type.
        DescriptorValidationError: required fields missing or malformed.
    """
    if request.engine_type == EngineType.MONGODB:
        raise FeatureDisabledError(MONGODB_DISABLED_MESSAGE)

    engine_type = _parse_engine_type(request.engine_type)

    name = (request.name or "").strip()
    if not name:
        raise DescriptorValidationError("Connection name is required")

    server_type = request.server_type or ServerType.LOCAL.value
    if server_type == ServerType.LOCAL:
        if (
            not request.host
            or request.port in (None, "")
            or not request.username
            or request.password is None
        ):
            raise DescriptorValidationError(
                "Host, port, username, and password are required for local connections"
            )
        if not request.database:
            raise DescriptorValidationError("Database name is required for local connections")
        return LocalDescriptor(
            name=name,
            engine_type=engine_type,
            host=request.host.strip(),
            port=_parse_port(request.port),
            username=request.username,
            password=request.password,
            database=request.database,
            ssl=request.ssl,
        )

    if server_type == ServerType.EXTERNAL:
        if not request.connection_string:
            raise DescriptorValidationError(
                "Connection string is required for external connections"
            )
        parsed = parse_connection_string(request.connection_string.strip(), engine_type)
        if isinstance(parsed, Unparseable):
            raise DescriptorValidationError(f"Invalid connection string: {parsed.reason}")
        return ExternalDescriptor(
            name=name,
            engine_type=engine_type,
            connection_string=request.connection_string.strip(),
            database=request.database or None,
            ssl=request.ssl,
        )

    raise DescriptorValidationError("Server type must be 'local' or 'external'")

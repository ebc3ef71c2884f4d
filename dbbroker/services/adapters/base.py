"""
Engine adapter interface and driver-error classification.

Every adapter opens a short-lived connection per call and closes it before
returning; nothing is pooled across requests.
"""

from __future__ import annotations

import logging
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple, Type, Union

import httpx

from dbbroker.core.errors import (
    AuthFailedError,
    BrokerError,
    CloudHostError,
    DatabaseMissingError,
    DescriptorValidationError,
    EngineError,
    FeatureDisabledError,
    HostNotFoundError,
    RefusedConnectionError,
    TimedOutError,
    UnsupportedEngineError,
)
from dbbroker.models.descriptors import Descriptor, EngineType, ServerType
from dbbroker.services.classifier import (
    ParsedConnectionString,
    Unparseable,
    is_cloud_host,
    parse_connection_string,
    validate_database_name_match,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionTestResult:
    message: str
    warning: Optional[str] = None
    is_secure: bool = False


class EngineAdapter(ABC):
    """Capability interface implemented once per engine."""

    engine_type: EngineType

    @abstractmethod
    def test_connection(self, descriptor: Descriptor) -> ConnectionTestResult:
        """Open a connection, verify the target database, close it."""

    @abstractmethod
    def list_tables(self, descriptor: Descriptor) -> List[str]:
        """Base table names in the descriptor's database, ordered by name."""

    @abstractmethod
    def fetch_sample_rows(self, descriptor: Descriptor, table_name: str, limit: int) -> List[Dict[str, Any]]:
        """Up to *limit* rows of *table_name* as JSON-safe dicts."""

    # -- shared guards -------------------------------------------------------

    @staticmethod
    def ensure_local_host_allowed(descriptor: Descriptor) -> None:
        """Refuse to treat a managed cloud host as a local server."""
        if descriptor.server_type == ServerType.LOCAL and is_cloud_host(descriptor.host):
            raise CloudHostError(descriptor.host)

    @staticmethod
    def expected_database(descriptor: Descriptor) -> Optional[str]:
        """Database the adapter should land in; re-checks external strings."""
        if descriptor.server_type == ServerType.EXTERNAL:
            match = validate_database_name_match(
                descriptor.connection_string, descriptor.database, descriptor.engine_type,
            )
            return match.actual_database
        return descriptor.database

    @staticmethod
    def parsed_connection_string(descriptor: Descriptor) -> ParsedConnectionString:
        """Parts of an external descriptor's connection string.

        Raises DescriptorValidationError when the string does not parse.
        """
        parsed = parse_connection_string(descriptor.connection_string, descriptor.engine_type)
        if isinstance(parsed, Unparseable):
            raise DescriptorValidationError(f"Invalid connection string: {parsed.reason}")
        return parsed


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

_AUTH_CODES = {"28P01", "28000", "1045"}
_MISSING_DB_CODES = {"3D000", "1049"}
_REFUSED_CODES = {"ECONNREFUSED", "111"}
_HOST_CODES = {"ENOTFOUND", "2005"}
_TIMEOUT_CODES = {"ETIMEDOUT", "110"}

_AUTH_SUBSTRINGS = (
    "password authentication failed",
    "access denied",
    "authentication failed",
    "wrong credentials",
    "password is incorrect",
)
_HOST_SUBSTRINGS = (
    "could not translate host name",
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "unknown mysql server host",
    "enotfound",
)
_REFUSED_SUBSTRINGS = ("connection refused", "econnrefused")
_TIMEOUT_SUBSTRINGS = ("timeout expired", "timed out", "etimedout")


def _unwrap(exc: BaseException) -> BaseException:
    """The driver exception behind a SQLAlchemy wrapper, if any."""
    return getattr(exc, "orig", None) or getattr(exc, "original", None) or exc


def _error_codes(exc: BaseException) -> Set[str]:
    codes: Set[str] = set()
    for attr in ("pgcode", "sqlstate", "errno", "code"):
        value = getattr(exc, attr, None)
        if value is not None:
            codes.add(str(value))
    args = getattr(exc, "args", ())
    if args and isinstance(args[0], int):
        codes.add(str(args[0]))
    return codes


def _http_status(exc: BaseException) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def _classify(exc: BaseException, database: Optional[str]) -> Tuple[Type[EngineError], Optional[str]]:
    """Return (error class, reason); a None reason means "use the class default"."""
    driver_exc = _unwrap(exc)
    codes = _error_codes(driver_exc)
    haystack = f"{driver_exc} {exc}".lower()
    missing_reason = f"Database '{database}' does not exist." if database else None

    # 1. Driver / SQLSTATE codes
    if codes & _AUTH_CODES:
        return AuthFailedError, None
    if codes & _MISSING_DB_CODES:
        return DatabaseMissingError, missing_reason
    if codes & _REFUSED_CODES:
        return RefusedConnectionError, None
    if codes & _HOST_CODES:
        return HostNotFoundError, None
    if codes & _TIMEOUT_CODES:
        return TimedOutError, None

    # 2. Exception types
    if _http_status(exc) in (401, 403):
        return AuthFailedError, None
    if isinstance(driver_exc, socket.gaierror):
        return HostNotFoundError, None
    if isinstance(driver_exc, ConnectionRefusedError):
        return RefusedConnectionError, None
    if isinstance(driver_exc, (TimeoutError, socket.timeout, httpx.TimeoutException)):
        return TimedOutError, None

    # 3. Message substrings
    if any(s in haystack for s in _AUTH_SUBSTRINGS):
        return AuthFailedError, None
    if "unknown database" in haystack or ("database" in haystack and "does not exist" in haystack):
        # HTTP engines report the missing database in their own words
        if _http_status(exc) is not None and exc.response.text.strip():
            return DatabaseMissingError, exc.response.text.strip()
        return DatabaseMissingError, missing_reason
    if any(s in haystack for s in _HOST_SUBSTRINGS):
        return HostNotFoundError, None
    if any(s in haystack for s in _REFUSED_SUBSTRINGS):
        return RefusedConnectionError, None
    if any(s in haystack for s in _TIMEOUT_SUBSTRINGS):
        return TimedOutError, None

    return EngineError, str(driver_exc).strip() or type(driver_exc).__name__


def classify_engine_error(
    exc: BaseException,
    engine_type: Union[EngineType, str, None],
    database: Optional[str] = None,
) -> EngineError:
    """Map any adapter-path failure to a classified EngineError.

    Already-classified errors are kept (gaining the engine prefix if they lack
    one); other BrokerErrors keep their message; driver errors are matched by
    code, type, then message; anything else passes its raw message through.
    """
    engine = getattr(engine_type, "value", engine_type)

    if isinstance(exc, (FeatureDisabledError, UnsupportedEngineError)):
        return exc
    if isinstance(exc, EngineError):
        if exc.engine is None and engine:
            return type(exc)(exc.reason, engine=engine, detail=exc.detail, context=exc.context, fields=exc.fields)
        return exc
    if isinstance(exc, BrokerError):
        return EngineError(exc.message, engine=engine, context={"cause": type(exc).__name__})

    kind, reason = _classify(exc, database)
    classified = kind(reason, engine=engine, detail=str(exc), context={"cause": type(exc).__name__})
    classified.__cause__ = exc
    return classified

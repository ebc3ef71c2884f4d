"""
Duplicate Detector
==================

Decides whether two connection descriptors denote the same database,
possibly across server types (a local descriptor and an external
connection string pointing at the same host).

Works over validated descriptors and stored ``DatabaseConnection`` rows
alike; both expose ``server_type``, ``engine_type``, ``host``,
``database`` and ``connection_string`` (external descriptors have no host).
"""

from dataclasses import dataclass
from typing import Any, Optional

from dbbroker.models.descriptors import ServerType
from dbbroker.services.classifier import Unparseable, parse_connection_string


@dataclass(frozen=True)
class _Normalized:
    server_type: str
    engine_type: str
    database: Optional[str]
    host: str
    connection_string: str


def _value(obj: Any, attr: str) -> Any:
    value = getattr(obj, attr, None)
    # Enum members compare by value
    return getattr(value, "value", value)


def _normalize(obj: Any) -> _Normalized:
    server_type = _value(obj, "server_type")
    connection_string = _value(obj, "connection_string") or ""
    if server_type == ServerType.LOCAL:
        host = (_value(obj, "host") or "").lower()
    else:
        parsed = parse_connection_string(connection_string, _value(obj, "engine_type"))
        host = "" if isinstance(parsed, Unparseable) else parsed.host.lower()
    return _Normalized(
        server_type=server_type,
        engine_type=_value(obj, "engine_type"),
        database=_value(obj, "database"),
        host=host,
        connection_string=connection_string,
    )


def is_same_database(a: Any, b: Any) -> bool:
    """True when *a* and *b* point at the same database.

    Engine and database name must match. Then either the derived hosts are
    equal, or (local vs external) the external connection string contains
    the local host as a substring. The substring test is deliberately loose:
    host ``db`` matches ``postgres://u:p@db.internal/app``.
    """
    left, right = _normalize(a), _normalize(b)

    if left.engine_type != right.engine_type or left.database != right.database:
        return False

    if left.host and right.host and left.host == right.host:
        return True

    if left.server_type == ServerType.EXTERNAL and right.server_type == ServerType.LOCAL:
        return bool(right.host) and right.host in left.connection_string
    if right.server_type == ServerType.EXTERNAL and left.server_type == ServerType.LOCAL:
        return bool(left.host) and left.host in right.connection_string

    return False

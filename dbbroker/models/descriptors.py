"""
Connection descriptor types.

``ConnectionRequest`` is the loose shape accepted over HTTP; the classifier
turns it into a ``LocalDescriptor`` or ``ExternalDescriptor``. Response views
never carry a password, except ``ConnectionDetails`` returned by connect.
"""

from datetime import datetime
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ServerType(str, Enum):
    LOCAL = "local"
    EXTERNAL = "external"


class EngineType(str, Enum):
    POSTGRESQL = "PostgreSQL"
    MYSQL = "MySQL"
    CLICKHOUSE = "ClickHouse"
    MONGODB = "MongoDB"


class ConnectionStatus(str, Enum):
    DISCONNECTED = "Disconnected"
    TESTING = "Testing"
    CONNECTING = "Connecting"
    DISCONNECTING = "Disconnecting"
    CONNECTED = "Connected"
    CONNECTED_SECURE = "ConnectedSecure"
    CONNECTED_WARNING = "ConnectedWarning"


# Statuses that allow schema / table-data introspection
BROWSABLE_STATUSES = frozenset(s.value for s in (
    ConnectionStatus.CONNECTED,
    ConnectionStatus.CONNECTED_WARNING,
))


# ---------------------------------------------------------------------------
# Request body
# ---------------------------------------------------------------------------

class ConnectionRequest(BaseModel):
    """Loose request body for add/update; validated by the classifier."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    server_type: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("serverType", "server_type"),
    )
    engine_type: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("engineType", "engine_type", "type"),
    )
    host: Optional[str] = None
    port: Optional[Union[int, str]] = None
    username: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    connection_string: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("connectionString", "connection_string"),
    )
    ssl: bool = False


# ---------------------------------------------------------------------------
# Validated descriptors
# ---------------------------------------------------------------------------

class LocalDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    server_type: Literal["local"] = "local"
    name: str
    engine_type: EngineType
    host: str
    port: int = Field(..., gt=0, le=65535)
    username: str
    password: str  # "" means "no password"
    database: str
    ssl: bool = False


class ExternalDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    server_type: Literal["external"] = "external"
    name: str
    engine_type: EngineType
    connection_string: str
    database: Optional[str] = None
    ssl: bool = False


Descriptor = Union[LocalDescriptor, ExternalDescriptor]


# ---------------------------------------------------------------------------
# Response views
# ---------------------------------------------------------------------------

class ConnectionView(BaseModel):
    """A stored connection as returned to callers (no password)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    name: str
    server_type: str
    engine_type: str
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    database: Optional[str] = None
    connection_string: Optional[str] = None
    ssl: bool = False
    status: str
    created_at: datetime
    updated_at: datetime


class ConnectionDetails(ConnectionView):
    """Full descriptor handed to downstream collaborators after connect."""

    password: Optional[str] = None

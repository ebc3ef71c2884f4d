"""
Database Connection Model
=========================

SQLModel table for registered connection descriptors.
Passwords are Fernet-encrypted at rest; external records carry a
connection string instead of discrete credentials.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Index, UniqueConstraint, text
from sqlmodel import Column, Field, SQLModel, Text


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DatabaseConnection(SQLModel, table=True):
    """Persistent record of a registered database connection."""

    __tablename__ = "database_connections"
    __table_args__ = (
        UniqueConstraint("name", name="uq_database_connections_name"),
        Index(
            "unique_local_connection",
            "host", "port", "engine_type", "database",
            unique=True,
            sqlite_where=text("server_type = 'local'"),
            postgresql_where=text("server_type = 'local'"),
        ),
        Index(
            "unique_external_connection",
            "connection_string",
            unique=True,
            sqlite_where=text("server_type = 'external'"),
            postgresql_where=text("server_type = 'external'"),
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True, max_length=36)
    name: str = Field(max_length=255)
    server_type: str = Field(default="local", max_length=16)  # "local" | "external"
    engine_type: str = Field(max_length=32)  # "PostgreSQL" | "MySQL" | "ClickHouse" | "MongoDB"

    # Local descriptors only
    host: Optional[str] = Field(default=None, max_length=512)
    port: Optional[int] = Field(default=None)
    username: Optional[str] = Field(default=None, max_length=255)
    password_encrypted: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    database: Optional[str] = Field(default=None, max_length=255)

    # External descriptors only
    connection_string: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    ssl: bool = Field(default=False)
    status: str = Field(default="Disconnected", max_length=32)

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

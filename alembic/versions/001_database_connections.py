"""database_connections table

Revision ID: 001_database_connections
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_database_connections"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "database_connections",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("server_type", sa.String(16), nullable=False, server_default="local"),
        sa.Column("engine_type", sa.String(32), nullable=False),
        sa.Column("host", sa.String(512), nullable=True),
        sa.Column("port", sa.Integer, nullable=True),
        sa.Column("username", sa.String(255), nullable=True),
        sa.Column("password_encrypted", sa.Text, nullable=True),
        sa.Column("database", sa.String(255), nullable=True),
        sa.Column("connection_string", sa.Text, nullable=True),
        sa.Column("ssl", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(32), nullable=False, server_default="Disconnected"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("name", name="uq_database_connections_name"),
    )

    # Partial unique indexes: one per server type
    op.create_index(
        "unique_local_connection",
        "database_connections",
        ["host", "port", "engine_type", "database"],
        unique=True,
        sqlite_where=sa.text("server_type = 'local'"),
        postgresql_where=sa.text("server_type = 'local'"),
    )
    op.create_index(
        "unique_external_connection",
        "database_connections",
        ["connection_string"],
        unique=True,
        sqlite_where=sa.text("server_type = 'external'"),
        postgresql_where=sa.text("server_type = 'external'"),
    )


def downgrade() -> None:
    op.drop_index("unique_external_connection", table_name="database_connections")
    op.drop_index("unique_local_connection", table_name="database_connections")
    op.drop_table("database_connections")

"""
Pytest configuration for dbbroker tests.
Points the descriptor store at a temp SQLite file and fixes the secrets.
"""

import os
import tempfile

# Must be set before any dbbroker import
_test_data_dir = tempfile.mkdtemp(prefix="dbbroker_test_")
os.environ.setdefault("DBBROKER_DATA_DIRECTORY", _test_data_dir)
os.environ.setdefault("DBBROKER_LOG_DIR", os.path.join(_test_data_dir, "logs"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_test_data_dir}/test.db")
os.environ["DBBROKER_JWT_SECRET"] = "test-jwt-secret-please-do-not-use-in-production"
os.environ["DBBROKER_SECRET_KEY"] = "ZmDfcTF7_60GrrY167zsiPd67pEvs0aGOv2oasOM1Pg="
os.environ["DBBROKER_DISCONNECT_DELAY_S"] = "0"
os.environ["DBBROKER_AUTH_ENABLED"] = "true"

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel

from dbbroker.core.database import get_engine
from dbbroker.models.database_connection import DatabaseConnection

SQLModel.metadata.create_all(get_engine())

# Load error registry so BrokerError returns correct HTTP status codes
from dbbroker.core.errors.registry import error_registry
error_registry.load()

from dbbroker.auth.revocation import RevokedTokenRegistry
from dbbroker.config import settings
from dbbroker.dependencies import get_broker
from dbbroker.models.descriptors import EngineType
from dbbroker.services.adapters import AdapterRegistry, ConnectionTestResult, EngineAdapter
from dbbroker.services.adapters.mongodb import DisabledMongoAdapter
from dbbroker.services.broker import Broker
from dbbroker.services.connection_store import ConnectionStore
from dbbroker.services.lifecycle import LifecycleManager


class FakeAdapter(EngineAdapter):
    """Scriptable adapter: set ``result`` or ``error`` per test."""

    def __init__(self, engine_type: EngineType = EngineType.POSTGRESQL):
        self.engine_type = engine_type
        self.result = ConnectionTestResult(message="Connection successful")
        self.error: Optional[BaseException] = None
        self.tables: List[str] = ["customers", "orders"]
        self.rows: List[Dict[str, Any]] = [{"id": 1, "name": "alice"}]
        self.calls: List[tuple] = []

    def test_connection(self, descriptor):
        self.calls.append(("test_connection", descriptor))
        self.ensure_local_host_allowed(descriptor)
        if self.error is not None:
            raise self.error
        return self.result

    def list_tables(self, descriptor):
        self.calls.append(("list_tables", descriptor))
        if self.error is not None:
            raise self.error
        return list(self.tables)

    def fetch_sample_rows(self, descriptor, table_name, limit):
        self.calls.append(("fetch_sample_rows", descriptor, table_name, limit))
        if self.error is not None:
            raise self.error
        return list(self.rows)[:limit]


def make_token(
    user_id: str = "user-1",
    role: str = "admin",
    expires_in: int = 3600,
    **claims,
) -> str:
    payload = {
        "userId": user_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        **claims,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


@pytest.fixture(autouse=True)
def _clean_connections():
    """Every test starts with an empty descriptor store."""
    with get_engine().connect() as conn:
        conn.execute(DatabaseConnection.__table__.delete())
        conn.commit()
    yield


@pytest.fixture
def fake_adapters():
    """Fake adapters for every engine except MongoDB, which stays disabled."""
    return {
        EngineType.POSTGRESQL: FakeAdapter(EngineType.POSTGRESQL),
        EngineType.MYSQL: FakeAdapter(EngineType.MYSQL),
        EngineType.CLICKHOUSE: FakeAdapter(EngineType.CLICKHOUSE),
    }


@pytest.fixture
def revocations():
    return RevokedTokenRegistry()


@pytest.fixture
def broker(fake_adapters, revocations):
    registry = AdapterRegistry({**fake_adapters, EngineType.MONGODB: DisabledMongoAdapter()})
    store = ConnectionStore()
    return Broker(
        store=store,
        adapters=registry,
        lifecycle=LifecycleManager(store, registry, sleep=lambda _s: None),
        revocations=revocations,
    )


@pytest.fixture
def client(broker):
    from dbbroker.main import app

    app.dependency_overrides[get_broker] = lambda: broker
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Bearer header for an active admin."""
    return {"Authorization": f"Bearer {make_token()}"}

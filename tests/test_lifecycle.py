"""
Tests for LifecycleManager: the test/connect/disconnect status machine.
"""

import pytest

from conftest import FakeAdapter
from dbbroker.core.errors import AuthFailedError, FeatureDisabledError, NotFoundError, RefusedConnectionError
from dbbroker.models.descriptors import (
    ConnectionStatus,
    EngineType,
    ExternalDescriptor,
    LocalDescriptor,
)
from dbbroker.services.adapters import AdapterRegistry, ConnectionTestResult
from dbbroker.services.adapters.mongodb import DisabledMongoAdapter
from dbbroker.services.connection_store import ConnectionStore
from dbbroker.services.lifecycle import LifecycleManager, status_for

WARNING = "Warning: Using default PostgreSQL credentials. Consider changing for security."


class StatusRecordingAdapter(FakeAdapter):
    """Captures the persisted status while the probe is running."""

    def __init__(self, store):
        super().__init__(EngineType.POSTGRESQL)
        self.store = store
        self.seen_status = None

    def test_connection(self, descriptor):
        rows, _ = self.store.list_page(1, 1)
        self.seen_status = rows[0].status
        return super().test_connection(descriptor)


@pytest.fixture
def store():
    return ConnectionStore()


@pytest.fixture
def adapter():
    return FakeAdapter(EngineType.POSTGRESQL)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def lifecycle(store, adapter, sleeps):
    registry = AdapterRegistry({
        EngineType.POSTGRESQL: adapter,
        EngineType.MONGODB: DisabledMongoAdapter(),
    })
    return LifecycleManager(store, registry, sleep=sleeps.append)


@pytest.fixture
def record(store):
    descriptor = LocalDescriptor(
        name="pg", engine_type=EngineType.POSTGRESQL, host="db1", port=5432,
        username="app", password="pw", database="app",
    )
    return store.create(descriptor, ConnectionStatus.DISCONNECTED)


class TestStatusFor:
    def test_plain(self):
        assert status_for(ConnectionTestResult("ok")) == ConnectionStatus.CONNECTED

    def test_warning(self):
        assert status_for(ConnectionTestResult(WARNING, warning=WARNING)) == ConnectionStatus.CONNECTED_WARNING

    def test_secure_wins_over_warning(self):
        result = ConnectionTestResult(WARNING, warning=WARNING, is_secure=True)
        assert status_for(result) == ConnectionStatus.CONNECTED


class TestTest:
    def test_success(self, lifecycle, store, record):
        result = lifecycle.test(record.id)
        assert result.success is True
        assert result.status == ConnectionStatus.CONNECTED
        assert result.message == "Connection successful"
        assert result.descriptor is None
        assert store.require(record.id).status == "Connected"

    def test_warning_becomes_message(self, lifecycle, adapter, store, record):
        adapter.result = ConnectionTestResult(WARNING, warning=WARNING)
        result = lifecycle.test(record.id)
        assert result.status == ConnectionStatus.CONNECTED_WARNING
        assert result.message == WARNING
        assert store.require(record.id).status == "ConnectedWarning"

    def test_failure_reverts_to_disconnected(self, lifecycle, adapter, store, record):
        store.set_status(record.id, ConnectionStatus.CONNECTED)
        adapter.error = ConnectionRefusedError(111, "Connection refused")

        result = lifecycle.test(record.id)

        assert result.success is False
        assert result.status == ConnectionStatus.DISCONNECTED
        assert isinstance(result.error, RefusedConnectionError)
        assert result.message.startswith("PostgreSQL connection failed: Connection refused")
        assert store.require(record.id).status == "Disconnected"

    def test_transient_status_committed_before_probe(self, store, record):
        recorder = StatusRecordingAdapter(store)
        manager = LifecycleManager(store, AdapterRegistry({EngineType.POSTGRESQL: recorder}))
        manager.test(record.id)
        assert recorder.seen_status == "Testing"

    def test_idempotent(self, lifecycle, record):
        first = lifecycle.test(record.id)
        second = lifecycle.test(record.id)
        assert first.status == second.status == ConnectionStatus.CONNECTED

    def test_unknown_id(self, lifecycle):
        with pytest.raises(NotFoundError):
            lifecycle.test("missing-id")

    def test_mongodb_short_circuits(self, lifecycle, store):
        row = store.create(
            ExternalDescriptor(
                name="mongo", engine_type=EngineType.MONGODB,
                connection_string="mongodb://u:p@mongo:27017/app",
            ),
            ConnectionStatus.CONNECTED,
        )
        with pytest.raises(FeatureDisabledError):
            lifecycle.test(row.id)
        assert store.require(row.id).status == "Connected"


class TestConnect:
    def test_success_returns_descriptor(self, lifecycle, record):
        result = lifecycle.connect(record.id)
        assert result.success is True
        assert result.message == "Database connected successfully"
        assert result.descriptor.password == "pw"

    def test_connecting_is_transient(self, store, record):
        recorder = StatusRecordingAdapter(store)
        manager = LifecycleManager(store, AdapterRegistry({EngineType.POSTGRESQL: recorder}))
        manager.connect(record.id)
        assert recorder.seen_status == "Connecting"

    def test_auth_failure(self, lifecycle, adapter, store, record):
        adapter.error = AuthFailedError()
        result = lifecycle.connect(record.id)
        assert result.success is False
        assert result.descriptor is None
        assert "Authentication failed" in result.message
        assert store.require(record.id).status == "Disconnected"


class TestDisconnect:
    @pytest.mark.parametrize("prior", [
        ConnectionStatus.CONNECTED,
        ConnectionStatus.TESTING,
        ConnectionStatus.CONNECTING,
        ConnectionStatus.DISCONNECTED,
    ])
    def test_always_ends_disconnected(self, lifecycle, adapter, store, record, sleeps, prior):
        store.set_status(record.id, prior)
        result = lifecycle.disconnect(record.id)

        assert result.status == ConnectionStatus.DISCONNECTED
        assert result.message == "Database disconnected successfully"
        assert store.require(record.id).status == "Disconnected"
        assert len(sleeps) == 1
        assert adapter.calls == []

    def test_disconnecting_is_observable(self, store, record):
        seen = []
        manager = LifecycleManager(
            store, AdapterRegistry(), sleep=lambda _s: seen.append(store.require(record.id).status),
        )
        manager.disconnect(record.id)
        assert seen == ["Disconnecting"]

    def test_unknown_id(self, lifecycle):
        with pytest.raises(NotFoundError):
            lifecycle.disconnect("missing-id")

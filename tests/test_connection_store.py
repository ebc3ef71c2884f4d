"""
Tests for ConnectionStore: persistence, encryption at rest and the
unique-index translation to duplicate errors.
"""

import pytest

from dbbroker.core.errors import DuplicateConnectionError, DuplicateNameError, NotFoundError
from dbbroker.models.descriptors import (
    ConnectionStatus,
    EngineType,
    ExternalDescriptor,
    LocalDescriptor,
)
from dbbroker.services.connection_store import EXTERNAL_DUPLICATE_MESSAGE, ConnectionStore


def _local(name="pg", **overrides):
    fields = dict(
        name=name, engine_type=EngineType.POSTGRESQL, host="db1", port=5432,
        username="app", password="pw", database="app",
    )
    fields.update(overrides)
    return LocalDescriptor(**fields)


def _external(name="ext", conn="postgres://u:p@db9:5432/app"):
    return ExternalDescriptor(
        name=name, engine_type=EngineType.POSTGRESQL, connection_string=conn, database="app",
    )


@pytest.fixture
def store():
    return ConnectionStore()


class TestCreateAndRead:
    def test_password_encrypted_at_rest(self, store):
        row = store.create(_local(), ConnectionStatus.CONNECTED)
        assert row.password_encrypted and row.password_encrypted != "pw"
        assert store.to_descriptor(store.require(row.id)).password == "pw"

    def test_empty_password_round_trips(self, store):
        row = store.create(_local(password=""), ConnectionStatus.CONNECTED)
        assert store.to_descriptor(row).password == ""

    def test_external_has_no_local_fields(self, store):
        row = store.create(_external(), ConnectionStatus.CONNECTED)
        assert row.host is None
        assert row.password_encrypted is None
        descriptor = store.to_descriptor(row)
        assert isinstance(descriptor, ExternalDescriptor)
        assert descriptor.connection_string == "postgres://u:p@db9:5432/app"

    def test_list_page_counts_all(self, store):
        for i in range(3):
            store.create(_local(name=f"pg{i}", database=f"db{i}"), ConnectionStatus.CONNECTED)
        rows, total = store.list_page(page=2, limit=2)
        assert total == 3
        assert len(rows) == 1

    def test_require_unknown(self, store):
        with pytest.raises(NotFoundError):
            store.require("missing-id")

    def test_find_exact_duplicate_excludes_self(self, store):
        row = store.create(_local(), ConnectionStatus.CONNECTED)
        assert store.find_exact_duplicate(_local(name="other")).id == row.id
        assert store.find_exact_duplicate(_local(name="other"), exclude_id=row.id) is None


class TestUniqueIndexes:
    def test_duplicate_name(self, store):
        store.create(_local(), ConnectionStatus.CONNECTED)
        with pytest.raises(DuplicateNameError):
            store.create(_local(database="other"), ConnectionStatus.CONNECTED)

    def test_duplicate_local_tuple(self, store):
        store.create(_local(name="first"), ConnectionStatus.CONNECTED)
        with pytest.raises(DuplicateConnectionError) as exc_info:
            store.create(_local(name="second"), ConnectionStatus.CONNECTED)
        assert exc_info.value.message == "A connection to this database already exists"

    def test_duplicate_external_string(self, store):
        store.create(_external(name="first"), ConnectionStatus.CONNECTED)
        with pytest.raises(DuplicateConnectionError) as exc_info:
            store.create(_external(name="second"), ConnectionStatus.CONNECTED)
        assert exc_info.value.message == EXTERNAL_DUPLICATE_MESSAGE

    def test_local_index_ignores_external_rows(self, store):
        store.create(_external(name="first"), ConnectionStatus.CONNECTED)
        store.create(_external(name="second", conn="postgres://u:p@db8:5432/app"), ConnectionStatus.CONNECTED)
        rows, total = store.list_page(1, 10)
        assert total == 2


class TestWrites:
    def test_update_switches_server_type(self, store):
        row = store.create(_local(), ConnectionStatus.CONNECTED)
        updated = store.update(row.id, _external(name="pg"), ConnectionStatus.CONNECTED)
        assert updated.server_type == "external"
        assert updated.host is None
        assert updated.port is None
        assert updated.username is None
        assert updated.password_encrypted is None

    def test_set_status(self, store):
        row = store.create(_local(), ConnectionStatus.DISCONNECTED)
        assert store.set_status(row.id, ConnectionStatus.TESTING).status == "Testing"
        assert store.require(row.id).status == "Testing"

    def test_set_status_unknown(self, store):
        with pytest.raises(NotFoundError):
            store.set_status("missing-id", ConnectionStatus.TESTING)

    def test_delete(self, store):
        row = store.create(_local(), ConnectionStatus.CONNECTED)
        store.delete(row.id)
        assert store.get(row.id) is None
        with pytest.raises(NotFoundError):
            store.delete(row.id)

"""
Tests for is_same_database: cross server-type duplicate detection.
"""

from types import SimpleNamespace

from dbbroker.models.database_connection import DatabaseConnection
from dbbroker.models.descriptors import EngineType, ExternalDescriptor, LocalDescriptor
from dbbroker.services.duplicate_detector import is_same_database


def _local(host="db1", database="app", engine=EngineType.POSTGRESQL):
    return LocalDescriptor(
        name="local", engine_type=engine, host=host, port=5432,
        username="u", password="p", database=database,
    )


def _external(conn="postgres://u:p@db1:5432/app", database="app", engine=EngineType.POSTGRESQL):
    return ExternalDescriptor(
        name="external", engine_type=engine, connection_string=conn, database=database,
    )


class TestIsSameDatabase:
    def test_local_vs_external_same_host(self):
        assert is_same_database(_local(), _external()) is True
        assert is_same_database(_external(), _local()) is True

    def test_engine_mismatch_always_false(self):
        assert is_same_database(_local(), _external(engine=EngineType.MYSQL)) is False
        assert is_same_database(_local(), _local(engine=EngineType.MYSQL)) is False

    def test_database_mismatch(self):
        assert is_same_database(_local(database="other"), _external()) is False

    def test_two_locals_same_host(self):
        assert is_same_database(_local(), _local()) is True

    def test_two_locals_different_hosts(self):
        assert is_same_database(_local(host="db1"), _local(host="db2")) is False

    def test_host_comparison_ignores_case(self):
        assert is_same_database(_local(host="DB1"), _external()) is True

    def test_two_externals_same_host(self):
        a = _external("postgres://a:x@db1:5432/app")
        b = _external("postgresql://b:y@db1/app")
        assert is_same_database(a, b) is True

    def test_substring_match_is_loose(self):
        # "db" is contained in "db.internal"
        local = _local(host="db")
        external = _external("postgres://u:p@db.internal:5432/app")
        assert is_same_database(local, external) is True

    def test_empty_local_host_never_matches(self):
        local = SimpleNamespace(
            server_type="local", engine_type="PostgreSQL", host="",
            database="app", connection_string=None,
        )
        assert is_same_database(local, _external()) is False

    def test_stored_row_against_descriptor(self):
        row = DatabaseConnection(
            name="stored", server_type="external", engine_type="PostgreSQL",
            connection_string="postgres://u:p@db1:5432/app", database="app",
        )
        assert is_same_database(_local(), row) is True

    def test_unparseable_externals_never_match_by_host(self):
        a = _external("db1:5432/app")
        b = _external("db1:5432/app")
        assert is_same_database(a, b) is False

    def test_unparseable_external_still_matches_local_by_substring(self):
        assert is_same_database(_local(), _external("db1:5432/app")) is True

    def test_bare_clickhouse_string_compared_by_host(self):
        a = _external("CH.internal/analytics", database="analytics", engine=EngineType.CLICKHOUSE)
        b = _external("http://u:p@ch.internal:8123/analytics", database="analytics", engine=EngineType.CLICKHOUSE)
        assert is_same_database(a, b) is True

    def test_host_taken_after_userinfo(self):
        # "u" is the user name, not a host
        a = _external("postgres://u:p@:5432/app")
        b = _external("postgres://u:q@:5433/app")
        assert is_same_database(a, b) is False

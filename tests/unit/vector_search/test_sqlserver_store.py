"""
Unit tests for the SQL Server embedding store with a mocked pyodbc connection.

Checks the statements issued and how results and driver errors are mapped.
Behavior against a real server is covered by tests/integration.
"""

from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from vector_search.core.config import StoreConfig
from vector_search.core.exceptions import StoreError
from vector_search.core.types import Collection
from vector_search.storage.pool import ConnectionPool
from vector_search.storage.sqlserver_store import SqlServerEmbeddingStore, _is_valid_identifier


class FakeDriverError(Exception):
    """Stands in for pyodbc.Error."""


ROW = (
    "todo-1", 7, "Buy milk pending", "[1.0,0.0,0.0]", "nomic-embed-text",
    "pending", '{"completed": false}',
    datetime(2026, 1, 1, 12, 0, 0), datetime(2026, 1, 1, 12, 0, 0),
)


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def connection(cursor):
    conn = MagicMock()
    conn.cursor.return_value = cursor
    return conn


@pytest.fixture
def store(connection):
    pool = ConnectionPool(lambda: connection, max_size=1)
    with patch("vector_search.storage.sqlserver_store.pyodbc") as mock_pyodbc:
        mock_pyodbc.Error = FakeDriverError
        yield SqlServerEmbeddingStore(pool, dimensions=3, schema="vector")


class TestIdentifiers:
    """Tests for schema name validation."""

    @pytest.mark.parametrize("name", ["vector", "test_vector", "_v1"])
    def test_valid(self, name):
        assert _is_valid_identifier(name)

    @pytest.mark.parametrize("name", ["", "1abc", "vector]; DROP TABLE x", "a-b", "x" * 129])
    def test_invalid(self, name):
        assert not _is_valid_identifier(name)

    def test_store_rejects_invalid_schema(self, connection):
        with pytest.raises(ValueError):
            SqlServerEmbeddingStore(ConnectionPool(lambda: connection), 3, schema="bad;name")


class TestStatements:
    """Tests for the SQL issued by each operation."""

    def test_upsert_uses_single_merge_with_holdlock(self, store, cursor, connection):
        cursor.fetchone.return_value = ROW

        record = store.upsert(
            Collection.TASK, "todo-1", 7, "Buy milk pending", [1.0, 0.0, 0.0],
            "nomic-embed-text", metadata={"completed": False}, category="pending",
        )

        sql, params = cursor.execute.call_args[0]
        assert "MERGE [vector].[task_embeddings] WITH (HOLDLOCK)" in sql
        assert "CAST(? AS VECTOR(3))" in sql
        assert "OUTPUT" in sql
        assert params[0] == "todo-1"
        assert params[3] == "[1.0,0.0,0.0]"
        connection.commit.assert_called_once()
        assert record.vector == [1.0, 0.0, 0.0]
        assert record.metadata == {"completed": False}
        assert record.updated_at.tzinfo is not None

    def test_query_uses_vector_distance(self, store, cursor):
        cursor.fetchall.return_value = [ROW + (0.1, 0.9)]

        hits = store.query(
            Collection.TASK, [1.0, 0.0, 0.0], owner_id=7,
            extra_filter=("status", "pending"), limit=5, threshold=0.5,
        )

        sql, params = cursor.execute.call_args[0]
        assert "VECTOR_DISTANCE('cosine', embedding" in sql
        assert "ORDER BY scored.similarity DESC, scored.updated_at DESC, scored.record_key ASC" in sql
        assert params == [5, "[1.0,0.0,0.0]", 7, "pending", 0.5]
        assert hits[0].similarity == 0.9
        assert hits[0].distance == 0.1

    def test_query_without_filters(self, store, cursor):
        cursor.fetchall.return_value = []

        store.query(Collection.PROFILE, [0.0, 1.0, 0.0], limit=3, threshold=0.0)

        sql, params = cursor.execute.call_args[0]
        assert "WHERE owner_id" not in sql
        assert params == [3, "[0.0,1.0,0.0]", 0.0]

    def test_delete_reports_rowcount(self, store, cursor):
        cursor.rowcount = 0
        assert store.delete(Collection.TASK, "missing") is False

        cursor.rowcount = 1
        assert store.delete(Collection.TASK, "todo-1") is True

    def test_driver_error_becomes_store_error(self, store, cursor, connection):
        cursor.execute.side_effect = FakeDriverError("deadlock")

        with pytest.raises(StoreError) as exc_info:
            store.upsert(Collection.TASK, "todo-1", 7, "text", [1.0, 0.0, 0.0], "m")

        assert exc_info.value.collection == "task"
        assert exc_info.value.key == "todo-1"
        assert isinstance(exc_info.value.__cause__, FakeDriverError)
        connection.rollback.assert_called_once()

    def test_init_schema_creates_tables_for_each_collection(self, store, cursor):
        store.init_schema()

        statements = " ".join(call[0][0] for call in cursor.execute.call_args_list)
        for collection in Collection:
            assert f"CREATE TABLE [vector].[{collection.table_name}]" in statements
        assert "embedding VECTOR(3) NOT NULL" in statements
        assert "CREATE VECTOR INDEX" not in statements

    def test_stats(self, store, cursor):
        cursor.fetchone.side_effect = [(2,), (1,), (0,)]

        stats = store.stats()

        assert stats.to_dict() == {"task": 2, "content": 1, "profile": 0, "total": 3}


class TestFromConfig:
    """Tests for building the store from StoreConfig."""

    def test_connection_factory_sets_timeouts(self):
        config = StoreConfig(password="pw", login_timeout_seconds=4, query_timeout_seconds=12,
                             pool_size=3, schema="vec")
        conn = MagicMock()

        with patch("vector_search.storage.sqlserver_store.pyodbc") as mock_pyodbc:
            mock_pyodbc.connect.return_value = conn
            mock_pyodbc.OperationalError = FakeDriverError
            mock_pyodbc.InterfaceError = FakeDriverError
            store = SqlServerEmbeddingStore.from_config(config, dimensions=768)
            acquired = store.pool.acquire()

            mock_pyodbc.connect.assert_called_once_with(config.get_connection_string(), timeout=4)

        assert acquired is conn
        assert conn.timeout == 12
        assert store.pool.max_size == 3
        assert store.schema == "vec"

    def test_missing_driver(self):
        with patch("vector_search.storage.sqlserver_store.pyodbc", None):
            with pytest.raises(StoreError, match="pyodbc"):
                SqlServerEmbeddingStore.from_config(StoreConfig(), dimensions=768)

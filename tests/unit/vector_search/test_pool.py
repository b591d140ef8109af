"""
Unit tests for the bounded connection pool.
"""

import sqlite3
import threading
from unittest.mock import MagicMock

import pytest

from vector_search.core.exceptions import StoreError
from vector_search.storage.pool import ConnectionPool


@pytest.fixture
def opened():
    return []


@pytest.fixture
def factory(opened):
    def make():
        conn = MagicMock(name=f"connection-{len(opened)}")
        opened.append(conn)
        return conn

    return MagicMock(side_effect=make)


class TestConnectionPool:
    """Tests for ConnectionPool."""

    def test_connections_are_created_lazily_and_reused(self, factory):
        pool = ConnectionPool(factory, max_size=3)

        assert factory.call_count == 0
        with pool.connection() as first:
            assert pool.stats() == {"max_size": 3, "open": 1, "in_use": 1, "idle": 0}
        with pool.connection() as second:
            pass

        assert first is second
        assert factory.call_count == 1
        assert pool.stats() == {"max_size": 3, "open": 1, "in_use": 0, "idle": 1}

    def test_returned_connection_is_not_rolled_back(self, factory):
        pool = ConnectionPool(factory, max_size=1)

        with pool.connection() as conn:
            pass

        conn.rollback.assert_not_called()

    def test_acquire_times_out_when_exhausted(self, factory):
        pool = ConnectionPool(factory, max_size=1, acquire_timeout=0.05)
        held = pool.acquire()

        with pytest.raises(StoreError, match="Timed out"):
            pool.acquire()

        pool.release(held)
        assert pool.acquire() is held

    def test_waiter_gets_released_connection(self, factory):
        pool = ConnectionPool(factory, max_size=1, acquire_timeout=2.0)
        held = pool.acquire()
        acquired = []

        waiter = threading.Thread(target=lambda: acquired.append(pool.acquire()))
        waiter.start()
        pool.release(held)
        waiter.join(timeout=5)

        assert acquired == [held]

    def test_factory_failure_frees_the_slot(self):
        calls = {"n": 0}

        def flaky():
            calls["n"] += 1
            if calls["n"] == 1:
                raise sqlite3.OperationalError("unable to open database file")
            return MagicMock()

        pool = ConnectionPool(flaky, max_size=1, acquire_timeout=0.05)

        with pytest.raises(StoreError) as exc_info:
            pool.acquire()
        assert isinstance(exc_info.value.__cause__, sqlite3.OperationalError)

        assert pool.acquire() is not None

    def test_backend_error_discards_connection(self, factory, opened):
        pool = ConnectionPool(factory, max_size=2, discard_on=(sqlite3.InterfaceError,))

        with pytest.raises(sqlite3.InterfaceError):
            with pool.connection() as conn:
                raise sqlite3.InterfaceError("broken")

        conn.close.assert_called_once()
        with pool.connection() as replacement:
            pass
        assert replacement is not conn
        assert len(opened) == 2

    def test_wrapped_backend_error_discards_connection(self, factory):
        pool = ConnectionPool(factory, max_size=2, discard_on=(sqlite3.InterfaceError,))

        with pytest.raises(StoreError):
            with pool.connection() as conn:
                try:
                    raise sqlite3.InterfaceError("broken")
                except sqlite3.InterfaceError as e:
                    raise StoreError("query failed") from e

        conn.close.assert_called_once()

    def test_other_errors_keep_connection(self, factory):
        pool = ConnectionPool(factory, max_size=2, discard_on=(sqlite3.InterfaceError,))

        with pytest.raises(ValueError):
            with pool.connection() as conn:
                raise ValueError("caller bug")

        conn.close.assert_not_called()
        assert pool.stats()["idle"] == 1
        with pool.connection() as again:
            pass
        assert again is conn

    def test_close_refuses_further_acquires(self, factory):
        pool = ConnectionPool(factory, max_size=2)
        with pool.connection() as conn:
            pass

        pool.close()

        conn.close.assert_called_once()
        with pytest.raises(StoreError, match="closed"):
            pool.acquire()

    def test_invalid_size(self, factory):
        with pytest.raises(ValueError):
            ConnectionPool(factory, max_size=0)

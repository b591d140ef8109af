"""
Bounded connection pool.

Wraps SQLAlchemy's QueuePool with no overflow: connections are created
lazily up to `max_size`, and a caller that finds the pool exhausted blocks
until a connection is released or `acquire_timeout` elapses. Callers work
with the raw DB-API connection and manage their own transactions.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Tuple, Type

from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.pool import QueuePool

from ..core.exceptions import StoreError


logger = logging.getLogger(__name__)


class ConnectionPool:
    """
    Thread-safe pool of DB-API connections.

    Args:
        factory: Zero-argument callable returning a new connection
        max_size: Maximum number of connections open at once
        acquire_timeout: Seconds to wait for a free connection
        discard_on: Exception types that mark a connection as broken

    Example:
        >>> pool = ConnectionPool(lambda: sqlite3.connect("x.db"), max_size=4)
        >>> with pool.connection() as conn:
        ...     conn.execute("SELECT 1")
    """

    def __init__(
        self,
        factory: Callable[[], Any],
        max_size: int = 20,
        acquire_timeout: float = 2.0,
        discard_on: Tuple[Type[BaseException], ...] = (),
    ):
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")

        self._factory = factory
        self.max_size = max_size
        self.acquire_timeout = acquire_timeout
        self._discard_on = discard_on

        self._queue = QueuePool(
            self._create,
            pool_size=max_size,
            max_overflow=0,
            timeout=acquire_timeout,
            use_lifo=True,
            reset_on_return=None,
        )
        self._lock = threading.Lock()
        self._checked_out: Dict[int, Any] = {}
        self._closed = False

    def _create(self) -> Any:
        conn = self._factory()
        logger.debug(f"Opened pooled connection (pool size {self.max_size})")
        return conn

    def acquire(self) -> Any:
        """
        Take a connection from the pool, creating one if under capacity.

        Raises:
            StoreError: If the pool is closed, exhausted past the timeout, or
                the connection cannot be created
        """
        if self._closed:
            raise StoreError("Connection pool is closed")

        try:
            proxy = self._queue.connect()
        except PoolTimeoutError as e:
            raise StoreError(
                f"Timed out after {self.acquire_timeout}s waiting for a database "
                f"connection (pool size {self.max_size})"
            ) from e
        except Exception as e:
            logger.error(f"Failed to open database connection: {e}")
            raise StoreError(f"Failed to open database connection: {e}") from e

        conn = proxy.dbapi_connection
        with self._lock:
            self._checked_out[id(conn)] = proxy
        return conn

    def release(self, conn: Any, discard: bool = False) -> None:
        """Return a connection to the pool, closing it instead if `discard`."""
        with self._lock:
            proxy = self._checked_out.pop(id(conn))

        if discard or self._closed:
            logger.debug("Discarding pooled connection")
            proxy.invalidate()
        else:
            proxy.close()

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """Context manager yielding a pooled connection."""
        conn = self.acquire()
        discard = False
        try:
            yield conn
        except Exception as e:
            # Stores re-raise driver errors as StoreError; check the cause too
            discard = isinstance(e, self._discard_on) or isinstance(e.__cause__, self._discard_on)
            raise
        finally:
            self.release(conn, discard=discard)

    def stats(self) -> Dict[str, int]:
        """Current pool occupancy."""
        in_use = self._queue.checkedout()
        idle = self._queue.checkedin()
        return {
            "max_size": self.max_size,
            "open": in_use + idle,
            "in_use": in_use,
            "idle": idle,
        }

    def close(self) -> None:
        """Close idle connections and refuse further acquires."""
        self._closed = True
        self._queue.dispose()
        logger.debug(f"Closed connection pool ({self._queue.status()})")

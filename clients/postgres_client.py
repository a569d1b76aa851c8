"""
PostgreSQL client with connection pooling and explicit transactions.

Uses psycopg2 with ThreadedConnectionPool. Single statements autocommit;
multi-statement work goes through transaction(), which commits on success
and rolls back on any exception so partial writes are never observable.

Connection-level failures surface as UnavailableError. They are never
retried here; callers decide.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

from core.errors import UnavailableError

logger = logging.getLogger(__name__)

# Global JSONB registration flag
_jsonb_registered = False

_CONNECTION_ERRORS = (psycopg2.OperationalError, psycopg2.InterfaceError)


def _convert_params(params: Tuple | Dict | None) -> Tuple | Dict | None:
    """Convert UUID objects to strings."""
    if params is None:
        return None

    def convert(value: Any) -> Any:
        if isinstance(value, UUID):
            return str(value)
        if isinstance(value, list):
            return [convert(v) for v in value]
        if isinstance(value, tuple):
            return tuple(convert(v) for v in value)
        if isinstance(value, dict):
            return {k: convert(v) for k, v in value.items()}
        return value

    return convert(params)


class Transaction:
    """
    Statements executed on one connection inside an open transaction.

    Same query interface as PostgresClient but nothing is committed until
    the enclosing PostgresClient.transaction() block exits cleanly.
    """

    def __init__(self, conn):
        self._conn = conn

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        with self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(query, _convert_params(params))
            if cur.description:
                return [dict(row) for row in cur.fetchall()]
            return []

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        with self._conn.cursor() as cur:
            cur.execute(query, _convert_params(params))
            result = cur.fetchone()
            return result[0] if result else None

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE/DELETE with RETURNING, return results."""
        return self.execute(query, params)

    def execute_rowcount(self, query: str, params: Tuple | Dict | None = None) -> int:
        """Execute UPDATE/DELETE, return number of affected rows."""
        with self._conn.cursor() as cur:
            cur.execute(query, _convert_params(params))
            return cur.rowcount


class PostgresClient:
    """
    PostgreSQL client shared by every component of the core.

    Usage:
        db = PostgresClient(database_url)

        rows = db.execute("SELECT * FROM service_requests WHERE id = %s", (request_id,))

        with db.transaction() as tx:
            tx.execute("UPDATE service_requests SET status = %s WHERE id = %s", (...))
            tx.execute("INSERT INTO invoices ...", (...))
    """

    # Class-level connection pools shared across instances
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str, minconn: int = 2, maxconn: int = 20):
        self._database_url = database_url
        self._minconn = minconn
        self._maxconn = maxconn
        self._ensure_connection_pool()

    def _ensure_connection_pool(self) -> None:
        """Create connection pool if it doesn't exist."""
        with self._pools_lock:
            if self._database_url not in self._connection_pools:
                try:
                    pool = psycopg2.pool.ThreadedConnectionPool(
                        minconn=self._minconn,
                        maxconn=self._maxconn,
                        dsn=self._database_url,
                        connect_timeout=30,
                    )
                except _CONNECTION_ERRORS as e:
                    logger.error(f"Could not create connection pool: {e}")
                    raise UnavailableError("Database unavailable") from e

                global _jsonb_registered
                if not _jsonb_registered:
                    psycopg2.extras.register_default_jsonb(globally=True)
                    _jsonb_registered = True

                self._connection_pools[self._database_url] = pool
                logger.info("Connection pool created")

    @contextmanager
    def get_connection(self):
        """Borrow a pooled connection; connection failures become UnavailableError."""
        if self._database_url not in self._connection_pools:
            self._ensure_connection_pool()

        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            try:
                conn = pool.getconn()
            except (psycopg2.pool.PoolError, *_CONNECTION_ERRORS) as e:
                raise UnavailableError("Database unavailable") from e
            if conn is None:
                raise UnavailableError("Could not get connection from pool")

            try:
                yield conn
            except _CONNECTION_ERRORS as e:
                logger.error(f"Database connection failed mid-query: {e}")
                raise UnavailableError("Database unavailable") from e

        finally:
            if conn:
                pool.putconn(conn, close=bool(conn.closed))

    @contextmanager
    def transaction(self):
        """
        Run several statements atomically.

        Commits when the block exits normally, rolls back on any exception
        and re-raises it.
        """
        with self.get_connection() as conn:
            try:
                yield Transaction(conn)
                conn.commit()
            except BaseException:
                conn.rollback()
                raise

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        with self.transaction() as tx:
            return tx.execute(query, params)

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        with self.transaction() as tx:
            return tx.execute_scalar(query, params)

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE with RETURNING, return results."""
        with self.transaction() as tx:
            return tx.execute_returning(query, params)

    def execute_rowcount(self, query: str, params: Tuple | Dict | None = None) -> int:
        """Execute UPDATE/DELETE, return number of affected rows."""
        with self.transaction() as tx:
            return tx.execute_rowcount(query, params)

    def close(self) -> None:
        """Close connection pool."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                self._connection_pools[self._database_url].closeall()
                del self._connection_pools[self._database_url]

    @classmethod
    def close_all_pools(cls) -> None:
        """Close all connection pools."""
        with cls._pools_lock:
            for pool in cls._connection_pools.values():
                pool.closeall()
            cls._connection_pools.clear()

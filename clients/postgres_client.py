"""
Pooled PostgreSQL access for the billing stores.

One ThreadedConnectionPool per DSN is shared by every PostgresClient in the
process. Each helper runs a single statement in its own transaction: commit on
success, rollback on any exception, connection always returned to the pool.

JSONB columns (line items, tax breakdown, link metadata) come back as Python
objects through the default jsonb loader; stores wrap JSONB parameters in
psycopg2.extras.Json themselves.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

logger = logging.getLogger(__name__)

Params = Tuple | Dict | None

_jsonb_lock = threading.Lock()
_jsonb_registered = False


def _register_jsonb_once() -> None:
    global _jsonb_registered
    with _jsonb_lock:
        if not _jsonb_registered:
            psycopg2.extras.register_default_jsonb(globally=True)
            _jsonb_registered = True


def _adapt(value: Any) -> Any:
    """UUIDs go over the wire as text; containers are walked recursively."""
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, dict):
        return {key: _adapt(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_adapt(item) for item in value)
    return value


class PostgresClient:
    """
    Thin query runner over a shared connection pool.

    Usage:
        db = PostgresClient(database_url)
        overdue = db.execute("SELECT * FROM invoices WHERE status = %s", ("overdue",))
        invoice = db.execute_single("SELECT * FROM invoices WHERE id = %s", (invoice_id,))
        number = db.execute_scalar("SELECT max(invoice_number) FROM invoices")
    """

    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str, min_connections: int = 2, max_connections: int = 20):
        self._database_url = database_url
        self._min_connections = min_connections
        self._max_connections = max_connections
        self._pool()

    def _pool(self) -> psycopg2.pool.ThreadedConnectionPool:
        with self._pools_lock:
            pool = self._connection_pools.get(self._database_url)
            if pool is None:
                pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self._min_connections,
                    maxconn=self._max_connections,
                    dsn=self._database_url,
                    connect_timeout=30,
                )
                _register_jsonb_once()
                self._connection_pools[self._database_url] = pool
                logger.info(
                    f"Billing database pool created ({self._min_connections}-{self._max_connections} connections)"
                )
            return pool

    @contextmanager
    def get_connection(self) -> Iterator[Any]:
        """Borrow a pooled connection. Uncommitted work is rolled back on error."""
        pool = self._pool()
        conn = pool.getconn()
        if conn is None:
            raise RuntimeError("Could not get connection from pool")
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            pool.putconn(conn)

    @contextmanager
    def _statement(self, dict_rows: bool = True) -> Iterator[Any]:
        factory = psycopg2.extras.RealDictCursor if dict_rows else None
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=factory) as cur:
                yield cur
            conn.commit()

    def execute(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """Run a statement; rows as dicts, or [] when it returns no result set."""
        with self._statement() as cur:
            cur.execute(query, _adapt(params))
            return [dict(row) for row in cur.fetchall()] if cur.description else []

    def execute_single(self, query: str, params: Params = None) -> Dict[str, Any] | None:
        rows = self.execute(query, params)
        return rows[0] if rows else None

    def execute_scalar(self, query: str, params: Params = None) -> Any:
        """First column of the first row, or None."""
        with self._statement(dict_rows=False) as cur:
            cur.execute(query, _adapt(params))
            row = cur.fetchone()
            return row[0] if row else None

    def execute_returning(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """INSERT/UPDATE ... RETURNING; the written rows as dicts."""
        with self._statement() as cur:
            cur.execute(query, _adapt(params))
            return [dict(row) for row in cur.fetchall()]

    def close(self) -> None:
        """Close this DSN's pool. Later queries open a new one."""
        with self._pools_lock:
            pool = self._connection_pools.pop(self._database_url, None)
        if pool is not None:
            pool.closeall()

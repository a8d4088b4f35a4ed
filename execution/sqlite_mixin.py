"""
SQLite Transaction Mixin.

Thread-local connections and atomic write transactions shared by the
SQLite-backed recommendation store and audit log.
"""

import asyncio
import logging
import sqlite3
import threading
from contextlib import contextmanager
from functools import partial
from pathlib import Path
from typing import Any, Callable, Generator, TypeVar, cast

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SQLiteTransactionMixin:
    """
    Mixin providing per-thread SQLite connections and serialized writes.

    Subclasses call ``super().__init__(db_path)`` and then create their
    schema inside ``self._transaction()``.

    Attributes:
        _db_path (Path): Path to the database file.
        _write_lock (threading.Lock): Serializes write transactions.
        _local (threading.local): Thread-local storage for connections.
    """

    def __init__(self, db_path: str | Path):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _get_connection(self) -> sqlite3.Connection:
        """Thread-local connection in WAL mode."""
        if getattr(self._local, "conn", None) is None:
            conn = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                timeout=30.0,
                isolation_level=None,
            )
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return cast(sqlite3.Connection, self._local.conn)

    @contextmanager
    def _transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Atomic write transaction.

        Takes the write lock, opens an IMMEDIATE transaction so concurrent
        writers from other processes queue on the database lock, commits on
        success and rolls back on any exception.

        Usage:
            with self._transaction() as conn:
                conn.execute(...)
        """
        conn = self._get_connection()
        with self._write_lock:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        return self._get_connection().execute(sql, params).fetchall()

    @staticmethod
    async def _in_thread(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking store call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    def close(self) -> None:
        """Close every connection opened by this store."""
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()

from __future__ import annotations

import threading
from typing import Any, Mapping

from sqlalchemy import text
from sqlalchemy.engine import Connection, CursorResult, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import TextClause

from ..errors import StoreError


class StoreSession:
    """
    Transactional wrapper around a connection to the local store.

    The session holds the store's writer lock for its whole lifetime, so at
    most one session per store is active at any time. Do not open a second
    session from inside an active one; pass the active session down instead.

    Database failures (connect, statement, commit) surface as StoreError
    with the SQLAlchemy exception as cause.

    Use as:
        with store.session() as session:
            session.execute(...)
            row = session.fetch_one(...)
    """

    def __init__(self, engine: Engine, lock: threading.RLock) -> None:
        self.engine = engine
        self._lock = lock
        self._conn: Connection | None = None
        self._tx = None

    def __enter__(self) -> "StoreSession":
        if self._conn is not None:
            raise RuntimeError("StoreSession is already active; nested sessions are not allowed")
        self._lock.acquire()
        try:
            self._conn = self.engine.connect()
            self._tx = self._conn.begin()
        except BaseException as exc:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            self._lock.release()
            if isinstance(exc, SQLAlchemyError):
                raise StoreError(f"Failed to start store transaction: {exc}") from exc
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if self._tx is not None:
                if exc_type:
                    self._tx.rollback()
                else:
                    self._tx.commit()
        except SQLAlchemyError as db_exc:
            if exc_type:
                # Keep the original error; the rollback failure is secondary.
                return False
            raise StoreError(f"Failed to commit store transaction: {db_exc}") from db_exc
        finally:
            if self._conn is not None:
                self._conn.close()

            self._conn = None
            self._tx = None
            self._lock.release()

        # propagate exceptions (if any)
        return False

    def _connection(self) -> Connection:
        if self._conn is None:
            raise RuntimeError("StoreSession is not active; use within a context manager")
        return self._conn

    def _run(self, sql: str | TextClause, params: Any) -> CursorResult:
        conn = self._connection()
        stmt = text(sql) if isinstance(sql, str) else sql
        try:
            return conn.execute(stmt, params)
        except SQLAlchemyError as exc:
            raise StoreError(f"Store statement failed: {exc}") from exc

    def execute(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> int:
        """
        Execute a non-SELECT statement and return affected row count.
        """
        result = self._run(sql, params or {})
        if result.rowcount is None:
            raise RuntimeError(
                "execute() received None rowcount for statement. "
                "This may indicate a DDL statement or unsupported operation type."
            )
        return int(result.rowcount)

    def execute_many(
        self,
        sql: str | TextClause,
        params: list[Mapping[str, Any]],
    ) -> None:
        """
        Execute one statement for each parameter set (executemany).
        """
        if not params:
            return
        self._run(sql, params)

    def execute_scalar(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """
        Execute a statement expected to return a single scalar value.
        """
        return self._run(sql, params or {}).scalar_one_or_none()

    def fetch_one(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """
        Execute a SELECT expected to return 0 or 1 row. Raises if more than one row.
        """
        row = self._run(sql, params or {}).mappings().one_or_none()
        if row is None:
            return None
        return dict(row)

    def fetch_all(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Execute a SELECT expected to return multiple rows.
        """
        return [dict(row) for row in self._run(sql, params or {}).mappings()]

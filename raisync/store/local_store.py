from __future__ import annotations

import logging
import threading

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..config import StoreConfig
from ..errors import StoreError
from .schema import metadata
from .session import StoreSession

logger = logging.getLogger(__name__)


def _use_immediate_transactions(engine: Engine) -> None:
    """
    Make every transaction on a SQLite engine take the write lock up front.

    pysqlite defers BEGIN until the first write, so a drain's SELECT would
    run outside any transaction and another process could read the same
    rows. With the driver's own transaction handling off, each begin emits
    BEGIN IMMEDIATE and a second process waits on the database lock.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class LocalStore:
    """
    Durable on-device store holding the outbox, the sync cursor and the
    records merged from delta pulls.

    The store is an explicitly constructed object with a lifecycle: open it
    at app start, close it at shutdown, and hand it to the components that
    need it. Every session taken from the store runs under one writer lock.

    Usage:
        with LocalStore(StoreConfig(db_url="sqlite:///raisync.db")) as store:
            outbox = Outbox(store)
            ...

    An existing Engine may be injected instead of a config; the store then
    does not dispose it on close and leaves its transaction handling alone.
    Engines the store creates for SQLite begin every transaction with
    BEGIN IMMEDIATE, so two processes sharing one file never drain the same
    outbox rows.
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        *,
        engine: Engine | None = None,
    ) -> None:
        if config is None and engine is None:
            config = StoreConfig()
        self.config = config
        self._engine = engine
        self._owns_engine = engine is None
        self._lock = threading.RLock()
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def engine(self) -> Engine:
        if not self._open or self._engine is None:
            raise StoreError("LocalStore is not open")
        return self._engine

    def open(self) -> "LocalStore":
        """
        Connect and create missing tables. Opening an open store is a no-op.

        Raises:
            StoreError: If the database cannot be opened or initialised
        """
        with self._lock:
            if self._open:
                return self
            try:
                if self._engine is None:
                    assert self.config is not None
                    self._engine = create_engine(self.config.db_url, echo=self.config.echo)
                    if self._engine.dialect.name == "sqlite":
                        _use_immediate_transactions(self._engine)
                metadata.create_all(self._engine)
            except SQLAlchemyError as exc:
                raise StoreError(f"Failed to open local store: {exc}") from exc
            self._open = True
            logger.debug("Local store opened at %s", self._engine.url)
        return self

    def close(self) -> None:
        """
        Close the store. Waits for an in-flight session to finish.
        """
        with self._lock:
            if not self._open:
                return
            self._open = False
            if self._owns_engine and self._engine is not None:
                self._engine.dispose()
                self._engine = None
            logger.debug("Local store closed")

    def __enter__(self) -> "LocalStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    def session(self) -> StoreSession:
        """
        New transactional session; use as a context manager.

        Raises:
            StoreError: If the store is not open
        """
        return StoreSession(self.engine, self._lock)

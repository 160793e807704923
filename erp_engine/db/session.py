# erp_engine/db/session.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from erp_engine.core.config import Settings
from erp_engine.db.capabilities import SchemaCapabilities

logger = logging.getLogger(__name__)


def _enable_sqlite_savepoints(engine: Engine) -> None:
    # pysqlite defers BEGIN on its own; take over so SAVEPOINT nests correctly.
    # IMMEDIATE takes the write lock at BEGIN, sqlite has no SELECT ... FOR UPDATE.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """
    Owns the engine + session factory for the lifetime of the process.

    open() at startup, close() at shutdown. Every unit of work goes through
    session() or transaction(), both of which always close the session.
    """

    def __init__(self, uri: str, *, pool_size: int = 10, max_overflow: int = 20,
                 pool_recycle: int = 280, echo: bool = False):
        self.uri = uri
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.pool_recycle = pool_recycle
        self.echo = echo

        self.engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self.capabilities: SchemaCapabilities = SchemaCapabilities()

    @classmethod
    def from_settings(cls, cfg: Settings) -> "Database":
        return cls(
            cfg.SQLALCHEMY_DATABASE_URI,
            pool_size=cfg.DB_POOL_SIZE,
            max_overflow=cfg.DB_MAX_OVERFLOW,
            pool_recycle=cfg.DB_POOL_RECYCLE,
        )

    # ---------------- lifecycle ----------------
    def _engine_kwargs(self) -> Dict[str, Any]:
        if self.uri.startswith("sqlite"):
            kw: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if self.uri in ("sqlite://", "sqlite:///:memory:"):
                kw["poolclass"] = StaticPool
            return kw
        return {
            "pool_pre_ping": True,
            "pool_recycle": self.pool_recycle,
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
        }

    def open(self) -> "Database":
        if self.engine is not None:
            return self
        self.engine = create_engine(self.uri, echo=self.echo, future=True, **self._engine_kwargs())
        if self.engine.dialect.name == "sqlite":
            _enable_sqlite_savepoints(self.engine)
        self._session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine,
            future=True,
            expire_on_commit=False,
        )
        self.refresh_capabilities()
        logger.info("Database opened (%s)", self.engine.url.render_as_string(hide_password=True))
        return self

    def refresh_capabilities(self) -> SchemaCapabilities:
        self.capabilities = SchemaCapabilities.resolve(self.engine)
        return self.capabilities

    def close(self) -> None:
        if self.engine is None:
            return
        self.engine.dispose()
        self.engine = None
        self._session_factory = None
        logger.info("Database closed")

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    def create_all(self) -> None:
        from erp_engine.db.base import Base, import_models

        import_models()
        Base.metadata.create_all(bind=self.engine)
        self.refresh_capabilities()

    # ---------------- units of work ----------------
    def new_session(self) -> Session:
        if self._session_factory is None:
            raise RuntimeError("Database is not open")
        return self._session_factory()

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.new_session()
        try:
            yield db
        finally:
            db.close()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        db = self.new_session()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

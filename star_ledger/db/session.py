from __future__ import annotations

from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def _use_immediate_transactions(engine: Engine) -> None:
    # Each unit takes the SQLite write lock at BEGIN, before its first read.
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_ledger_engine(database_url: str, *, isolation_level: str = "SERIALIZABLE") -> Engine:
    if database_url.startswith("sqlite"):
        kwargs: dict[str, object] = {
            "connect_args": {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS},
        }
        if ":memory:" in database_url:
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, **kwargs)
        _use_immediate_transactions(engine)
        return engine

    return create_engine(
        database_url,
        isolation_level=isolation_level,
        pool_pre_ping=True,
    )


def is_single_connection(engine: Engine) -> bool:
    return isinstance(engine.pool, StaticPool)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

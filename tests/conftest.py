from __future__ import annotations

import os
from collections.abc import Iterator
from typing import Any

import pytest

os.environ.setdefault("STARS_APP_ENV", "test")
os.environ.setdefault("STARS_LEDGER_BACKEND", "memory")
os.environ.setdefault("STARS_LEDGER_RETRY_BACKOFF_SECONDS", "0")

from star_ledger.db.session import create_ledger_engine  # noqa: E402
from star_ledger.ledger.memory_store import MemoryLedgerStore  # noqa: E402
from star_ledger.ledger.sql_store import SqlLedgerStore  # noqa: E402


def make_sql_store() -> SqlLedgerStore:
    return SqlLedgerStore(create_ledger_engine("sqlite+pysqlite:///:memory:"), create_schema=True)


@pytest.fixture(params=["memory", "sql"])
def store(request: Any) -> Iterator[Any]:
    if request.param == "memory":
        yield MemoryLedgerStore()
        return
    sql_store = make_sql_store()
    try:
        yield sql_store
    finally:
        sql_store.close()


@pytest.fixture(params=["memory", "sqlite-file", "sqlite-memory"])
def shared_store(request: Any, tmp_path: Any) -> Iterator[Any]:
    if request.param == "memory":
        yield MemoryLedgerStore()
        return
    if request.param == "sqlite-file":
        url = f"sqlite+pysqlite:///{tmp_path / 'ledger.db'}"
    else:
        url = "sqlite+pysqlite:///:memory:"
    sql_store = SqlLedgerStore(create_ledger_engine(url), create_schema=True)
    try:
        yield sql_store
    finally:
        sql_store.close()

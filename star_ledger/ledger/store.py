from __future__ import annotations

import logging
from collections.abc import Iterable
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Protocol

from star_ledger.core.config import Settings
from star_ledger.ledger.errors import BackendUnavailableError
from star_ledger.ledger.records import (
    BalanceRecord,
    OwnershipRecord,
    RedemptionRecord,
    RedemptionStatus,
    StarTransactionRecord,
    SubmissionRecord,
    SubmissionStatus,
    TransactionType,
)

logger = logging.getLogger("stars.ledger.store")


class LedgerUnit(Protocol):
    """Staged reads and writes for one atomic scope. Reads see the scope's own writes."""

    def get_balance(self, child_id: str) -> BalanceRecord | None: ...

    def save_balance(self, balance: BalanceRecord) -> None: ...

    def append_transaction(self, transaction: StarTransactionRecord) -> None: ...

    def owns_item(self, child_id: str, item_id: str) -> bool: ...

    def add_ownership(self, ownership: OwnershipRecord) -> None: ...

    def add_redemption(self, redemption: RedemptionRecord) -> None: ...

    def get_redemption(self, redemption_id: str) -> RedemptionRecord | None: ...

    def save_redemption(self, redemption: RedemptionRecord) -> None: ...

    def get_submission(self, submission_id: str) -> SubmissionRecord | None: ...

    def save_submission(self, submission: SubmissionRecord) -> None: ...


class LedgerStore(Protocol):
    name: str

    def unit_of_work(self, child_id: str) -> AbstractContextManager[LedgerUnit]: ...

    def ping(self) -> None: ...

    def close(self) -> None: ...

    def get_balance(self, child_id: str) -> BalanceRecord | None: ...

    def list_transactions(
        self,
        child_id: str,
        *,
        limit: int | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        type: TransactionType | None = None,
    ) -> list[StarTransactionRecord]: ...

    def list_owned_items(self, child_id: str) -> list[OwnershipRecord]: ...

    def get_redemption(self, redemption_id: str) -> RedemptionRecord | None: ...

    def list_redemptions(
        self,
        child_id: str,
        *,
        status: RedemptionStatus | None = None,
    ) -> list[RedemptionRecord]: ...

    def get_submission(self, submission_id: str) -> SubmissionRecord | None: ...

    def list_submissions(
        self,
        *,
        child_id: str | None = None,
        status: SubmissionStatus | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[SubmissionRecord]: ...


def history_order(transactions: Iterable[StarTransactionRecord]) -> list[StarTransactionRecord]:
    return sorted(transactions, key=lambda tx: (tx.created_at, tx.seq or 0), reverse=True)


def build_store(settings: Settings) -> LedgerStore:
    from star_ledger.ledger.memory_store import MemoryLedgerStore

    if settings.ledger_backend == "memory":
        logger.info("store.selected", extra={"backend": "memory"})
        return MemoryLedgerStore()

    try:
        if not settings.database_url:
            raise BackendUnavailableError("STARS_DATABASE_URL is not configured")

        from star_ledger.db.session import create_ledger_engine
        from star_ledger.ledger.sql_store import SqlLedgerStore

        engine = create_ledger_engine(
            settings.database_url,
            isolation_level=settings.database_isolation_level,
        )
        store = SqlLedgerStore(engine, create_schema=settings.database_auto_create)
        store.ping()
    except BackendUnavailableError as exc:
        if not settings.ledger_fallback_to_memory:
            raise
        logger.warning("store.fallback.memory", extra={"backend": "sql", "reason": str(exc)})
        return MemoryLedgerStore()

    logger.info("store.selected", extra={"backend": "sql"})
    return store

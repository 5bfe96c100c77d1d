from __future__ import annotations

import itertools
import threading
from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime

from star_ledger.ledger.errors import TransactionConflictError
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
from star_ledger.ledger.store import history_order

LOCK_STRIPES = 64


class _MemoryLedgerUnit:
    def __init__(self, store: MemoryLedgerStore) -> None:
        self._store = store
        self.balances: dict[str, BalanceRecord] = {}
        self.transactions: list[StarTransactionRecord] = []
        self.ownerships: dict[tuple[str, str], OwnershipRecord] = {}
        self.redemptions: dict[str, RedemptionRecord] = {}
        self.submissions: dict[str, SubmissionRecord] = {}

    def get_balance(self, child_id: str) -> BalanceRecord | None:
        if child_id in self.balances:
            return self.balances[child_id]
        return self._store._balances.get(child_id)

    def save_balance(self, balance: BalanceRecord) -> None:
        self.balances[balance.child_id] = balance

    def append_transaction(self, transaction: StarTransactionRecord) -> None:
        self.transactions.append(transaction)

    def owns_item(self, child_id: str, item_id: str) -> bool:
        if (child_id, item_id) in self.ownerships:
            return True
        return item_id in self._store._owned.get(child_id, {})

    def add_ownership(self, ownership: OwnershipRecord) -> None:
        self.ownerships[(ownership.child_id, ownership.item_id)] = ownership

    def add_redemption(self, redemption: RedemptionRecord) -> None:
        self.redemptions[redemption.id] = redemption

    def get_redemption(self, redemption_id: str) -> RedemptionRecord | None:
        if redemption_id in self.redemptions:
            return self.redemptions[redemption_id]
        return self._store._redemptions.get(redemption_id)

    def save_redemption(self, redemption: RedemptionRecord) -> None:
        self.redemptions[redemption.id] = redemption

    def get_submission(self, submission_id: str) -> SubmissionRecord | None:
        if submission_id in self.submissions:
            return self.submissions[submission_id]
        return self._store._submissions.get(submission_id)

    def save_submission(self, submission: SubmissionRecord) -> None:
        self.submissions[submission.id] = submission


class MemoryLedgerStore:
    """Non-persistent store for offline and demo use.

    A unit of work holds its child's lock stripe from first read to commit,
    so two scopes for the same child run one after the other; children that
    share a stripe also take turns. Staged writes are applied under a single
    commit lock that readers also take, which keeps a reader from seeing a
    balance without its transaction.
    """

    name = "memory"

    def __init__(self, *, lock_stripes: int = LOCK_STRIPES) -> None:
        self._commit_lock = threading.Lock()
        self._child_locks = tuple(threading.RLock() for _ in range(lock_stripes))
        self._sequence = itertools.count(1)
        self._balances: dict[str, BalanceRecord] = {}
        self._transactions: dict[str, list[StarTransactionRecord]] = defaultdict(list)
        self._owned: dict[str, dict[str, OwnershipRecord]] = defaultdict(dict)
        self._redemptions: dict[str, RedemptionRecord] = {}
        self._submissions: dict[str, SubmissionRecord] = {}

    def _lock_for(self, child_id: str) -> threading.RLock:
        return self._child_locks[hash(child_id) % len(self._child_locks)]

    @contextmanager
    def unit_of_work(self, child_id: str) -> Iterator[_MemoryLedgerUnit]:
        with self._lock_for(child_id):
            unit = _MemoryLedgerUnit(self)
            yield unit
            self._commit(unit)

    def _commit(self, unit: _MemoryLedgerUnit) -> None:
        with self._commit_lock:
            for (child_id, item_id) in unit.ownerships:
                if item_id in self._owned.get(child_id, {}):
                    raise TransactionConflictError(f"ownership {child_id}/{item_id} committed concurrently")

            self._balances.update(unit.balances)
            for transaction in unit.transactions:
                stamped = replace(transaction, seq=next(self._sequence))
                self._transactions[stamped.child_id].append(stamped)
            for (child_id, item_id), ownership in unit.ownerships.items():
                self._owned[child_id][item_id] = ownership
            self._redemptions.update(unit.redemptions)
            self._submissions.update(unit.submissions)

    def ping(self) -> None:
        return None

    def close(self) -> None:
        return None

    def get_balance(self, child_id: str) -> BalanceRecord | None:
        with self._commit_lock:
            return self._balances.get(child_id)

    def list_transactions(
        self,
        child_id: str,
        *,
        limit: int | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        type: TransactionType | None = None,
    ) -> list[StarTransactionRecord]:
        with self._commit_lock:
            rows = list(self._transactions.get(child_id, ()))

        if since is not None:
            rows = [tx for tx in rows if tx.created_at >= since]
        if until is not None:
            rows = [tx for tx in rows if tx.created_at <= until]
        if type is not None:
            rows = [tx for tx in rows if tx.type == type]
        ordered = history_order(rows)
        return ordered[:limit] if limit is not None else ordered

    def list_owned_items(self, child_id: str) -> list[OwnershipRecord]:
        with self._commit_lock:
            rows = list(self._owned.get(child_id, {}).values())
        return sorted(rows, key=lambda row: row.purchased_at)

    def get_redemption(self, redemption_id: str) -> RedemptionRecord | None:
        with self._commit_lock:
            return self._redemptions.get(redemption_id)

    def list_redemptions(
        self,
        child_id: str,
        *,
        status: RedemptionStatus | None = None,
    ) -> list[RedemptionRecord]:
        with self._commit_lock:
            rows = [row for row in self._redemptions.values() if row.child_id == child_id]
        if status is not None:
            rows = [row for row in rows if row.status == status]
        return sorted(rows, key=lambda row: row.redeemed_at, reverse=True)

    def get_submission(self, submission_id: str) -> SubmissionRecord | None:
        with self._commit_lock:
            return self._submissions.get(submission_id)

    def list_submissions(
        self,
        *,
        child_id: str | None = None,
        status: SubmissionStatus | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[SubmissionRecord]:
        with self._commit_lock:
            rows = list(self._submissions.values())
        if child_id is not None:
            rows = [row for row in rows if row.child_id == child_id]
        if status is not None:
            rows = [row for row in rows if row.status == status]
        if since is not None:
            rows = [row for row in rows if row.submitted_at >= since]
        if until is not None:
            rows = [row for row in rows if row.submitted_at <= until]
        return sorted(rows, key=lambda row: row.submitted_at, reverse=True)

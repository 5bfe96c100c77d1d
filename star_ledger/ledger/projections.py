from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta

from star_ledger.ledger.feed import BALANCE, OWNERSHIP, TRANSACTIONS, ChangeFeed, ChangeNotice
from star_ledger.ledger.records import (
    BalanceRecord,
    OwnershipRecord,
    RedemptionRecord,
    RedemptionStatus,
    StarTransactionRecord,
    SubmissionRecord,
    SubmissionStatus,
    TransactionType,
    as_utc,
    require_id,
    utcnow,
)
from star_ledger.ledger.store import LedgerStore

logger = logging.getLogger("stars.ledger.projections")

REPORT_DAYS = 7


@dataclass(slots=True)
class DailyActivity:
    day: date
    weekday: str
    tasks: int
    stars: int


@dataclass(slots=True)
class WeeklyReport:
    child_id: str
    week_start: datetime
    week_end: datetime
    total_stars_earned: int
    total_tasks_completed: int
    daily_activity: list[DailyActivity]


def _week_range(now: datetime) -> tuple[datetime, datetime]:
    today = as_utc(now).date()
    start = datetime.combine(today - timedelta(days=REPORT_DAYS - 1), time.min, tzinfo=UTC)
    end = datetime.combine(today, time.max, tzinfo=UTC)
    return start, end


class ReadProjection:
    """Read-only views over the ledger plus live subscriptions.

    Nothing here validates ledger rules or writes records; every value comes
    straight from the store, re-read whenever the change feed reports a
    commit for the child.
    """

    def __init__(self, store: LedgerStore, feed: ChangeFeed, *, recent_limit: int = 50) -> None:
        self._store = store
        self._feed = feed
        self._recent_limit = recent_limit

    def balance(self, child_id: str) -> BalanceRecord:
        require_id(child_id, "child_id")
        return self._store.get_balance(child_id) or BalanceRecord(child_id=child_id)

    def recent_transactions(self, child_id: str, limit: int | None = None) -> list[StarTransactionRecord]:
        require_id(child_id, "child_id")
        return self._store.list_transactions(child_id, limit=limit or self._recent_limit)

    def transactions_between(
        self,
        child_id: str,
        since: datetime,
        until: datetime,
        *,
        type: TransactionType | None = None,
    ) -> list[StarTransactionRecord]:
        require_id(child_id, "child_id")
        return self._store.list_transactions(child_id, since=as_utc(since), until=as_utc(until), type=type)

    def recent_days(self, child_id: str, days: int = 7, *, now: datetime | None = None) -> list[StarTransactionRecord]:
        current = as_utc(now) if now is not None else utcnow()
        return self.transactions_between(child_id, current - timedelta(days=days), current)

    def earned_between(self, child_id: str, since: datetime, until: datetime) -> int:
        earned = self.transactions_between(child_id, since, until, type=TransactionType.EARN)
        return sum(tx.amount for tx in earned)

    def owned_items(self, child_id: str) -> list[OwnershipRecord]:
        require_id(child_id, "child_id")
        return self._store.list_owned_items(child_id)

    def redemptions(self, child_id: str, *, pending_only: bool = False) -> list[RedemptionRecord]:
        require_id(child_id, "child_id")
        status = RedemptionStatus.PENDING if pending_only else None
        return self._store.list_redemptions(child_id, status=status)

    def submissions(
        self,
        child_id: str | None = None,
        *,
        status: SubmissionStatus | None = None,
    ) -> list[SubmissionRecord]:
        return self._store.list_submissions(child_id=child_id, status=status)

    def weekly_report(self, child_id: str, *, now: datetime | None = None) -> WeeklyReport:
        week_start, week_end = _week_range(now or utcnow())
        earned = self.transactions_between(child_id, week_start, week_end, type=TransactionType.EARN)
        approved = self._store.list_submissions(
            child_id=child_id,
            status=SubmissionStatus.APPROVED,
            since=week_start,
            until=week_end,
        )

        per_day: dict[date, list[StarTransactionRecord]] = {}
        for tx in earned:
            per_day.setdefault(as_utc(tx.created_at).date(), []).append(tx)

        daily_activity = []
        for offset in range(REPORT_DAYS):
            day = week_start.date() + timedelta(days=offset)
            day_transactions = per_day.get(day, [])
            daily_activity.append(
                DailyActivity(
                    day=day,
                    weekday=day.strftime("%a"),
                    tasks=len(day_transactions),
                    stars=sum(tx.amount for tx in day_transactions),
                ),
            )

        return WeeklyReport(
            child_id=child_id,
            week_start=week_start,
            week_end=week_end,
            total_stars_earned=sum(tx.amount for tx in earned),
            total_tasks_completed=len(approved) or len(earned),
            daily_activity=daily_activity,
        )

    def _subscribe(self, child_id: str, kind: str, read: Callable[[], object], callback: Callable) -> Callable[[], None]:
        require_id(child_id, "child_id")

        def on_change(notice: ChangeNotice) -> None:
            if notice.child_id == child_id and notice.touches(kind):
                callback(read())

        unsubscribe = self._feed.subscribe(on_change)
        callback(read())
        return unsubscribe

    def subscribe_balance(self, child_id: str, callback: Callable[[BalanceRecord], None]) -> Callable[[], None]:
        return self._subscribe(child_id, BALANCE, lambda: self.balance(child_id), callback)

    def subscribe_transactions(
        self,
        child_id: str,
        callback: Callable[[list[StarTransactionRecord]], None],
        *,
        limit: int | None = None,
    ) -> Callable[[], None]:
        return self._subscribe(
            child_id,
            TRANSACTIONS,
            lambda: self.recent_transactions(child_id, limit),
            callback,
        )

    def subscribe_ownership(
        self,
        child_id: str,
        callback: Callable[[list[OwnershipRecord]], None],
    ) -> Callable[[], None]:
        return self._subscribe(child_id, OWNERSHIP, lambda: self.owned_items(child_id), callback)


class ProvisionalBalance:
    """Optimistic local view of a balance ahead of the coordinator's answer.

    ``apply`` stages a delta and returns a token. ``confirm`` drops the delta
    and adopts the authoritative balance; ``rollback`` just drops it.
    """

    def __init__(self, confirmed: BalanceRecord) -> None:
        self._lock = threading.Lock()
        self._confirmed = confirmed
        self._pending: dict[int, int] = {}
        self._tokens = itertools.count(1)

    def apply(self, delta: int) -> int:
        with self._lock:
            token = next(self._tokens)
            self._pending[token] = delta
            return token

    def confirm(self, token: int, authoritative: BalanceRecord) -> None:
        with self._lock:
            self._pending.pop(token, None)
            self._confirmed = authoritative

    def rollback(self, token: int) -> None:
        with self._lock:
            if self._pending.pop(token, None) is None:
                logger.debug("provisional.rollback.unknown_token", extra={"reason": str(token)})

    def refresh(self, authoritative: BalanceRecord) -> None:
        with self._lock:
            self._confirmed = authoritative

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def view(self) -> BalanceRecord:
        with self._lock:
            deltas = list(self._pending.values())
            confirmed = self._confirmed
        return BalanceRecord(
            child_id=confirmed.child_id,
            total_stars=confirmed.total_stars + sum(deltas),
            lifetime_stars=confirmed.lifetime_stars + sum(delta for delta in deltas if delta > 0),
            last_updated=confirmed.last_updated,
        )

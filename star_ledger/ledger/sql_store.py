from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager, nullcontext
from datetime import datetime

from sqlalchemy import Engine, select, text
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from star_ledger.db.base import Base
from star_ledger.db.session import create_session_factory, is_single_connection
from star_ledger.ledger.errors import BackendUnavailableError, TransactionConflictError
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
)
from star_ledger.models import OwnedItem, RewardRedemption, StarBalance, StarTransaction, TaskSubmission

logger = logging.getLogger("stars.ledger.sql_store")

SERIALIZATION_SQLSTATES = {"40001", "40P01"}


def _is_serialization_failure(exc: DBAPIError) -> bool:
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if sqlstate in SERIALIZATION_SQLSTATES:
        return True
    message = str(exc.orig).lower()
    return "could not serialize" in message or "database is locked" in message or "deadlock" in message


def _optional_utc(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


def _balance_record(row: StarBalance) -> BalanceRecord:
    return BalanceRecord(
        child_id=row.child_id,
        total_stars=row.total_stars,
        lifetime_stars=row.lifetime_stars,
        last_updated=_optional_utc(row.last_updated),
    )


def _transaction_record(row: StarTransaction) -> StarTransactionRecord:
    return StarTransactionRecord(
        id=row.id,
        child_id=row.child_id,
        type=row.type,
        amount=row.amount,
        description=row.description,
        created_at=as_utc(row.created_at),
        task_submission_id=row.task_submission_id,
        reward_id=row.reward_id,
        shop_item_id=row.shop_item_id,
        seq=row.seq,
    )


def _ownership_record(row: OwnedItem) -> OwnershipRecord:
    return OwnershipRecord(child_id=row.child_id, item_id=row.item_id, purchased_at=as_utc(row.purchased_at))


def _redemption_record(row: RewardRedemption) -> RedemptionRecord:
    return RedemptionRecord(
        id=row.id,
        reward_id=row.reward_id,
        child_id=row.child_id,
        stars_spent=row.stars_spent,
        status=row.status,
        redeemed_at=as_utc(row.redeemed_at),
        fulfilled_at=_optional_utc(row.fulfilled_at),
    )


def _submission_record(row: TaskSubmission) -> SubmissionRecord:
    return SubmissionRecord(
        id=row.id,
        task_template_id=row.task_template_id,
        child_id=row.child_id,
        status=row.status,
        stars=row.stars,
        submitted_at=as_utc(row.submitted_at),
        reflection=row.reflection,
        reviewed_at=_optional_utc(row.reviewed_at),
        reviewed_by=row.reviewed_by,
        parent_message=row.parent_message,
        rejection_reason=row.rejection_reason,
    )


class _SqlLedgerUnit:
    def __init__(self, db: Session) -> None:
        self._db = db

    def get_balance(self, child_id: str) -> BalanceRecord | None:
        row = self._db.scalar(
            select(StarBalance).where(StarBalance.child_id == child_id).with_for_update(),
        )
        return _balance_record(row) if row is not None else None

    def save_balance(self, balance: BalanceRecord) -> None:
        row = self._db.get(StarBalance, balance.child_id)
        if row is None:
            row = StarBalance(child_id=balance.child_id)
            self._db.add(row)
        row.total_stars = balance.total_stars
        row.lifetime_stars = balance.lifetime_stars
        row.last_updated = balance.last_updated
        self._db.flush()

    def append_transaction(self, transaction: StarTransactionRecord) -> None:
        self._db.add(
            StarTransaction(
                id=transaction.id,
                child_id=transaction.child_id,
                type=transaction.type,
                amount=transaction.amount,
                description=transaction.description,
                task_submission_id=transaction.task_submission_id,
                reward_id=transaction.reward_id,
                shop_item_id=transaction.shop_item_id,
                created_at=transaction.created_at,
            ),
        )
        self._db.flush()

    def owns_item(self, child_id: str, item_id: str) -> bool:
        return self._db.get(OwnedItem, (child_id, item_id)) is not None

    def add_ownership(self, ownership: OwnershipRecord) -> None:
        self._db.add(
            OwnedItem(
                child_id=ownership.child_id,
                item_id=ownership.item_id,
                purchased_at=ownership.purchased_at,
            ),
        )
        self._db.flush()

    def add_redemption(self, redemption: RedemptionRecord) -> None:
        self._db.add(
            RewardRedemption(
                id=redemption.id,
                reward_id=redemption.reward_id,
                child_id=redemption.child_id,
                stars_spent=redemption.stars_spent,
                status=redemption.status,
                redeemed_at=redemption.redeemed_at,
                fulfilled_at=redemption.fulfilled_at,
            ),
        )
        self._db.flush()

    def get_redemption(self, redemption_id: str) -> RedemptionRecord | None:
        row = self._db.get(RewardRedemption, redemption_id, with_for_update=True)
        return _redemption_record(row) if row is not None else None

    def save_redemption(self, redemption: RedemptionRecord) -> None:
        row = self._db.get(RewardRedemption, redemption.id)
        if row is None:
            self.add_redemption(redemption)
            return
        row.status = redemption.status
        row.fulfilled_at = redemption.fulfilled_at
        self._db.flush()

    def get_submission(self, submission_id: str) -> SubmissionRecord | None:
        row = self._db.get(TaskSubmission, submission_id, with_for_update=True)
        return _submission_record(row) if row is not None else None

    def save_submission(self, submission: SubmissionRecord) -> None:
        row = self._db.get(TaskSubmission, submission.id)
        if row is None:
            row = TaskSubmission(
                id=submission.id,
                task_template_id=submission.task_template_id,
                child_id=submission.child_id,
                stars=submission.stars,
                submitted_at=submission.submitted_at,
                reflection=submission.reflection,
            )
            self._db.add(row)
        row.status = submission.status
        row.reviewed_at = submission.reviewed_at
        row.reviewed_by = submission.reviewed_by
        row.parent_message = submission.parent_message
        row.rejection_reason = submission.rejection_reason
        self._db.flush()


class SqlLedgerStore:
    """SQLAlchemy-backed store.

    An in-memory SQLite engine shares one connection between threads, and
    every session on it holds a single lock from open to close.
    """

    name = "sql"

    def __init__(self, engine: Engine, *, create_schema: bool = False) -> None:
        self._engine = engine
        self._session_factory = create_session_factory(engine)
        self._serial: AbstractContextManager[object] = (
            threading.RLock() if is_single_connection(engine) else nullcontext()
        )
        if create_schema:
            try:
                Base.metadata.create_all(engine)
            except SQLAlchemyError as exc:
                raise BackendUnavailableError("could not create ledger schema") from exc

    @contextmanager
    def unit_of_work(self, child_id: str) -> Iterator[_SqlLedgerUnit]:
        with self._serial:
            db = self._session_factory()
            try:
                with db.begin():
                    yield _SqlLedgerUnit(db)
            except (IntegrityError, StaleDataError) as exc:
                logger.info("store.sql.conflict", extra={"child_id": child_id, "reason": type(exc).__name__})
                raise TransactionConflictError(f"concurrent write for child {child_id}") from exc
            except DBAPIError as exc:
                if _is_serialization_failure(exc):
                    logger.info("store.sql.conflict", extra={"child_id": child_id, "reason": "serialization"})
                    raise TransactionConflictError(f"serialization failure for child {child_id}") from exc
                raise BackendUnavailableError("ledger database error") from exc
            finally:
                db.close()

    def close(self) -> None:
        self._engine.dispose()

    def ping(self) -> None:
        try:
            with self._serial, self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise BackendUnavailableError("ledger database is unreachable") from exc

    @contextmanager
    def _reader(self) -> Iterator[Session]:
        try:
            with self._serial, self._session_factory() as db:
                yield db
        except SQLAlchemyError as exc:
            raise BackendUnavailableError("ledger database is unreachable") from exc

    def get_balance(self, child_id: str) -> BalanceRecord | None:
        with self._reader() as db:
            row = db.get(StarBalance, child_id)
            return _balance_record(row) if row is not None else None

    def list_transactions(
        self,
        child_id: str,
        *,
        limit: int | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        type: TransactionType | None = None,
    ) -> list[StarTransactionRecord]:
        query = select(StarTransaction).where(StarTransaction.child_id == child_id)
        if since is not None:
            query = query.where(StarTransaction.created_at >= since)
        if until is not None:
            query = query.where(StarTransaction.created_at <= until)
        if type is not None:
            query = query.where(StarTransaction.type == type)
        query = query.order_by(StarTransaction.created_at.desc(), StarTransaction.seq.desc())
        if limit is not None:
            query = query.limit(limit)

        with self._reader() as db:
            return [_transaction_record(row) for row in db.scalars(query).all()]

    def list_owned_items(self, child_id: str) -> list[OwnershipRecord]:
        with self._reader() as db:
            rows = db.scalars(
                select(OwnedItem)
                .where(OwnedItem.child_id == child_id)
                .order_by(OwnedItem.purchased_at.asc()),
            ).all()
            return [_ownership_record(row) for row in rows]

    def get_redemption(self, redemption_id: str) -> RedemptionRecord | None:
        with self._reader() as db:
            row = db.get(RewardRedemption, redemption_id)
            return _redemption_record(row) if row is not None else None

    def list_redemptions(
        self,
        child_id: str,
        *,
        status: RedemptionStatus | None = None,
    ) -> list[RedemptionRecord]:
        query = select(RewardRedemption).where(RewardRedemption.child_id == child_id)
        if status is not None:
            query = query.where(RewardRedemption.status == status)
        query = query.order_by(RewardRedemption.redeemed_at.desc())

        with self._reader() as db:
            return [_redemption_record(row) for row in db.scalars(query).all()]

    def get_submission(self, submission_id: str) -> SubmissionRecord | None:
        with self._reader() as db:
            row = db.get(TaskSubmission, submission_id)
            return _submission_record(row) if row is not None else None

    def list_submissions(
        self,
        *,
        child_id: str | None = None,
        status: SubmissionStatus | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[SubmissionRecord]:
        query = select(TaskSubmission)
        if child_id is not None:
            query = query.where(TaskSubmission.child_id == child_id)
        if status is not None:
            query = query.where(TaskSubmission.status == status)
        if since is not None:
            query = query.where(TaskSubmission.submitted_at >= since)
        if until is not None:
            query = query.where(TaskSubmission.submitted_at <= until)
        query = query.order_by(TaskSubmission.submitted_at.desc())

        with self._reader() as db:
            return [_submission_record(row) for row in db.scalars(query).all()]

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from typing import TypeVar

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from star_ledger.ledger.errors import (
    AlreadyOwnedError,
    DeclinedError,
    InsufficientFundsError,
    InvalidTransitionError,
    NotFoundError,
    TransactionConflictError,
    ValidationError,
)
from star_ledger.ledger.feed import (
    BALANCE,
    OWNERSHIP,
    REDEMPTIONS,
    SUBMISSIONS,
    TRANSACTIONS,
    ChangeFeed,
    ChangeNotice,
    LocalChangeFeed,
)
from star_ledger.ledger.records import (
    BalanceRecord,
    CausalRef,
    OwnershipRecord,
    RedemptionRecord,
    RedemptionStatus,
    Reward,
    ShopItem,
    StarTransactionRecord,
    SubmissionStatus,
    TransactionType,
    new_record_id,
    require_id,
    require_positive_amount,
    utcnow,
)
from star_ledger.ledger.store import LedgerStore, LedgerUnit

logger = logging.getLogger("stars.ledger.coordinator")

T = TypeVar("T")

MAX_RETRY_WAIT_SECONDS = 1.0


def _require_description(description: str) -> str:
    if not isinstance(description, str) or not description.strip():
        raise ValidationError("description is required")
    return description


def _append(
    unit: LedgerUnit,
    *,
    child_id: str,
    type: TransactionType,
    amount: int,
    description: str,
    causal_ref: CausalRef | None,
    now: datetime,
) -> StarTransactionRecord:
    ref = causal_ref or CausalRef()
    transaction = StarTransactionRecord(
        id=new_record_id(),
        child_id=child_id,
        type=type,
        amount=amount,
        description=description,
        created_at=now,
        task_submission_id=ref.task_submission_id,
        reward_id=ref.reward_id,
        shop_item_id=ref.shop_item_id,
    )
    unit.append_transaction(transaction)
    return transaction


def _apply_credit(
    unit: LedgerUnit,
    child_id: str,
    amount: int,
    description: str,
    causal_ref: CausalRef | None,
    now: datetime,
) -> StarTransactionRecord:
    balance = unit.get_balance(child_id) or BalanceRecord(child_id=child_id)
    unit.save_balance(balance.credited(amount, now))
    return _append(
        unit,
        child_id=child_id,
        type=TransactionType.EARN,
        amount=amount,
        description=description,
        causal_ref=causal_ref,
        now=now,
    )


def _apply_debit(
    unit: LedgerUnit,
    child_id: str,
    amount: int,
    description: str,
    causal_ref: CausalRef | None,
    now: datetime,
) -> StarTransactionRecord:
    balance = unit.get_balance(child_id) or BalanceRecord(child_id=child_id)
    if balance.total_stars < amount:
        raise InsufficientFundsError(f"balance {balance.total_stars} is below {amount}")
    unit.save_balance(balance.debited(amount, now))
    return _append(
        unit,
        child_id=child_id,
        type=TransactionType.REDEEM,
        amount=amount,
        description=description,
        causal_ref=causal_ref,
        now=now,
    )


class LedgerCoordinator:
    """Single writer for balances, the transaction log and ownership.

    Every operation runs inside one atomic scope of the store. Conflicts
    reported by the store are retried with exponential backoff; declines
    (insufficient funds, already owned) abort the scope and are returned as
    ``False``/``None`` without retrying.
    """

    def __init__(
        self,
        store: LedgerStore,
        feed: ChangeFeed | None = None,
        *,
        retry_attempts: int = 5,
        retry_backoff_seconds: float = 0.02,
    ) -> None:
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be >= 1")
        self._store = store
        self._feed = feed if feed is not None else LocalChangeFeed()
        self._retry_attempts = retry_attempts
        self._retry_backoff_seconds = retry_backoff_seconds

    @property
    def store(self) -> LedgerStore:
        return self._store

    @property
    def feed(self) -> ChangeFeed:
        return self._feed

    def execute(self, operation: str, child_id: str, body: Callable[[LedgerUnit], T]) -> T:
        """Run ``body`` in one atomic scope for ``child_id``, retrying on conflicts."""

        def before_sleep(retry_state: RetryCallState) -> None:
            logger.warning(
                "ledger.transaction.retry",
                extra={
                    "operation": operation,
                    "child_id": child_id,
                    "attempt": retry_state.attempt_number,
                    "backend": self._store.name,
                },
            )

        retrying = Retrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=self._retry_backoff_seconds, max=MAX_RETRY_WAIT_SECONDS),
            retry=retry_if_exception_type(TransactionConflictError),
            before_sleep=before_sleep,
            reraise=True,
        )
        try:
            return retrying(self._scoped, child_id, body)
        except TransactionConflictError:
            logger.error(
                "ledger.transaction.exhausted",
                extra={
                    "operation": operation,
                    "child_id": child_id,
                    "attempt": self._retry_attempts,
                    "backend": self._store.name,
                },
            )
            raise

    def _scoped(self, child_id: str, body: Callable[[LedgerUnit], T]) -> T:
        with self._store.unit_of_work(child_id) as unit:
            return body(unit)

    def notify(self, child_id: str, operation: str, *kinds: str) -> None:
        self._feed.publish(ChangeNotice(child_id=child_id, operation=operation, kinds=frozenset(kinds)))

    def _declined(self, operation: str, child_id: str, exc: DeclinedError, **fields: object) -> None:
        logger.info(
            f"ledger.{operation}.declined",
            extra={"operation": operation, "child_id": child_id, "reason": exc.reason, **fields},
        )

    def _committed(self, operation: str, child_id: str, **fields: object) -> None:
        logger.info(
            f"ledger.{operation}.committed",
            extra={"operation": operation, "child_id": child_id, "backend": self._store.name, **fields},
        )

    def credit(
        self,
        child_id: str,
        amount: int,
        description: str,
        causal_ref: CausalRef | None = None,
    ) -> None:
        require_id(child_id, "child_id")
        require_positive_amount(amount)
        _require_description(description)

        transaction = self.execute(
            "credit",
            child_id,
            lambda unit: _apply_credit(unit, child_id, amount, description, causal_ref, utcnow()),
        )
        self._committed("credit", child_id, amount=amount, transaction_id=transaction.id)
        self.notify(child_id, "credit", BALANCE, TRANSACTIONS)

    def debit(
        self,
        child_id: str,
        amount: int,
        description: str,
        causal_ref: CausalRef | None = None,
    ) -> bool:
        require_id(child_id, "child_id")
        require_positive_amount(amount)
        _require_description(description)

        try:
            transaction = self.execute(
                "debit",
                child_id,
                lambda unit: _apply_debit(unit, child_id, amount, description, causal_ref, utcnow()),
            )
        except DeclinedError as exc:
            self._declined("debit", child_id, exc, amount=amount)
            return False

        self._committed("debit", child_id, amount=amount, transaction_id=transaction.id)
        self.notify(child_id, "debit", BALANCE, TRANSACTIONS)
        return True

    def purchase(self, child_id: str, item: ShopItem) -> bool:
        require_id(child_id, "child_id")
        require_id(item.id, "item.id")
        require_positive_amount(item.price, "item.price")

        def body(unit: LedgerUnit) -> StarTransactionRecord:
            if unit.owns_item(child_id, item.id):
                raise AlreadyOwnedError(f"{child_id} already owns {item.id}")
            now = utcnow()
            transaction = _apply_debit(
                unit,
                child_id,
                item.price,
                f"Purchased {item.name}",
                CausalRef(shop_item_id=item.id),
                now,
            )
            unit.add_ownership(OwnershipRecord(child_id=child_id, item_id=item.id, purchased_at=now))
            return transaction

        try:
            transaction = self.execute("purchase", child_id, body)
        except DeclinedError as exc:
            self._declined("purchase", child_id, exc, item_id=item.id, amount=item.price)
            return False

        self._committed("purchase", child_id, item_id=item.id, amount=item.price, transaction_id=transaction.id)
        self.notify(child_id, "purchase", BALANCE, TRANSACTIONS, OWNERSHIP)
        return True

    def redeem_reward(self, child_id: str, reward: Reward) -> str | None:
        """Spend stars on a reward. Returns the new redemption id, or None when declined."""
        require_id(child_id, "child_id")
        require_id(reward.id, "reward.id")
        require_positive_amount(reward.stars_required, "reward.stars_required")

        def body(unit: LedgerUnit) -> RedemptionRecord:
            now = utcnow()
            _apply_debit(
                unit,
                child_id,
                reward.stars_required,
                f"Redeemed {reward.name}",
                CausalRef(reward_id=reward.id),
                now,
            )
            redemption = RedemptionRecord(
                id=new_record_id(),
                reward_id=reward.id,
                child_id=child_id,
                stars_spent=reward.stars_required,
                status=RedemptionStatus.PENDING,
                redeemed_at=now,
            )
            unit.add_redemption(redemption)
            return redemption

        try:
            redemption = self.execute("redeem_reward", child_id, body)
        except DeclinedError as exc:
            self._declined("redeem_reward", child_id, exc, reward_id=reward.id, amount=reward.stars_required)
            return None

        self._committed(
            "redeem_reward",
            child_id,
            reward_id=reward.id,
            redemption_id=redemption.id,
            amount=reward.stars_required,
        )
        self.notify(child_id, "redeem_reward", BALANCE, TRANSACTIONS, REDEMPTIONS)
        return redemption.id

    def approve_payout(
        self,
        submission_id: str,
        child_id: str,
        amount: int,
        description: str,
        *,
        parent_message: str | None = None,
        reviewer_id: str | None = None,
    ) -> None:
        require_id(submission_id, "submission_id")
        require_id(child_id, "child_id")
        require_positive_amount(amount)
        _require_description(description)

        def body(unit: LedgerUnit) -> StarTransactionRecord:
            submission = unit.get_submission(submission_id)
            if submission is None:
                raise NotFoundError(f"submission {submission_id} not found")
            if submission.child_id != child_id:
                raise ValidationError(f"submission {submission_id} belongs to another child")
            if submission.stars != amount:
                raise ValidationError(f"payout must equal the submission's {submission.stars} stars")
            if submission.status != SubmissionStatus.SUBMITTED:
                raise InvalidTransitionError(f"submission {submission_id} is already {submission.status.value}")

            now = utcnow()
            unit.save_submission(
                replace(
                    submission,
                    status=SubmissionStatus.APPROVED,
                    reviewed_at=now,
                    reviewed_by=reviewer_id,
                    parent_message=parent_message,
                ),
            )
            return _apply_credit(
                unit,
                child_id,
                amount,
                description,
                CausalRef(task_submission_id=submission_id),
                now,
            )

        transaction = self.execute("approve_payout", child_id, body)
        self._committed(
            "approve_payout",
            child_id,
            submission_id=submission_id,
            amount=amount,
            transaction_id=transaction.id,
        )
        self.notify(child_id, "approve_payout", BALANCE, TRANSACTIONS, SUBMISSIONS)

    def fulfill_redemption(self, redemption_id: str) -> RedemptionRecord:
        require_id(redemption_id, "redemption_id")
        existing = self._store.get_redemption(redemption_id)
        if existing is None:
            raise NotFoundError(f"redemption {redemption_id} not found")
        child_id = existing.child_id

        def body(unit: LedgerUnit) -> RedemptionRecord:
            redemption = unit.get_redemption(redemption_id)
            if redemption is None:
                raise NotFoundError(f"redemption {redemption_id} not found")
            if redemption.status != RedemptionStatus.PENDING:
                raise InvalidTransitionError(f"redemption {redemption_id} is already {redemption.status.value}")
            fulfilled = replace(redemption, status=RedemptionStatus.FULFILLED, fulfilled_at=utcnow())
            unit.save_redemption(fulfilled)
            return fulfilled

        fulfilled = self.execute("fulfill_redemption", child_id, body)
        self._committed("fulfill_redemption", child_id, redemption_id=redemption_id, reward_id=fulfilled.reward_id)
        self.notify(child_id, "fulfill_redemption", REDEMPTIONS)
        return fulfilled

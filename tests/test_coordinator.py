from __future__ import annotations

from contextlib import contextmanager
from typing import Any

import pytest

from star_ledger.ledger.coordinator import LedgerCoordinator
from star_ledger.ledger.errors import (
    InvalidTransitionError,
    NotFoundError,
    TransactionConflictError,
    ValidationError,
)
from star_ledger.ledger.feed import BALANCE, OWNERSHIP, REDEMPTIONS, TRANSACTIONS, ChangeNotice
from star_ledger.ledger.memory_store import MemoryLedgerStore
from star_ledger.ledger.records import (
    CausalRef,
    RedemptionStatus,
    Reward,
    ShopItem,
    SubmissionStatus,
    TransactionType,
)
from star_ledger.ledger.workflow import TaskSubmissionWorkflow


class _RecordingFeed:
    def __init__(self) -> None:
        self.notices: list[ChangeNotice] = []

    def publish(self, notice: ChangeNotice) -> None:
        self.notices.append(notice)

    def subscribe(self, listener: Any) -> Any:
        return lambda: None

    def close(self) -> None:
        return None


class _ExplodingStore:
    name = "exploding"

    def unit_of_work(self, child_id: str) -> Any:
        raise AssertionError("store must not be touched")

    def get_redemption(self, redemption_id: str) -> Any:
        raise AssertionError("store must not be touched")


class _FlakyStore:
    """Memory store whose first ``failures`` scopes fail with a conflict after running."""

    def __init__(self, failures: int) -> None:
        self._inner = MemoryLedgerStore()
        self._failures = failures
        self.scopes = 0
        self.name = "flaky"

    @contextmanager
    def unit_of_work(self, child_id: str) -> Any:
        self.scopes += 1
        with self._inner.unit_of_work(child_id) as unit:
            yield unit
            if self._failures > 0:
                self._failures -= 1
                raise TransactionConflictError("simulated conflict")

    def __getattr__(self, name: str) -> Any:
        return getattr(self._inner, name)


def _coordinator(store: Any, feed: Any = None, attempts: int = 5) -> LedgerCoordinator:
    return LedgerCoordinator(store, feed, retry_attempts=attempts, retry_backoff_seconds=0)


def _seed(coordinator: LedgerCoordinator, child_id: str, total: int, lifetime: int) -> None:
    coordinator.credit(child_id, lifetime, "seed")
    if lifetime > total:
        assert coordinator.debit(child_id, lifetime - total, "seed spend") is True


def _replayed(store: Any, child_id: str) -> int:
    return sum(tx.signed_amount for tx in store.list_transactions(child_id))


def test_credit_creates_balance_and_earn_transaction(store: Any) -> None:
    coordinator = _coordinator(store)

    coordinator.credit("kid-1", 7, "Fed the cat")

    balance = store.get_balance("kid-1")
    assert balance.total_stars == 7
    assert balance.lifetime_stars == 7
    assert balance.last_updated is not None
    history = store.list_transactions("kid-1")
    assert len(history) == 1
    assert history[0].type == TransactionType.EARN
    assert history[0].amount == 7
    assert history[0].description == "Fed the cat"


def test_credit_records_causal_reference(store: Any) -> None:
    coordinator = _coordinator(store)

    coordinator.credit("kid-1", 3, "Bonus", CausalRef(reward_id="reward-9"))

    tx = store.list_transactions("kid-1")[0]
    assert tx.reward_id == "reward-9"
    assert tx.task_submission_id is None
    assert tx.shop_item_id is None


def test_debit_leaves_lifetime_untouched(store: Any) -> None:
    coordinator = _coordinator(store)
    coordinator.credit("kid-1", 10, "seed")

    assert coordinator.debit("kid-1", 4, "Sticker") is True

    balance = store.get_balance("kid-1")
    assert balance.total_stars == 6
    assert balance.lifetime_stars == 10
    assert store.list_transactions("kid-1")[0].type == TransactionType.REDEEM


def test_debit_on_unknown_child_is_declined(store: Any) -> None:
    coordinator = _coordinator(store)

    assert coordinator.debit("nobody", 1, "Sticker") is False
    assert store.get_balance("nobody") is None
    assert store.list_transactions("nobody") == []


def test_scenario_a_purchase_declined_for_insufficient_funds(store: Any) -> None:
    coordinator = _coordinator(store)
    _seed(coordinator, "kid-1", total=15, lifetime=45)
    before = store.list_transactions("kid-1")

    result = coordinator.purchase("kid-1", ShopItem(id="crown", name="Crown", price=20))

    assert result is False
    balance = store.get_balance("kid-1")
    assert (balance.total_stars, balance.lifetime_stars) == (15, 45)
    assert store.list_transactions("kid-1") == before
    assert store.list_owned_items("kid-1") == []


def test_scenario_b_purchase_of_unowned_item(store: Any) -> None:
    coordinator = _coordinator(store)
    _seed(coordinator, "kid-1", total=15, lifetime=15)

    result = coordinator.purchase("kid-1", ShopItem(id="cap", name="Cap", price=5))

    assert result is True
    assert store.get_balance("kid-1").total_stars == 10
    owned = store.list_owned_items("kid-1")
    assert [row.item_id for row in owned] == ["cap"]
    latest = store.list_transactions("kid-1")[0]
    assert latest.type == TransactionType.REDEEM
    assert latest.amount == 5
    assert latest.shop_item_id == "cap"
    assert len(store.list_transactions("kid-1")) == 2


def test_purchase_of_owned_item_is_declined_without_writes(store: Any) -> None:
    coordinator = _coordinator(store)
    coordinator.credit("kid-1", 50, "seed")
    item = ShopItem(id="cap", name="Cap", price=5)
    assert coordinator.purchase("kid-1", item) is True

    assert coordinator.purchase("kid-1", item) is False

    assert store.get_balance("kid-1").total_stars == 45
    assert len(store.list_owned_items("kid-1")) == 1
    assert len(store.list_transactions("kid-1")) == 2


def test_scenario_c_approval_pays_out_once(store: Any) -> None:
    coordinator = _coordinator(store)
    workflow = TaskSubmissionWorkflow(coordinator)
    _seed(coordinator, "kid-1", total=4, lifetime=9)
    submission = workflow.submit("dishes", "kid-1", 2)

    coordinator.approve_payout(submission.id, "kid-1", 2, "Washed the dishes")

    balance = store.get_balance("kid-1")
    assert (balance.total_stars, balance.lifetime_stars) == (6, 11)
    assert store.get_submission(submission.id).status == SubmissionStatus.APPROVED
    earned = [tx for tx in store.list_transactions("kid-1") if tx.task_submission_id == submission.id]
    assert len(earned) == 1
    assert earned[0].type == TransactionType.EARN
    assert earned[0].amount == 2


def test_scenario_d_reward_redeemed_twice(store: Any) -> None:
    coordinator = _coordinator(store)
    coordinator.credit("kid-1", 20, "seed")
    reward = Reward(id="movie-night", name="Movie night", stars_required=10)

    first = coordinator.redeem_reward("kid-1", reward)
    second = coordinator.redeem_reward("kid-1", reward)

    assert first is not None and second is not None
    assert first != second
    assert store.get_balance("kid-1").total_stars == 0
    redemptions = store.list_redemptions("kid-1")
    assert len(redemptions) == 2
    assert all(row.status == RedemptionStatus.PENDING for row in redemptions)
    assert all(row.stars_spent == 10 for row in redemptions)
    assert store.list_owned_items("kid-1") == []
    assert coordinator.redeem_reward("kid-1", reward) is None


def test_balance_always_matches_replayed_history(store: Any) -> None:
    coordinator = _coordinator(store)
    steps = [("credit", 10), ("debit", 3), ("debit", 20), ("credit", 5), ("debit", 12), ("debit", 1), ("credit", 1)]

    for operation, amount in steps:
        if operation == "credit":
            coordinator.credit("kid-1", amount, "step")
        else:
            coordinator.debit("kid-1", amount, "step")
        balance = store.get_balance("kid-1")
        assert balance.total_stars == _replayed(store, "kid-1")
        assert balance.total_stars >= 0

    assert store.get_balance("kid-1").total_stars == 0
    assert store.get_balance("kid-1").lifetime_stars == 16


def test_history_is_newest_first(store: Any) -> None:
    coordinator = _coordinator(store)
    for amount in (1, 2, 3):
        coordinator.credit("kid-1", amount, f"credit {amount}")

    assert [tx.amount for tx in store.list_transactions("kid-1")] == [3, 2, 1]
    assert [tx.amount for tx in store.list_transactions("kid-1", limit=2)] == [3, 2]


@pytest.mark.parametrize("amount", [0, -5, True, 2.5, "3", None])
def test_invalid_amount_is_rejected_before_any_read(amount: Any) -> None:
    coordinator = _coordinator(_ExplodingStore())

    with pytest.raises(ValidationError):
        coordinator.credit("kid-1", amount, "bad")
    with pytest.raises(ValidationError):
        coordinator.debit("kid-1", amount, "bad")


@pytest.mark.parametrize("child_id", ["", "   ", None])
def test_missing_child_id_is_rejected(child_id: Any) -> None:
    coordinator = _coordinator(_ExplodingStore())

    with pytest.raises(ValidationError):
        coordinator.credit(child_id, 1, "bad")
    with pytest.raises(ValidationError):
        coordinator.purchase(child_id, ShopItem(id="cap", name="Cap", price=1))
    with pytest.raises(ValidationError):
        coordinator.redeem_reward(child_id, Reward(id="r", name="R", stars_required=1))


def test_invalid_catalog_entries_are_rejected() -> None:
    coordinator = _coordinator(_ExplodingStore())

    with pytest.raises(ValidationError):
        coordinator.purchase("kid-1", ShopItem(id="cap", name="Cap", price=0))
    with pytest.raises(ValidationError):
        coordinator.purchase("kid-1", ShopItem(id="", name="Cap", price=3))
    with pytest.raises(ValidationError):
        coordinator.redeem_reward("kid-1", Reward(id="r", name="R", stars_required=-1))
    with pytest.raises(ValidationError):
        coordinator.fulfill_redemption("")


def test_causal_reference_allows_one_source() -> None:
    with pytest.raises(ValidationError):
        CausalRef(task_submission_id="s-1", shop_item_id="cap")


def test_conflicts_are_retried_until_commit() -> None:
    store = _FlakyStore(failures=2)
    coordinator = _coordinator(store)

    coordinator.credit("kid-1", 5, "retry me")

    assert store.scopes == 3
    assert store.get_balance("kid-1").total_stars == 5
    assert len(store.list_transactions("kid-1")) == 1


def test_exhausted_retries_surface_conflict_without_writes() -> None:
    store = _FlakyStore(failures=10)
    coordinator = _coordinator(store, attempts=3)

    with pytest.raises(TransactionConflictError):
        coordinator.credit("kid-1", 5, "never lands")

    assert store.scopes == 3
    assert store.get_balance("kid-1") is None
    assert store.list_transactions("kid-1") == []


def test_declines_are_not_retried() -> None:
    store = _FlakyStore(failures=0)
    coordinator = _coordinator(store)

    assert coordinator.debit("kid-1", 5, "too much") is False
    assert store.scopes == 1


def test_approve_payout_rejects_mismatched_amount_and_child(store: Any) -> None:
    coordinator = _coordinator(store)
    submission = TaskSubmissionWorkflow(coordinator).submit("laundry", "kid-1", 3)

    with pytest.raises(ValidationError):
        coordinator.approve_payout(submission.id, "kid-1", 4, "Laundry")
    with pytest.raises(ValidationError):
        coordinator.approve_payout(submission.id, "kid-2", 3, "Laundry")

    assert store.get_submission(submission.id).status == SubmissionStatus.SUBMITTED
    assert store.get_balance("kid-1") is None


def test_approve_payout_twice_credits_once(store: Any) -> None:
    coordinator = _coordinator(store)
    submission = TaskSubmissionWorkflow(coordinator).submit("laundry", "kid-1", 3)
    coordinator.approve_payout(submission.id, "kid-1", 3, "Laundry")

    with pytest.raises(InvalidTransitionError):
        coordinator.approve_payout(submission.id, "kid-1", 3, "Laundry")

    assert store.get_balance("kid-1").total_stars == 3
    assert len(store.list_transactions("kid-1")) == 1


def test_approve_payout_for_unknown_submission(store: Any) -> None:
    coordinator = _coordinator(store)

    with pytest.raises(NotFoundError):
        coordinator.approve_payout("missing", "kid-1", 3, "Laundry")
    assert store.get_balance("kid-1") is None


def test_fulfill_redemption_moves_pending_to_fulfilled(store: Any) -> None:
    coordinator = _coordinator(store)
    coordinator.credit("kid-1", 10, "seed")
    redemption_id = coordinator.redeem_reward("kid-1", Reward(id="park", name="Park trip", stars_required=4))

    fulfilled = coordinator.fulfill_redemption(redemption_id)

    assert fulfilled.status == RedemptionStatus.FULFILLED
    assert fulfilled.fulfilled_at is not None
    assert store.get_redemption(redemption_id).status == RedemptionStatus.FULFILLED
    assert store.get_balance("kid-1").total_stars == 6
    with pytest.raises(InvalidTransitionError):
        coordinator.fulfill_redemption(redemption_id)
    with pytest.raises(NotFoundError):
        coordinator.fulfill_redemption("missing")


def test_committed_operations_publish_change_notices() -> None:
    feed = _RecordingFeed()
    coordinator = _coordinator(MemoryLedgerStore(), feed)

    coordinator.credit("kid-1", 10, "seed")
    coordinator.purchase("kid-1", ShopItem(id="cap", name="Cap", price=3))
    coordinator.redeem_reward("kid-1", Reward(id="park", name="Park", stars_required=2))

    assert [notice.operation for notice in feed.notices] == ["credit", "purchase", "redeem_reward"]
    assert feed.notices[0].kinds == {BALANCE, TRANSACTIONS}
    assert OWNERSHIP in feed.notices[1].kinds
    assert REDEMPTIONS in feed.notices[2].kinds
    assert all(notice.child_id == "kid-1" for notice in feed.notices)


def test_declined_operations_publish_nothing() -> None:
    feed = _RecordingFeed()
    coordinator = _coordinator(MemoryLedgerStore(), feed)

    assert coordinator.debit("kid-1", 1, "nothing") is False
    assert coordinator.purchase("kid-1", ShopItem(id="cap", name="Cap", price=3)) is False

    assert feed.notices == []

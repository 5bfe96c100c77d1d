from __future__ import annotations

import argparse
import concurrent.futures as futures
from dataclasses import dataclass
from uuid import uuid4

from star_ledger.core.config import settings
from star_ledger.ledger.coordinator import LedgerCoordinator
from star_ledger.ledger.errors import TransactionConflictError
from star_ledger.ledger.feed import LocalChangeFeed
from star_ledger.ledger.records import ShopItem, TransactionType
from star_ledger.ledger.store import LedgerStore, build_store


@dataclass
class RunStats:
    success: int = 0
    declined: int = 0
    conflicts: int = 0
    errors: int = 0


def _run_parallel_purchases(
    coordinator: LedgerCoordinator,
    child_id: str,
    item: ShopItem,
    attempts: int,
    workers: int,
) -> RunStats:
    stats = RunStats()
    with futures.ThreadPoolExecutor(max_workers=workers) as executor:
        future_list = [executor.submit(coordinator.purchase, child_id, item) for _ in range(attempts)]
        for future in futures.as_completed(future_list):
            try:
                if future.result():
                    stats.success += 1
                else:
                    stats.declined += 1
            except TransactionConflictError:
                stats.conflicts += 1
            except Exception:
                stats.errors += 1
    return stats


def _validate(store: LedgerStore, child_id: str, item: ShopItem, starting_stars: int, stats: RunStats) -> None:
    balance = store.get_balance(child_id)
    owned = [row for row in store.list_owned_items(child_id) if row.item_id == item.id]
    history = store.list_transactions(child_id)
    purchases = [tx for tx in history if tx.type == TransactionType.REDEEM and tx.shop_item_id == item.id]
    replayed = sum(tx.signed_amount for tx in history)
    total_stars = balance.total_stars if balance is not None else 0

    print("")
    print("=== CONCURRENT PURCHASE RESULT ===")
    print(f"backend: {store.name}")
    print(f"starting_stars: {starting_stars}")
    print(f"purchases_succeeded: {stats.success}")
    print(f"purchases_declined: {stats.declined}")
    print(f"conflicts_exhausted: {stats.conflicts}")
    print(f"errors: {stats.errors}")
    print(f"total_stars: {total_stars}")
    print("")
    print("Checks:")
    print(f"- exactly one success: {'OK' if stats.success == 1 else 'FAIL'}")
    print(f"- one ownership row: {'OK' if len(owned) == 1 else 'FAIL'}")
    print(f"- one purchase transaction: {'OK' if len(purchases) == 1 else 'FAIL'}")
    print(f"- balance matches history: {'OK' if replayed == total_stars else 'FAIL'}")
    print(f"- balance not negative: {'OK' if total_stars >= 0 else 'FAIL'}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Fire concurrent purchases of one item for one child")
    parser.add_argument("--attempts", type=int, default=200, help="Number of purchase attempts")
    parser.add_argument("--workers", type=int, default=32, help="Parallel workers")
    parser.add_argument("--price", type=int, default=5, help="Item price in stars")
    parser.add_argument("--starting-stars", type=int, default=50, help="Stars credited before the run")
    args = parser.parse_args()

    store = build_store(settings)
    coordinator = LedgerCoordinator(
        store,
        LocalChangeFeed(),
        retry_attempts=settings.ledger_retry_attempts,
        retry_backoff_seconds=settings.ledger_retry_backoff_seconds,
    )

    child_id = f"load-child-{uuid4().hex[:10]}"
    item = ShopItem(id=f"load-item-{uuid4().hex[:8]}", name="Load Test Hat", price=args.price)
    print(f"Seeding {args.starting_stars} stars for {child_id}...")
    coordinator.credit(child_id, args.starting_stars, "Load test seed")

    print(f"Running {args.attempts} purchases with {args.workers} workers...")
    stats = _run_parallel_purchases(coordinator, child_id, item, args.attempts, args.workers)
    print(f"purchase: success={stats.success} declined={stats.declined} conflicts={stats.conflicts} errors={stats.errors}")

    _validate(store, child_id, item, args.starting_stars, stats)


if __name__ == "__main__":
    main()

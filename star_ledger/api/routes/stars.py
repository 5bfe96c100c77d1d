from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query

from star_ledger.api.deps import Coordinator, Projection
from star_ledger.api.serializers import balance_out, owned_item_out, transaction_out
from star_ledger.ledger.records import CausalRef
from star_ledger.schemas.ledger import (
    BalanceOut,
    CreditRequest,
    DebitRequest,
    OperationResult,
    OwnedItemOut,
    StarTransactionOut,
)

router = APIRouter(prefix="/stars", tags=["stars"])


def _causal_ref(payload: CreditRequest) -> CausalRef | None:
    if not (payload.task_submission_id or payload.reward_id or payload.shop_item_id):
        return None
    return CausalRef(
        task_submission_id=payload.task_submission_id,
        reward_id=payload.reward_id,
        shop_item_id=payload.shop_item_id,
    )


@router.post("/credit", response_model=OperationResult)
def credit_stars(payload: CreditRequest, coordinator: Coordinator, projection: Projection) -> OperationResult:
    coordinator.credit(payload.child_id, payload.amount, payload.description, _causal_ref(payload))
    return OperationResult(success=True, balance=balance_out(projection.balance(payload.child_id)))


@router.post("/debit", response_model=OperationResult)
def debit_stars(payload: DebitRequest, coordinator: Coordinator, projection: Projection) -> OperationResult:
    success = coordinator.debit(payload.child_id, payload.amount, payload.description, _causal_ref(payload))
    return OperationResult(success=success, balance=balance_out(projection.balance(payload.child_id)))


@router.get("/{child_id}/balance", response_model=BalanceOut)
def get_balance(child_id: str, projection: Projection) -> BalanceOut:
    return balance_out(projection.balance(child_id))


@router.get("/{child_id}/transactions", response_model=list[StarTransactionOut])
def list_transactions(
    child_id: str,
    projection: Projection,
    limit: Annotated[int | None, Query(ge=1, le=500)] = None,
    days: Annotated[int | None, Query(ge=1, le=366)] = None,
) -> list[StarTransactionOut]:
    if days is not None:
        rows = projection.recent_days(child_id, days)
        if limit is not None:
            rows = rows[:limit]
    else:
        rows = projection.recent_transactions(child_id, limit)
    return [transaction_out(tx) for tx in rows]


@router.get("/{child_id}/owned-items", response_model=list[OwnedItemOut])
def list_owned_items(child_id: str, projection: Projection) -> list[OwnedItemOut]:
    return [owned_item_out(item) for item in projection.owned_items(child_id)]

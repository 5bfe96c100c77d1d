from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query

from star_ledger.api.deps import Coordinator, Projection
from star_ledger.api.serializers import balance_out, redemption_out
from star_ledger.ledger.records import Reward
from star_ledger.schemas.ledger import RedeemRewardRequest, RedeemRewardResult, RedemptionOut

router = APIRouter(prefix="/rewards", tags=["rewards"])


@router.post("/redeem", response_model=RedeemRewardResult)
def redeem_reward(
    payload: RedeemRewardRequest,
    coordinator: Coordinator,
    projection: Projection,
) -> RedeemRewardResult:
    reward = Reward(id=payload.reward_id, name=payload.name, stars_required=payload.stars_required)
    redemption_id = coordinator.redeem_reward(payload.child_id, reward)
    return RedeemRewardResult(
        success=redemption_id is not None,
        redemption_id=redemption_id,
        balance=balance_out(projection.balance(payload.child_id)),
    )


@router.post("/redemptions/{redemption_id}/fulfill", response_model=RedemptionOut)
def fulfill_redemption(redemption_id: str, coordinator: Coordinator) -> RedemptionOut:
    return redemption_out(coordinator.fulfill_redemption(redemption_id))


@router.get("/{child_id}/redemptions", response_model=list[RedemptionOut])
def list_redemptions(
    child_id: str,
    projection: Projection,
    pending_only: Annotated[bool, Query()] = False,
) -> list[RedemptionOut]:
    return [redemption_out(row) for row in projection.redemptions(child_id, pending_only=pending_only)]

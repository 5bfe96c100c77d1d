from __future__ import annotations

from fastapi import APIRouter

from star_ledger.api.deps import Coordinator, Projection
from star_ledger.api.serializers import balance_out
from star_ledger.ledger.records import ShopItem
from star_ledger.schemas.ledger import OperationResult, PurchaseRequest

router = APIRouter(prefix="/shop", tags=["shop"])


@router.post("/purchase", response_model=OperationResult)
def purchase_item(payload: PurchaseRequest, coordinator: Coordinator, projection: Projection) -> OperationResult:
    item = ShopItem(id=payload.item_id, name=payload.name, price=payload.price)
    success = coordinator.purchase(payload.child_id, item)
    return OperationResult(success=success, balance=balance_out(projection.balance(payload.child_id)))

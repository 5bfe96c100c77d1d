from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field


class BalanceOut(BaseModel):
    child_id: str
    total_stars: int
    lifetime_stars: int
    last_updated: datetime | None


class StarTransactionOut(BaseModel):
    id: str
    child_id: str
    type: str
    amount: int
    description: str
    task_submission_id: str | None
    reward_id: str | None
    shop_item_id: str | None
    created_at: datetime


class CreditRequest(BaseModel):
    child_id: str = Field(min_length=1)
    amount: int = Field(gt=0)
    description: str = Field(min_length=1)
    task_submission_id: str | None = None
    reward_id: str | None = None
    shop_item_id: str | None = None


class DebitRequest(CreditRequest):
    pass


class OperationResult(BaseModel):
    success: bool
    balance: BalanceOut


class OwnedItemOut(BaseModel):
    item_id: str
    purchased_at: datetime


class PurchaseRequest(BaseModel):
    child_id: str = Field(min_length=1)
    item_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    price: int = Field(gt=0)


class RedeemRewardRequest(BaseModel):
    child_id: str = Field(min_length=1)
    reward_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    stars_required: int = Field(gt=0)


class RedeemRewardResult(BaseModel):
    success: bool
    redemption_id: str | None
    balance: BalanceOut


class RedemptionOut(BaseModel):
    id: str
    reward_id: str
    child_id: str
    stars_spent: int
    status: str
    redeemed_at: datetime
    fulfilled_at: datetime | None


class DailyActivityOut(BaseModel):
    day: date
    weekday: str
    tasks: int
    stars: int


class WeeklyReportOut(BaseModel):
    child_id: str
    week_start: datetime
    week_end: datetime
    total_stars_earned: int
    total_tasks_completed: int
    daily_activity: list[DailyActivityOut]

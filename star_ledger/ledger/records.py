from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from star_ledger.ledger.errors import ValidationError


class TransactionType(str, Enum):
    EARN = "earn"
    REDEEM = "redeem"


class SubmissionStatus(str, Enum):
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class RedemptionStatus(str, Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_record_id() -> str:
    return uuid4().hex


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def require_id(value: str | None, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value


def require_positive_amount(value: int, field: str = "amount") -> int:
    # bool is an int subclass; True must not pass as 1 star.
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value <= 0:
        raise ValidationError(f"{field} must be > 0")
    return value


@dataclass(frozen=True, slots=True)
class BalanceRecord:
    child_id: str
    total_stars: int = 0
    lifetime_stars: int = 0
    last_updated: datetime | None = None

    def credited(self, amount: int, now: datetime) -> BalanceRecord:
        return BalanceRecord(
            child_id=self.child_id,
            total_stars=self.total_stars + amount,
            lifetime_stars=self.lifetime_stars + amount,
            last_updated=now,
        )

    def debited(self, amount: int, now: datetime) -> BalanceRecord:
        return BalanceRecord(
            child_id=self.child_id,
            total_stars=self.total_stars - amount,
            lifetime_stars=self.lifetime_stars,
            last_updated=now,
        )


@dataclass(frozen=True, slots=True)
class CausalRef:
    """Links a transaction to the event that caused it. At most one field is set."""

    task_submission_id: str | None = None
    reward_id: str | None = None
    shop_item_id: str | None = None

    def __post_init__(self) -> None:
        populated = [value for value in (self.task_submission_id, self.reward_id, self.shop_item_id) if value]
        if len(populated) > 1:
            raise ValidationError("causal reference must name at most one source")


@dataclass(frozen=True, slots=True)
class StarTransactionRecord:
    id: str
    child_id: str
    type: TransactionType
    amount: int
    description: str
    created_at: datetime
    task_submission_id: str | None = None
    reward_id: str | None = None
    shop_item_id: str | None = None
    seq: int | None = None

    @property
    def signed_amount(self) -> int:
        return self.amount if self.type == TransactionType.EARN else -self.amount


@dataclass(frozen=True, slots=True)
class OwnershipRecord:
    child_id: str
    item_id: str
    purchased_at: datetime


@dataclass(frozen=True, slots=True)
class RedemptionRecord:
    id: str
    reward_id: str
    child_id: str
    stars_spent: int
    status: RedemptionStatus
    redeemed_at: datetime
    fulfilled_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class SubmissionRecord:
    id: str
    task_template_id: str
    child_id: str
    status: SubmissionStatus
    stars: int
    submitted_at: datetime
    reflection: str | None = None
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    parent_message: str | None = None
    rejection_reason: str | None = None


@dataclass(frozen=True, slots=True)
class ShopItem:
    id: str
    name: str
    price: int


@dataclass(frozen=True, slots=True)
class Reward:
    id: str
    name: str
    stars_required: int

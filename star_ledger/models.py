from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from star_ledger.db.base import Base
from star_ledger.ledger.records import RedemptionStatus, SubmissionStatus, TransactionType


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class StarBalance(Base):
    __tablename__ = "star_balances"
    __table_args__ = (
        CheckConstraint("total_stars >= 0", name="ck_star_balances_total_non_negative"),
        CheckConstraint("lifetime_stars >= 0", name="ck_star_balances_lifetime_non_negative"),
    )

    child_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    total_stars: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    lifetime_stars: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class StarTransaction(Base):
    __tablename__ = "star_transactions"
    __table_args__ = (
        Index("ix_star_transactions_child_id_created_at", "child_id", "created_at"),
        CheckConstraint("amount > 0", name="ck_star_transactions_amount_positive"),
    )

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    child_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SqlEnum(TransactionType, name="star_transaction_type", values_callable=_enum_values),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    task_submission_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reward_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    shop_item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class OwnedItem(Base):
    __tablename__ = "owned_items"

    child_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    item_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    purchased_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class RewardRedemption(Base):
    __tablename__ = "reward_redemptions"
    __table_args__ = (
        Index("ix_reward_redemptions_child_id_redeemed_at", "child_id", "redeemed_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    reward_id: Mapped[str] = mapped_column(String(64), nullable=False)
    child_id: Mapped[str] = mapped_column(String(64), nullable=False)
    stars_spent: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[RedemptionStatus] = mapped_column(
        SqlEnum(RedemptionStatus, name="reward_redemption_status", values_callable=_enum_values),
        nullable=False,
    )
    redeemed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    fulfilled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class TaskSubmission(Base):
    __tablename__ = "task_submissions"
    __table_args__ = (
        Index("ix_task_submissions_child_id_submitted_at", "child_id", "submitted_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    task_template_id: Mapped[str] = mapped_column(String(64), nullable=False)
    child_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[SubmissionStatus] = mapped_column(
        SqlEnum(SubmissionStatus, name="task_submission_status", values_callable=_enum_values),
        nullable=False,
    )
    stars: Mapped[int] = mapped_column(Integer, nullable=False)
    reflection: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    parent_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

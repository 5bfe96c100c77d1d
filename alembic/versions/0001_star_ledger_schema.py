"""star ledger schema

Revision ID: 0001_star_ledger_schema
Revises:
Create Date: 2026-10-19 00:00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_star_ledger_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


star_transaction_type_enum = sa.Enum("earn", "redeem", name="star_transaction_type")
reward_redemption_status_enum = sa.Enum("pending", "fulfilled", name="reward_redemption_status")
task_submission_status_enum = sa.Enum("submitted", "approved", "rejected", name="task_submission_status")


def upgrade() -> None:
    op.create_table(
        "star_balances",
        sa.Column("child_id", sa.String(length=64), nullable=False),
        sa.Column("total_stars", sa.Integer(), server_default="0", nullable=False),
        sa.Column("lifetime_stars", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("child_id"),
        sa.CheckConstraint("total_stars >= 0", name="ck_star_balances_total_non_negative"),
        sa.CheckConstraint("lifetime_stars >= 0", name="ck_star_balances_lifetime_non_negative"),
    )

    op.create_table(
        "star_transactions",
        sa.Column("seq", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("child_id", sa.String(length=64), nullable=False),
        sa.Column("type", star_transaction_type_enum, nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("task_submission_id", sa.String(length=32), nullable=True),
        sa.Column("reward_id", sa.String(length=64), nullable=True),
        sa.Column("shop_item_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("seq"),
        sa.UniqueConstraint("id"),
        sa.CheckConstraint("amount > 0", name="ck_star_transactions_amount_positive"),
    )
    op.create_index(
        "ix_star_transactions_child_id_created_at",
        "star_transactions",
        ["child_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "owned_items",
        sa.Column("child_id", sa.String(length=64), nullable=False),
        sa.Column("item_id", sa.String(length=64), nullable=False),
        sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("child_id", "item_id"),
    )

    op.create_table(
        "reward_redemptions",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("reward_id", sa.String(length=64), nullable=False),
        sa.Column("child_id", sa.String(length=64), nullable=False),
        sa.Column("stars_spent", sa.Integer(), nullable=False),
        sa.Column("status", reward_redemption_status_enum, nullable=False),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("fulfilled_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_reward_redemptions_child_id_redeemed_at",
        "reward_redemptions",
        ["child_id", "redeemed_at"],
        unique=False,
    )

    op.create_table(
        "task_submissions",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("task_template_id", sa.String(length=64), nullable=False),
        sa.Column("child_id", sa.String(length=64), nullable=False),
        sa.Column("status", task_submission_status_enum, nullable=False),
        sa.Column("stars", sa.Integer(), nullable=False),
        sa.Column("reflection", sa.Text(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.String(length=64), nullable=True),
        sa.Column("parent_message", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_task_submissions_child_id_submitted_at",
        "task_submissions",
        ["child_id", "submitted_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_task_submissions_child_id_submitted_at", table_name="task_submissions")
    op.drop_table("task_submissions")
    op.drop_index("ix_reward_redemptions_child_id_redeemed_at", table_name="reward_redemptions")
    op.drop_table("reward_redemptions")
    op.drop_table("owned_items")
    op.drop_index("ix_star_transactions_child_id_created_at", table_name="star_transactions")
    op.drop_table("star_transactions")
    op.drop_table("star_balances")

    bind = op.get_bind()
    task_submission_status_enum.drop(bind, checkfirst=True)
    reward_redemption_status_enum.drop(bind, checkfirst=True)
    star_transaction_type_enum.drop(bind, checkfirst=True)

from __future__ import annotations

from star_ledger.ledger.projections import WeeklyReport
from star_ledger.ledger.records import (
    BalanceRecord,
    OwnershipRecord,
    RedemptionRecord,
    StarTransactionRecord,
    SubmissionRecord,
)
from star_ledger.schemas.ledger import (
    BalanceOut,
    DailyActivityOut,
    OwnedItemOut,
    RedemptionOut,
    StarTransactionOut,
    WeeklyReportOut,
)
from star_ledger.schemas.submissions import SubmissionOut


def balance_out(balance: BalanceRecord) -> BalanceOut:
    return BalanceOut(
        child_id=balance.child_id,
        total_stars=balance.total_stars,
        lifetime_stars=balance.lifetime_stars,
        last_updated=balance.last_updated,
    )


def transaction_out(tx: StarTransactionRecord) -> StarTransactionOut:
    return StarTransactionOut(
        id=tx.id,
        child_id=tx.child_id,
        type=tx.type.value,
        amount=tx.amount,
        description=tx.description,
        task_submission_id=tx.task_submission_id,
        reward_id=tx.reward_id,
        shop_item_id=tx.shop_item_id,
        created_at=tx.created_at,
    )


def owned_item_out(ownership: OwnershipRecord) -> OwnedItemOut:
    return OwnedItemOut(item_id=ownership.item_id, purchased_at=ownership.purchased_at)


def redemption_out(redemption: RedemptionRecord) -> RedemptionOut:
    return RedemptionOut(
        id=redemption.id,
        reward_id=redemption.reward_id,
        child_id=redemption.child_id,
        stars_spent=redemption.stars_spent,
        status=redemption.status.value,
        redeemed_at=redemption.redeemed_at,
        fulfilled_at=redemption.fulfilled_at,
    )


def submission_out(submission: SubmissionRecord) -> SubmissionOut:
    return SubmissionOut(
        id=submission.id,
        task_template_id=submission.task_template_id,
        child_id=submission.child_id,
        status=submission.status.value,
        stars=submission.stars,
        reflection=submission.reflection,
        submitted_at=submission.submitted_at,
        reviewed_at=submission.reviewed_at,
        reviewed_by=submission.reviewed_by,
        parent_message=submission.parent_message,
        rejection_reason=submission.rejection_reason,
    )


def weekly_report_out(report: WeeklyReport) -> WeeklyReportOut:
    return WeeklyReportOut(
        child_id=report.child_id,
        week_start=report.week_start,
        week_end=report.week_end,
        total_stars_earned=report.total_stars_earned,
        total_tasks_completed=report.total_tasks_completed,
        daily_activity=[
            DailyActivityOut(day=item.day, weekday=item.weekday, tasks=item.tasks, stars=item.stars)
            for item in report.daily_activity
        ],
    )

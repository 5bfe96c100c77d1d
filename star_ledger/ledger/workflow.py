from __future__ import annotations

import logging
from dataclasses import replace

from star_ledger.ledger.coordinator import LedgerCoordinator
from star_ledger.ledger.errors import InvalidTransitionError, NotFoundError, ValidationError
from star_ledger.ledger.feed import SUBMISSIONS
from star_ledger.ledger.records import (
    SubmissionRecord,
    SubmissionStatus,
    new_record_id,
    require_id,
    require_positive_amount,
    utcnow,
)
from star_ledger.ledger.store import LedgerUnit

logger = logging.getLogger("stars.ledger.workflow")


class TaskSubmissionWorkflow:
    """submitted -> approved | rejected.

    Approval only happens through ``LedgerCoordinator.approve_payout`` so the
    status change and the credit share one atomic scope.
    """

    def __init__(self, coordinator: LedgerCoordinator) -> None:
        self._coordinator = coordinator
        self._store = coordinator.store

    def submit(
        self,
        task_template_id: str,
        child_id: str,
        stars: int,
        reflection: str | None = None,
    ) -> SubmissionRecord:
        require_id(task_template_id, "task_template_id")
        require_id(child_id, "child_id")
        require_positive_amount(stars, "stars")

        submission = SubmissionRecord(
            id=new_record_id(),
            task_template_id=task_template_id,
            child_id=child_id,
            status=SubmissionStatus.SUBMITTED,
            stars=stars,
            submitted_at=utcnow(),
            reflection=reflection,
        )

        def body(unit: LedgerUnit) -> SubmissionRecord:
            unit.save_submission(submission)
            return submission

        self._coordinator.execute("submit", child_id, body)
        logger.info(
            "workflow.submission.created",
            extra={"child_id": child_id, "submission_id": submission.id, "amount": stars},
        )
        self._coordinator.notify(child_id, "submit", SUBMISSIONS)
        return submission

    def _load(self, submission_id: str) -> SubmissionRecord:
        require_id(submission_id, "submission_id")
        submission = self._store.get_submission(submission_id)
        if submission is None:
            raise NotFoundError(f"submission {submission_id} not found")
        return submission

    def approve(
        self,
        submission_id: str,
        *,
        task_name: str | None = None,
        parent_message: str | None = None,
        reviewer_id: str | None = None,
    ) -> SubmissionRecord:
        submission = self._load(submission_id)
        description = f"Completed: {task_name}" if task_name else f"Completed task {submission.task_template_id}"
        self._coordinator.approve_payout(
            submission.id,
            submission.child_id,
            submission.stars,
            description,
            parent_message=parent_message,
            reviewer_id=reviewer_id,
        )
        return self._load(submission_id)

    def reject(self, submission_id: str, reason: str, reviewer_id: str | None = None) -> SubmissionRecord:
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError("reason is required")
        child_id = self._load(submission_id).child_id

        def body(unit: LedgerUnit) -> SubmissionRecord:
            current = unit.get_submission(submission_id)
            if current is None:
                raise NotFoundError(f"submission {submission_id} not found")
            if current.status != SubmissionStatus.SUBMITTED:
                raise InvalidTransitionError(f"submission {submission_id} is already {current.status.value}")
            rejected = replace(
                current,
                status=SubmissionStatus.REJECTED,
                reviewed_at=utcnow(),
                reviewed_by=reviewer_id,
                rejection_reason=reason,
            )
            unit.save_submission(rejected)
            return rejected

        rejected = self._coordinator.execute("reject", child_id, body)
        logger.info(
            "workflow.submission.rejected",
            extra={"child_id": child_id, "submission_id": submission_id, "reason": reason},
        )
        self._coordinator.notify(child_id, "reject", SUBMISSIONS)
        return rejected

    def pending(self, child_id: str | None = None) -> list[SubmissionRecord]:
        return self._store.list_submissions(child_id=child_id, status=SubmissionStatus.SUBMITTED)

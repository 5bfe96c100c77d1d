from __future__ import annotations

from typing import Any

import pytest

from star_ledger.ledger.coordinator import LedgerCoordinator
from star_ledger.ledger.errors import InvalidTransitionError, NotFoundError, ValidationError
from star_ledger.ledger.records import SubmissionStatus, TransactionType
from star_ledger.ledger.workflow import TaskSubmissionWorkflow


def _workflow(store: Any) -> TaskSubmissionWorkflow:
    return TaskSubmissionWorkflow(LedgerCoordinator(store, retry_backoff_seconds=0))


def test_submit_creates_pending_submission(store: Any) -> None:
    workflow = _workflow(store)

    submission = workflow.submit("make-bed", "kid-1", 2, reflection="Folded the blanket too")

    stored = store.get_submission(submission.id)
    assert stored.status == SubmissionStatus.SUBMITTED
    assert stored.stars == 2
    assert stored.reflection == "Folded the blanket too"
    assert stored.reviewed_at is None
    assert [row.id for row in workflow.pending("kid-1")] == [submission.id]
    assert store.get_balance("kid-1") is None


def test_approve_records_review_and_credits(store: Any) -> None:
    workflow = _workflow(store)
    submission = workflow.submit("make-bed", "kid-1", 2)

    approved = workflow.approve(
        submission.id,
        task_name="Make the bed",
        parent_message="Nice job",
        reviewer_id="parent-1",
    )

    assert approved.status == SubmissionStatus.APPROVED
    assert approved.reviewed_at is not None
    assert approved.reviewed_by == "parent-1"
    assert approved.parent_message == "Nice job"
    tx = store.list_transactions("kid-1")[0]
    assert tx.type == TransactionType.EARN
    assert tx.amount == 2
    assert tx.task_submission_id == submission.id
    assert tx.description == "Completed: Make the bed"
    assert workflow.pending("kid-1") == []


def test_reject_writes_status_only(store: Any) -> None:
    workflow = _workflow(store)
    submission = workflow.submit("homework", "kid-1", 3)

    rejected = workflow.reject(submission.id, "Not finished yet", reviewer_id="parent-1")

    assert rejected.status == SubmissionStatus.REJECTED
    assert rejected.rejection_reason == "Not finished yet"
    assert rejected.reviewed_by == "parent-1"
    assert store.get_submission(submission.id).status == SubmissionStatus.REJECTED
    assert store.list_transactions("kid-1") == []
    assert store.get_balance("kid-1") is None


def test_terminal_states_cannot_change(store: Any) -> None:
    workflow = _workflow(store)
    approved = workflow.submit("homework", "kid-1", 3)
    rejected = workflow.submit("dishes", "kid-1", 1)
    workflow.approve(approved.id)
    workflow.reject(rejected.id, "Dishes still dirty")

    with pytest.raises(InvalidTransitionError):
        workflow.reject(approved.id, "Changed my mind")
    with pytest.raises(InvalidTransitionError):
        workflow.approve(rejected.id)
    with pytest.raises(InvalidTransitionError):
        workflow.approve(approved.id)

    assert store.get_balance("kid-1").total_stars == 3
    assert len(store.list_transactions("kid-1")) == 1


def test_unknown_submission(store: Any) -> None:
    workflow = _workflow(store)

    with pytest.raises(NotFoundError):
        workflow.approve("missing")
    with pytest.raises(NotFoundError):
        workflow.reject("missing", "no")


@pytest.mark.parametrize(
    ("template_id", "child_id", "stars"),
    [("", "kid-1", 1), ("dishes", "", 1), ("dishes", "kid-1", 0), ("dishes", "kid-1", -2)],
)
def test_submit_validates_input(store: Any, template_id: str, child_id: str, stars: int) -> None:
    workflow = _workflow(store)

    with pytest.raises(ValidationError):
        workflow.submit(template_id, child_id, stars)
    assert store.list_submissions() == []


def test_reject_requires_reason(store: Any) -> None:
    workflow = _workflow(store)
    submission = workflow.submit("dishes", "kid-1", 1)

    with pytest.raises(ValidationError):
        workflow.reject(submission.id, "  ")
    assert store.get_submission(submission.id).status == SubmissionStatus.SUBMITTED

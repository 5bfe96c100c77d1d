from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, status

from star_ledger.api.deps import Projection, Workflow
from star_ledger.api.serializers import submission_out
from star_ledger.ledger.records import SubmissionStatus
from star_ledger.schemas.submissions import (
    SubmissionApproveRequest,
    SubmissionCreateRequest,
    SubmissionOut,
    SubmissionRejectRequest,
)

router = APIRouter(prefix="/submissions", tags=["submissions"])


@router.post("", response_model=SubmissionOut, status_code=status.HTTP_201_CREATED)
def create_submission(payload: SubmissionCreateRequest, workflow: Workflow) -> SubmissionOut:
    submission = workflow.submit(
        payload.task_template_id,
        payload.child_id,
        payload.stars,
        reflection=payload.reflection,
    )
    return submission_out(submission)


@router.post("/{submission_id}/approve", response_model=SubmissionOut)
def approve_submission(
    submission_id: str,
    payload: SubmissionApproveRequest,
    workflow: Workflow,
) -> SubmissionOut:
    submission = workflow.approve(
        submission_id,
        task_name=payload.task_name,
        parent_message=payload.parent_message,
        reviewer_id=payload.reviewer_id,
    )
    return submission_out(submission)


@router.post("/{submission_id}/reject", response_model=SubmissionOut)
def reject_submission(
    submission_id: str,
    payload: SubmissionRejectRequest,
    workflow: Workflow,
) -> SubmissionOut:
    return submission_out(workflow.reject(submission_id, payload.reason, reviewer_id=payload.reviewer_id))


@router.get("", response_model=list[SubmissionOut])
def list_submissions(
    projection: Projection,
    child_id: Annotated[str | None, Query()] = None,
    status_filter: Annotated[SubmissionStatus | None, Query(alias="status")] = None,
) -> list[SubmissionOut]:
    return [submission_out(row) for row in projection.submissions(child_id, status=status_filter)]

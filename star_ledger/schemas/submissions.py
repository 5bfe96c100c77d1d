from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class SubmissionCreateRequest(BaseModel):
    task_template_id: str = Field(min_length=1)
    child_id: str = Field(min_length=1)
    stars: int = Field(gt=0)
    reflection: str | None = Field(default=None, max_length=2000)


class SubmissionApproveRequest(BaseModel):
    task_name: str | None = None
    parent_message: str | None = Field(default=None, max_length=2000)
    reviewer_id: str | None = None


class SubmissionRejectRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)
    reviewer_id: str | None = None


class SubmissionOut(BaseModel):
    id: str
    task_template_id: str
    child_id: str
    status: str
    stars: int
    reflection: str | None
    submitted_at: datetime
    reviewed_at: datetime | None
    reviewed_by: str | None
    parent_message: str | None
    rejection_reason: str | None

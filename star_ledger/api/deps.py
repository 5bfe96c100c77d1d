from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from star_ledger.ledger.coordinator import LedgerCoordinator
from star_ledger.ledger.projections import ReadProjection
from star_ledger.ledger.workflow import TaskSubmissionWorkflow


def get_coordinator(request: Request) -> LedgerCoordinator:
    return request.app.state.coordinator


def get_workflow(request: Request) -> TaskSubmissionWorkflow:
    return request.app.state.workflow


def get_projection(request: Request) -> ReadProjection:
    return request.app.state.projection


Coordinator = Annotated[LedgerCoordinator, Depends(get_coordinator)]
Workflow = Annotated[TaskSubmissionWorkflow, Depends(get_workflow)]
Projection = Annotated[ReadProjection, Depends(get_projection)]

from __future__ import annotations

from fastapi import APIRouter

from star_ledger.api.deps import Projection
from star_ledger.api.serializers import weekly_report_out
from star_ledger.schemas.ledger import WeeklyReportOut

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/{child_id}/weekly", response_model=WeeklyReportOut)
def weekly_report(child_id: str, projection: Projection) -> WeeklyReportOut:
    return weekly_report_out(projection.weekly_report(child_id))

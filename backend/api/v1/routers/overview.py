"""
Overview Router — per store/shift progress for a day.
"""

from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_actor, get_db
from counting.calendar import local_now
from counting.overview import overview as compute_overview
from counting.rules import require_action

router = APIRouter(prefix="/api/v1/overview", tags=["overview"])


class SlotProgress(BaseModel):
    total: int
    checked: int
    matched: int
    missing: int
    over: int
    percentage: int


class SlotOverview(BaseModel):
    store_id: UUID
    store_code: str | None
    store_name: str | None
    shift: int
    check_date: date
    progress: SlotProgress
    report_status: str | None
    last_update: datetime | None


class OverviewStats(BaseModel):
    total_stores: int
    completed_stores: int
    in_progress_stores: int
    pending_stores: int
    issues_count: int


class OverviewResponse(BaseModel):
    check_date: date
    stats: OverviewStats
    per_store_shift: list[SlotOverview]


@router.get("/", response_model=OverviewResponse)
async def get_overview(
    check_date: date | None = None,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    """Progress of every counted slot. Defaults to today in the operating timezone."""
    require_action("view_reports", actor["role"])
    return await compute_overview(db, check_date or local_now().date())

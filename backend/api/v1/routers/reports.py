"""
Reports Router — review workflow, report queries and comments.
"""

from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.deps import get_current_actor, get_db, get_session_factory
from counting import reports, review, stock_commit
from counting.rules import require_action

router = APIRouter(prefix="/api/v1/reports", tags=["reports"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class ReportResponse(BaseModel):
    report_id: UUID
    store_id: UUID
    store_code: str | None = None
    store_name: str | None = None
    check_date: date
    shift: int
    status: str
    submitted_by: str
    submitted_at: datetime
    reviewed_by: str | None
    reviewed_at: datetime | None
    rejection_reason: str | None
    stock_committed_at: datetime | None
    total: int = 0
    counted: int = 0
    matched: int = 0
    missing: int = 0
    over: int = 0


class ReportLineResponse(BaseModel):
    product_id: UUID
    product_name: str
    barcode: str | None
    expected_qty: int
    actual_qty: int | None
    diff: int | None
    status: str
    note: str | None
    discrepancy_reason: str | None
    checked_by: str | None


class ReviewRequest(BaseModel):
    decision: str = Field(..., pattern="^(APPROVED|REJECTED)$")
    reason: str | None = Field(None, max_length=1000)


class BulkReviewRequest(ReviewRequest):
    report_ids: list[UUID] = Field(..., min_length=1, max_length=200)


class ReviewResponse(BaseModel):
    success: bool
    report_id: UUID
    status: str
    stock_commit_failed: bool


class BulkReviewResponse(BaseModel):
    success: bool
    processed_count: int
    failed_count: int
    stock_warnings: list[str]
    errors: list[str]


class CommentRequest(BaseModel):
    comment: str = Field(..., max_length=2000)


class CommentResponse(BaseModel):
    comment_id: UUID
    report_id: UUID
    author_id: str
    comment: str
    created_at: datetime
    updated_at: datetime


# ─── Queries ────────────────────────────────────────────────────────────────


@router.get("/", response_model=list[ReportResponse])
async def list_reports(
    status: str | None = None,
    store_code: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    require_action("view_reports", actor["role"])
    return await reports.list_reports(db, status=status, store_code=store_code, limit=limit)


@router.get("/status")
async def report_status(
    store_code: str,
    shift: int = Query(..., ge=1, le=3),
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    """Whether the current slot was already submitted."""
    return await reports.report_status(db, store_code, shift)


@router.post("/bulk-review", response_model=BulkReviewResponse)
async def bulk_review(
    body: BulkReviewRequest,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    actor: dict = Depends(get_current_actor),
):
    outcome = await review.bulk_review(
        session_factory,
        body.report_ids,
        body.decision,
        actor["actor_id"],
        reason=body.reason,
        reviewer_role=actor["role"],
    )
    return outcome.as_dict()


@router.get("/{report_id}", response_model=ReportResponse)
async def report_detail(
    report_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    require_action("view_reports", actor["role"])
    return await reports.report_detail(db, report_id)


@router.get("/{report_id}/lines", response_model=list[ReportLineResponse])
async def report_lines(
    report_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    require_action("view_reports", actor["role"])
    return await reports.report_lines(db, report_id)


# ─── Review ─────────────────────────────────────────────────────────────────


@router.post("/{report_id}/review", response_model=ReviewResponse)
async def review_report(
    report_id: UUID,
    body: ReviewRequest,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    """Approve or reject a PENDING report. 409 if someone else reviewed it first."""
    return await review.review(
        db, report_id, body.decision, actor["actor_id"], reason=body.reason, reviewer_role=actor["role"]
    )


@router.post("/{report_id}/stock-commit")
async def retry_stock_commit(
    report_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    """Re-run the stock commit of an approved report."""
    require_action("commit_stock", actor["role"])
    return await stock_commit.retry_stock_commit(db, report_id, actor["role"])


@router.delete("/{report_id}")
async def delete_report(
    report_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    require_action("delete_report", actor["role"])
    return await review.delete_report(db, report_id)


# ─── Comments ───────────────────────────────────────────────────────────────


@router.get("/{report_id}/comments", response_model=list[CommentResponse])
async def list_comments(
    report_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    return await reports.list_comments(db, report_id)


@router.post("/{report_id}/comments", response_model=CommentResponse, status_code=201)
async def add_comment(
    report_id: UUID,
    body: CommentRequest,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    require_action("comment", actor["role"])
    return await reports.add_comment(db, report_id, actor["actor_id"], body.comment)


@router.patch("/comments/{comment_id}", response_model=CommentResponse)
async def update_comment(
    comment_id: UUID,
    body: CommentRequest,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    return await reports.update_comment(db, comment_id, actor["actor_id"], body.comment)


@router.delete("/comments/{comment_id}")
async def delete_comment(
    comment_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    return await reports.delete_comment(db, comment_id, actor["actor_id"])

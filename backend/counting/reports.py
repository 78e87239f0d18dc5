"""
Report queries and review comments.

Report totals are computed from inventory_history, the frozen snapshot,
so they do not move when count lines are later reset or redistributed.
"""

import uuid
from datetime import datetime

import structlog
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from counting.calendar import operating_date
from counting.errors import Forbidden, NotFound, ValidationFailed
from counting.lookups import get_slot_report, get_store
from counting.rules import ReportStatus, validate_shift
from db.models import InventoryHistory, InventoryReport, Product, ReportComment, Store

logger = structlog.get_logger()

MAX_COMMENT_LENGTH = 2000


def _report_dict(report: InventoryReport, store: Store | None = None) -> dict:
    data = {
        "report_id": report.report_id,
        "store_id": report.store_id,
        "check_date": report.check_date,
        "shift": report.shift,
        "status": report.status,
        "submitted_by": report.submitted_by,
        "submitted_at": report.submitted_at,
        "reviewed_by": report.reviewed_by,
        "reviewed_at": report.reviewed_at,
        "rejection_reason": report.rejection_reason,
        "stock_committed_at": report.stock_committed_at,
    }
    if store is not None:
        data.update(store_code=store.code, store_name=store.name)
    return data


async def report_status(db: AsyncSession, store_code: str, shift: int, now: datetime | None = None) -> dict:
    """Whether the slot at its operating date already has a report."""
    validate_shift(shift)
    store = await get_store(db, store_code)
    check_date = operating_date(shift, now)
    report = await get_slot_report(db, store.store_id, shift, check_date)
    if report is None:
        return {"submitted": False, "check_date": check_date, "status": None}
    return {
        "submitted": True,
        "check_date": check_date,
        "status": report.status,
        "report_id": report.report_id,
        "submitted_by": report.submitted_by,
        "submitted_at": report.submitted_at,
    }


async def _history_totals(db: AsyncSession, keys: list[tuple]) -> dict[tuple, dict]:
    if not keys:
        return {}
    store_ids = {k[0] for k in keys}
    dates = {k[1] for k in keys}
    result = await db.execute(
        select(
            InventoryHistory.store_id,
            InventoryHistory.check_date,
            InventoryHistory.shift,
            func.count(InventoryHistory.history_id),
            func.count(InventoryHistory.actual_qty),
            func.sum(case((InventoryHistory.status == "MATCHED", 1), else_=0)),
            func.sum(case((InventoryHistory.status == "MISSING", 1), else_=0)),
            func.sum(case((InventoryHistory.status == "OVER", 1), else_=0)),
        )
        .where(InventoryHistory.store_id.in_(store_ids), InventoryHistory.check_date.in_(dates))
        .group_by(InventoryHistory.store_id, InventoryHistory.check_date, InventoryHistory.shift)
    )
    return {
        (store_id, check_date, shift): {
            "total": int(total),
            "counted": int(counted),
            "matched": int(matched or 0),
            "missing": int(missing or 0),
            "over": int(over or 0),
        }
        for store_id, check_date, shift, total, counted, matched, missing, over in result.all()
    }


async def list_reports(
    db: AsyncSession,
    status: str | None = None,
    store_code: str | None = None,
    limit: int = 100,
) -> list[dict]:
    """Reports newest first, with per-report totals from history."""
    query = (
        select(InventoryReport, Store)
        .join(Store, Store.store_id == InventoryReport.store_id)
        .order_by(InventoryReport.submitted_at.desc())
        .limit(limit)
    )
    if status:
        try:
            query = query.where(InventoryReport.status == ReportStatus(status).value)
        except ValueError:
            raise ValidationFailed(f"Invalid report status: {status!r}") from None
    if store_code:
        store = await get_store(db, store_code, active_only=False)
        query = query.where(InventoryReport.store_id == store.store_id)

    rows = (await db.execute(query)).all()
    totals = await _history_totals(db, [(r.store_id, r.check_date, r.shift) for r, _ in rows])
    empty = {"total": 0, "counted": 0, "matched": 0, "missing": 0, "over": 0}
    return [
        {**_report_dict(report, store), **totals.get((report.store_id, report.check_date, report.shift), empty)}
        for report, store in rows
    ]


async def _get_report(db: AsyncSession, report_id: uuid.UUID) -> tuple[InventoryReport, Store]:
    result = await db.execute(
        select(InventoryReport, Store)
        .join(Store, Store.store_id == InventoryReport.store_id)
        .where(InventoryReport.report_id == report_id)
    )
    row = result.one_or_none()
    if row is None:
        raise NotFound(f"Report {report_id} not found", report_id=str(report_id))
    return row


async def report_detail(db: AsyncSession, report_id: uuid.UUID) -> dict:
    report, store = await _get_report(db, report_id)
    totals = await _history_totals(db, [(report.store_id, report.check_date, report.shift)])
    stats = totals.get(
        (report.store_id, report.check_date, report.shift),
        {"total": 0, "counted": 0, "matched": 0, "missing": 0, "over": 0},
    )
    return {**_report_dict(report, store), **stats}


async def report_lines(db: AsyncSession, report_id: uuid.UUID) -> list[dict]:
    """History rows frozen for the report, discrepancies first."""
    report, _ = await _get_report(db, report_id)
    result = await db.execute(
        select(InventoryHistory, Product.name, Product.barcode)
        .join(Product, Product.product_id == InventoryHistory.product_id)
        .where(
            InventoryHistory.store_id == report.store_id,
            InventoryHistory.check_date == report.check_date,
            InventoryHistory.shift == report.shift,
        )
        .order_by(case((InventoryHistory.status == "MATCHED", 1), else_=0), Product.name)
    )
    return [
        {
            "product_id": row.product_id,
            "product_name": name,
            "barcode": barcode,
            "expected_qty": row.expected_qty,
            "actual_qty": row.actual_qty,
            "diff": row.diff,
            "status": row.status,
            "note": row.note,
            "discrepancy_reason": row.discrepancy_reason,
            "checked_by": row.checked_by,
        }
        for row, name, barcode in result.all()
    ]


# ── Comments ──────────────────────────────────────────────────────────────


def _clean_comment(text: str | None) -> str:
    cleaned = (text or "").strip()
    if not cleaned:
        raise ValidationFailed("Comment cannot be empty", field="comment")
    if len(cleaned) > MAX_COMMENT_LENGTH:
        raise ValidationFailed(f"Comment exceeds {MAX_COMMENT_LENGTH} characters", field="comment")
    return cleaned


def _comment_dict(comment: ReportComment) -> dict:
    return {
        "comment_id": comment.comment_id,
        "report_id": comment.report_id,
        "author_id": comment.author_id,
        "comment": comment.comment,
        "created_at": comment.created_at,
        "updated_at": comment.updated_at,
    }


async def add_comment(db: AsyncSession, report_id: uuid.UUID, author_id: str, text: str) -> dict:
    cleaned = _clean_comment(text)
    await _get_report(db, report_id)
    comment = ReportComment(report_id=report_id, author_id=author_id, comment=cleaned)
    db.add(comment)
    await db.commit()
    await db.refresh(comment)
    logger.info("reports.comment.added", report_id=str(report_id), author_id=author_id)
    return _comment_dict(comment)


async def list_comments(db: AsyncSession, report_id: uuid.UUID) -> list[dict]:
    result = await db.execute(
        select(ReportComment).where(ReportComment.report_id == report_id).order_by(ReportComment.created_at)
    )
    return [_comment_dict(c) for c in result.scalars().all()]


async def _own_comment(db: AsyncSession, comment_id: uuid.UUID, author_id: str) -> ReportComment:
    comment = await db.get(ReportComment, comment_id)
    if comment is None:
        raise NotFound(f"Comment {comment_id} not found", comment_id=str(comment_id))
    if comment.author_id != author_id:
        raise Forbidden("Only the author may change this comment", comment_id=str(comment_id))
    return comment


async def update_comment(db: AsyncSession, comment_id: uuid.UUID, author_id: str, text: str) -> dict:
    cleaned = _clean_comment(text)
    comment = await _own_comment(db, comment_id, author_id)
    comment.comment = cleaned
    comment.updated_at = datetime.utcnow()
    await db.commit()
    await db.refresh(comment)
    return _comment_dict(comment)


async def delete_comment(db: AsyncSession, comment_id: uuid.UUID, author_id: str) -> dict:
    comment = await _own_comment(db, comment_id, author_id)
    await db.delete(comment)
    await db.commit()
    return {"success": True, "comment_id": comment_id}

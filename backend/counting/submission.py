"""
Report Submitter — freeze a slot into history and open a review.

History rows and the report are written in one transaction. History is
an upsert on (store, product, date, shift), so a retried submit never
duplicates snapshots; the report's unique (store, date, shift) key
decides which of two racing submits wins.
"""

from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from counting.calendar import operating_date
from counting.errors import AlreadySubmitted, Internal, NoData, ValidationFailed
from counting.lookups import get_slot_report, get_store
from counting.rules import ReportStatus, derive_diff_status, validate_shift
from db.models import CountLine, InventoryHistory, InventoryReport
from db.upsert import upsert

logger = structlog.get_logger()

HISTORY_KEY = ["store_id", "product_id", "check_date", "shift"]
HISTORY_COLUMNS = [
    "expected_qty",
    "actual_qty",
    "diff",
    "status",
    "note",
    "discrepancy_reason",
    "checked_by",
    "submitted_by",
    "snapshot_at",
]


def snapshot_rows(lines: list[CountLine], submitted_by: str, snapshot_at: datetime) -> list[dict]:
    rows = []
    for line in lines:
        # Snapshot the derived state, not whatever was last stored.
        diff, status = derive_diff_status(line.actual_qty, line.expected_qty)
        rows.append(
            {
                "store_id": line.store_id,
                "product_id": line.product_id,
                "check_date": line.check_date,
                "shift": line.shift,
                "expected_qty": line.expected_qty,
                "actual_qty": line.actual_qty,
                "diff": diff,
                "status": status.value,
                "note": line.note,
                "discrepancy_reason": line.discrepancy_reason,
                "checked_by": line.checked_by,
                "submitted_by": submitted_by,
                "snapshot_at": snapshot_at,
            }
        )
    return rows


async def submit(
    db: AsyncSession,
    store_code: str,
    shift: int,
    actor_id: str,
    now: datetime | None = None,
) -> dict:
    """Submit the slot's counts for review."""
    validate_shift(shift)
    if not actor_id:
        raise ValidationFailed("actor_id is required to submit")
    store = await get_store(db, store_code)
    check_date = operating_date(shift, now)

    existing = await get_slot_report(db, store.store_id, shift, check_date)
    if existing is not None:
        raise AlreadySubmitted(
            f"Report for {store.code} shift {shift} on {check_date.isoformat()} already exists ({existing.status})",
            report_id=str(existing.report_id),
        )

    result = await db.execute(
        select(CountLine).where(
            CountLine.store_id == store.store_id,
            CountLine.shift == shift,
            CountLine.check_date == check_date,
        )
    )
    lines = list(result.scalars().all())
    if not lines:
        raise NoData(f"No count lines for {store.code} shift {shift} on {check_date.isoformat()}")

    counted = sum(1 for line in lines if line.actual_qty is not None)
    submitted_at = datetime.utcnow()
    report = InventoryReport(
        store_id=store.store_id,
        check_date=check_date,
        shift=shift,
        status=ReportStatus.PENDING.value,
        submitted_by=actor_id,
        submitted_at=submitted_at,
    )
    try:
        rows = snapshot_rows(lines, actor_id, submitted_at)
        await db.execute(upsert(db, InventoryHistory, rows, HISTORY_KEY, HISTORY_COLUMNS))
        db.add(report)
        await db.flush()
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.info("counting.submit.lost_race", store_code=store.code, shift=shift, check_date=check_date.isoformat())
        raise AlreadySubmitted(
            f"Report for {store.code} shift {shift} on {check_date.isoformat()} already exists"
        ) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("counting.submit.failed", store_code=store.code, shift=shift, error=str(exc))
        raise Internal("Submission failed; safe to retry") from exc

    logger.info(
        "counting.submit.completed",
        store_code=store.code,
        shift=shift,
        check_date=check_date.isoformat(),
        report_id=str(report.report_id),
        counted=counted,
        total=len(lines),
    )
    return {
        "success": True,
        "report_id": report.report_id,
        "check_date": check_date,
        "counted": counted,
        "total": len(lines),
        "counted_of_total": f"{counted}/{len(lines)}",
    }

"""
Stock Commit — write approved counts back as the system-of-record stock.

For an APPROVED report, every counted history row becomes the stock
level of its (store, product). The step is keyed by report id
(`stock_committed_at`) and the upsert only moves a level forward in
(date, shift) order, so it is safe to re-run after a failure, in any
order relative to other reports.
"""

import uuid
from datetime import datetime

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from counting.errors import Conflict, NotFound
from counting.rules import ReportStatus, require_action
from db.models import InventoryHistory, InventoryReport, StoreStockLevel
from db.upsert import dialect_insert

logger = structlog.get_logger()


def _forward_only_upsert(db: AsyncSession, rows: list[dict]):
    stmt = dialect_insert(db, StoreStockLevel).values(rows)
    current = StoreStockLevel.__table__.c
    return stmt.on_conflict_do_update(
        index_elements=["store_id", "product_id"],
        set_={
            "quantity": stmt.excluded.quantity,
            "source_report_id": stmt.excluded.source_report_id,
            "as_of_date": stmt.excluded.as_of_date,
            "as_of_shift": stmt.excluded.as_of_shift,
            "committed_at": stmt.excluded.committed_at,
        },
        where=or_(
            current.as_of_date < stmt.excluded.as_of_date,
            and_(current.as_of_date == stmt.excluded.as_of_date, current.as_of_shift <= stmt.excluded.as_of_shift),
        ),
    )


async def commit_report_stock(db: AsyncSession, report_id: uuid.UUID) -> dict:
    """Apply an approved report's counted quantities to store_stock_levels."""
    result = await db.execute(
        select(
            InventoryReport.status,
            InventoryReport.store_id,
            InventoryReport.check_date,
            InventoryReport.shift,
            InventoryReport.stock_committed_at,
        ).where(InventoryReport.report_id == report_id)
    )
    row = result.one_or_none()
    if row is None:
        raise NotFound(f"Report {report_id} not found", report_id=str(report_id))
    status, store_id, check_date, shift, committed_at = row
    if status != ReportStatus.APPROVED.value:
        raise Conflict(f"Report {report_id} is {status}; only APPROVED reports commit stock")
    if committed_at is not None:
        return {"report_id": report_id, "committed": 0, "committed_at": committed_at, "already_committed": True}

    history = await db.execute(
        select(InventoryHistory.product_id, InventoryHistory.actual_qty).where(
            InventoryHistory.store_id == store_id,
            InventoryHistory.check_date == check_date,
            InventoryHistory.shift == shift,
            InventoryHistory.actual_qty.isnot(None),
        )
    )
    now = datetime.utcnow()
    rows = [
        {
            "stock_level_id": uuid.uuid4(),
            "store_id": store_id,
            "product_id": product_id,
            "quantity": actual_qty,
            "source_report_id": report_id,
            "as_of_date": check_date,
            "as_of_shift": shift,
            "committed_at": now,
        }
        for product_id, actual_qty in history.all()
    ]
    if rows:
        await db.execute(_forward_only_upsert(db, rows))
    await db.execute(
        update(InventoryReport)
        .where(InventoryReport.report_id == report_id)
        .values(stock_committed_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    logger.info("counting.stock_commit.completed", report_id=str(report_id), committed=len(rows))
    return {"report_id": report_id, "committed": len(rows), "committed_at": now, "already_committed": False}


async def retry_stock_commit(db: AsyncSession, report_id: uuid.UUID, actor_role: str | None) -> dict:
    """Operator re-run after a review reported stock_commit_failed. ADMIN only."""
    require_action("commit_stock", actor_role)
    try:
        return await commit_report_stock(db, report_id)
    except Exception:
        await db.rollback()
        raise

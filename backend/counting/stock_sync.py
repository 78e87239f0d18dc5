"""
Stock Synchronizer — stamp ERP expected quantities onto count lines.

Flow:
  1. Resolve the slot's lines for the operating date (must be distributed)
  2. Fetch barcode -> on-hand from the ERP source
  3. Group matched lines by (target qty, counted qty) and apply one
     UPDATE per group; diff/status are re-derived for counted lines
  4. Lines whose counted qty changed mid-sync are retried on fresh reads

Lines whose barcode the ERP does not know are left untouched.
"""

import uuid
from collections import defaultdict
from datetime import datetime

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from counting.calendar import operating_date
from counting.errors import Internal, NotDistributed
from counting.lookups import get_store
from counting.rules import derive_diff_status, validate_shift
from db.models import CountLine, Product
from integrations.base import ErpStockSource

logger = structlog.get_logger()

MAX_SYNC_PASSES = 3


def group_by_target(lines: list[tuple[uuid.UUID, int | None, int]]) -> dict[tuple[int, int | None], list[uuid.UUID]]:
    """Group (line_id, actual_qty, target_qty) so each group shares one UPDATE."""
    groups: dict[tuple[int, int | None], list[uuid.UUID]] = defaultdict(list)
    for line_id, actual_qty, target in lines:
        groups[(target, actual_qty)].append(line_id)
    return groups


async def _apply_groups(db: AsyncSession, groups, synced_at: datetime) -> None:
    for (target, actual_qty), line_ids in groups.items():
        diff, status = derive_diff_status(actual_qty, target)
        counted_unchanged = (
            CountLine.actual_qty.is_(None) if actual_qty is None else CountLine.actual_qty == actual_qty
        )
        await db.execute(
            update(CountLine)
            .where(CountLine.line_id.in_(line_ids), counted_unchanged)
            .values(
                expected_qty=target,
                diff=diff,
                status=status.value,
                last_synced_at=synced_at,
                updated_at=synced_at,
            )
            .execution_options(synchronize_session=False)
        )


async def sync_stock(
    db: AsyncSession,
    store_code: str,
    shift: int,
    source: ErpStockSource,
    now: datetime | None = None,
) -> dict:
    """Refresh expected_qty for the store/shift's current slot from the ERP."""
    validate_shift(shift)
    store = await get_store(db, store_code)
    check_date = operating_date(shift, now)

    result = await db.execute(
        select(CountLine.line_id, Product.barcode)
        .join(Product, Product.product_id == CountLine.product_id)
        .where(
            CountLine.store_id == store.store_id,
            CountLine.shift == shift,
            CountLine.check_date == check_date,
        )
    )
    lines = result.all()
    if not lines:
        raise NotDistributed(
            f"No count lines for {store.code} shift {shift} on {check_date.isoformat()}; distribute first",
            store_code=store.code,
            shift=shift,
        )

    stock_map = await source.fetch_stock(store.code)

    targets = {line_id: int(stock_map[barcode]) for line_id, barcode in lines if barcode and barcode in stock_map}
    synced_at = datetime.utcnow()
    pending = list(targets)
    try:
        for _ in range(MAX_SYNC_PASSES):
            if not pending:
                break
            fresh = await db.execute(
                select(CountLine.line_id, CountLine.actual_qty).where(CountLine.line_id.in_(pending))
            )
            rows = [(line_id, actual_qty, targets[line_id]) for line_id, actual_qty in fresh.all()]
            await _apply_groups(db, group_by_target(rows), synced_at)

            stale = await db.execute(
                select(CountLine.line_id).where(
                    CountLine.line_id.in_(pending),
                    or_(CountLine.last_synced_at.is_(None), CountLine.last_synced_at != synced_at),
                )
            )
            pending = list(stale.scalars().all())
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("sync.stock.write_failed", store_code=store.code, shift=shift, error=str(exc))
        raise Internal("Stock sync write failed") from exc

    if pending:
        logger.warning("sync.stock.lines_unsettled", store_code=store.code, shift=shift, count=len(pending))

    matched = len(targets) - len(pending)
    logger.info(
        "sync.stock.completed",
        store_code=store.code,
        shift=shift,
        check_date=check_date.isoformat(),
        matched=matched,
        total=len(lines),
    )
    return {
        "success": True,
        "store_code": store.code,
        "shift": shift,
        "check_date": check_date,
        "matched_count": matched,
        "total": len(lines),
        "synced_at": synced_at,
    }

"""
Catalog Distributor — materialize count lines from the master catalog.

Distribution is an INSERT that skips existing (store, product, shift,
date) keys, so it can run any number of times, concurrently or not,
without duplicating lines or touching a line that is already counted.

Reset / redistribute are the explicit destructive paths: they refuse
to run over an approved report, and over counted lines unless forced.
"""

import uuid
from datetime import date, datetime

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from counting.calendar import operating_date
from counting.errors import Conflict, Internal, NotFound, ValidationFailed
from counting.lookups import count_slot_lines, get_slot_report, get_store
from counting.rules import LineStatus, ReportStatus, validate_shift
from db.models import (
    CountLine,
    DistributionLog,
    InventoryHistory,
    InventoryReport,
    Product,
    ReportComment,
)
from db.upsert import insert_ignore_existing

logger = structlog.get_logger()

LINE_KEY = ["store_id", "product_id", "shift", "check_date"]
INSERT_CHUNK_SIZE = 500


async def _insert_lines(
    db: AsyncSession,
    store_id: uuid.UUID,
    shift: int,
    check_date: date,
    product_ids: list[uuid.UUID],
    actor_id: str | None,
) -> int:
    now = datetime.utcnow()
    created = 0
    for start in range(0, len(product_ids), INSERT_CHUNK_SIZE):
        rows = [
            {
                "line_id": uuid.uuid4(),
                "store_id": store_id,
                "product_id": product_id,
                "shift": shift,
                "check_date": check_date,
                "expected_qty": 0,
                "actual_qty": None,
                "diff": None,
                "status": LineStatus.PENDING.value,
                "distributed_by": actor_id,
                "distributed_at": now,
                "created_at": now,
                "updated_at": now,
            }
            for product_id in product_ids[start : start + INSERT_CHUNK_SIZE]
        ]
        result = await db.execute(insert_ignore_existing(db, CountLine, rows, LINE_KEY))
        created += max(result.rowcount or 0, 0)
    return created


def _log(db: AsyncSession, store_id, shift: int, check_date: date, action: str, count: int, actor_id, notes=None):
    db.add(
        DistributionLog(
            store_id=store_id,
            shift=shift,
            check_date=check_date,
            action=action,
            product_count=count,
            performed_by=actor_id,
            notes=notes,
        )
    )


async def distribute(
    db: AsyncSession,
    store_code: str,
    shift: int,
    actor_id: str | None = None,
    check_date: date | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Create one PENDING line per active product for the store/shift/date.

    Returns the catalog size distributed and how many lines were new.
    """
    validate_shift(shift)
    store = await get_store(db, store_code)

    result = await db.execute(select(Product.product_id).where(Product.is_active.is_(True)))
    product_ids = list(result.scalars().all())
    if not product_ids:
        raise NotFound("No active products in catalog")

    check_date = check_date or operating_date(shift, now)
    try:
        created = await _insert_lines(db, store.store_id, shift, check_date, product_ids, actor_id)
        _log(db, store.store_id, shift, check_date, "DISTRIBUTE", len(product_ids), actor_id)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("distribution.failed", store_code=store.code, shift=shift, error=str(exc))
        raise Internal("Distribution failed") from exc

    logger.info(
        "distribution.completed",
        store_code=store.code,
        shift=shift,
        check_date=check_date.isoformat(),
        item_count=len(product_ids),
        created=created,
    )
    return {
        "store_code": store.code,
        "shift": shift,
        "check_date": check_date,
        "item_count": len(product_ids),
        "created": created,
    }


async def add_products(
    db: AsyncSession,
    store_code: str,
    shift: int,
    product_ids: list[uuid.UUID],
    actor_id: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Distribute an explicit subset of products into the current slot."""
    validate_shift(shift)
    if not product_ids:
        raise ValidationFailed("No products to add")
    store = await get_store(db, store_code)

    result = await db.execute(select(Product.product_id).where(Product.product_id.in_(product_ids)))
    known = list(result.scalars().all())
    missing = {str(pid) for pid in product_ids} - {str(pid) for pid in known}
    if missing:
        raise NotFound(f"Unknown products: {', '.join(sorted(missing))}")

    check_date = operating_date(shift, now)
    try:
        created = await _insert_lines(db, store.store_id, shift, check_date, known, actor_id)
        _log(db, store.store_id, shift, check_date, "ADD_PRODUCTS", len(known), actor_id)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise Internal("Adding products failed") from exc

    logger.info("distribution.products_added", store_code=store.code, shift=shift, added=created)
    return {
        "store_code": store.code,
        "shift": shift,
        "check_date": check_date,
        "item_count": len(known),
        "created": created,
    }


async def _latest_line_date(db: AsyncSession, store_id, shift: int) -> date | None:
    result = await db.execute(
        select(func.max(CountLine.check_date)).where(CountLine.store_id == store_id, CountLine.shift == shift)
    )
    return result.scalar_one_or_none()


async def distribution_status(
    db: AsyncSession,
    store_code: str,
    shift: int,
    check_date: date | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Report whether a slot has been distributed and how far counting got.

    Without an explicit date the operating date is tried first, then the
    most recent date that actually has lines for this store and shift.
    """
    validate_shift(shift)
    store = await get_store(db, store_code)
    empty = {
        "store_code": store.code,
        "shift": shift,
        "check_date": check_date,
        "distributed": False,
        "total_items": 0,
        "checked_items": 0,
        "report_submitted": False,
        "report_status": None,
        "distributed_at": None,
        "distributed_by": None,
    }

    if check_date is None:
        candidate = operating_date(shift, now)
        has_lines = await count_slot_lines(db, store.store_id, shift, candidate)
        check_date = candidate if has_lines else await _latest_line_date(db, store.store_id, shift)
        if check_date is None:
            return empty

    result = await db.execute(
        select(
            func.count(CountLine.line_id),
            func.count(CountLine.actual_qty),
            func.min(CountLine.distributed_at),
            func.min(CountLine.distributed_by),
        ).where(
            CountLine.store_id == store.store_id,
            CountLine.shift == shift,
            CountLine.check_date == check_date,
        )
    )
    total, checked, distributed_at, distributed_by = result.one()
    if not total:
        return {**empty, "check_date": check_date}

    report = await get_slot_report(db, store.store_id, shift, check_date)
    report_status = report.status if report is not None else None
    return {
        **empty,
        "check_date": check_date,
        "distributed": True,
        "total_items": int(total),
        "checked_items": int(checked),
        "report_submitted": report_status is not None,
        "report_status": report_status,
        "distributed_at": distributed_at,
        "distributed_by": distributed_by,
    }


async def reset_distribution(
    db: AsyncSession,
    store_code: str,
    shift: int,
    actor_id: str | None = None,
    force: bool = False,
) -> dict:
    """
    Delete every distributed line of a store+shift, across all dates.

    Refuses when any of those dates already has an APPROVED report, and
    when lines were counted unless `force` is set. Pending or rejected
    reports of those dates are removed with their history and comments.
    """
    validate_shift(shift)
    store = await get_store(db, store_code, active_only=False)

    result = await db.execute(
        select(CountLine.check_date)
        .where(CountLine.store_id == store.store_id, CountLine.shift == shift)
        .distinct()
    )
    dates = sorted(result.scalars().all())
    if not dates:
        return {"store_code": store.code, "shift": shift, "deleted": 0, "dates": []}

    reports = (
        (
            await db.execute(
                select(InventoryReport).where(
                    InventoryReport.store_id == store.store_id,
                    InventoryReport.shift == shift,
                    InventoryReport.check_date.in_(dates),
                )
            )
        )
        .scalars()
        .all()
    )
    approved = [r for r in reports if r.status == ReportStatus.APPROVED.value]
    if approved:
        raise Conflict(
            f"Report for {approved[0].check_date.isoformat()} is already APPROVED; cannot reset",
            report_id=str(approved[0].report_id),
        )

    if not force:
        counted = await db.execute(
            select(func.count(CountLine.line_id)).where(
                CountLine.store_id == store.store_id,
                CountLine.shift == shift,
                CountLine.check_date.in_(dates),
                CountLine.actual_qty.isnot(None),
            )
        )
        counted_items = counted.scalar_one()
        if counted_items:
            raise Conflict(
                f"{counted_items} lines already counted; resetting would erase them",
                checked_items=counted_items,
            )

    try:
        report_ids = [r.report_id for r in reports]
        if report_ids:
            await db.execute(delete(ReportComment).where(ReportComment.report_id.in_(report_ids)))
            await db.execute(
                delete(InventoryHistory).where(
                    InventoryHistory.store_id == store.store_id,
                    InventoryHistory.shift == shift,
                    InventoryHistory.check_date.in_([r.check_date for r in reports]),
                )
            )
            await db.execute(delete(InventoryReport).where(InventoryReport.report_id.in_(report_ids)))

        deleted = await db.execute(
            delete(CountLine).where(
                CountLine.store_id == store.store_id,
                CountLine.shift == shift,
                CountLine.check_date.in_(dates),
            )
        )
        deleted_count = max(deleted.rowcount or 0, 0)
        _log(
            db, store.store_id, shift, dates[-1], "RESET", deleted_count, actor_id,
            notes="Forced reset" if force else None,
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("distribution.reset_failed", store_code=store.code, shift=shift, error=str(exc))
        raise Internal("Reset failed") from exc

    logger.info("distribution.reset", store_code=store.code, shift=shift, deleted=deleted_count, force=force)
    return {"store_code": store.code, "shift": shift, "deleted": deleted_count, "dates": dates}


async def redistribute(
    db: AsyncSession,
    store_code: str,
    shift: int,
    actor_id: str | None = None,
    force: bool = False,
    now: datetime | None = None,
) -> dict:
    """
    Reset the store+shift and distribute the current catalog again.

    The reset covers every date that has lines for this store and shift,
    so without `force` counted lines on any of those dates block it.
    """
    status = await distribution_status(db, store_code, shift, now=now)
    if status["report_status"] == ReportStatus.APPROVED.value:
        raise Conflict("Report already APPROVED; cannot redistribute")
    if status["checked_items"] > 0 and not force:
        raise Conflict(
            f"{status['checked_items']}/{status['total_items']} lines already counted; "
            "redistributing would erase them",
            checked_items=status["checked_items"],
        )

    reset = await reset_distribution(db, store_code, shift, actor_id=actor_id, force=force)
    result = await distribute(db, store_code, shift, actor_id=actor_id, now=now)

    store = await get_store(db, store_code)
    _log(
        db, store.store_id, shift, result["check_date"], "REDISTRIBUTE", result["item_count"], actor_id,
        notes=f"force={force}, had {status['checked_items']} checked items",
    )
    await db.commit()
    return {**result, "deleted": reset["deleted"]}

"""
Overview Aggregator — per store/shift progress for a date.

The overnight shift is filed under the date it started, so its lines
for a requested date D may live under D-1. Both dates are read; the
requested date wins when it has lines, otherwise the previous one is
used. Each (store, shift) appears at most once.
"""

from datetime import date

import structlog
from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from counting.calendar import is_overnight, previous_operating_date
from counting.rules import ReportStatus
from db.models import CountLine, InventoryReport, Store

logger = structlog.get_logger()


def _percentage(checked: int, total: int) -> int:
    return round(checked / total * 100) if total else 0


def pick_slot_dates(slots: dict[tuple, dict], check_date: date) -> dict[tuple, dict]:
    """
    Collapse {(store_id, shift, date): progress} to one entry per (store_id, shift).

    Non-overnight shifts only ever use the requested date.
    """
    prior = previous_operating_date(check_date)
    chosen: dict[tuple, dict] = {}
    for (store_id, shift, slot_date), progress in slots.items():
        if progress["total"] == 0:
            continue
        if slot_date == prior and not is_overnight(shift):
            continue
        key = (store_id, shift)
        current = chosen.get(key)
        if current is None or (slot_date == check_date and current["check_date"] != check_date):
            chosen[key] = {**progress, "check_date": slot_date}
    return chosen


async def overview(db: AsyncSession, check_date: date) -> dict:
    """Progress, discrepancy counts and report state of every counted slot."""
    prior = previous_operating_date(check_date)
    result = await db.execute(
        select(
            CountLine.store_id,
            CountLine.shift,
            CountLine.check_date,
            func.count(CountLine.line_id),
            func.count(CountLine.actual_qty),
            func.sum(case((CountLine.status == "MATCHED", 1), else_=0)),
            func.sum(case((CountLine.status == "MISSING", 1), else_=0)),
            func.sum(case((CountLine.status == "OVER", 1), else_=0)),
            func.max(CountLine.checked_at),
        )
        .where(CountLine.check_date.in_([check_date, prior]))
        .group_by(CountLine.store_id, CountLine.shift, CountLine.check_date)
    )
    slots = {
        (store_id, shift, slot_date): {
            "total": int(total),
            "checked": int(checked),
            "matched": int(matched or 0),
            "missing": int(missing or 0),
            "over": int(over or 0),
            "last_update": last_update,
        }
        for store_id, shift, slot_date, total, checked, matched, missing, over, last_update in result.all()
    }
    chosen = pick_slot_dates(slots, check_date)

    stores: dict = {}
    reports: dict = {}
    if chosen:
        store_rows = await db.execute(select(Store).where(Store.store_id.in_({k[0] for k in chosen})))
        stores = {s.store_id: s for s in store_rows.scalars().all()}
        report_rows = await db.execute(
            select(InventoryReport.store_id, InventoryReport.shift, InventoryReport.check_date, InventoryReport.status)
            .where(
                or_(
                    *(
                        and_(
                            InventoryReport.store_id == store_id,
                            InventoryReport.shift == shift,
                            InventoryReport.check_date == progress["check_date"],
                        )
                        for (store_id, shift), progress in chosen.items()
                    )
                )
            )
        )
        reports = {(sid, shift): status for sid, shift, _, status in report_rows.all()}

    per_slot = []
    for (store_id, shift), progress in chosen.items():
        store = stores.get(store_id)
        per_slot.append(
            {
                "store_id": store_id,
                "store_code": store.code if store else None,
                "store_name": store.name if store else None,
                "shift": shift,
                "check_date": progress["check_date"],
                "progress": {
                    "total": progress["total"],
                    "checked": progress["checked"],
                    "matched": progress["matched"],
                    "missing": progress["missing"],
                    "over": progress["over"],
                    "percentage": _percentage(progress["checked"], progress["total"]),
                },
                "report_status": reports.get((store_id, shift)),
                "last_update": progress["last_update"],
            }
        )
    per_slot.sort(key=lambda s: (s["store_code"] or "", s["shift"]))

    stats = {
        "total_stores": len(per_slot),
        "completed_stores": sum(1 for s in per_slot if s["report_status"] == ReportStatus.APPROVED.value),
        "in_progress_stores": sum(
            1
            for s in per_slot
            if s["report_status"] == ReportStatus.PENDING.value
            or (s["report_status"] is None and s["progress"]["checked"] > 0)
        ),
        "pending_stores": sum(
            1 for s in per_slot if s["report_status"] is None and s["progress"]["checked"] == 0
        ),
        "issues_count": sum(s["progress"]["missing"] + s["progress"]["over"] for s in per_slot),
    }
    logger.debug("overview.computed", check_date=check_date.isoformat(), slots=len(per_slot))
    return {"check_date": check_date, "stats": stats, "per_store_shift": per_slot}

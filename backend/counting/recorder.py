"""
Count Recorder — employee edits to count lines.

Field writes are gated by the role capability table before anything is
read or written. Quantity writes re-derive diff/status in the same
UPDATE, conditioned on the other quantity still being the value the
derivation used. A privileged status write is conditioned on both.
A concurrent sync or edit makes the write retry on a fresh read
instead of storing a stale diff or status.
"""

import uuid
from datetime import date, datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from counting.calendar import operating_date
from counting.errors import Conflict, Forbidden, Internal, NotFound, ValidationFailed
from counting.lookups import get_store
from counting.rules import (
    LineStatus,
    derive_diff_status,
    require_field_capability,
    validate_note,
    validate_quantity,
    validate_reason,
    validate_shift,
)
from db.models import CountLine, Product

logger = structlog.get_logger()

MAX_WRITE_ATTEMPTS = 3


def _coerce(field: str, value):
    if field in ("actual_qty", "expected_qty"):
        coerced = validate_quantity(field, value)
        if field == "expected_qty" and coerced is None:
            raise ValidationFailed("expected_qty cannot be cleared", field=field)
        return coerced
    if field == "note":
        return validate_note(value)
    if field == "discrepancy_reason":
        return validate_reason(value)
    if field == "status":
        try:
            return LineStatus(value)
        except ValueError:
            raise ValidationFailed(f"Invalid status: {value!r}", field=field) from None
    raise ValidationFailed(f"Unknown field: {field}", field=field)


async def update_field(
    db: AsyncSession,
    line_id: uuid.UUID,
    field: str,
    value,
    actor_id: str,
    actor_role: str,
    now: datetime | None = None,
) -> dict:
    """Apply a single-field edit to a count line."""
    try:
        require_field_capability(field, actor_role)
    except Forbidden:
        logger.warning(
            "counting.update.forbidden", line_id=str(line_id), field=field, role=actor_role, actor_id=actor_id
        )
        raise
    coerced = _coerce(field, value)

    for _ in range(MAX_WRITE_ATTEMPTS):
        current = (
            await db.execute(
                select(CountLine.expected_qty, CountLine.actual_qty).where(CountLine.line_id == line_id)
            )
        ).one_or_none()
        if current is None:
            raise NotFound(f"Count line {line_id} not found", line_id=str(line_id))
        expected_qty, actual_qty = current

        stamp = now or datetime.utcnow()
        values: dict = {"updated_at": stamp}
        guard = []

        if field == "actual_qty":
            diff, status = derive_diff_status(coerced, expected_qty)
            values.update(actual_qty=coerced, diff=diff, status=status.value)
            if coerced is None:
                values.update(checked_by=None, checked_at=None)
            else:
                values.update(checked_by=actor_id, checked_at=stamp)
            guard.append(CountLine.expected_qty == expected_qty)
            actual_qty = coerced
        elif field == "expected_qty":
            diff, status = derive_diff_status(actual_qty, coerced)
            values.update(expected_qty=coerced, diff=diff, status=status.value)
            guard.append(CountLine.actual_qty.is_(None) if actual_qty is None else CountLine.actual_qty == actual_qty)
            expected_qty = coerced
        elif field == "status":
            derived = derive_diff_status(actual_qty, expected_qty).status
            if coerced != derived:
                raise ValidationFailed(
                    f"status {coerced.value} contradicts counted quantities (derived {derived.value})",
                    field=field,
                )
            values["status"] = derived.value
            guard.append(CountLine.expected_qty == expected_qty)
            guard.append(CountLine.actual_qty.is_(None) if actual_qty is None else CountLine.actual_qty == actual_qty)
        else:
            values[field] = coerced

        try:
            result = await db.execute(
                update(CountLine)
                .where(CountLine.line_id == line_id, *guard)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("counting.update.failed", line_id=str(line_id), field=field, error=str(exc))
            raise Internal("Count line update failed") from exc

        if result.rowcount:
            diff, status = derive_diff_status(actual_qty, expected_qty)
            return {
                "success": True,
                "line_id": line_id,
                "field": field,
                "expected_qty": expected_qty,
                "actual_qty": actual_qty,
                "diff": diff,
                "status": status.value,
            }
        logger.info("counting.update.retry", line_id=str(line_id), field=field)

    raise Conflict("Count line changed concurrently; please retry", line_id=str(line_id))


async def list_lines(
    db: AsyncSession,
    store_code: str,
    shift: int,
    check_date: date | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """Lines of a slot with product details, ordered by product name."""
    validate_shift(shift)
    store = await get_store(db, store_code)
    check_date = check_date or operating_date(shift, now)

    result = await db.execute(
        select(CountLine, Product.name, Product.barcode, Product.sku, Product.category)
        .join(Product, Product.product_id == CountLine.product_id)
        .where(
            CountLine.store_id == store.store_id,
            CountLine.shift == shift,
            CountLine.check_date == check_date,
        )
        .order_by(Product.name)
    )
    return [
        {
            "line_id": line.line_id,
            "product_id": line.product_id,
            "product_name": name,
            "barcode": barcode,
            "sku": sku,
            "category": category,
            "shift": line.shift,
            "check_date": line.check_date,
            "expected_qty": line.expected_qty,
            "actual_qty": line.actual_qty,
            "diff": line.diff,
            "status": line.status,
            "note": line.note,
            "discrepancy_reason": line.discrepancy_reason,
            "last_synced_at": line.last_synced_at,
            "checked_by": line.checked_by,
            "checked_at": line.checked_at,
        }
        for line, name, barcode, sku, category in result.all()
    ]

"""Shared lookups for the counting services."""

from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from counting.errors import NotFound
from db.models import CountLine, InventoryReport, Store


async def get_store(db: AsyncSession, store_code: str, active_only: bool = True) -> Store:
    """Resolve a store by its short code (case-insensitive)."""
    if not store_code:
        raise NotFound("Store code is required")
    result = await db.execute(select(Store).where(Store.code == store_code.strip().upper()))
    store = result.scalar_one_or_none()
    if store is None:
        raise NotFound(f"Store {store_code} not found", store_code=store_code)
    if active_only and not store.is_active:
        raise NotFound(f"Store {store_code} is inactive", store_code=store_code)
    return store


async def count_slot_lines(db: AsyncSession, store_id, shift: int, check_date: date) -> int:
    result = await db.execute(
        select(func.count(CountLine.line_id)).where(
            CountLine.store_id == store_id,
            CountLine.shift == shift,
            CountLine.check_date == check_date,
        )
    )
    return int(result.scalar_one())


async def get_slot_report(db: AsyncSession, store_id, shift: int, check_date: date) -> InventoryReport | None:
    result = await db.execute(
        select(InventoryReport).where(
            InventoryReport.store_id == store_id,
            InventoryReport.shift == shift,
            InventoryReport.check_date == check_date,
        )
    )
    return result.scalar_one_or_none()

"""
Counts Router — list lines, record counts, sync expected stock, submit.
"""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_actor, get_db, get_stock_source
from counting import recorder, stock_sync, submission
from counting.rules import require_action
from integrations.base import ErpStockSource

router = APIRouter(prefix="/api/v1/counts", tags=["counts"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class CountLineResponse(BaseModel):
    line_id: UUID
    product_id: UUID
    product_name: str
    barcode: str | None
    sku: str | None
    category: str | None
    shift: int
    check_date: date
    expected_qty: int
    actual_qty: int | None
    diff: int | None
    status: str
    note: str | None
    discrepancy_reason: str | None
    last_synced_at: datetime | None
    checked_by: str | None
    checked_at: datetime | None


class FieldUpdate(BaseModel):
    field: str = Field(..., min_length=1)
    value: Any = None


class FieldUpdateResponse(BaseModel):
    success: bool
    line_id: UUID
    field: str
    expected_qty: int
    actual_qty: int | None
    diff: int | None
    status: str


class SlotRequest(BaseModel):
    store_code: str = Field(..., min_length=1, max_length=32)
    shift: int = Field(..., ge=1, le=3)


class SyncResponse(BaseModel):
    success: bool
    store_code: str
    shift: int
    check_date: date
    matched_count: int
    total: int
    synced_at: datetime


class SubmitResponse(BaseModel):
    success: bool
    report_id: UUID
    check_date: date
    counted: int
    total: int
    counted_of_total: str


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[CountLineResponse])
async def list_lines(
    store_code: str,
    shift: int = Query(..., ge=1, le=3),
    check_date: date | None = None,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    """Lines of a store/shift slot, ordered by product name."""
    return await recorder.list_lines(db, store_code, shift, check_date=check_date)


@router.patch("/{line_id}", response_model=FieldUpdateResponse)
async def update_field(
    line_id: UUID,
    body: FieldUpdate,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    """Write one field of a count line. Field access depends on the actor's role."""
    return await recorder.update_field(db, line_id, body.field, body.value, actor["actor_id"], actor["role"])


@router.post("/sync", response_model=SyncResponse)
async def sync_stock(
    body: SlotRequest,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
    source: ErpStockSource = Depends(get_stock_source),
):
    """Refresh expected quantities from the ERP."""
    require_action("sync_stock", actor["role"])
    return await stock_sync.sync_stock(db, body.store_code, body.shift, source)


@router.post("/submit", response_model=SubmitResponse, status_code=201)
async def submit(
    body: SlotRequest,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    require_action("submit", actor["role"])
    return await submission.submit(db, body.store_code, body.shift, actor["actor_id"])

"""
Distribution Router — materialize, inspect and reset count slots.
"""

from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_actor, get_db
from counting import distribution
from counting.rules import require_action

router = APIRouter(prefix="/api/v1/distribution", tags=["distribution"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class DistributeRequest(BaseModel):
    store_code: str = Field(..., min_length=1, max_length=32)
    shift: int = Field(..., ge=1, le=3)
    check_date: date | None = None


class AddProductsRequest(BaseModel):
    store_code: str = Field(..., min_length=1, max_length=32)
    shift: int = Field(..., ge=1, le=3)
    product_ids: list[UUID] = Field(..., min_length=1)


class ResetRequest(BaseModel):
    store_code: str = Field(..., min_length=1, max_length=32)
    shift: int = Field(..., ge=1, le=3)
    force: bool = False


class DistributeResponse(BaseModel):
    store_code: str
    shift: int
    check_date: date
    item_count: int
    created: int
    deleted: int | None = None


class DistributionStatusResponse(BaseModel):
    store_code: str
    shift: int
    check_date: date | None
    distributed: bool
    total_items: int
    checked_items: int
    report_submitted: bool
    report_status: str | None
    distributed_at: datetime | None
    distributed_by: str | None


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/", response_model=DistributeResponse, status_code=201)
async def distribute(
    body: DistributeRequest,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    """Create count lines for every active product. Safe to repeat."""
    require_action("distribute", actor["role"])
    return await distribution.distribute(
        db, body.store_code, body.shift, actor_id=actor["actor_id"], check_date=body.check_date
    )


@router.post("/products", response_model=DistributeResponse, status_code=201)
async def add_products(
    body: AddProductsRequest,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    require_action("distribute", actor["role"])
    return await distribution.add_products(
        db, body.store_code, body.shift, body.product_ids, actor_id=actor["actor_id"]
    )


@router.get("/status", response_model=DistributionStatusResponse)
async def distribution_status(
    store_code: str,
    shift: int = Query(..., ge=1, le=3),
    check_date: date | None = None,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    return await distribution.distribution_status(db, store_code, shift, check_date=check_date)


@router.post("/reset")
async def reset_distribution(
    body: ResetRequest,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    """Delete the slot's lines. Refused over counted lines unless forced."""
    require_action("reset_distribution", actor["role"])
    return await distribution.reset_distribution(
        db, body.store_code, body.shift, actor_id=actor["actor_id"], force=body.force
    )


@router.post("/redistribute", response_model=DistributeResponse)
async def redistribute(
    body: ResetRequest,
    db: AsyncSession = Depends(get_db),
    actor: dict = Depends(get_current_actor),
):
    require_action("reset_distribution", actor["role"])
    return await distribution.redistribute(
        db, body.store_code, body.shift, actor_id=actor["actor_id"], force=body.force
    )

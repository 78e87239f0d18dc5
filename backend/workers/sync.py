"""
Stock Sync Workers — scheduled ERP expected-quantity refresh.

Workers:
  1. sync_store_stock: refresh one store+shift slot from the ERP
  2. sync_all_stores: fan sync_store_stock out across active stores
"""

from datetime import datetime

import structlog

from workers.celery_app import celery_app

logger = structlog.get_logger()


async def run_stock_sync_pipeline(db, store_code: str, shift: int, client, now: datetime | None = None) -> dict:
    """
    Worker-path stock sync: wraps the synchronizer and reports a SyncResult.

    Domain errors are folded into the result instead of raised so one
    store never fails a scheduled batch.
    """
    from counting.errors import CountingError, NotDistributed
    from counting.stock_sync import sync_stock
    from integrations.base import SyncResult, SyncStatus

    result = SyncResult(status=SyncStatus.SUCCESS, metadata={"store_code": store_code, "shift": shift})
    try:
        outcome = await sync_stock(db, store_code, shift, client, now=now)
    except NotDistributed as exc:
        result.status = SyncStatus.NO_DATA
        result.errors.append(exc.message)
        return result.complete().as_dict()
    except CountingError as exc:
        result.status = SyncStatus.FAILED
        result.errors.append(exc.message)
        result.metadata["error_code"] = exc.code
        logger.warning("sync.stock.pipeline_failed", store_code=store_code, shift=shift, code=exc.code)
        return result.complete().as_dict()

    result.records_processed = outcome["matched_count"]
    result.records_failed = outcome["total"] - outcome["matched_count"]
    if result.records_failed:
        result.status = SyncStatus.PARTIAL if result.records_processed else SyncStatus.FAILED
    result.metadata["check_date"] = outcome["check_date"].isoformat()
    return result.complete().as_dict()


@celery_app.task(
    name="workers.sync.sync_store_stock",
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    acks_late=True,
)
def sync_store_stock(self, store_code: str, shift: int):
    """
    Refresh expected quantities for one store+shift from the ERP.

    Retried when the ERP is unreachable; other failures are reported.
    """
    import asyncio

    run_id = self.request.id or "manual"
    logger.info("sync.stock.started", store_code=store_code, shift=shift, run_id=run_id)

    async def _sync():
        from db.session import build_engine, build_session_factory
        from integrations.kiotviet import KiotVietClient

        engine = build_engine()
        try:
            async with build_session_factory(engine)() as db:
                return await run_stock_sync_pipeline(db, store_code, shift, KiotVietClient())
        finally:
            await engine.dispose()

    summary = asyncio.run(_sync())
    if summary["metadata"].get("error_code") == "upstream_unavailable":
        logger.warning("sync.stock.retrying", store_code=store_code, shift=shift, run_id=run_id)
        raise self.retry()
    logger.info("sync.stock.finished", store_code=store_code, shift=shift, run_id=run_id, status=summary["status"])
    return summary


@celery_app.task(
    name="workers.sync.sync_all_stores",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def sync_all_stores(self, shift: int):
    """Dispatch sync_store_stock for every active store."""
    import asyncio

    from sqlalchemy import select

    run_id = self.request.id or "manual"

    async def _dispatch():
        from db.models import Store
        from db.session import build_engine, build_session_factory

        engine = build_engine()
        try:
            async with build_session_factory(engine)() as db:
                result = await db.execute(select(Store.code).where(Store.is_active.is_(True)).order_by(Store.code))
                store_codes = list(result.scalars().all())
        finally:
            await engine.dispose()

        for store_code in store_codes:
            celery_app.send_task("workers.sync.sync_store_stock", kwargs={"store_code": store_code, "shift": shift})
        return store_codes

    store_codes = asyncio.run(_dispatch())
    logger.info("sync.stock.dispatched", shift=shift, stores=len(store_codes), run_id=run_id)
    return {"status": "success", "shift": shift, "dispatched": len(store_codes)}

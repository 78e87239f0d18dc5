"""
Review Coordinator — approve or reject submitted reports.

A review is a conditional UPDATE on status = 'PENDING'; of two reviewers
racing on the same report exactly one sees a row count of 1. The stock
commit that follows an approval is a separate, best-effort step: its
failure never reverts the approval, it is surfaced as
`stock_commit_failed` and can be re-run via retry_stock_commit().
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql.expression import Executable

from counting import stock_commit
from counting.errors import Conflict, CountingError, Forbidden, Internal, NotFound, ValidationFailed
from counting.rules import ReportStatus, require_reviewer
from db.models import InventoryHistory, InventoryReport, ReportComment

logger = structlog.get_logger()

DECISIONS = (ReportStatus.APPROVED, ReportStatus.REJECTED)


def _parse_decision(decision) -> ReportStatus:
    try:
        parsed = ReportStatus(decision)
    except ValueError:
        parsed = None
    if parsed not in DECISIONS:
        raise ValidationFailed(f"Invalid decision {decision!r}; expected APPROVED or REJECTED", decision=decision)
    return parsed


def _check_review_request(decision, reviewer_id: str, reason: str | None, reviewer_role: str | None):
    require_reviewer(reviewer_role)
    parsed = _parse_decision(decision)
    if not reviewer_id:
        raise ValidationFailed("reviewer_id is required")
    if parsed is ReportStatus.REJECTED and not (reason or "").strip():
        raise ValidationFailed("A rejection reason is required", field="reason")
    return parsed


async def review(
    db: AsyncSession,
    report_id: uuid.UUID,
    decision: str,
    reviewer_id: str,
    reason: str | None = None,
    reviewer_role: str | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Transition a PENDING report to APPROVED or REJECTED.

    Raises:
        Forbidden: reviewer_role is not a reviewer role.
        ValidationFailed: bad decision, or REJECTED without a reason.
        NotFound: no such report.
        Conflict: the report is no longer PENDING.
    """
    try:
        parsed = _check_review_request(decision, reviewer_id, reason, reviewer_role)
    except Forbidden:
        logger.warning("review.forbidden", report_id=str(report_id), role=reviewer_role, reviewer_id=reviewer_id)
        raise

    try:
        result = await db.execute(
            update(InventoryReport)
            .where(
                InventoryReport.report_id == report_id,
                InventoryReport.status == ReportStatus.PENDING.value,
            )
            .values(
                status=parsed.value,
                reviewed_by=reviewer_id,
                reviewed_at=now or datetime.utcnow(),
                rejection_reason=reason.strip() if parsed is ReportStatus.REJECTED else None,
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("review.write_failed", report_id=str(report_id), error=str(exc))
        raise Internal("Review could not be saved") from exc

    if result.rowcount == 0:
        current = await db.execute(select(InventoryReport.status).where(InventoryReport.report_id == report_id))
        status = current.scalar_one_or_none()
        if status is None:
            raise NotFound(f"Report {report_id} not found", report_id=str(report_id))
        logger.info("review.conflict", report_id=str(report_id), current_status=status)
        raise Conflict(
            f"Report {report_id} was already reviewed ({status})",
            report_id=str(report_id),
            current_status=status,
        )

    stock_commit_failed = False
    if parsed is ReportStatus.APPROVED:
        try:
            await stock_commit.commit_report_stock(db, report_id)
        except (CountingError, SQLAlchemyError) as exc:
            await db.rollback()
            stock_commit_failed = True
            logger.error("review.stock_commit_failed", report_id=str(report_id), error=str(exc))

    logger.info(
        "review.completed",
        report_id=str(report_id),
        status=parsed.value,
        reviewer_id=reviewer_id,
        stock_commit_failed=stock_commit_failed,
    )
    return {
        "success": True,
        "report_id": report_id,
        "status": parsed.value,
        "stock_commit_failed": stock_commit_failed,
    }


@dataclass
class BulkReviewOutcome:
    processed_count: int = 0
    failed_count: int = 0
    stock_warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.processed_count > 0

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "processed_count": self.processed_count,
            "failed_count": self.failed_count,
            "stock_warnings": self.stock_warnings,
            "errors": self.errors,
        }


async def bulk_review(
    session_factory: async_sessionmaker,
    report_ids: list[uuid.UUID],
    decision: str,
    reviewer_id: str,
    reason: str | None = None,
    reviewer_role: str | None = None,
) -> BulkReviewOutcome:
    """
    Review many reports concurrently, one session per report.

    Item failures never abort the batch; they are tallied and their
    messages returned once each.
    """
    parsed = _check_review_request(decision, reviewer_id, reason, reviewer_role)
    outcome = BulkReviewOutcome()
    if not report_ids:
        return outcome

    async def _review_one(report_id):
        async with session_factory() as session:
            return await review(session, report_id, decision, reviewer_id, reason, reviewer_role)

    results = await asyncio.gather(*(_review_one(rid) for rid in report_ids), return_exceptions=True)

    errors: dict[str, None] = {}
    for report_id, result in zip(report_ids, results):
        if isinstance(result, CountingError):
            outcome.failed_count += 1
            errors[result.message] = None
        elif isinstance(result, Exception):
            outcome.failed_count += 1
            errors["Unexpected error while reviewing"] = None
            logger.error("review.bulk.item_failed", report_id=str(report_id), error=str(result))
        elif isinstance(result, BaseException):
            raise result
        else:
            outcome.processed_count += 1
            if result["stock_commit_failed"]:
                outcome.stock_warnings.append(str(report_id))
    outcome.errors = list(errors)

    logger.info(
        "review.bulk.completed",
        decision=parsed.value,
        requested=len(report_ids),
        processed=outcome.processed_count,
        failed=outcome.failed_count,
        stock_warnings=len(outcome.stock_warnings),
    )
    return outcome


def _cascade_statements(report_id: uuid.UUID, store_id, check_date, shift: int) -> list[tuple[str, Executable]]:
    return [
        ("report_comments", delete(ReportComment).where(ReportComment.report_id == report_id)),
        (
            "inventory_history",
            delete(InventoryHistory).where(
                InventoryHistory.store_id == store_id,
                InventoryHistory.check_date == check_date,
                InventoryHistory.shift == shift,
            ),
        ),
    ]


async def delete_report(db: AsyncSession, report_id: uuid.UUID) -> dict:
    """
    Administrative delete of a report.

    Comments and history of the report's slot are removed first, each in
    its own transaction; a failed cascade is logged and skipped. The
    report row itself is deleted transactionally.
    """
    result = await db.execute(
        select(InventoryReport.store_id, InventoryReport.check_date, InventoryReport.shift).where(
            InventoryReport.report_id == report_id
        )
    )
    row = result.one_or_none()
    if row is None:
        raise NotFound(f"Report {report_id} not found", report_id=str(report_id))
    store_id, check_date, shift = row

    cascade_failures = []
    for table, stmt in _cascade_statements(report_id, store_id, check_date, shift):
        try:
            await db.execute(stmt)
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            cascade_failures.append(table)
            logger.warning("review.delete.cascade_failed", report_id=str(report_id), table=table, error=str(exc))

    try:
        await db.execute(delete(InventoryReport).where(InventoryReport.report_id == report_id))
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("review.delete.failed", report_id=str(report_id), error=str(exc))
        raise Internal("Report could not be deleted") from exc

    logger.info("review.delete.completed", report_id=str(report_id), cascade_failures=cascade_failures)
    return {"success": True, "report_id": report_id, "cascade_failures": cascade_failures}

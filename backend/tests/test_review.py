"""Tests for report review, bulk review, stock commit and report deletion."""

import asyncio

import pytest
from sqlalchemy import func, select, text

from counting import review as review_module
from counting import stock_commit
from counting.errors import Conflict, Forbidden, Internal, NotFound, ValidationFailed
from counting.recorder import list_lines, update_field
from counting.review import bulk_review, delete_report, review
from counting.submission import submit
from db.models import InventoryHistory, InventoryReport, ReportComment, StoreStockLevel


async def _submitted_bee(db, now, quantities=(5, 3, 0)) -> dict:
    lines = await list_lines(db, "BEE", 1, now=now)
    for line, qty in zip(lines, quantities):
        await update_field(db, line["line_id"], "actual_qty", qty, "emp-1", "EMPLOYEE")
    return await submit(db, "BEE", 1, "emp-1", now=now)


async def _report(db, report_id) -> InventoryReport:
    stmt = select(InventoryReport).where(InventoryReport.report_id == report_id)
    return (await db.execute(stmt.execution_options(populate_existing=True))).scalar_one()


@pytest.fixture
async def submitted(test_db, distributed_db, day_now):
    return await _submitted_bee(test_db, day_now)


@pytest.mark.asyncio
class TestReview:
    async def test_bee_scenario_approve_then_conflict(self, test_db, submitted):
        result = await review(test_db, submitted["report_id"], "APPROVED", "mgr-1", reviewer_role="MANAGER")

        assert result == {
            "success": True,
            "report_id": submitted["report_id"],
            "status": "APPROVED",
            "stock_commit_failed": False,
        }
        report = await _report(test_db, submitted["report_id"])
        assert report.status == "APPROVED"
        assert report.reviewed_by == "mgr-1"
        assert report.reviewed_at is not None
        assert report.stock_committed_at is not None

        levels = (await test_db.execute(select(StoreStockLevel.quantity).order_by(StoreStockLevel.quantity))).scalars()
        assert list(levels) == [0, 3, 5]

        with pytest.raises(Conflict):
            await review(test_db, submitted["report_id"], "APPROVED", "mgr-2", reviewer_role="ADMIN")

    async def test_reject_requires_reason(self, test_db, submitted):
        with pytest.raises(ValidationFailed, match="reason"):
            await review(test_db, submitted["report_id"], "REJECTED", "mgr-1", reason="  ", reviewer_role="MANAGER")
        assert (await _report(test_db, submitted["report_id"])).status == "PENDING"

    async def test_reject_never_commits_stock(self, test_db, submitted):
        result = await review(
            test_db, submitted["report_id"], "REJECTED", "mgr-1", reason="Recount", reviewer_role="MANAGER"
        )

        assert result["status"] == "REJECTED"
        report = await _report(test_db, submitted["report_id"])
        assert report.rejection_reason == "Recount"
        assert report.stock_committed_at is None
        assert (await test_db.execute(select(func.count(StoreStockLevel.stock_level_id)))).scalar_one() == 0

    async def test_employee_cannot_review(self, test_db, submitted):
        with pytest.raises(Forbidden):
            await review(test_db, submitted["report_id"], "APPROVED", "emp-1", reviewer_role="EMPLOYEE")
        assert (await _report(test_db, submitted["report_id"])).status == "PENDING"

    async def test_invalid_decision(self, test_db, submitted):
        with pytest.raises(ValidationFailed):
            await review(test_db, submitted["report_id"], "PENDING", "mgr-1", reviewer_role="MANAGER")

    async def test_unknown_report(self, test_db, submitted):
        import uuid

        with pytest.raises(NotFound):
            await review(test_db, uuid.uuid4(), "APPROVED", "mgr-1", reviewer_role="MANAGER")

    async def test_concurrent_reviews_have_one_winner(self, test_db, submitted, session_factory):
        await test_db.commit()

        async def _review(decision, reviewer):
            async with session_factory() as session:
                return await review(
                    session, submitted["report_id"], decision, reviewer, reason="late", reviewer_role="ADMIN"
                )

        results = await asyncio.gather(
            _review("APPROVED", "mgr-a"), _review("REJECTED", "mgr-b"), return_exceptions=True
        )

        winners = [r for r in results if isinstance(r, dict)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1 and isinstance(losers[0], Conflict)
        report = await _report(test_db, submitted["report_id"])
        assert report.status == winners[0]["status"]

    async def test_stock_commit_failure_keeps_approval(self, test_db, submitted, monkeypatch):
        async def _broken_commit(db, report_id):
            raise Internal("stock store offline")

        monkeypatch.setattr(stock_commit, "commit_report_stock", _broken_commit)

        result = await review(test_db, submitted["report_id"], "APPROVED", "mgr-1", reviewer_role="MANAGER")

        assert result["success"] is True
        assert result["stock_commit_failed"] is True
        report = await _report(test_db, submitted["report_id"])
        assert report.status == "APPROVED"
        assert report.stock_committed_at is None


@pytest.mark.asyncio
class TestStockCommit:
    async def test_retry_after_failure_is_idempotent(self, test_db, submitted, monkeypatch):
        async def _broken_commit(db, report_id):
            raise Internal("stock store offline")

        with monkeypatch.context() as patched:
            patched.setattr(stock_commit, "commit_report_stock", _broken_commit)
            await review(test_db, submitted["report_id"], "APPROVED", "mgr-1", reviewer_role="MANAGER")

        first = await stock_commit.retry_stock_commit(test_db, submitted["report_id"], "ADMIN")
        second = await stock_commit.retry_stock_commit(test_db, submitted["report_id"], "ADMIN")

        assert (first["committed"], first["already_committed"]) == (3, False)
        assert second["already_committed"] is True
        assert (await test_db.execute(select(func.count(StoreStockLevel.stock_level_id)))).scalar_one() == 3

    async def test_refuses_pending_report(self, test_db, submitted):
        with pytest.raises(Conflict, match="APPROVED"):
            await stock_commit.commit_report_stock(test_db, submitted["report_id"])

    async def test_retry_is_admin_only(self, test_db, submitted):
        await review(test_db, submitted["report_id"], "APPROVED", "mgr-1", reviewer_role="MANAGER")

        for role in ("EMPLOYEE", "MANAGER"):
            with pytest.raises(Forbidden):
                await stock_commit.retry_stock_commit(test_db, submitted["report_id"], role)

    async def test_older_report_never_overwrites_newer_stock(self, test_db, distributed_db, day_now, night_now):
        """Shift 3 of the previous day committed after shift 1 of today leaves today's levels."""
        from counting.distribution import distribute

        today = await _submitted_bee(test_db, day_now, quantities=(7, 7, 7))
        await review(test_db, today["report_id"], "APPROVED", "mgr-1", reviewer_role="MANAGER")

        await distribute(test_db, "BEE", 3, now=night_now)
        night_lines = await list_lines(test_db, "BEE", 3, now=night_now)
        for line in night_lines:
            await update_field(test_db, line["line_id"], "actual_qty", 1, "emp-1", "EMPLOYEE")
        overnight = await submit(test_db, "BEE", 3, "emp-1", now=night_now)
        await review(test_db, overnight["report_id"], "APPROVED", "mgr-1", reviewer_role="MANAGER")

        levels = (await test_db.execute(select(StoreStockLevel.quantity))).scalars().all()
        assert levels == [7, 7, 7]


@pytest.mark.asyncio
class TestBulkReview:
    async def test_partial_failures_are_tallied(self, test_db, submitted, session_factory):
        import uuid

        await test_db.commit()
        missing = uuid.uuid4()

        outcome = await bulk_review(
            session_factory,
            [submitted["report_id"], missing, missing],
            "APPROVED",
            "mgr-1",
            reviewer_role="MANAGER",
        )

        assert outcome.processed_count == 1
        assert outcome.failed_count == 2
        assert outcome.errors == [f"Report {missing} not found"]
        assert outcome.stock_warnings == []
        assert outcome.as_dict()["success"] is True

    async def test_stock_warnings_list_report_ids(self, test_db, submitted, session_factory, monkeypatch):
        async def _broken_commit(db, report_id):
            raise Internal("stock store offline")

        monkeypatch.setattr(stock_commit, "commit_report_stock", _broken_commit)
        await test_db.commit()

        outcome = await bulk_review(
            session_factory, [submitted["report_id"]], "APPROVED", "mgr-1", reviewer_role="ADMIN"
        )

        assert outcome.processed_count == 1
        assert outcome.stock_warnings == [str(submitted["report_id"])]

    async def test_forbidden_role_fails_before_any_write(self, test_db, submitted, session_factory):
        with pytest.raises(Forbidden):
            await bulk_review(session_factory, [submitted["report_id"]], "APPROVED", "emp-1", reviewer_role="EMPLOYEE")

    async def test_empty_batch(self, session_factory):
        outcome = await bulk_review(session_factory, [], "APPROVED", "mgr-1", reviewer_role="ADMIN")
        assert outcome.as_dict() == {
            "success": False,
            "processed_count": 0,
            "failed_count": 0,
            "stock_warnings": [],
            "errors": [],
        }


@pytest.mark.asyncio
class TestDeleteReport:
    async def test_cascades_to_comments_and_history(self, test_db, submitted):
        from counting.reports import add_comment

        await add_comment(test_db, submitted["report_id"], "mgr-1", "Check the bread count")

        result = await delete_report(test_db, submitted["report_id"])

        assert result["cascade_failures"] == []
        for column in (InventoryReport.report_id, InventoryHistory.history_id, ReportComment.comment_id):
            assert (await test_db.execute(select(func.count(column)))).scalar_one() == 0

    async def test_cascade_failure_is_logged_not_fatal(self, test_db, submitted, monkeypatch):
        original = review_module._cascade_statements

        def _with_broken_table(*args):
            return [("missing_table", text("DELETE FROM no_such_table")), *original(*args)]

        monkeypatch.setattr(review_module, "_cascade_statements", _with_broken_table)

        result = await delete_report(test_db, submitted["report_id"])

        assert result["cascade_failures"] == ["missing_table"]
        assert (await test_db.execute(select(func.count(InventoryReport.report_id)))).scalar_one() == 0
        assert (await test_db.execute(select(func.count(InventoryHistory.history_id)))).scalar_one() == 0

    async def test_unknown_report(self, test_db, seeded_db):
        import uuid

        with pytest.raises(NotFound):
            await delete_report(test_db, uuid.uuid4())

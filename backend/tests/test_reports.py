"""Tests for report queries and review comments."""

import uuid

import pytest

from counting import reports
from counting.errors import Forbidden, NotFound, ValidationFailed
from counting.recorder import list_lines, update_field
from counting.review import review
from counting.submission import submit


@pytest.fixture
async def report_id(test_db, distributed_db, day_now):
    lines = await list_lines(test_db, "BEE", 1, now=day_now)
    for line, qty in zip(lines, (1, 3)):
        await update_field(test_db, line["line_id"], "actual_qty", qty, "emp-1", "EMPLOYEE")
    await update_field(test_db, lines[1]["line_id"], "expected_qty", 3, "admin-1", "ADMIN")
    return (await submit(test_db, "BEE", 1, "emp-1", now=day_now))["report_id"]


@pytest.mark.asyncio
class TestReportQueries:
    async def test_report_status(self, test_db, distributed_db, day_now):
        before = await reports.report_status(test_db, "BEE", 1, now=day_now)
        assert before["submitted"] is False

        submitted = await submit(test_db, "BEE", 1, "emp-1", now=day_now)
        after = await reports.report_status(test_db, "BEE", 1, now=day_now)

        assert after["submitted"] is True
        assert after["report_id"] == submitted["report_id"]
        assert after["status"] == "PENDING"

    async def test_list_reports_with_history_totals(self, test_db, report_id):
        listed = await reports.list_reports(test_db)

        assert len(listed) == 1
        row = listed[0]
        assert row["store_code"] == "BEE"
        assert (row["total"], row["counted"], row["matched"], row["missing"], row["over"]) == (3, 2, 1, 0, 1)

    async def test_list_reports_filters(self, test_db, report_id):
        assert await reports.list_reports(test_db, status="APPROVED") == []
        await review(test_db, report_id, "APPROVED", "mgr-1", reviewer_role="MANAGER")
        approved = await reports.list_reports(test_db, status="APPROVED", store_code="bee")
        assert [r["report_id"] for r in approved] == [report_id]

        with pytest.raises(ValidationFailed):
            await reports.list_reports(test_db, status="DONE")

    async def test_detail_and_lines(self, test_db, report_id):
        detail = await reports.report_detail(test_db, report_id)
        lines = await reports.report_lines(test_db, report_id)

        assert detail["status"] == "PENDING"
        assert detail["total"] == 3
        # Discrepancies and uncounted lines sort ahead of matched ones.
        assert [line["status"] for line in lines] == ["OVER", "PENDING", "MATCHED"]
        assert lines[-1]["product_name"] == "Bread"

    async def test_detail_unknown(self, test_db, seeded_db):
        with pytest.raises(NotFound):
            await reports.report_detail(test_db, uuid.uuid4())


@pytest.mark.asyncio
class TestComments:
    async def test_comment_lifecycle(self, test_db, report_id):
        created = await reports.add_comment(test_db, report_id, "mgr-1", "  Recount the bread  ")
        assert created["comment"] == "Recount the bread"

        updated = await reports.update_comment(test_db, created["comment_id"], "mgr-1", "Bread recounted")
        assert updated["comment"] == "Bread recounted"
        assert [c["comment"] for c in await reports.list_comments(test_db, report_id)] == ["Bread recounted"]

        await reports.delete_comment(test_db, created["comment_id"], "mgr-1")
        assert await reports.list_comments(test_db, report_id) == []

    async def test_empty_comment_rejected(self, test_db, report_id):
        with pytest.raises(ValidationFailed):
            await reports.add_comment(test_db, report_id, "mgr-1", "   ")

    async def test_only_author_may_edit(self, test_db, report_id):
        created = await reports.add_comment(test_db, report_id, "mgr-1", "Looks fine")
        with pytest.raises(Forbidden):
            await reports.update_comment(test_db, created["comment_id"], "mgr-2", "Hijacked")

    async def test_comment_on_unknown_report(self, test_db, seeded_db):
        with pytest.raises(NotFound):
            await reports.add_comment(test_db, uuid.uuid4(), "mgr-1", "Hello")

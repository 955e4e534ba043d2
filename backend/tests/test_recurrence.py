# tests/test_recurrence.py — Recurring task generation
from datetime import datetime, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from models import Task
from recurrence import compute_next_due_date, generate_recurring_tasks
from tests.conftest import create_task, get_auth_headers


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestNextDueDate:
    @pytest.mark.parametrize("rtype, expected", [
        ("daily", _utc(2024, 3, 11)),
        ("weekly", _utc(2024, 3, 17)),
        ("biweekly", _utc(2024, 3, 24)),
        ("monthly", _utc(2024, 4, 10)),
    ])
    def test_offsets(self, rtype, expected):
        assert compute_next_due_date(_utc(2024, 3, 10), rtype) == expected

    def test_month_end_clamps_in_leap_year(self):
        assert compute_next_due_date(_utc(2024, 1, 31), "monthly") == _utc(2024, 2, 29)

    def test_month_end_clamps_in_common_year(self):
        assert compute_next_due_date(_utc(2025, 1, 31), "monthly") == _utc(2025, 2, 28)

    def test_december_rolls_year(self):
        assert compute_next_due_date(_utc(2024, 12, 15), "monthly") == _utc(2025, 1, 15)

    def test_unknown_type_unchanged(self):
        assert compute_next_due_date(_utc(2024, 3, 10), "fortnightly") == _utc(2024, 3, 10)


async def _weekly_done_task(db, department, **overrides):
    fields = dict(
        status="done",
        due_date=_utc(2024, 1, 1),
        recurrence={"type": "weekly", "end_date": "2024-01-10T00:00:00Z"},
        subtasks=[{"id": "sub-1", "title": "Check cables", "completed": True}],
        logged_hours=4.0,
    )
    fields.update(overrides)
    return await create_task(db, department, "Weekly check", **fields)


@pytest.mark.asyncio
class TestGenerateRecurringTasks:
    async def test_weekly_instance_is_generated(self, db_session, department):
        origin = await _weekly_done_task(db_session, department)
        created = await generate_recurring_tasks(db_session, now=_utc(2024, 1, 2))

        assert len(created) == 1
        instance = created[0]
        assert instance.parent_recurring_id == origin.id
        assert instance.due_date == _utc(2024, 1, 8)
        assert instance.status == "todo"
        assert instance.logged_hours == 0
        assert instance.subtasks[0]["id"] != "sub-1"
        assert instance.subtasks[0]["completed"] is False
        assert "last_generated" not in instance.recurrence
        assert instance.activity_log[0]["user_id"] == "system"

        await db_session.refresh(origin)
        assert origin.status == "done"
        assert origin.recurrence["last_generated"].startswith("2024-01-02")

    async def test_second_run_is_idempotent(self, db_session, department):
        await _weekly_done_task(db_session, department)
        await generate_recurring_tasks(db_session, now=_utc(2024, 1, 2))
        again = await generate_recurring_tasks(db_session, now=_utc(2024, 1, 3))
        assert again == []

        result = await db_session.execute(select(Task))
        assert len(result.scalars().all()) == 2

    async def test_rerun_without_due_date_is_idempotent(self, db_session, department):
        await _weekly_done_task(db_session, department, due_date=None, recurrence={"type": "daily"})
        first = await generate_recurring_tasks(db_session, now=_utc(2024, 1, 2, 9))
        second = await generate_recurring_tasks(db_session, now=_utc(2024, 1, 2, 10))

        assert len(first) == 1
        assert first[0].due_date == _utc(2024, 1, 3, 9)
        assert second == []
        result = await db_session.execute(select(Task))
        assert len(result.scalars().all()) == 2

    async def test_new_completion_spawns_again(self, db_session, department):
        origin = await _weekly_done_task(
            db_session, department, due_date=None, recurrence={"type": "daily"}, completed_at=_utc(2024, 1, 2, 8),
        )
        await generate_recurring_tasks(db_session, now=_utc(2024, 1, 2, 9))

        origin.completed_at = _utc(2024, 1, 3, 8)
        await db_session.commit()
        again = await generate_recurring_tasks(db_session, now=_utc(2024, 1, 3, 9))
        assert len(again) == 1
        assert again[0].due_date == _utc(2024, 1, 4, 9)

    async def test_next_due_past_end_date_is_skipped(self, db_session, department):
        await _weekly_done_task(db_session, department, due_date=_utc(2024, 1, 5))
        assert await generate_recurring_tasks(db_session, now=_utc(2024, 1, 6)) == []

    async def test_expired_rule_is_skipped(self, db_session, department):
        await _weekly_done_task(db_session, department)
        assert await generate_recurring_tasks(db_session, now=_utc(2024, 2, 1)) == []

    async def test_ignores_open_archived_and_plain_tasks(self, db_session, department):
        await _weekly_done_task(db_session, department, status="in_progress")
        await _weekly_done_task(db_session, department, status="archived", archived=True)
        await create_task(db_session, department, "One-off", status="done", recurrence={"type": "none"})
        assert await generate_recurring_tasks(db_session, now=_utc(2024, 1, 2)) == []

    async def test_instances_append_to_column(self, db_session, department):
        await create_task(db_session, department, "Existing", status="todo", order=5)
        await _weekly_done_task(db_session, department)
        await _weekly_done_task(db_session, department, recurrence={"type": "daily"})

        created = await generate_recurring_tasks(db_session, now=_utc(2024, 1, 2))
        assert sorted(t.order for t in created) == [6, 7]

    async def test_custom_columns_pick_first_active(self, db_session, department):
        department.columns = [
            {"id": "backlog", "name": "Backlog", "order": 0},
            {"id": "ready", "name": "Ready", "order": 1},
            {"id": "done", "name": "Done", "order": 2},
        ]
        await db_session.commit()
        await _weekly_done_task(db_session, department)

        created = await generate_recurring_tasks(db_session, now=_utc(2024, 1, 2))
        assert created[0].status == "ready"


@pytest.mark.asyncio
async def test_process_endpoint(client: AsyncClient, db_session, department, member):
    await _weekly_done_task(db_session, department, recurrence={"type": "monthly"})
    res = await client.post("/api/v1/tasks/recurring/process", headers=get_auth_headers(member))
    assert res.status_code == 200
    data = res.json()
    assert data["count"] == 1
    assert data["created"][0]["title"] == "Weekly check"
    assert data["created"][0]["due_date"].startswith("2024-02-01")

    res = await client.post("/api/v1/tasks/recurring/process", headers=get_auth_headers(member))
    assert res.json()["count"] == 0

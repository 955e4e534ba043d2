# recurrence.py — Recurring task generation
"""
Completed recurring tasks spawn their next instance here.

A task qualifies when its recurrence type is not ``none``, it sits in the
``done`` column, it is not archived, and its recurrence end date (if any) has
not passed. The clone lands in the department's first active column with a
fresh position; the origin only gets ``recurrence.last_generated`` stamped.

Runs are idempotent: an origin spawns at most one instance per completion
(``last_generated`` at or after ``completed_at`` means it was handled) and never
two instances for the same due date.
"""
import calendar
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from board import first_active_column, make_activity, next_order, SYSTEM_ACTOR
from models import (
    Department, Task, RecurrenceType, DONE_STATUS, as_utc, new_uuid, utcnow,
)

logger = logging.getLogger("kanban-board.recurrence")

_FIXED_OFFSETS = {
    RecurrenceType.DAILY.value: timedelta(days=1),
    RecurrenceType.WEEKLY.value: timedelta(days=7),
    RecurrenceType.BIWEEKLY.value: timedelta(days=14),
}


def _add_month(dt: datetime) -> datetime:
    year, month = (dt.year + 1, 1) if dt.month == 12 else (dt.year, dt.month + 1)
    # Jan 31 -> last day of February
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def compute_next_due_date(current: datetime, recurrence_type: str) -> datetime:
    """Next due date for a recurrence type; unknown types leave the date unchanged"""
    rtype = recurrence_type.value if isinstance(recurrence_type, RecurrenceType) else recurrence_type
    if rtype in _FIXED_OFFSETS:
        return current + _FIXED_OFFSETS[rtype]
    if rtype == RecurrenceType.MONTHLY.value:
        return _add_month(current)
    return current


def parse_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


def is_recurring(task: Task) -> bool:
    rec = task.recurrence or {}
    return rec.get("type", RecurrenceType.NONE.value) != RecurrenceType.NONE.value


def build_instance(origin: Task, due_date: datetime, status: str, order: int, now: datetime) -> Task:
    """Clone a completed recurring task into its next open instance"""
    recurrence = {k: v for k, v in (origin.recurrence or {}).items() if k != "last_generated"}
    actor_id, actor_name = SYSTEM_ACTOR
    return Task(
        id=new_uuid(),
        department_id=origin.department_id,
        title=origin.title,
        description=origin.description or "",
        status=status,
        priority=origin.priority,
        order=order,
        created_by=origin.created_by,
        assignee_ids=list(origin.assignee_ids or []),
        due_date=due_date,
        estimated_hours=origin.estimated_hours,
        logged_hours=0,
        blocked_by=list(origin.blocked_by or []),
        recurrence=recurrence,
        parent_recurring_id=origin.id,
        labels=[dict(label) for label in (origin.labels or [])],
        subtasks=[
            {"id": new_uuid(), "title": s.get("title", ""), "completed": False}
            for s in (origin.subtasks or [])
        ],
        attachments=[],
        comments=[],
        activity_log=[make_activity(
            actor_id, actor_name, "created",
            f'Recurring task auto-generated from "{origin.title}"', now,
        )],
        created_at=now,
        updated_at=now,
    )


def _completion_handled(origin: Task) -> bool:
    """True once an instance was generated for the origin's latest completion"""
    last_generated = parse_timestamp((origin.recurrence or {}).get("last_generated"))
    if last_generated is None:
        return False
    completed_at = as_utc(origin.completed_at)
    return completed_at is None or last_generated >= completed_at


async def _already_spawned(db: AsyncSession, origin: Task, due_date: datetime) -> bool:
    result = await db.execute(select(Task.due_date).where(Task.parent_recurring_id == origin.id))
    return any(as_utc(d) == due_date for d in result.scalars().all())


async def generate_recurring_tasks(db: AsyncSession, now: Optional[datetime] = None) -> List[Task]:
    """Spawn the next instance of every completed recurring task"""
    now = as_utc(now) or utcnow()

    stmt = select(Task).where(Task.status == DONE_STATUS, Task.archived.is_(False))
    result = await db.execute(stmt)
    candidates = [t for t in result.scalars().all() if is_recurring(t)]

    departments: Dict[str, Department] = {}
    created: List[Task] = []

    for origin in candidates:
        rec = origin.recurrence
        if _completion_handled(origin):
            continue

        end_date = parse_timestamp(rec.get("end_date"))
        if end_date is not None and end_date < now:
            continue

        next_due = compute_next_due_date(as_utc(origin.due_date) or now, rec["type"])
        if end_date is not None and next_due > end_date:
            continue

        if await _already_spawned(db, origin, next_due):
            continue

        dept = departments.get(origin.department_id)
        if dept is None:
            dept = await db.get(Department, origin.department_id)
            if dept is None:
                logger.warning(f"Recurring task {origin.id} references missing department")
                continue
            departments[dept.id] = dept

        status = first_active_column(dept)
        order = await next_order(db, dept.id, status)
        instance = build_instance(origin, next_due, status, order, now)
        db.add(instance)

        origin.recurrence = {**rec, "last_generated": now.isoformat()}
        origin.updated_at = now
        # Make the new row visible to next_order for the following origin
        await db.flush()
        created.append(instance)

    await db.commit()
    if created:
        logger.info(f"Generated {len(created)} recurring task(s)")
    return created

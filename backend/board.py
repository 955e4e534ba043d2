# board.py — Shared task-store helpers (ordering, activity log, columns)
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import String, cast, select, func
from sqlalchemy.ext.asyncio import AsyncSession

from models import (
    Department, Task, BACKLOG_STATUS, DONE_STATUS, new_uuid, utcnow,
)

# Collisions on `order` are tolerated; ties resolve by insertion time, then id
TASK_ORDERING = (Task.order.asc(), Task.created_at.asc(), Task.id.asc())

SYSTEM_ACTOR = ("system", "System")


def assigned_to(user_id: str):
    """SQL prefilter for tasks whose assignee_ids may hold user_id.

    Matches the quoted id inside the serialised JSON list, which works on both
    SQLite and PostgreSQL JSON columns. Callers still confirm membership in Python.
    """
    return cast(Task.assignee_ids, String).contains(f'"{user_id}"')


async def next_order(db: AsyncSession, department_id: str, status: str) -> int:
    """Position after the last task in (department, status); 0 for an empty column"""
    stmt = select(func.max(Task.order)).where(
        Task.department_id == department_id, Task.status == status,
    )
    result = await db.execute(stmt)
    max_order = result.scalar()
    return 0 if max_order is None else max_order + 1


def first_active_column(department: Department) -> str:
    """First column that is neither the backlog nor done"""
    columns = department.board_columns
    for col in columns:
        if col["id"] not in (BACKLOG_STATUS, DONE_STATUS):
            return col["id"]
    return columns[0]["id"]


def make_activity(user_id: str, user_name: str, action: str, details: str,
                  when: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "id": new_uuid(),
        "user_id": user_id,
        "user_name": user_name,
        "action": action,
        "details": details,
        "timestamp": (when or utcnow()).isoformat(),
    }


def append_activity(task: Task, user_id: str, user_name: str, action: str, details: str) -> None:
    # JSON columns only register a change on reassignment
    task.activity_log = [*(task.activity_log or []), make_activity(user_id, user_name, action, details)]


def append_item(items: Optional[List[dict]], item: dict) -> List[dict]:
    return [*(items or []), item]


def remove_item(items: Optional[List[dict]], item_id: str) -> List[dict]:
    return [i for i in (items or []) if i.get("id") != item_id]


def find_item(items: Optional[List[dict]], item_id: str) -> Optional[dict]:
    return next((i for i in (items or []) if i.get("id") == item_id), None)

# routers/tasks.py — Department task board: CRUD, moves, archive, recurrence, comments, attachments
from datetime import datetime
from typing import Optional, List, Dict, Any, Tuple

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from board import (
    TASK_ORDERING, assigned_to, next_order, append_activity, append_item, remove_item, find_item,
)
from database import get_db_session
from models import (
    Department, Task, TaskPriority, RecurrenceType, LabelColor,
    ARCHIVED_STATUS, BACKLOG_STATUS, DONE_STATUS, new_uuid, utcnow,
)
from permissions import resolve_access, require_manage, require_view
from push import notify_users
from recurrence import generate_recurring_tasks, parse_timestamp

router = APIRouter(prefix="/api/v1/tasks", tags=["Tasks"])

# Columns that may not be set to null
NON_NULLABLE_FIELDS = {
    "title", "description", "status", "priority", "order", "department_id",
    "assignee_ids", "labels", "subtasks", "blocked_by",
}


# ============================================================
# SCHEMAS
# ============================================================

class LabelIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: LabelColor = LabelColor.GRAY


class SubtaskIn(BaseModel):
    id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=500)
    completed: bool = False


class RecurrenceIn(BaseModel):
    type: RecurrenceType = RecurrenceType.NONE
    end_date: Optional[datetime] = None


class TaskCreate(BaseModel):
    department_id: str
    title: str = Field(..., min_length=1, max_length=500)
    description: str = ""
    status: Optional[str] = None  # If None, goes to the first column
    priority: TaskPriority = TaskPriority.MEDIUM
    assignee_ids: List[str] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    labels: List[LabelIn] = Field(default_factory=list)
    subtasks: List[SubtaskIn] = Field(default_factory=list)
    estimated_hours: Optional[float] = Field(None, ge=0)
    logged_hours: Optional[float] = Field(None, ge=0)
    blocked_by: List[str] = Field(default_factory=list)
    recurrence: Optional[RecurrenceIn] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[TaskPriority] = None
    assignee_ids: Optional[List[str]] = None
    due_date: Optional[datetime] = None
    labels: Optional[List[LabelIn]] = None
    subtasks: Optional[List[SubtaskIn]] = None
    estimated_hours: Optional[float] = Field(None, ge=0)
    logged_hours: Optional[float] = Field(None, ge=0)
    blocked_by: Optional[List[str]] = None
    recurrence: Optional[RecurrenceIn] = None
    order: Optional[int] = Field(None, ge=0)
    department_id: Optional[str] = None


class TaskReorder(BaseModel):
    task_id: str
    new_status: Optional[str] = None
    new_order: Optional[int] = Field(None, ge=0)


class CommentCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=10000)


class AttachmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1)
    type: str = ""
    size: int = Field(0, ge=0)


class TaskOut(BaseModel):
    id: str
    department_id: str
    title: str
    description: str = ""
    status: str
    priority: str
    order: int = 0
    created_by: Optional[str] = None
    assignee_ids: list = []
    due_date: Optional[str] = None
    estimated_hours: Optional[float] = None
    logged_hours: Optional[float] = None
    blocked_by: list = []
    recurrence: Optional[dict] = None
    parent_recurring_id: Optional[str] = None
    labels: list = []
    subtasks: list = []
    attachments: list = []
    comments: list = []
    activity_log: list = []
    archived: bool = False
    previous_status: Optional[str] = None
    archived_at: Optional[str] = None
    archived_by: Optional[str] = None
    completed_at: Optional[str] = None
    created_at: str
    updated_at: str


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def _task_out(t: Task) -> TaskOut:
    return TaskOut(
        id=t.id,
        department_id=t.department_id,
        title=t.title,
        description=t.description or "",
        status=t.status,
        priority=t.priority.value if isinstance(t.priority, TaskPriority) else str(t.priority),
        order=t.order or 0,
        created_by=t.created_by,
        assignee_ids=t.assignee_ids or [],
        due_date=_ts(t.due_date),
        estimated_hours=t.estimated_hours,
        logged_hours=t.logged_hours,
        blocked_by=t.blocked_by or [],
        recurrence=t.recurrence,
        parent_recurring_id=t.parent_recurring_id,
        labels=t.labels or [],
        subtasks=t.subtasks or [],
        attachments=t.attachments or [],
        comments=t.comments or [],
        activity_log=t.activity_log or [],
        archived=bool(t.archived),
        previous_status=t.previous_status,
        archived_at=_ts(t.archived_at),
        archived_by=t.archived_by,
        completed_at=_ts(t.completed_at),
        created_at=_ts(t.created_at),
        updated_at=_ts(t.updated_at),
    )


async def _get_department(db: AsyncSession, department_id: str) -> Department:
    dept = await db.get(Department, department_id)
    if not dept:
        raise HTTPException(status_code=404, detail="Department not found")
    return dept


async def _get_task(db: AsyncSession, task_id: str) -> Task:
    task = await db.get(Task, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


def _validate_status(dept: Department, status: str) -> None:
    if status == ARCHIVED_STATUS or status not in dept.column_ids:
        raise HTTPException(status_code=400, detail=f"Invalid status '{status}' for this department")


def _normalize_recurrence(rule: Optional[Dict[str, Any]], existing: Optional[Dict[str, Any]] = None) -> Optional[dict]:
    """A rule of type none clears the recurrence"""
    if not rule or rule.get("type", RecurrenceType.NONE.value) == RecurrenceType.NONE.value:
        return None
    out = {"type": rule["type"], "end_date": rule.get("end_date")}
    if existing and existing.get("last_generated"):
        out["last_generated"] = existing["last_generated"]
    return out


def _with_subtask_ids(subtasks: List[dict]) -> List[dict]:
    return [{**s, "id": s.get("id") or new_uuid()} for s in subtasks]


def _set_status(task: Task, status: str) -> None:
    if status == DONE_STATUS and task.status != DONE_STATUS:
        task.completed_at = utcnow()
    elif status != DONE_STATUS:
        task.completed_at = None
    task.status = status


async def _apply_changes(
    db: AsyncSession, user: CurrentUser, task: Task, dept: Department, changes: Dict[str, Any],
) -> Tuple[List[str], Optional[str], List[str]]:
    """Write already-permitted changes onto the task.

    Returns (changed field names, previous status if the task moved, newly
    added assignee ids).
    """
    changes = {k: v for k, v in changes.items() if not (v is None and k in NON_NULLABLE_FIELDS)}
    changed: List[str] = []
    old_status = task.status
    added_assignees: List[str] = []

    target_dept = dept
    new_dept_id = changes.pop("department_id", None)
    if new_dept_id and new_dept_id != task.department_id:
        target_dept = await _get_department(db, new_dept_id)
        require_manage(
            resolve_access(user, target_dept),
            "Admin rights in the target department are required to move a task there",
        )
        task.department_id = target_dept.id
        changed.append("department_id")
        if "status" not in changes and task.status not in target_dept.column_ids:
            changes["status"] = target_dept.board_columns[0]["id"]

    new_status = changes.pop("status", None)
    new_order = changes.pop("order", None)
    if new_status is not None:
        # A kept status must also exist on the board the task moves to
        if new_status != task.status or target_dept is not dept:
            _validate_status(target_dept, new_status)
        if new_status != task.status:
            _set_status(task, new_status)

    if new_order is not None:
        task.order = new_order
    elif task.status != old_status or target_dept is not dept:
        task.order = await next_order(db, task.department_id, task.status)

    for key, value in changes.items():
        if key == "priority":
            value = TaskPriority(value)
        elif key == "due_date":
            value = parse_timestamp(value)
        elif key == "subtasks":
            value = _with_subtask_ids(value)
        elif key == "recurrence":
            value = _normalize_recurrence(value, task.recurrence)
        elif key == "assignee_ids":
            value = list(dict.fromkeys(value))
            previous = set(task.assignee_ids or [])
            added_assignees = [uid for uid in value if uid not in previous]
        elif key == "description" and value is None:
            value = ""
        setattr(task, key, value)
        changed.append(key)

    moved_from = old_status if task.status != old_status else None
    if moved_from or changed or new_order is not None:
        task.updated_at = utcnow()
    return changed, moved_from, added_assignees


def _record_and_notify(
    background_tasks: BackgroundTasks, user: CurrentUser, task: Task,
    changed: List[str], moved_from: Optional[str], added_assignees: List[str],
) -> None:
    if moved_from:
        append_activity(task, user.id, user.label, "moved", f"Moved from {moved_from} to {task.status}")
        background_tasks.add_task(
            notify_users, task.assignee_ids or [], "task_moved", task.title, task.id, user.label,
            {"old_status": moved_from, "new_status": task.status}, user.id,
        )
    if changed:
        append_activity(task, user.id, user.label, "updated", f"Updated: {', '.join(changed)}")
        background_tasks.add_task(
            notify_users, task.assignee_ids or [], "task_edited", task.title, task.id, user.label,
            {"changed_fields": changed}, user.id,
        )
    if added_assignees:
        background_tasks.add_task(
            notify_users, added_assignees, "task_assigned", task.title, task.id, user.label,
            None, user.id,
        )


async def _visible_department_ids(db: AsyncSession, user: CurrentUser) -> List[str]:
    result = await db.execute(select(Department))
    return [
        d.id for d in result.scalars().all()
        if resolve_access(user, d).can_view
    ]


def _require_not_archived(task: Task) -> None:
    if task.archived:
        raise HTTPException(status_code=400, detail="Archived tasks must be restored first")


# ============================================================
# LIST / READ
# ============================================================

@router.get("", response_model=List[TaskOut])
async def list_tasks(
    department_id: Optional[str] = Query(None),
    assigned_to_me: bool = Query(default=False),
    archived: bool = Query(default=False),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """List tasks on the boards the caller can see"""
    stmt = select(Task).where(Task.archived.is_(archived))

    if department_id:
        dept = await _get_department(db, department_id)
        require_view(resolve_access(user, dept))
        stmt = stmt.where(Task.department_id == department_id)
    elif not user.is_superuser and not assigned_to_me:
        visible = await _visible_department_ids(db, user)
        if not visible:
            return []
        stmt = stmt.where(Task.department_id.in_(visible))
    if assigned_to_me:
        stmt = stmt.where(assigned_to(user.id))

    result = await db.execute(stmt.order_by(*TASK_ORDERING))
    tasks = result.scalars().all()
    if assigned_to_me:
        tasks = [t for t in tasks if user.id in (t.assignee_ids or [])]
    return [_task_out(t) for t in tasks]


@router.post("/recurring/process")
async def process_recurring_tasks(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Spawn the next instance of every completed recurring task"""
    created = await generate_recurring_tasks(db)
    return {
        "count": len(created),
        "created": [
            {"id": t.id, "title": t.title, "due_date": _ts(t.due_date)}
            for t in created
        ],
    }


@router.put("/reorder", response_model=TaskOut)
async def reorder_task(
    data: TaskReorder,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Move a task to another column and/or position"""
    task = await _get_task(db, data.task_id)
    dept = await _get_department(db, task.department_id)
    access = resolve_access(user, dept, task)
    if not access.can_edit_task:
        raise HTTPException(status_code=403, detail="Only admins or assignees can move this task")
    _require_not_archived(task)

    requested = data.model_dump(exclude_none=True)
    changes = {}
    if "new_status" in requested:
        changes["status"] = requested["new_status"]
    if "new_order" in requested:
        changes["order"] = requested["new_order"]

    changed, moved_from, added = await _apply_changes(db, user, task, dept, access.filter_changes(changes))
    _record_and_notify(background_tasks, user, task, changed, moved_from, added)
    await db.commit()
    await db.refresh(task)
    return _task_out(task)


@router.get("/{task_id}", response_model=TaskOut)
async def get_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(db, task_id)
    dept = await _get_department(db, task.department_id)
    require_view(resolve_access(user, dept, task), "Access denied to this task")
    return _task_out(task)


# ============================================================
# CREATE / UPDATE
# ============================================================

@router.post("", response_model=TaskOut, status_code=201)
async def create_task(
    data: TaskCreate,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a task in a department (department admins only)"""
    dept = await _get_department(db, data.department_id)
    require_manage(resolve_access(user, dept), "Only department admins can create tasks")

    status = data.status or dept.board_columns[0]["id"]
    _validate_status(dept, status)

    payload = data.model_dump(mode="json")
    now = utcnow()
    task = Task(
        id=new_uuid(),
        department_id=dept.id,
        title=data.title,
        description=data.description or "",
        status=status,
        priority=data.priority,
        order=await next_order(db, dept.id, status),
        created_by=user.id,
        assignee_ids=list(dict.fromkeys(data.assignee_ids)),
        due_date=data.due_date,
        estimated_hours=data.estimated_hours,
        logged_hours=data.logged_hours,
        blocked_by=data.blocked_by,
        recurrence=_normalize_recurrence(payload.get("recurrence")),
        labels=payload["labels"],
        subtasks=_with_subtask_ids(payload["subtasks"]),
        attachments=[],
        comments=[],
        activity_log=[],
        completed_at=now if status == DONE_STATUS else None,
        created_at=now,
        updated_at=now,
    )
    append_activity(task, user.id, user.label, "created", f'Created task "{task.title}"')
    db.add(task)
    await db.commit()
    await db.refresh(task)

    background_tasks.add_task(
        notify_users, task.assignee_ids, "task_assigned", task.title, task.id, user.label, None, user.id,
    )
    return _task_out(task)


@router.put("/{task_id}", response_model=TaskOut)
async def update_task(
    task_id: str,
    data: TaskUpdate,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Update task fields; fields outside the caller's role are ignored"""
    task = await _get_task(db, task_id)
    dept = await _get_department(db, task.department_id)
    access = resolve_access(user, dept, task)
    if not access.can_edit_task:
        raise HTTPException(status_code=403, detail="Only admins or assignees can edit this task")
    _require_not_archived(task)

    requested = data.model_dump(mode="json", exclude_unset=True)
    changes = access.filter_changes(requested)

    changed, moved_from, added = await _apply_changes(db, user, task, dept, changes)
    _record_and_notify(background_tasks, user, task, changed, moved_from, added)
    await db.commit()
    await db.refresh(task)
    return _task_out(task)


# ============================================================
# ARCHIVE / RESTORE / DELETE
# ============================================================

@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    background_tasks: BackgroundTasks,
    permanent: bool = Query(default=False),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Archive a task, or purge an already archived one with ?permanent=true"""
    task = await _get_task(db, task_id)
    dept = await _get_department(db, task.department_id)
    require_manage(resolve_access(user, dept, task), "Only department admins can delete tasks")

    if permanent:
        if not task.archived:
            raise HTTPException(status_code=400, detail="Only archived tasks can be permanently deleted")
        title, assignees = task.title, list(task.assignee_ids or [])
        await db.delete(task)
        await db.commit()
        background_tasks.add_task(
            notify_users, assignees, "task_deleted", title, task_id, user.label, None, user.id,
        )
        return {"status": "deleted", "task_id": task_id}

    if task.archived:
        raise HTTPException(status_code=400, detail="Task is already archived")

    now = utcnow()
    task.previous_status = task.status
    task.status = ARCHIVED_STATUS
    task.archived = True
    task.archived_at = now
    task.archived_by = user.id
    task.updated_at = now
    append_activity(task, user.id, user.label, "archived", f"Archived from {task.previous_status}")
    await db.commit()
    return {"status": "archived", "task_id": task_id}


@router.post("/{task_id}/restore", response_model=TaskOut)
async def restore_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Return an archived task to the column it was archived from"""
    task = await _get_task(db, task_id)
    dept = await _get_department(db, task.department_id)
    require_manage(resolve_access(user, dept, task), "Only department admins can restore tasks")
    if not task.archived:
        raise HTTPException(status_code=400, detail="Task is not archived")

    status = task.previous_status or BACKLOG_STATUS
    task.status = status
    task.order = await next_order(db, task.department_id, status)
    task.archived = False
    task.previous_status = None
    task.archived_at = None
    task.archived_by = None
    task.updated_at = utcnow()
    append_activity(task, user.id, user.label, "restored", f"Restored to {status}")
    await db.commit()
    await db.refresh(task)
    return _task_out(task)


# ============================================================
# COMMENTS
# ============================================================

@router.post("/{task_id}/comments", status_code=201)
async def add_comment(
    task_id: str,
    data: CommentCreate,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(db, task_id)
    dept = await _get_department(db, task.department_id)
    if not resolve_access(user, dept, task).can_comment:
        raise HTTPException(status_code=403, detail="Access denied to this task")

    comment = {
        "id": new_uuid(),
        "user_id": user.id,
        "user_name": user.label,
        "text": data.text,
        "timestamp": utcnow().isoformat(),
    }
    task.comments = append_item(task.comments, comment)
    append_activity(task, user.id, user.label, "commented", "Added a comment")
    task.updated_at = utcnow()
    await db.commit()

    background_tasks.add_task(
        notify_users, task.assignee_ids or [], "comment_added", task.title, task.id, user.label, None, user.id,
    )
    return comment


@router.delete("/{task_id}/comments/{comment_id}")
async def delete_comment(
    task_id: str,
    comment_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Authors remove their own comments; superusers remove any"""
    task = await _get_task(db, task_id)
    comment = find_item(task.comments, comment_id)
    if not comment:
        raise HTTPException(status_code=404, detail="Comment not found")
    if comment.get("user_id") != user.id and not user.is_superuser:
        raise HTTPException(status_code=403, detail="You can only delete your own comments")

    task.comments = remove_item(task.comments, comment_id)
    task.updated_at = utcnow()
    await db.commit()
    return {"status": "deleted", "comment_id": comment_id}


# ============================================================
# ATTACHMENTS
# ============================================================

@router.post("/{task_id}/attachments", status_code=201)
async def add_attachment(
    task_id: str,
    data: AttachmentCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Attach a link/file reference to a task"""
    task = await _get_task(db, task_id)
    dept = await _get_department(db, task.department_id)
    require_view(resolve_access(user, dept, task), "Access denied to this task")

    attachment = {
        "id": new_uuid(),
        "name": data.name,
        "url": data.url,
        "type": data.type,
        "size": data.size,
        "uploaded_by": user.id,
        "uploaded_by_name": user.label,
        "uploaded_at": utcnow().isoformat(),
    }
    task.attachments = append_item(task.attachments, attachment)
    append_activity(task, user.id, user.label, "attachment_added", f'Attached "{data.name}"')
    task.updated_at = utcnow()
    await db.commit()
    return attachment


@router.delete("/{task_id}/attachments/{attachment_id}")
async def delete_attachment(
    task_id: str,
    attachment_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task = await _get_task(db, task_id)
    attachment = find_item(task.attachments, attachment_id)
    if not attachment:
        raise HTTPException(status_code=404, detail="Attachment not found")
    if attachment.get("uploaded_by") != user.id and not user.is_superuser:
        raise HTTPException(status_code=403, detail="You can only remove your own attachments")

    task.attachments = remove_item(task.attachments, attachment_id)
    append_activity(task, user.id, user.label, "attachment_removed", f'Removed "{attachment.get("name", "")}"')
    task.updated_at = utcnow()
    await db.commit()
    return {"status": "deleted", "attachment_id": attachment_id}

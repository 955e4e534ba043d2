# routers/templates.py — Board templates (built-in and custom) and applying them to departments
from typing import Optional, List, Dict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from board import SYSTEM_ACTOR, make_activity, next_order
from database import get_db_session
from models import (
    BoardTemplate, Department, Task, TaskPriority, ARCHIVED_STATUS, new_uuid, utcnow,
)
from permissions import resolve_access, require_manage

router = APIRouter(prefix="/api/v1/templates", tags=["Board Templates"])

BUILTIN_TEMPLATES = [
    {
        "id": "software-development",
        "name": "Software Development",
        "description": "Standard columns for software projects: Backlog, To Do, In Progress, Review, Done",
        "columns": [
            {"id": "backlog", "name": "Backlog", "order": 0, "color": "#6b7280"},
            {"id": "todo", "name": "To Do", "order": 1, "color": "#fbbf24"},
            {"id": "in_progress", "name": "In Progress", "order": 2, "color": "#8b5cf6"},
            {"id": "review", "name": "Review", "order": 3, "color": "#3b82f6"},
            {"id": "done", "name": "Done", "order": 4, "color": "#22c55e"},
        ],
        "sample_tasks": [
            {"title": "Set up project repository", "description": "Initialize Git repo and project structure",
             "priority": "high", "status": "backlog"},
            {"title": "Define project requirements", "description": "Document initial requirements and scope",
             "priority": "urgent", "status": "backlog"},
            {"title": "Design system architecture",
             "description": "Create architecture diagrams and tech stack decisions",
             "priority": "high", "status": "todo"},
        ],
    },
    {
        "id": "content-creation",
        "name": "Content Creation",
        "description": "Pipeline for content: Ideas, Writing, Editing, Ready to Publish, Published",
        "columns": [
            {"id": "ideas", "name": "Ideas", "order": 0, "color": "#fbbf24"},
            {"id": "writing", "name": "Writing", "order": 1, "color": "#f97316"},
            {"id": "editing", "name": "Editing", "order": 2, "color": "#8b5cf6"},
            {"id": "ready", "name": "Ready to Publish", "order": 3, "color": "#3b82f6"},
            {"id": "published", "name": "Published", "order": 4, "color": "#22c55e"},
        ],
        "sample_tasks": [],
    },
    {
        "id": "marketing-campaign",
        "name": "Marketing Campaign",
        "description": "Campaign workflow: Planning, Creating, Approval, Live, Complete",
        "columns": [
            {"id": "planning", "name": "Planning", "order": 0, "color": "#6b7280"},
            {"id": "creating", "name": "Creating", "order": 1, "color": "#f97316"},
            {"id": "approval", "name": "Approval", "order": 2, "color": "#fbbf24"},
            {"id": "live", "name": "Live", "order": 3, "color": "#22c55e"},
            {"id": "complete", "name": "Complete", "order": 4, "color": "#3b82f6"},
        ],
        "sample_tasks": [],
    },
    {
        "id": "simple-kanban",
        "name": "Simple Kanban",
        "description": "Basic three-column board: To Do, Doing, Done",
        "columns": [
            {"id": "todo", "name": "To Do", "order": 0, "color": "#fbbf24"},
            {"id": "doing", "name": "Doing", "order": 1, "color": "#8b5cf6"},
            {"id": "done", "name": "Done", "order": 2, "color": "#22c55e"},
        ],
        "sample_tasks": [],
    },
    {
        "id": "bug-tracking",
        "name": "Bug Tracking",
        "description": "Track bugs: New, Investigating, Fixing, Testing, Resolved",
        "columns": [
            {"id": "new", "name": "New", "order": 0, "color": "#ef4444"},
            {"id": "investigating", "name": "Investigating", "order": 1, "color": "#f97316"},
            {"id": "fixing", "name": "Fixing", "order": 2, "color": "#fbbf24"},
            {"id": "testing", "name": "Testing", "order": 3, "color": "#3b82f6"},
            {"id": "resolved", "name": "Resolved", "order": 4, "color": "#22c55e"},
        ],
        "sample_tasks": [],
    },
]
BUILTIN_BY_ID = {t["id"]: t for t in BUILTIN_TEMPLATES}


# ============================================================
# SCHEMAS
# ============================================================

class TemplateColumn(BaseModel):
    id: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=50)
    order: int
    color: Optional[str] = None


class SampleTask(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    status: str


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    columns: List[TemplateColumn] = Field(..., min_length=2)
    sample_tasks: List[SampleTask] = Field(default_factory=list)
    is_global: bool = False


class TemplateOut(BaseModel):
    id: str
    name: str
    description: str = ""
    columns: List[dict]
    sample_tasks: List[dict] = []
    is_global: bool = True
    created_by: str = SYSTEM_ACTOR[0]
    builtin: bool = False


class TemplateApply(BaseModel):
    template_id: str
    department_id: str
    include_sample_tasks: bool = False


# ============================================================
# HELPERS
# ============================================================

def _stored_out(t: BoardTemplate) -> TemplateOut:
    return TemplateOut(
        id=t.id,
        name=t.name,
        description=t.description or "",
        columns=t.columns or [],
        sample_tasks=t.sample_tasks or [],
        is_global=bool(t.is_global),
        created_by=t.created_by or "",
    )


def _visible_to(user: CurrentUser):
    return or_(BoardTemplate.is_global.is_(True), BoardTemplate.created_by == user.id)


async def _resolve_template(db: AsyncSession, user: CurrentUser, template_id: str) -> Dict:
    """Stored templates shadow built-ins with the same id"""
    stmt = select(BoardTemplate).where(BoardTemplate.id == template_id, _visible_to(user))
    result = await db.execute(stmt)
    stored = result.scalar_one_or_none()
    if stored:
        return _stored_out(stored).model_dump()
    if template_id in BUILTIN_BY_ID:
        return BUILTIN_BY_ID[template_id]
    raise HTTPException(status_code=404, detail="Template not found")


# ============================================================
# ENDPOINTS
# ============================================================

@router.get("", response_model=List[TemplateOut])
async def list_templates(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(select(BoardTemplate).where(_visible_to(user)).order_by(BoardTemplate.created_at))
    stored = [_stored_out(t) for t in result.scalars().all()]
    stored_ids = {t.id for t in stored}
    builtins = [TemplateOut(**t, builtin=True) for t in BUILTIN_TEMPLATES if t["id"] not in stored_ids]
    return builtins + stored


@router.post("", response_model=TemplateOut, status_code=201)
async def create_template(
    data: TemplateCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Save a custom column preset; only superusers can share globally"""
    ids = [c.id for c in data.columns]
    if len(set(ids)) != len(ids) or ARCHIVED_STATUS in ids:
        raise HTTPException(status_code=400, detail="Column ids must be unique and not reserved")

    template = BoardTemplate(
        id=new_uuid(),
        name=data.name.strip(),
        description=data.description,
        columns=sorted((c.model_dump(exclude_none=True) for c in data.columns), key=lambda c: c["order"]),
        sample_tasks=[s.model_dump(mode="json") for s in data.sample_tasks],
        is_global=data.is_global if user.is_superuser else False,
        created_by=user.id,
    )
    db.add(template)
    await db.commit()
    await db.refresh(template)
    return _stored_out(template)


@router.delete("/{template_id}")
async def delete_template(
    template_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    template = await db.get(BoardTemplate, template_id)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    if template.created_by != user.id and not user.is_superuser:
        raise HTTPException(status_code=403, detail="Not authorized to delete this template")
    await db.delete(template)
    await db.commit()
    return {"status": "deleted", "template_id": template_id}


@router.post("/apply")
async def apply_template(
    data: TemplateApply,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Replace a department's columns with a template, optionally seeding sample tasks"""
    dept = await db.get(Department, data.department_id)
    if not dept:
        raise HTTPException(status_code=404, detail="Department not found")
    require_manage(resolve_access(user, dept), "Not authorized to modify this department")

    template = await _resolve_template(db, user, data.template_id)
    columns = sorted((dict(c) for c in template["columns"]), key=lambda c: c.get("order", 0))
    dept.columns = columns
    dept.updated_at = utcnow()

    created = 0
    if data.include_sample_tasks and template.get("sample_tasks"):
        column_ids = [c["id"] for c in columns]
        positions: Dict[str, int] = {}
        actor_id, actor_name = SYSTEM_ACTOR
        now = utcnow()
        for sample in template["sample_tasks"]:
            status = sample.get("status") if sample.get("status") in column_ids else column_ids[0]
            if status not in positions:
                positions[status] = await next_order(db, dept.id, status)
            db.add(Task(
                id=new_uuid(),
                department_id=dept.id,
                title=sample["title"],
                description=sample.get("description") or "",
                status=status,
                priority=TaskPriority(sample.get("priority") or TaskPriority.MEDIUM.value),
                order=positions[status],
                created_by=user.id,
                assignee_ids=[],
                blocked_by=[],
                labels=[],
                subtasks=[],
                attachments=[],
                comments=[],
                activity_log=[make_activity(actor_id, actor_name, "created", "Created from template", now)],
                created_at=now,
                updated_at=now,
            ))
            positions[status] += 1
            created += 1

    await db.commit()
    return {"columns": columns, "tasks_created": created}

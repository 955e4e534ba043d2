# permissions.py — Department / task access resolution
"""
Single capability check for every task and department endpoint.

``resolve_access`` classifies the caller against a department (and optionally
a task) and returns the set of task fields that role may change. Endpoints
ask the returned ``Access`` instead of re-deriving admin/assignee logic.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional

from fastapi import HTTPException

from auth import CurrentUser
from models import Department, Task


class Role(str, Enum):
    SUPERUSER = "superuser"
    DEPARTMENT_ADMIN = "department_admin"
    ASSIGNEE = "assignee"
    MEMBER = "member"
    NONE = "none"


ALL_TASK_FIELDS: FrozenSet[str] = frozenset({
    "title", "description", "status", "priority", "assignee_ids", "due_date",
    "labels", "subtasks", "estimated_hours", "logged_hours", "blocked_by",
    "recurrence", "order", "department_id",
})

ASSIGNEE_TASK_FIELDS: FrozenSet[str] = frozenset({
    "status", "order", "subtasks", "logged_hours",
})

ROLE_TASK_FIELDS: Dict[Role, FrozenSet[str]] = {
    Role.SUPERUSER: ALL_TASK_FIELDS,
    Role.DEPARTMENT_ADMIN: ALL_TASK_FIELDS,
    Role.ASSIGNEE: ASSIGNEE_TASK_FIELDS,
    Role.MEMBER: frozenset(),
    Role.NONE: frozenset(),
}


@dataclass(frozen=True)
class Access:
    role: Role
    editable_fields: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def can_manage(self) -> bool:
        """Full CRUD in the department: columns, templates, membership"""
        return self.role in (Role.SUPERUSER, Role.DEPARTMENT_ADMIN)

    @property
    def can_view(self) -> bool:
        return self.role != Role.NONE

    @property
    def can_comment(self) -> bool:
        return self.can_view

    @property
    def can_edit_task(self) -> bool:
        return bool(self.editable_fields)

    def filter_changes(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Drop every requested change the role is not allowed to make"""
        return {k: v for k, v in changes.items() if k in self.editable_fields}


def _contains(ids: Optional[Iterable[str]], user_id: str) -> bool:
    return bool(ids) and user_id in ids


def resolve_access(user: CurrentUser, department: Optional[Department], task: Optional[Task] = None) -> Access:
    if user.is_superuser:
        role = Role.SUPERUSER
    elif department is not None and _contains(department.admin_ids, user.id):
        role = Role.DEPARTMENT_ADMIN
    elif task is not None and _contains(task.assignee_ids, user.id):
        role = Role.ASSIGNEE
    elif department is not None and _contains(department.member_ids, user.id):
        role = Role.MEMBER
    else:
        role = Role.NONE
    return Access(role=role, editable_fields=ROLE_TASK_FIELDS[role])


def require_manage(access: Access, detail: str = "Only department admins can perform this action") -> None:
    if not access.can_manage:
        raise HTTPException(status_code=403, detail=detail)


def require_view(access: Access, detail: str = "Access denied to this department") -> None:
    if not access.can_view:
        raise HTTPException(status_code=403, detail=detail)


def can_edit_schedule(user: CurrentUser, schedule_admin_id: Optional[str]) -> bool:
    """Schedule editing is delegated to one user, independent of departments"""
    if user.is_superuser:
        return True
    return schedule_admin_id is not None and schedule_admin_id == user.id

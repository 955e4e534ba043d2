# routers/departments.py — Department management, admin/member lists and board columns
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, require_superuser, CurrentUser
from database import get_db_session
from models import Department, Task, User, DEFAULT_COLUMNS, ARCHIVED_STATUS, utcnow
from permissions import resolve_access, require_manage, require_view

router = APIRouter(prefix="/api/v1/departments", tags=["Departments"])


# --- Schemas ---

class DepartmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Department name is required")
        return v


class DepartmentUpdate(DepartmentCreate):
    pass


class DepartmentOut(BaseModel):
    id: str
    name: str
    admin_ids: List[str] = []
    member_ids: List[str] = []
    columns: List[dict] = []
    is_custom: bool = False
    created_at: str
    updated_at: str


class MemberAdd(BaseModel):
    user_id: str


class MemberOut(BaseModel):
    id: str
    name: str
    email: str


class ColumnIn(BaseModel):
    id: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=50)
    order: int
    color: Optional[str] = None

    @field_validator("id")
    @classmethod
    def not_reserved(cls, v: str) -> str:
        if v == ARCHIVED_STATUS:
            raise ValueError(f"'{ARCHIVED_STATUS}' is reserved")
        return v


class ColumnsUpdate(BaseModel):
    columns: List[ColumnIn] = Field(..., min_length=1)


class ColumnsOut(BaseModel):
    columns: List[dict]
    is_custom: bool


# --- Helpers ---

def _dept_out(d: Department) -> DepartmentOut:
    return DepartmentOut(
        id=d.id,
        name=d.name,
        admin_ids=d.admin_ids or [],
        member_ids=d.member_ids or [],
        columns=d.board_columns,
        is_custom=d.columns is not None,
        created_at=d.created_at.isoformat() if d.created_at else "",
        updated_at=d.updated_at.isoformat() if d.updated_at else "",
    )


async def _get_department(db: AsyncSession, department_id: str) -> Department:
    dept = await db.get(Department, department_id)
    if not dept:
        raise HTTPException(status_code=404, detail="Department not found")
    return dept


async def _ensure_unique_name(db: AsyncSession, name: str, exclude_id: Optional[str] = None) -> None:
    stmt = select(Department.id).where(func.lower(Department.name) == name.lower())
    if exclude_id:
        stmt = stmt.where(Department.id != exclude_id)
    result = await db.execute(stmt)
    if result.first():
        raise HTTPException(status_code=400, detail="Department with this name already exists")


async def _users_by_ids(db: AsyncSession, ids: List[str]) -> List[MemberOut]:
    if not ids:
        return []
    result = await db.execute(select(User).where(User.id.in_(ids)).order_by(User.display_name))
    return [MemberOut(id=u.id, name=u.display_name or "", email=u.email) for u in result.scalars().all()]


async def _require_user(db: AsyncSession, user_id: str) -> User:
    target = await db.get(User, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    return target


# --- Departments ---

@router.get("", response_model=List[DepartmentOut])
async def list_departments(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Superusers see every department, others the ones they administer or belong to"""
    result = await db.execute(select(Department).order_by(Department.name))
    return [_dept_out(d) for d in result.scalars().all() if resolve_access(user, d).can_view]


@router.post("", response_model=DepartmentOut, status_code=201)
async def create_department(
    data: DepartmentCreate,
    user: CurrentUser = Depends(require_superuser),
    db: AsyncSession = Depends(get_db_session),
):
    await _ensure_unique_name(db, data.name)
    dept = Department(name=data.name, admin_ids=[], member_ids=[])
    db.add(dept)
    await db.commit()
    await db.refresh(dept)
    return _dept_out(dept)


@router.get("/{department_id}", response_model=DepartmentOut)
async def get_department(
    department_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    dept = await _get_department(db, department_id)
    require_view(resolve_access(user, dept))
    return _dept_out(dept)


@router.put("/{department_id}", response_model=DepartmentOut)
async def rename_department(
    department_id: str,
    data: DepartmentUpdate,
    user: CurrentUser = Depends(require_superuser),
    db: AsyncSession = Depends(get_db_session),
):
    dept = await _get_department(db, department_id)
    await _ensure_unique_name(db, data.name, exclude_id=dept.id)
    dept.name = data.name
    dept.updated_at = utcnow()
    await db.commit()
    await db.refresh(dept)
    return _dept_out(dept)


@router.delete("/{department_id}")
async def delete_department(
    department_id: str,
    user: CurrentUser = Depends(require_superuser),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a department together with its tasks"""
    dept = await _get_department(db, department_id)
    await db.execute(delete(Task).where(Task.department_id == dept.id))
    await db.delete(dept)
    await db.commit()
    return {"status": "deleted", "department_id": department_id}


# --- Admins / members ---

async def _list_role(db, user, department_id, attr):
    dept = await _get_department(db, department_id)
    require_manage(resolve_access(user, dept))
    return await _users_by_ids(db, getattr(dept, attr) or [])


async def _add_to_role(db, user, department_id, attr, user_id):
    dept = await _get_department(db, department_id)
    require_manage(resolve_access(user, dept))
    await _require_user(db, user_id)
    current = list(getattr(dept, attr) or [])
    if user_id not in current:
        setattr(dept, attr, [*current, user_id])
        dept.updated_at = utcnow()
        await db.commit()
    return {"status": "added", "department_id": dept.id, "user_id": user_id}


async def _remove_from_role(db, user, department_id, attr, user_id):
    dept = await _get_department(db, department_id)
    require_manage(resolve_access(user, dept))
    setattr(dept, attr, [uid for uid in (getattr(dept, attr) or []) if uid != user_id])
    dept.updated_at = utcnow()
    await db.commit()
    return {"status": "removed", "department_id": dept.id, "user_id": user_id}


@router.get("/{department_id}/admins", response_model=List[MemberOut])
async def list_admins(
    department_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return await _list_role(db, user, department_id, "admin_ids")


@router.post("/{department_id}/admins")
async def add_admin(
    department_id: str,
    data: MemberAdd,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return await _add_to_role(db, user, department_id, "admin_ids", data.user_id)


@router.delete("/{department_id}/admins/{user_id}")
async def remove_admin(
    department_id: str,
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return await _remove_from_role(db, user, department_id, "admin_ids", user_id)


@router.get("/{department_id}/members", response_model=List[MemberOut])
async def list_members(
    department_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return await _list_role(db, user, department_id, "member_ids")


@router.post("/{department_id}/members")
async def add_member(
    department_id: str,
    data: MemberAdd,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return await _add_to_role(db, user, department_id, "member_ids", data.user_id)


@router.delete("/{department_id}/members/{user_id}")
async def remove_member(
    department_id: str,
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return await _remove_from_role(db, user, department_id, "member_ids", user_id)


# --- Columns ---

@router.get("/{department_id}/columns", response_model=ColumnsOut)
async def get_columns(
    department_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    dept = await _get_department(db, department_id)
    require_view(resolve_access(user, dept))
    return ColumnsOut(columns=dept.board_columns, is_custom=dept.columns is not None)


@router.put("/{department_id}/columns", response_model=ColumnsOut)
async def update_columns(
    department_id: str,
    data: ColumnsUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Replace the department's workflow columns"""
    dept = await _get_department(db, department_id)
    require_manage(resolve_access(user, dept), "Not authorized to modify columns")

    ids = [c.id for c in data.columns]
    if len(set(ids)) != len(ids):
        raise HTTPException(status_code=400, detail="Column ids must be unique")

    columns = sorted((c.model_dump(exclude_none=True) for c in data.columns), key=lambda c: c["order"])
    dept.columns = columns
    dept.updated_at = utcnow()
    await db.commit()
    return ColumnsOut(columns=columns, is_custom=True)


@router.delete("/{department_id}/columns", response_model=ColumnsOut)
async def reset_columns(
    department_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    dept = await _get_department(db, department_id)
    require_manage(resolve_access(user, dept), "Not authorized to modify columns")
    dept.columns = None
    dept.updated_at = utcnow()
    await db.commit()
    return ColumnsOut(columns=list(DEFAULT_COLUMNS), is_custom=False)

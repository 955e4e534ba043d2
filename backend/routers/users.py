# routers/users.py — User management (superusers) and user search
import logging
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import select, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    get_current_user, require_superuser, AuthService, CurrentUser, validate_password_strength,
)
from board import assigned_to
from database import get_db_session
from models import Department, PushSubscription, Task, User, utcnow

logger = logging.getLogger("kanban-board.users")

router = APIRouter(prefix="/api/v1/users", tags=["Users"])

SEARCH_LIMIT = 20


# --- Schemas ---

class UserAdminOut(BaseModel):
    id: str
    email: str
    name: str
    is_admin: bool
    is_superuser: bool
    invited_by: Optional[str] = None
    last_login_at: Optional[str] = None
    created_at: str


class UserSearchOut(BaseModel):
    id: str
    name: str
    email: str


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    name: str = Field("", max_length=100)
    is_admin: bool = False
    is_superuser: bool = False

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return validate_password_strength(v)


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    is_admin: Optional[bool] = None
    is_superuser: Optional[bool] = None
    password: Optional[str] = None

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: Optional[str]) -> Optional[str]:
        return validate_password_strength(v) if v else v


# --- Helpers ---

def _user_to_out(u: User) -> UserAdminOut:
    return UserAdminOut(
        id=u.id,
        email=u.email,
        name=u.display_name or "",
        is_admin=bool(u.is_admin),
        is_superuser=bool(u.is_superuser),
        invited_by=u.invited_by,
        last_login_at=u.last_login_at.isoformat() if u.last_login_at else None,
        created_at=u.created_at.isoformat() if u.created_at else "",
    )


async def _get_user(db: AsyncSession, user_id: str) -> User:
    u = await db.get(User, user_id)
    if not u:
        raise HTTPException(status_code=404, detail="User not found")
    return u


# --- Endpoints ---

@router.get("/search", response_model=List[UserSearchOut])
async def search_users(
    q: str = Query(default="", max_length=100),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Find users by name or email (for assignee and member pickers)"""
    stmt = select(User).order_by(User.display_name).limit(SEARCH_LIMIT)
    term = q.strip()
    if term:
        pattern = f"%{term}%"
        stmt = stmt.where(or_(User.display_name.ilike(pattern), User.email.ilike(pattern)))
    result = await db.execute(stmt)
    return [UserSearchOut(id=u.id, name=u.display_name or "", email=u.email) for u in result.scalars().all()]


@router.get("", response_model=List[UserAdminOut])
async def list_users(
    user: CurrentUser = Depends(require_superuser),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(select(User).order_by(User.created_at.desc()))
    return [_user_to_out(u) for u in result.scalars().all()]


@router.post("", response_model=UserAdminOut, status_code=201)
async def create_user(
    data: UserCreate,
    user: CurrentUser = Depends(require_superuser),
    db: AsyncSession = Depends(get_db_session),
):
    email = AuthService.normalize_email(data.email)
    if await AuthService.get_user_by_email(email, db):
        raise HTTPException(status_code=400, detail="User with this email already exists")

    new_user = User(
        email=email,
        display_name=data.name.strip(),
        password_hash=AuthService.hash_password(data.password),
        is_admin=data.is_admin,
        is_superuser=data.is_superuser,
        profile={},
        settings={},
    )
    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)
    logger.info(f"User {new_user.id} created by {user.id}")
    return _user_to_out(new_user)


@router.put("/{user_id}", response_model=UserAdminOut)
async def update_user(
    user_id: str,
    data: UserUpdate,
    user: CurrentUser = Depends(require_superuser),
    db: AsyncSession = Depends(get_db_session),
):
    target = await _get_user(db, user_id)
    if data.name is not None:
        target.display_name = data.name.strip()
    if data.is_admin is not None:
        target.is_admin = data.is_admin
    if data.is_superuser is not None:
        target.is_superuser = data.is_superuser
    if data.password:
        target.password_hash = AuthService.hash_password(data.password)
    target.updated_at = utcnow()
    await db.commit()
    await db.refresh(target)
    return _user_to_out(target)


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    user: CurrentUser = Depends(require_superuser),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a user and drop them from every department and task assignment"""
    if user_id == user.id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")
    target = await _get_user(db, user_id)

    result = await db.execute(select(Department))
    for dept in result.scalars().all():
        if user_id in (dept.admin_ids or []) or user_id in (dept.member_ids or []):
            dept.admin_ids = [uid for uid in dept.admin_ids or [] if uid != user_id]
            dept.member_ids = [uid for uid in dept.member_ids or [] if uid != user_id]

    result = await db.execute(select(Task).where(assigned_to(user_id)))
    for task in result.scalars().all():
        if user_id in (task.assignee_ids or []):
            task.assignee_ids = [uid for uid in task.assignee_ids if uid != user_id]

    await db.execute(delete(PushSubscription).where(PushSubscription.user_id == user_id))
    await db.delete(target)
    await db.commit()
    logger.info(f"User {user_id} deleted by {user.id}")
    return {"status": "deleted", "user_id": user_id}

# routers/schedules.py — Sunday schedule grid, delegated editor and layout config
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, require_superuser, CurrentUser
from database import get_db_session
from models import Schedule, User, utcnow
from permissions import can_edit_schedule
from schedule_settings import ScheduleSettings

router = APIRouter(prefix="/api/v1/schedules", tags=["Schedules"])

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


# --- Schemas ---

class ScheduleSlot(BaseModel):
    phase: str = Field(..., min_length=1)
    department: str = Field(..., min_length=1)
    assignees: str = ""


class ScheduleSave(BaseModel):
    date: str = Field(..., pattern=DATE_PATTERN)
    slots: List[ScheduleSlot]


class ScheduleOut(BaseModel):
    id: str
    date: str
    slots: List[dict] = []
    created_by: Optional[str] = None
    last_modified_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ScheduleAdminSet(BaseModel):
    user_id: Optional[str] = None  # null clears the delegation


class ScheduleConfigUpdate(BaseModel):
    phases: Optional[List[str]] = None
    departments: Optional[List[str]] = None


# --- Helpers ---

def _schedule_out(s: Schedule) -> ScheduleOut:
    return ScheduleOut(
        id=s.id,
        date=s.date,
        slots=s.slots or [],
        created_by=s.created_by,
        last_modified_by=s.last_modified_by,
        created_at=s.created_at.isoformat() if s.created_at else None,
        updated_at=s.updated_at.isoformat() if s.updated_at else None,
    )


async def _admin_info(db: AsyncSession):
    admin_id = await ScheduleSettings.get_schedule_admin_id(db)
    admin_name = None
    if admin_id:
        admin = await db.get(User, admin_id)
        if admin:
            admin_name = admin.display_name or admin.email
    return admin_id, admin_name


async def _require_editor(db: AsyncSession, user: CurrentUser, detail: str) -> None:
    admin_id = await ScheduleSettings.get_schedule_admin_id(db)
    if not can_edit_schedule(user, admin_id):
        raise HTTPException(status_code=403, detail=detail)


# --- Schedule ---

@router.get("")
async def get_schedule(
    date: str = Query(..., pattern=DATE_PATTERN),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Schedule for one date (null when nothing saved yet) plus grid layout"""
    result = await db.execute(select(Schedule).where(Schedule.date == date))
    schedule = result.scalar_one_or_none()
    admin_id, admin_name = await _admin_info(db)
    return {
        "schedule": _schedule_out(schedule).model_dump() if schedule else None,
        "can_edit": can_edit_schedule(user, admin_id),
        "schedule_admin_id": admin_id,
        "schedule_admin_name": admin_name,
        "phases": await ScheduleSettings.get_phases(db),
        "departments": await ScheduleSettings.get_departments(db),
    }


@router.put("", response_model=ScheduleOut)
async def save_schedule(
    data: ScheduleSave,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await _require_editor(db, user, "You do not have permission to edit the schedule")

    result = await db.execute(select(Schedule).where(Schedule.date == data.date))
    schedule = result.scalar_one_or_none()
    # Empty cells are not stored
    slots = [s.model_dump() for s in data.slots if s.assignees.strip()]
    if schedule is None:
        schedule = Schedule(date=data.date, created_by=user.id)
        db.add(schedule)
    schedule.slots = slots
    schedule.last_modified_by = user.id
    schedule.updated_at = utcnow()
    await db.commit()
    await db.refresh(schedule)
    return _schedule_out(schedule)


# --- Schedule admin ---

@router.get("/admin")
async def get_schedule_admin(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    admin_id, admin_name = await _admin_info(db)
    return {"schedule_admin_id": admin_id, "schedule_admin_name": admin_name}


@router.put("/admin")
async def set_schedule_admin(
    data: ScheduleAdminSet,
    user: CurrentUser = Depends(require_superuser),
    db: AsyncSession = Depends(get_db_session),
):
    """Delegate schedule editing to one user"""
    if data.user_id and not await db.get(User, data.user_id):
        raise HTTPException(status_code=404, detail="User not found")
    await ScheduleSettings.set_schedule_admin_id(db, data.user_id, user.id)
    await db.commit()
    admin_id, admin_name = await _admin_info(db)
    return {"schedule_admin_id": admin_id, "schedule_admin_name": admin_name}


# --- Layout config ---

@router.get("/config")
async def get_schedule_config(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return {
        "phases": await ScheduleSettings.get_phases(db),
        "departments": await ScheduleSettings.get_departments(db),
    }


@router.put("/config")
async def update_schedule_config(
    data: ScheduleConfigUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await _require_editor(db, user, "You do not have permission to edit schedule config")
    if data.phases is not None:
        await ScheduleSettings.set_phases(db, [p.strip() for p in data.phases if p.strip()], user.id)
    if data.departments is not None:
        await ScheduleSettings.set_departments(db, [d.strip() for d in data.departments if d.strip()], user.id)
    await db.commit()
    return {
        "phases": await ScheduleSettings.get_phases(db),
        "departments": await ScheduleSettings.get_departments(db),
    }

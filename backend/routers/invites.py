# routers/invites.py — Single-use signup invites (admins and superusers)
import os
import secrets
from datetime import timedelta
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import require_admin, AuthService, CurrentUser
from database import get_db_session
from models import Invite, utcnow

router = APIRouter(prefix="/api/v1/invites", tags=["Invites"])

DEFAULT_INVITE_DAYS = 7
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")


class InviteCreate(BaseModel):
    email: Optional[EmailStr] = None  # Restricts the invite to one address
    expires_in_days: int = Field(DEFAULT_INVITE_DAYS, ge=1, le=365)


class InviteOut(BaseModel):
    id: str
    token: str
    email: Optional[str] = None
    created_by: Optional[str] = None
    created_at: str
    expires_at: str
    used: bool
    used_at: Optional[str] = None
    used_by_email: Optional[str] = None


class InviteCreated(BaseModel):
    id: str
    token: str
    signup_url: str
    expires_at: str


def _invite_out(i: Invite) -> InviteOut:
    return InviteOut(
        id=i.id,
        token=i.token,
        email=i.email,
        created_by=i.created_by_name,
        created_at=i.created_at.isoformat() if i.created_at else "",
        expires_at=i.expires_at.isoformat(),
        used=bool(i.used),
        used_at=i.used_at.isoformat() if i.used_at else None,
        used_by_email=i.used_by_email,
    )


@router.get("", response_model=List[InviteOut])
async def list_invites(
    user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(select(Invite).order_by(Invite.created_at.desc()))
    return [_invite_out(i) for i in result.scalars().all()]


@router.post("", response_model=InviteCreated, status_code=201)
async def create_invite(
    data: InviteCreate,
    request: Request,
    user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    now = utcnow()
    invite = Invite(
        token=secrets.token_hex(32),
        email=AuthService.normalize_email(data.email) if data.email else None,
        created_by=user.id,
        created_by_name=user.label,
        created_at=now,
        expires_at=now + timedelta(days=data.expires_in_days),
        used=False,
    )
    db.add(invite)
    await db.commit()
    await db.refresh(invite)

    base_url = request.headers.get("origin") or FRONTEND_URL
    return InviteCreated(
        id=invite.id,
        token=invite.token,
        signup_url=f"{base_url}/signup?token={invite.token}",
        expires_at=invite.expires_at.isoformat(),
    )


@router.delete("/{invite_id}")
async def delete_invite(
    invite_id: str,
    user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    invite = await db.get(Invite, invite_id)
    if not invite:
        raise HTTPException(status_code=404, detail="Invite not found")
    await db.delete(invite)
    await db.commit()
    return {"status": "deleted", "invite_id": invite_id}

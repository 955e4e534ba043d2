# routers/auth.py — Login, invite-token signup and own profile
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, UserLogin, UserOut, TokenResponse, ACCESS_TOKEN_EXPIRE_MINUTES,
    get_current_user, CurrentUser, user_out, validate_password_strength,
)
from database import get_db_session
from models import Invite, User, as_utc, utcnow

logger = logging.getLogger("kanban-board.auth")

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


class SignupRequest(BaseModel):
    token: str = Field(..., min_length=1)
    email: EmailStr
    password: str
    name: str = Field("", max_length=100)

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return validate_password_strength(v)


class InviteCheckOut(BaseModel):
    valid: bool = True
    email: Optional[str] = None
    created_by: Optional[str] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    password: Optional[str] = None
    profile: Optional[dict] = None
    settings: Optional[dict] = None

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: Optional[str]) -> Optional[str]:
        return validate_password_strength(v) if v else v


def _build_token_response(user_obj: User) -> TokenResponse:
    return TokenResponse(
        access_token=AuthService.create_access_token(user_obj.id),
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=user_out(user_obj),
    )


async def _load_open_invite(token: str, db: AsyncSession) -> Invite:
    """Unknown tokens are 404, used or expired ones 400"""
    result = await db.execute(select(Invite).where(Invite.token == token))
    invite = result.scalar_one_or_none()
    if not invite:
        raise HTTPException(status_code=404, detail="Invalid invite token")
    if invite.used:
        raise HTTPException(status_code=400, detail="This invite has already been used")
    if as_utc(invite.expires_at) < utcnow():
        raise HTTPException(status_code=400, detail="This invite has expired")
    return invite


@router.post("/login", response_model=TokenResponse)
async def login(data: UserLogin, db: AsyncSession = Depends(get_db_session)):
    user = await AuthService.authenticate_user(data.email, data.password, db)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    logger.info(f"User {user.id} logged in")
    return _build_token_response(user)


@router.get("/signup", response_model=InviteCheckOut)
async def check_invite(
    token: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db_session),
):
    """Validate an invite token before showing the signup form"""
    invite = await _load_open_invite(token, db)
    return InviteCheckOut(email=invite.email, created_by=invite.created_by_name)


@router.post("/signup", response_model=UserOut, status_code=201)
async def signup(data: SignupRequest, db: AsyncSession = Depends(get_db_session)):
    """Create an account from a single-use invite"""
    invite = await _load_open_invite(data.token, db)
    email = AuthService.normalize_email(data.email)

    if invite.email and AuthService.normalize_email(invite.email) != email:
        raise HTTPException(status_code=400, detail="This invite is for a different email address")
    if await AuthService.get_user_by_email(email, db):
        raise HTTPException(status_code=400, detail="An account with this email already exists")

    user = User(
        email=email,
        display_name=data.name.strip(),
        password_hash=AuthService.hash_password(data.password),
        is_admin=False,
        is_superuser=False,
        profile={},
        settings={},
        invited_by=invite.created_by,
    )
    db.add(user)

    invite.used = True
    invite.used_at = utcnow()
    invite.used_by_email = email
    await db.commit()
    await db.refresh(user)

    logger.info(f"User {user.id} signed up with invite {invite.id}")
    return user_out(user)


@router.get("/profile")
async def get_profile(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    u = await db.get(User, user.id)
    return {**user_out(u).model_dump(), "profile": u.profile or {}, "settings": u.settings or {}}


@router.put("/profile")
async def update_profile(
    data: ProfileUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Change own display name, password, profile or settings"""
    u = await db.get(User, user.id)
    if data.name is not None:
        u.display_name = data.name.strip()
    if data.password:
        u.password_hash = AuthService.hash_password(data.password)
    if data.profile is not None:
        u.profile = data.profile
    if data.settings is not None:
        u.settings = data.settings
    u.updated_at = utcnow()
    await db.commit()
    await db.refresh(u)
    return {**user_out(u).model_dump(), "profile": u.profile or {}, "settings": u.settings or {}}

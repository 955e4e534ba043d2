# routers/notifications.py — Web push subscriptions and delivery
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

import push
from auth import get_current_user, CurrentUser
from database import get_db_session
from models import PushSubscription, utcnow
from push import PushService

router = APIRouter(prefix="/api/v1/push", tags=["Push Notifications"])


# --- Schemas ---

class SubscriptionKeys(BaseModel):
    p256dh: str = ""
    auth: str = ""


class SubscriptionIn(BaseModel):
    endpoint: Optional[str] = None
    expirationTime: Optional[float] = None
    keys: SubscriptionKeys = Field(default_factory=SubscriptionKeys)


class SubscribeRequest(BaseModel):
    subscription: SubscriptionIn


class PushNotificationIn(BaseModel):
    title: Optional[str] = None
    body: Optional[str] = None
    url: Optional[str] = None
    tag: Optional[str] = None


class PushSendRequest(BaseModel):
    user_id: str
    notification: PushNotificationIn


# --- Endpoints ---

@router.get("/vapid")
async def vapid_public_key():
    """Public key the browser needs to create a subscription"""
    return {"configured": PushService.is_configured(), "public_key": push.VAPID_PUBLIC_KEY or None}


@router.post("/subscribe", status_code=201)
async def subscribe(
    data: SubscribeRequest,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Store (or refresh) this browser's subscription for the caller"""
    endpoint = data.subscription.endpoint
    if not endpoint:
        raise HTTPException(status_code=400, detail="Invalid subscription: endpoint is required")

    stmt = select(PushSubscription).where(
        PushSubscription.user_id == user.id, PushSubscription.endpoint == endpoint,
    )
    result = await db.execute(stmt)
    sub = result.scalar_one_or_none()
    if sub is None:
        sub = PushSubscription(user_id=user.id, endpoint=endpoint)
        db.add(sub)
    sub.subscription = data.subscription.model_dump(exclude_none=True)
    sub.user_agent = request.headers.get("user-agent")
    sub.updated_at = utcnow()
    await db.commit()
    return {"status": "subscribed", "id": sub.id}


@router.delete("/subscribe")
async def unsubscribe(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(delete(PushSubscription).where(PushSubscription.user_id == user.id))
    await db.commit()
    return {"status": "unsubscribed", "removed": result.rowcount or 0}


@router.post("/send")
async def send_push(
    data: PushSendRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Push a notification to every device of one user"""
    if not PushService.is_configured():
        return {"sent": 0, "total": 0, "message": "Push notifications not configured"}
    sent, total = await PushService.send_to_user(db, data.user_id, data.notification.model_dump())
    return {"sent": sent, "total": total}

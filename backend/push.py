# push.py — Web push delivery and task notification messages
# Features:
# - VAPID-signed delivery through pywebpush
# - Stale subscriptions (404/410) removed on send
# - Message builders for task events
# - Background helper that opens its own DB session

import os
import json
import time
import asyncio
import logging
from typing import Any, Dict, Iterable, Optional, Tuple

from pywebpush import webpush, WebPushException
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_context
from models import PushSubscription

logger = logging.getLogger("kanban-board.push")

VAPID_PUBLIC_KEY = os.getenv("VAPID_PUBLIC_KEY", "")
VAPID_PRIVATE_KEY = os.getenv("VAPID_PRIVATE_KEY", "")
VAPID_SUBJECT = os.getenv("VAPID_SUBJECT", "mailto:admin@example.org")

DEFAULT_TITLE = "Kanban Board"
DEFAULT_BODY = "You have a new notification"
DEFAULT_URL = "/dashboard"

STATUS_LABELS = {
    "backlog": "Backlog",
    "todo": "To Do",
    "in_progress": "In Progress",
    "done": "Done",
}

NOTIFICATION_TITLES = {
    "task_assigned": "Task Assigned",
    "task_moved": "Task Status Changed",
    "task_edited": "Task Updated",
    "comment_added": "New Comment",
    "task_created": "Task Created",
    "task_deleted": "Task Deleted",
}


# ============================================================
# MESSAGE BUILDERS
# ============================================================

def notification_title(notification_type: str) -> str:
    return NOTIFICATION_TITLES.get(notification_type, "Notification")


def notification_message(
    notification_type: str,
    task_title: str,
    by_user: str,
    details: Optional[Dict[str, Any]] = None,
) -> str:
    details = details or {}
    if notification_type == "task_assigned":
        return f'{by_user} assigned you to "{task_title}"'
    if notification_type == "task_moved":
        old = details.get("old_status") or ""
        new = details.get("new_status") or ""
        return f'"{task_title}" moved from {STATUS_LABELS.get(old, old)} to {STATUS_LABELS.get(new, new)}'
    if notification_type == "task_edited":
        fields = ", ".join(details.get("changed_fields") or []) or "details"
        return f'"{task_title}" was updated ({fields})'
    if notification_type == "comment_added":
        return f'{by_user} commented on "{task_title}"'
    if notification_type == "task_created":
        return f'New task created: "{task_title}"'
    if notification_type == "task_deleted":
        return f'Task "{task_title}" was deleted'
    return "Notification"


# ============================================================
# DELIVERY
# ============================================================

class PushService:
    """Sends payloads to every stored subscription of a user"""

    @staticmethod
    def is_configured() -> bool:
        return bool(VAPID_PUBLIC_KEY and VAPID_PRIVATE_KEY)

    @staticmethod
    def build_payload(notification: Dict[str, Any]) -> str:
        return json.dumps({
            "title": notification.get("title") or DEFAULT_TITLE,
            "body": notification.get("body") or DEFAULT_BODY,
            "url": notification.get("url") or DEFAULT_URL,
            "tag": notification.get("tag") or f"notification-{int(time.time() * 1000)}",
        })

    @staticmethod
    def _deliver(subscription: Dict[str, Any], payload: str) -> None:
        webpush(
            subscription_info=subscription,
            data=payload,
            vapid_private_key=VAPID_PRIVATE_KEY,
            vapid_claims={"sub": VAPID_SUBJECT},
        )

    @staticmethod
    async def send_to_user(db: AsyncSession, user_id: str, notification: Dict[str, Any]) -> Tuple[int, int]:
        """Returns (sent, total). Never raises for transport failures."""
        if not PushService.is_configured():
            return 0, 0

        result = await db.execute(select(PushSubscription).where(PushSubscription.user_id == user_id))
        subscriptions = result.scalars().all()
        if not subscriptions:
            return 0, 0

        payload = PushService.build_payload(notification)
        sent = 0
        stale = []
        for sub in subscriptions:
            try:
                await asyncio.to_thread(PushService._deliver, sub.subscription, payload)
                sent += 1
            except WebPushException as e:
                status = getattr(e.response, "status_code", None)
                if status in (404, 410):
                    stale.append(sub.id)
                logger.warning(f"Push to {sub.endpoint} failed ({status}): {e}")
            except Exception as e:
                logger.warning(f"Push to {sub.endpoint} failed: {e}")

        if stale:
            await db.execute(delete(PushSubscription).where(PushSubscription.id.in_(stale)))
            await db.commit()
            logger.info(f"Removed {len(stale)} expired push subscription(s) for user {user_id}")

        return sent, len(subscriptions)


async def notify_users(
    user_ids: Iterable[str],
    notification_type: str,
    task_title: str,
    task_id: str,
    by_user: str,
    details: Optional[Dict[str, Any]] = None,
    exclude_user_id: Optional[str] = None,
) -> None:
    """Background task: push a task event to each recipient except the actor"""
    recipients = [uid for uid in dict.fromkeys(user_ids) if uid and uid != exclude_user_id]
    if not recipients or not PushService.is_configured():
        return

    notification = {
        "title": notification_title(notification_type),
        "body": notification_message(notification_type, task_title, by_user, details),
        "url": "/dashboard",
        "tag": f"{notification_type}-{task_id}",
    }
    try:
        async with get_db_context() as db:
            for uid in recipients:
                await PushService.send_to_user(db, uid, notification)
    except Exception as e:
        logger.error(f"Push fan-out for task {task_id} failed: {e}")

# models.py — Database models for the department Kanban board
# - UUID string primary keys everywhere
# - Document-shaped task sub-elements (comments, attachments, activity log)
#   stored as JSON columns and replaced wholesale on change
# - Soft archive for tasks with previous-status snapshot
# - Single-value config records (schedule admin, schedule layout)

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer, Float,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


# ============================================================
# ENUMS
# ============================================================

class TaskPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class RecurrenceType(str, PyEnum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class LabelColor(str, PyEnum):
    GRAY = "gray"
    RED = "red"
    ORANGE = "orange"
    YELLOW = "yellow"
    GREEN = "green"
    BLUE = "blue"
    PURPLE = "purple"
    PINK = "pink"


ARCHIVED_STATUS = "archived"
DONE_STATUS = "done"
BACKLOG_STATUS = "backlog"

DEFAULT_COLUMNS = [
    {"id": "backlog", "name": "Backlog", "order": 0, "color": "#6b7280"},
    {"id": "todo", "name": "To Do", "order": 1, "color": "#fbbf24"},
    {"id": "in_progress", "name": "In Progress", "order": 2, "color": "#8b5cf6"},
    {"id": "done", "name": "Done", "order": 3, "color": "#22c55e"},
]


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, unique=True, nullable=False, index=True)  # stored lower-cased
    display_name = Column(String, nullable=False, default="")
    password_hash = Column(String, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    is_superuser = Column(Boolean, default=False, nullable=False, index=True)
    profile = Column(JSON, nullable=False, default=dict)
    settings = Column(JSON, nullable=False, default=dict)
    invited_by = Column(String, nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Invite(Base):
    """Single-use signup token, optionally bound to one email address"""
    __tablename__ = "invites"

    id = Column(String, primary_key=True, default=new_uuid)
    token = Column(String, unique=True, nullable=False, index=True)
    email = Column(String, nullable=True)
    created_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_by_name = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    used_by_email = Column(String, nullable=True)


# ============================================================
# DEPARTMENTS
# ============================================================

class Department(Base):
    """Organisational grouping with its own admins, members and columns"""
    __tablename__ = "departments"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False, index=True)
    admin_ids = Column(JSON, nullable=False, default=list)
    member_ids = Column(JSON, nullable=False, default=list)
    columns = Column(JSON, nullable=True)  # None means DEFAULT_COLUMNS
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def board_columns(self) -> list:
        cols = self.columns or DEFAULT_COLUMNS
        return sorted(cols, key=lambda c: c.get("order", 0))

    @property
    def column_ids(self) -> list:
        return [c["id"] for c in self.board_columns]


# ============================================================
# TASKS
# ============================================================

class Task(Base):
    """Task card on a department board"""
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    department_id = Column(String, ForeignKey("departments.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default=BACKLOG_STATUS, index=True)
    priority = Column(SQLEnum(TaskPriority), nullable=False, default=TaskPriority.MEDIUM)
    order = Column(Integer, nullable=False, default=0)  # Secondary sort within a status

    # Assignment
    created_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assignee_ids = Column(JSON, nullable=False, default=list)

    # Planning
    due_date = Column(DateTime(timezone=True), nullable=True)
    estimated_hours = Column(Float, nullable=True)
    logged_hours = Column(Float, nullable=True)
    blocked_by = Column(JSON, nullable=False, default=list)  # Task ids
    recurrence = Column(JSON, nullable=True)  # {type, end_date, last_generated}
    parent_recurring_id = Column(String, nullable=True, index=True)

    # Sub-elements
    labels = Column(JSON, nullable=False, default=list)
    subtasks = Column(JSON, nullable=False, default=list)
    attachments = Column(JSON, nullable=False, default=list)
    comments = Column(JSON, nullable=False, default=list)
    activity_log = Column(JSON, nullable=False, default=list)

    # Archive
    archived = Column(Boolean, nullable=False, default=False, index=True)
    previous_status = Column(String, nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    archived_by = Column(String, nullable=True)

    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_task_dept_status_order", "department_id", "status", "order"),
    )


# ============================================================
# PUSH NOTIFICATIONS
# ============================================================

class PushSubscription(Base):
    __tablename__ = "push_subscriptions"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    endpoint = Column(String, nullable=False)
    subscription = Column(JSON, nullable=False)  # {endpoint, keys: {p256dh, auth}}
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "endpoint", name="uq_push_user_endpoint"),
    )


# ============================================================
# CONFIG & SCHEDULES
# ============================================================

class ConfigEntry(Base):
    """Single-value configuration record keyed by name"""
    __tablename__ = "config_entries"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=True)
    updated_by = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Schedule(Base):
    """Sunday schedule grid for one date"""
    __tablename__ = "schedules"

    id = Column(String, primary_key=True, default=new_uuid)
    date = Column(String, unique=True, nullable=False, index=True)  # YYYY-MM-DD
    slots = Column(JSON, nullable=False, default=list)  # [{phase, department, assignees}]
    created_by = Column(String, nullable=True)
    last_modified_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# ============================================================
# BOARD TEMPLATES
# ============================================================

class BoardTemplate(Base):
    __tablename__ = "board_templates"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    columns = Column(JSON, nullable=False, default=list)
    sample_tasks = Column(JSON, nullable=False, default=list)
    is_global = Column(Boolean, default=False, nullable=False)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

# schedule_settings.py — Accessor for single-value schedule configuration
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import ConfigEntry, utcnow

SCHEDULE_ADMIN_KEY = "schedule_admin"
SCHEDULE_DEPARTMENTS_KEY = "schedule_departments"
SCHEDULE_PHASES_KEY = "schedule_phases"

SERVICE_PHASES = [
    "Setup",
    "Prayer",
    "Praise & Worship",
    "Sermon",
    "Offering",
    "Closing",
    "Teardown",
]

SCHEDULE_DEPARTMENTS = [
    "Ushering",
    "Media",
    "Sound",
    "Choir",
    "Children",
    "Hospitality",
]


class ScheduleSettings:
    """Reads and writes the schedule config records.

    Every lookup of the schedule admin goes through here; nothing else
    queries ``ConfigEntry`` directly.
    """

    @staticmethod
    async def _get(db: AsyncSession, key: str) -> Optional[ConfigEntry]:
        result = await db.execute(select(ConfigEntry).where(ConfigEntry.key == key))
        return result.scalar_one_or_none()

    @staticmethod
    async def _set(db: AsyncSession, key: str, value: Any, updated_by: str) -> None:
        entry = await ScheduleSettings._get(db, key)
        if entry is None:
            entry = ConfigEntry(key=key)
            db.add(entry)
        entry.value = value
        entry.updated_by = updated_by
        entry.updated_at = utcnow()

    @staticmethod
    async def get_schedule_admin_id(db: AsyncSession) -> Optional[str]:
        entry = await ScheduleSettings._get(db, SCHEDULE_ADMIN_KEY)
        return entry.value if entry and entry.value else None

    @staticmethod
    async def set_schedule_admin_id(db: AsyncSession, user_id: Optional[str], updated_by: str) -> None:
        await ScheduleSettings._set(db, SCHEDULE_ADMIN_KEY, user_id or None, updated_by)

    @staticmethod
    async def get_phases(db: AsyncSession) -> List[str]:
        entry = await ScheduleSettings._get(db, SCHEDULE_PHASES_KEY)
        return list(entry.value) if entry and entry.value else list(SERVICE_PHASES)

    @staticmethod
    async def get_departments(db: AsyncSession) -> List[str]:
        entry = await ScheduleSettings._get(db, SCHEDULE_DEPARTMENTS_KEY)
        return list(entry.value) if entry and entry.value else list(SCHEDULE_DEPARTMENTS)

    @staticmethod
    async def set_phases(db: AsyncSession, phases: List[str], updated_by: str) -> None:
        await ScheduleSettings._set(db, SCHEDULE_PHASES_KEY, phases, updated_by)

    @staticmethod
    async def set_departments(db: AsyncSession, departments: List[str], updated_by: str) -> None:
        await ScheduleSettings._set(db, SCHEDULE_DEPARTMENTS_KEY, departments, updated_by)

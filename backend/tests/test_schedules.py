# tests/test_schedules.py — Schedule grid, delegated editor and config
import pytest
from httpx import AsyncClient

from schedule_settings import SERVICE_PHASES, SCHEDULE_DEPARTMENTS
from tests.conftest import get_auth_headers

SUNDAY = "2024-06-02"


@pytest.mark.asyncio
class TestScheduleGrid:
    async def test_empty_date_returns_defaults(self, client: AsyncClient, member):
        res = await client.get("/api/v1/schedules", params={"date": SUNDAY}, headers=get_auth_headers(member))
        assert res.status_code == 200
        data = res.json()
        assert data["schedule"] is None
        assert data["can_edit"] is False
        assert data["schedule_admin_id"] is None
        assert data["phases"] == SERVICE_PHASES
        assert data["departments"] == SCHEDULE_DEPARTMENTS

    async def test_bad_date_rejected(self, client: AsyncClient, member):
        res = await client.get("/api/v1/schedules", params={"date": "June 2"}, headers=get_auth_headers(member))
        assert res.status_code == 400

    async def test_plain_user_cannot_save(self, client: AsyncClient, member):
        res = await client.put("/api/v1/schedules", json={"date": SUNDAY, "slots": []},
                               headers=get_auth_headers(member))
        assert res.status_code == 403

    async def test_superuser_saves_and_overwrites(self, client: AsyncClient, superuser):
        headers = get_auth_headers(superuser)
        res = await client.put("/api/v1/schedules", json={"date": SUNDAY, "slots": [
            {"phase": "Setup", "department": "Media", "assignees": "Ann, Bo"},
            {"phase": "Setup", "department": "Sound", "assignees": "   "},
        ]}, headers=headers)
        assert res.status_code == 200
        first = res.json()
        assert first["slots"] == [{"phase": "Setup", "department": "Media", "assignees": "Ann, Bo"}]
        assert first["created_by"] == superuser.id

        res = await client.put("/api/v1/schedules", json={"date": SUNDAY, "slots": [
            {"phase": "Sermon", "department": "Sound", "assignees": "Cy"},
        ]}, headers=headers)
        assert res.json()["id"] == first["id"]

        res = await client.get("/api/v1/schedules", params={"date": SUNDAY}, headers=headers)
        data = res.json()
        assert data["can_edit"] is True
        assert data["schedule"]["slots"] == [{"phase": "Sermon", "department": "Sound", "assignees": "Cy"}]


@pytest.mark.asyncio
class TestScheduleAdmin:
    async def test_delegated_admin_can_edit(self, client: AsyncClient, superuser, member):
        res = await client.put("/api/v1/schedules/admin", json={"user_id": member.id},
                               headers=get_auth_headers(superuser))
        assert res.status_code == 200
        assert res.json() == {"schedule_admin_id": member.id, "schedule_admin_name": "Plain Member"}

        res = await client.put("/api/v1/schedules", json={"date": SUNDAY, "slots": [
            {"phase": "Prayer", "department": "Choir", "assignees": "Dee"},
        ]}, headers=get_auth_headers(member))
        assert res.status_code == 200

    async def test_clearing_the_admin(self, client: AsyncClient, superuser, member):
        headers = get_auth_headers(superuser)
        await client.put("/api/v1/schedules/admin", json={"user_id": member.id}, headers=headers)
        res = await client.put("/api/v1/schedules/admin", json={"user_id": None}, headers=headers)
        assert res.json()["schedule_admin_id"] is None

        res = await client.get("/api/v1/schedules/admin", headers=get_auth_headers(member))
        assert res.json()["schedule_admin_id"] is None

    async def test_only_superuser_delegates(self, client: AsyncClient, dept_admin, member):
        res = await client.put("/api/v1/schedules/admin", json={"user_id": member.id},
                               headers=get_auth_headers(dept_admin))
        assert res.status_code == 403

    async def test_unknown_user(self, client: AsyncClient, superuser):
        res = await client.put("/api/v1/schedules/admin", json={"user_id": "ghost"},
                               headers=get_auth_headers(superuser))
        assert res.status_code == 404


@pytest.mark.asyncio
class TestScheduleConfig:
    async def test_editor_updates_config(self, client: AsyncClient, superuser, member):
        res = await client.put("/api/v1/schedules/config", json={
            "phases": ["Setup", "  ", "Service "],
        }, headers=get_auth_headers(superuser))
        assert res.status_code == 200
        assert res.json()["phases"] == ["Setup", "Service"]
        assert res.json()["departments"] == SCHEDULE_DEPARTMENTS

        res = await client.get("/api/v1/schedules/config", headers=get_auth_headers(member))
        assert res.json()["phases"] == ["Setup", "Service"]

    async def test_plain_user_cannot_update_config(self, client: AsyncClient, member):
        res = await client.put("/api/v1/schedules/config", json={"phases": ["x"]}, headers=get_auth_headers(member))
        assert res.status_code == 403

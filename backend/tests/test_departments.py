# tests/test_departments.py — Department CRUD, admin/member lists and columns
import pytest
from httpx import AsyncClient

from models import DEFAULT_COLUMNS
from tests.conftest import create_task, get_auth_headers


@pytest.mark.asyncio
class TestDepartmentCrud:
    async def test_create_requires_superuser(self, client: AsyncClient, dept_admin):
        res = await client.post("/api/v1/departments", json={"name": "Choir"}, headers=get_auth_headers(dept_admin))
        assert res.status_code == 403

    async def test_create_and_list(self, client: AsyncClient, superuser):
        headers = get_auth_headers(superuser)
        for name in ("Sound", "Choir"):
            res = await client.post("/api/v1/departments", json={"name": f"  {name} "}, headers=headers)
            assert res.status_code == 201

        res = await client.get("/api/v1/departments", headers=headers)
        assert res.status_code == 200
        data = res.json()
        assert [d["name"] for d in data] == ["Choir", "Sound"]
        assert data[0]["is_custom"] is False
        assert [c["id"] for c in data[0]["columns"]] == [c["id"] for c in DEFAULT_COLUMNS]

    async def test_duplicate_name_case_insensitive(self, client: AsyncClient, superuser, department):
        res = await client.post("/api/v1/departments", json={"name": "media"}, headers=get_auth_headers(superuser))
        assert res.status_code == 400

    async def test_blank_name_rejected(self, client: AsyncClient, superuser):
        res = await client.post("/api/v1/departments", json={"name": "   "}, headers=get_auth_headers(superuser))
        assert res.status_code == 400

    async def test_list_only_visible(self, client: AsyncClient, department, member, outsider):
        res = await client.get("/api/v1/departments", headers=get_auth_headers(member))
        assert [d["id"] for d in res.json()] == [department.id]

        res = await client.get("/api/v1/departments", headers=get_auth_headers(outsider))
        assert res.json() == []

    async def test_outsider_cannot_read_department(self, client: AsyncClient, department, outsider):
        res = await client.get(f"/api/v1/departments/{department.id}", headers=get_auth_headers(outsider))
        assert res.status_code == 403

    async def test_rename(self, client: AsyncClient, superuser, department):
        res = await client.put(
            f"/api/v1/departments/{department.id}", json={"name": "Media Team"}, headers=get_auth_headers(superuser),
        )
        assert res.status_code == 200
        assert res.json()["name"] == "Media Team"

    async def test_delete_removes_tasks(self, client: AsyncClient, db_session, superuser, department):
        await create_task(db_session, department, "Doomed")
        headers = get_auth_headers(superuser)
        res = await client.delete(f"/api/v1/departments/{department.id}", headers=headers)
        assert res.status_code == 200

        res = await client.get("/api/v1/tasks", headers=headers)
        assert res.json() == []
        res = await client.get(f"/api/v1/departments/{department.id}", headers=headers)
        assert res.status_code == 404


@pytest.mark.asyncio
class TestDepartmentRoles:
    async def test_admin_adds_admin_idempotently(self, client: AsyncClient, department, dept_admin, assignee):
        headers = get_auth_headers(dept_admin)
        for _ in range(2):
            res = await client.post(
                f"/api/v1/departments/{department.id}/admins", json={"user_id": assignee.id}, headers=headers,
            )
            assert res.status_code == 200

        res = await client.get(f"/api/v1/departments/{department.id}", headers=headers)
        assert res.json()["admin_ids"].count(assignee.id) == 1

        res = await client.get(f"/api/v1/departments/{department.id}/admins", headers=headers)
        assert {u["id"] for u in res.json()} == {dept_admin.id, assignee.id}

    async def test_add_unknown_user_is_404(self, client: AsyncClient, department, dept_admin):
        res = await client.post(
            f"/api/v1/departments/{department.id}/members", json={"user_id": "ghost"},
            headers=get_auth_headers(dept_admin),
        )
        assert res.status_code == 404

    async def test_member_cannot_manage(self, client: AsyncClient, department, member, outsider):
        res = await client.post(
            f"/api/v1/departments/{department.id}/members", json={"user_id": outsider.id},
            headers=get_auth_headers(member),
        )
        assert res.status_code == 403

    async def test_add_and_remove_member(self, client: AsyncClient, department, superuser, outsider):
        headers = get_auth_headers(superuser)
        res = await client.post(
            f"/api/v1/departments/{department.id}/members", json={"user_id": outsider.id}, headers=headers,
        )
        assert res.status_code == 200

        res = await client.get("/api/v1/departments", headers=get_auth_headers(outsider))
        assert [d["id"] for d in res.json()] == [department.id]

        res = await client.delete(f"/api/v1/departments/{department.id}/members/{outsider.id}", headers=headers)
        assert res.status_code == 200
        res = await client.get(f"/api/v1/departments/{department.id}/members", headers=headers)
        assert outsider.id not in {u["id"] for u in res.json()}


@pytest.mark.asyncio
class TestColumns:
    async def test_default_columns(self, client: AsyncClient, department, member):
        res = await client.get(f"/api/v1/departments/{department.id}/columns", headers=get_auth_headers(member))
        assert res.status_code == 200
        data = res.json()
        assert data["is_custom"] is False
        assert [c["id"] for c in data["columns"]] == ["backlog", "todo", "in_progress", "done"]

    async def test_custom_columns_sorted(self, client: AsyncClient, department, dept_admin):
        headers = get_auth_headers(dept_admin)
        res = await client.put(f"/api/v1/departments/{department.id}/columns", json={"columns": [
            {"id": "review", "name": "Review", "order": 2},
            {"id": "todo", "name": "To Do", "order": 0},
            {"id": "doing", "name": "Doing", "order": 1, "color": "#fff"},
        ]}, headers=headers)
        assert res.status_code == 200
        assert [c["id"] for c in res.json()["columns"]] == ["todo", "doing", "review"]

        res = await client.get(f"/api/v1/departments/{department.id}/columns", headers=headers)
        assert res.json()["is_custom"] is True

        res = await client.delete(f"/api/v1/departments/{department.id}/columns", headers=headers)
        assert res.json()["is_custom"] is False
        res = await client.get(f"/api/v1/departments/{department.id}/columns", headers=headers)
        assert res.json()["is_custom"] is False

    async def test_invalid_columns(self, client: AsyncClient, department, dept_admin):
        headers = get_auth_headers(dept_admin)
        url = f"/api/v1/departments/{department.id}/columns"
        assert (await client.put(url, json={"columns": []}, headers=headers)).status_code == 400
        assert (await client.put(url, json={"columns": [{"id": "a", "name": "A"}]}, headers=headers)).status_code == 400
        dup = {"columns": [{"id": "a", "name": "A", "order": 0}, {"id": "a", "name": "B", "order": 1}]}
        assert (await client.put(url, json=dup, headers=headers)).status_code == 400
        reserved = {"columns": [{"id": "archived", "name": "Archive", "order": 0}]}
        assert (await client.put(url, json=reserved, headers=headers)).status_code == 400

    async def test_member_cannot_change_columns(self, client: AsyncClient, department, member):
        res = await client.put(f"/api/v1/departments/{department.id}/columns", json={"columns": [
            {"id": "todo", "name": "To Do", "order": 0},
        ]}, headers=get_auth_headers(member))
        assert res.status_code == 403

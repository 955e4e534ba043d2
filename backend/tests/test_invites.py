# tests/test_invites.py — Invite management
from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient

from models import as_utc, utcnow
from tests.conftest import create_user, get_auth_headers


@pytest.mark.asyncio
async def test_member_cannot_create_invites(client: AsyncClient, member):
    res = await client.post("/api/v1/invites", json={}, headers=get_auth_headers(member))
    assert res.status_code == 403


@pytest.mark.asyncio
async def test_global_admin_creates_invite(client: AsyncClient, db_session):
    admin = await create_user(db_session, "boss@kanban.dev", "Boss", is_admin=True)
    res = await client.post(
        "/api/v1/invites",
        json={"email": "Guest@Kanban.dev"},
        headers={**get_auth_headers(admin), "Origin": "https://board.kanban.dev"},
    )
    assert res.status_code == 201
    data = res.json()
    assert len(data["token"]) == 64
    assert data["signup_url"] == f"https://board.kanban.dev/signup?token={data['token']}"

    # Default lifetime is one week
    expires = as_utc(datetime.fromisoformat(data["expires_at"]))
    assert timedelta(days=6, hours=23) < expires - utcnow() <= timedelta(days=7)

    listing = await client.get("/api/v1/invites", headers=get_auth_headers(admin))
    assert listing.status_code == 200
    invites = listing.json()
    assert len(invites) == 1
    assert invites[0]["email"] == "guest@kanban.dev"
    assert invites[0]["created_by"] == "Boss"
    assert invites[0]["used"] is False


@pytest.mark.asyncio
async def test_invite_round_trip_to_signup(client: AsyncClient, superuser):
    created = await client.post("/api/v1/invites", json={"expires_in_days": 1}, headers=get_auth_headers(superuser))
    token = created.json()["token"]

    res = await client.post("/api/v1/auth/signup", json={
        "token": token,
        "email": "joiner@kanban.dev",
        "password": "JoinerPass123",
        "name": "Joiner",
    })
    assert res.status_code == 201

    listing = await client.get("/api/v1/invites", headers=get_auth_headers(superuser))
    invite = listing.json()[0]
    assert invite["used"] is True
    assert invite["used_by_email"] == "joiner@kanban.dev"


@pytest.mark.asyncio
async def test_delete_invite(client: AsyncClient, superuser):
    created = await client.post("/api/v1/invites", json={}, headers=get_auth_headers(superuser))
    invite_id = created.json()["id"]

    res = await client.delete(f"/api/v1/invites/{invite_id}", headers=get_auth_headers(superuser))
    assert res.status_code == 200

    res = await client.delete(f"/api/v1/invites/{invite_id}", headers=get_auth_headers(superuser))
    assert res.status_code == 404

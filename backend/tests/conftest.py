# tests/conftest.py — Shared test fixtures
import os
import uuid
from typing import Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"

import auth as auth_module
from models import Base, User, Department, Task, TaskPriority, utcnow
from auth import AuthService
from database import get_db_session
from main import app

TEST_PASSWORD = "TestPassword123!"
# bcrypt is deliberately slow; hash once per session
_PASSWORD_HASH = AuthService.hash_password(TEST_PASSWORD)


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_login_attempts():
    auth_module._login_attempts.clear()
    yield
    auth_module._login_attempts.clear()


async def create_user(db: AsyncSession, email: str, name: str, **flags) -> User:
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        display_name=name,
        password_hash=_PASSWORD_HASH,
        is_admin=flags.get("is_admin", False),
        is_superuser=flags.get("is_superuser", False),
        profile={},
        settings={},
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def create_task(db: AsyncSession, department: Department, title: str = "Task", **fields) -> Task:
    now = fields.pop("created_at", None) or utcnow()
    task = Task(
        id=fields.pop("id", None) or str(uuid.uuid4()),
        department_id=department.id,
        title=title,
        description=fields.pop("description", ""),
        status=fields.pop("status", "todo"),
        priority=fields.pop("priority", TaskPriority.MEDIUM),
        order=fields.pop("order", 0),
        assignee_ids=fields.pop("assignee_ids", []),
        blocked_by=[],
        labels=fields.pop("labels", []),
        subtasks=fields.pop("subtasks", []),
        attachments=[],
        comments=[],
        activity_log=[],
        created_at=now,
        updated_at=now,
        **fields,
    )
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return task


@pytest_asyncio.fixture
async def superuser(db_session):
    return await create_user(db_session, "super@kanban.dev", "Super User", is_superuser=True)


@pytest_asyncio.fixture
async def dept_admin(db_session):
    return await create_user(db_session, "lead@kanban.dev", "Dept Lead")


@pytest_asyncio.fixture
async def assignee(db_session):
    return await create_user(db_session, "worker@kanban.dev", "Worker Bee")


@pytest_asyncio.fixture
async def member(db_session):
    return await create_user(db_session, "member@kanban.dev", "Plain Member")


@pytest_asyncio.fixture
async def outsider(db_session):
    return await create_user(db_session, "outsider@kanban.dev", "Out Sider")


@pytest_asyncio.fixture
async def department(db_session, dept_admin, member):
    dept = Department(
        id=str(uuid.uuid4()),
        name="Media",
        admin_ids=[dept_admin.id],
        member_ids=[member.id],
    )
    db_session.add(dept)
    await db_session.commit()
    await db_session.refresh(dept)
    return dept


@pytest_asyncio.fixture
async def task(db_session, department, assignee):
    return await create_task(db_session, department, "Set up projector", assignee_ids=[assignee.id])


def get_auth_headers(user: User, token: Optional[str] = None) -> dict:
    """Generate auth headers for a user"""
    token = token or AuthService.create_access_token(user.id)
    return {"Authorization": f"Bearer {token}"}

"""Shared test fixtures and configuration for backend tests.

Settings are read from the environment at import time, so the test database
and secrets are configured before anything from ``chatapp`` is imported.
"""
import asyncio
import os
import tempfile
from dataclasses import dataclass

_TMP_DIR = tempfile.mkdtemp(prefix="chatapp-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/test.db"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["WS_CONNECT_TIMEOUT_SECONDS"] = "5"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import update  # noqa: E402

from chatapp import models  # noqa: E402,F401
from chatapp.db import Base, SessionLocal, engine  # noqa: E402
from chatapp.deps import build_services  # noqa: E402
from chatapp.main import app  # noqa: E402
from chatapp.models import User  # noqa: E402
from chatapp.schemas import UserCreate  # noqa: E402

PASSWORD = "Secret123!"


async def reset_schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def promote_to_admin(user_id: int):
    async with SessionLocal() as db:
        await db.execute(update(User).where(User.id == user_id).values(is_admin=True))
        await db.commit()


@dataclass
class Account:
    id: int
    email: str
    token: str

    @property
    def headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"}


# ---------------------- HTTP / WebSocket ----------------------

@pytest.fixture
def client():
    """A TestClient with the app lifespan running against an empty database."""
    asyncio.run(reset_schema())
    with TestClient(app) as c:
        yield c


@pytest.fixture
def register(client):
    def _register(email: str, first_name: str = "Alice", last_name: str = "Smith") -> Account:
        resp = client.post(
            "/auth/register",
            json={"email": email, "firstName": first_name, "lastName": last_name, "password": PASSWORD},
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        return Account(id=body["user"]["id"], email=email, token=body["accessToken"])

    return _register


@pytest.fixture
def alice(register):
    return register("alice@example.com", "Alice", "Smith")


@pytest.fixture
def bob(register):
    return register("bob@example.com", "Bob", "Jones")


@pytest.fixture
def carol(register):
    return register("carol@example.com", "Carol", "White")


@pytest.fixture
def make_admin(client):
    def _make_admin(account: Account) -> Account:
        client.portal.call(promote_to_admin, account.id)
        return account

    return _make_admin


# ---------------------- service level ----------------------

@pytest_asyncio.fixture
async def db():
    await reset_schema()
    async with SessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def services(db):
    return build_services(db)


@pytest_asyncio.fixture
async def make_user(services):
    async def _make_user(email: str, first_name: str = "Alice", last_name: str = "Smith") -> User:
        return await services.users.create(
            UserCreate(email=email, first_name=first_name, last_name=last_name, password=PASSWORD)
        )

    return _make_user

import os
import uuid
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

# Use test DB
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "captcha_rewards_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory database bound to every document model."""
    from app.db.init import init_db
    database = AsyncMongoMockClient()[f"test_{uuid.uuid4().hex[:8]}"]
    await init_db(database=database)
    yield database


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from app.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def make_user(db):
    """Factory: insert a User, optionally on a plan paying `earnings` per captcha."""
    from datetime import datetime, timedelta

    from app.models.plan import Plan
    from app.models.user import User

    async def _make(role: str = "user", earnings: int | None = None, expired: bool = False) -> User:
        user = User(email=f"{uuid.uuid4().hex[:10]}@example.com", name="Test", role=role)
        if earnings is not None:
            plan = Plan(name=f"plan-{uuid.uuid4().hex[:6]}", price=99, validity_days=30, earnings_per_captcha=earnings)
            await plan.insert()
            user.plan_id = plan.id
            delta = timedelta(days=-1) if expired else timedelta(days=30)
            user.plan_expiry = datetime.utcnow() + delta
        await user.insert()
        return user

    return _make


@pytest.fixture
def auth_headers():
    """Build a bearer header for a user."""
    from app.core.security import create_access_token
    from app.services.users import access_token_payload

    def _headers(user) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(access_token_payload(user))}"}

    return _headers

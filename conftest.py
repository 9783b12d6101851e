"""Shared test configuration; must be loaded before src modules."""

import os

# Override settings before any src modules are imported.
os.environ["SUBS_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SUBS_ADMIN_SECRET_KEY"] = "test-admin-secret"
os.environ["SUBS_RESEND_API_KEY"] = ""

from datetime import datetime, timezone

import pytest
from src.database import Base, async_session, engine, register_models
from src.models.user import User

register_models()


@pytest.fixture(autouse=True)
async def _reset_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def user() -> User:
    async with async_session() as db:
        account = User(id="user-1", email="ada@example.com", name="Ada")
        db.add(account)
        await db.commit()
    return account


def as_utc(value: datetime) -> datetime:
    """SQLite hands datetimes back naive; they were stored as UTC."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def subscription_data(sub_id: str = "sub-1", user_id: str | None = "user-1", **attributes) -> dict:
    attrs = {
        "status": "active",
        "customer_id": 4821,
        "variant_id": 77,
        "renews_at": None,
        "cancelled": False,
        "trial_ends_at": None,
    }
    attrs.update(attributes)
    data = {"type": "subscriptions", "id": sub_id, "attributes": attrs}
    if user_id is not None:
        data["meta"] = {"custom_data": {"user_id": user_id}}
    return data

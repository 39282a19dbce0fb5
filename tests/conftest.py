"""
Shared fixtures: every test gets its own data directory and Database.
"""

from __future__ import annotations

from datetime import date, datetime, time

import pytest

from pipelines.config import Settings
from pipelines.schemas import User
from pipelines.storage import Database
from storage.accounts import hash_password


@pytest.fixture
def noon() -> datetime:
    """Today 12:00 local time, timezone-aware."""
    return datetime.combine(date.today(), time(12, 0)).astimezone()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(data_dir=tmp_path / "data", seed_demo_data=False)


@pytest.fixture
def db(settings) -> Database:
    return Database(settings=settings)


@pytest.fixture
def demo_db(tmp_path) -> Database:
    return Database(settings=Settings(data_dir=tmp_path / "demo", seed_demo_data=True))


@pytest.fixture
def admin(db) -> User:
    return db.users.get("user_admin")


@pytest.fixture
def make_user(db):
    def _make(role_id: str, email: str = "staff@mn.com") -> User:
        user = User(name="Staff", email=email, password_hash=hash_password("secret1"), role_id=role_id)
        db.users.add(user)
        return user

    return _make
